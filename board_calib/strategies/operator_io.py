"""Keyboard input and preview window for an interactive session."""

from __future__ import annotations

import cv2
import numpy as np

from ..calib_types import Frame, FrameObservation
from ..session import OperatorEvent

KEY_ESC = 27

# ESC ends capturing and calibrates when enough frames were kept; "x" drops
# the session without solving.
KEY_EVENTS = {
    KEY_ESC: OperatorEvent.FINISH,
    ord("q"): OperatorEvent.FINISH,
    ord("c"): OperatorEvent.CAPTURE,
    ord("x"): OperatorEvent.CANCEL,
}


class KeyboardInput:
    """Polls the OpenCV HighGUI window for a key press."""

    def poll(self, wait_ms: int) -> OperatorEvent:
        key = cv2.waitKey(max(1, int(wait_ms)))
        if key < 0:
            return OperatorEvent.NONE
        return KEY_EVENTS.get(key & 0xFF, OperatorEvent.NONE)


class WindowRender:
    def __init__(self, window_name: str = "Calibration"):
        self.window_name = window_name
        self._opened = False

    def show(self, frame: Frame, observation: FrameObservation, accepted: int, target: int) -> None:
        draw = frame.image.copy()
        if observation.ids:
            ids = np.array(observation.ids, dtype=np.int32).reshape(-1, 1)
            corners = [np.asarray(c, dtype=np.float32).reshape(1, 4, 2) for c in observation.corners]
            cv2.aruco.drawDetectedMarkers(draw, corners, ids)
        cv2.putText(
            draw,
            f"Frames: {accepted}/{target} | 'c' capture, ESC finish, 'x' cancel",
            (10, 30),
            cv2.FONT_HERSHEY_SIMPLEX,
            0.6,
            (0, 255, 255),
            2,
            cv2.LINE_AA,
        )
        cv2.imshow(self.window_name, draw)
        self._opened = True

    def close(self) -> None:
        if self._opened:
            cv2.destroyWindow(self.window_name)
            self._opened = False


class NullRender:
    def show(self, frame, observation, accepted, target) -> None:
        return None

    def close(self) -> None:
        return None
