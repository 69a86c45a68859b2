import re
import time
from typing import Any

import cv2

from ..calib_types import Frame
from ..errors import AcquisitionError


class USBWebcamCapture:
    """
    Frame source backed by cv2.VideoCapture.

    ``device`` may be a camera index, a ``/dev/videoN`` path, or any other
    string OpenCV accepts (video file, stream URL). ``next_frame`` returns
    None once the stream ends.
    """

    def __init__(self, device: int | str = 0, requested_fps: int = 30, w: int = 0, h: int = 0):
        self.dev, self.fps, self.w, self.h = device, requested_fps, w, h
        self.cap: Any = None
        self.idx = 0

    def _open(self):
        if isinstance(self.dev, int):
            return cv2.VideoCapture(self.dev, cv2.CAP_V4L2), True
        dev_str = str(self.dev)
        if dev_str.isdigit():
            return cv2.VideoCapture(int(dev_str), cv2.CAP_V4L2), True
        match = re.match(r"^/dev/video(\d+)$", dev_str)
        if match:
            return cv2.VideoCapture(int(match.group(1)), cv2.CAP_V4L2), True
        return cv2.VideoCapture(dev_str), False

    def start(self):
        self.cap, is_camera = self._open()
        if is_camera:
            self.cap.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*'MJPG'))
            if self.w and self.h:
                self.cap.set(cv2.CAP_PROP_FRAME_WIDTH,  self.w)
                self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.h)
            if self.fps:
                self.cap.set(cv2.CAP_PROP_FPS,          self.fps)
        if not self.cap.isOpened():
            raise AcquisitionError(f"Failed to open video input: {self.dev}")
        self.idx = 0

    def next_frame(self) -> Frame | None:
        if self.cap is None:
            return None
        ok, img = self.cap.read()
        if not ok: return None
        self.idx += 1
        ts = time.strftime("%Y-%m-%dT%H:%M:%S")
        return Frame(self.idx, ts, img)

    def stop(self):
        if self.cap is not None:
            self.cap.release()
            self.cap = None
