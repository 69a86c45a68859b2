from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Optional

from .board import BoardModel
from .calib_types import CalibrationResult, Size
from .corpus import ObservationCorpus
from .coverage import is_fully_covered, missing_ids
from .errors import PersistenceError, SizeMismatch, SolverFailure


class SessionState(enum.Enum):
    RUNNING = "running"
    TERMINATED_SUCCESS = "terminated_success"
    TERMINATED_INSUFFICIENT = "terminated_insufficient"
    ABORTED = "aborted"


class OperatorEvent(enum.Enum):
    NONE = "none"
    CAPTURE = "capture"
    CANCEL = "cancel"
    FINISH = "finish"  # operator is done capturing; handled like end of stream


@dataclass
class SessionSummary:
    state: SessionState
    accepted_frames: int
    min_frames: int
    rejected_frames: int
    frames_processed: int
    image_size: Optional[Size] = None
    result: Optional[CalibrationResult] = None
    output_path: Optional[str] = None
    abort_reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def calibrated(self) -> bool:
        return (
            self.state is SessionState.TERMINATED_SUCCESS
            and self.result is not None
            and self.error is None
        )


class CaptureSessionController:
    """
    Drives one capture session.

    Each iteration pulls a single frame, detects markers, shows the result and
    waits (bounded by ``wait_ms``) for an operator event. Only a CAPTURE event
    on a fully covered frame adds to the corpus. When capturing ends with at
    least ``min_frames`` accepted frames the corpus is solved and saved.
    """

    def __init__(
        self,
        capture,
        detector,
        board: BoardModel,
        solver,
        persister,
        operator,
        render,
        min_frames: int,
        output_path: str,
        logger: Optional[logging.Logger] = None,
        wait_ms: int = 10,
        max_frames: Optional[int] = None,
        calib_flags: int = 0,
        aspect_ratio: float = 1.0,
    ):
        self.capture = capture
        self.detector = detector
        self.board = board
        self.solver = solver
        self.persister = persister
        self.operator = operator
        self.render = render
        self.min_frames = min_frames
        self.output_path = output_path
        self.log = logger or logging.getLogger(__name__)
        self.wait_ms = wait_ms
        self.max_frames = max_frames
        self.calib_flags = calib_flags
        self.aspect_ratio = aspect_ratio

        self.corpus = ObservationCorpus()
        self.state = SessionState.RUNNING
        self.abort_reason: Optional[str] = None
        self.frames_processed = 0
        self.rejected_frames = 0
        self._stop_requested = False

    def stop(self) -> None:
        """Request cancellation; honoured at the next operator poll."""
        self._stop_requested = True

    def _end_of_stream(self) -> None:
        if self.corpus.size() >= self.min_frames:
            self.state = SessionState.TERMINATED_SUCCESS
        else:
            self.state = SessionState.TERMINATED_INSUFFICIENT

    def _abort(self, reason: str) -> None:
        self.state = SessionState.ABORTED
        self.abort_reason = reason

    def _poll(self) -> OperatorEvent:
        if self._stop_requested:
            return OperatorEvent.CANCEL
        event = self.operator.poll(self.wait_ms)
        if self._stop_requested:
            return OperatorEvent.CANCEL
        return event

    def step(self) -> SessionState:
        """Run one iteration of the capture loop and return the new state."""
        if self.state is not SessionState.RUNNING:
            return self.state

        if self.max_frames and self.frames_processed >= self.max_frames:
            self._end_of_stream()
            return self.state

        frame = self.capture.next_frame()
        if frame is None:
            self.log.info("end of stream after %d frames", self.frames_processed)
            self._end_of_stream()
            return self.state
        self.frames_processed += 1

        observation = self.detector.detect(frame)
        self.render.show(frame, observation, self.corpus.size(), self.min_frames)

        event = self._poll()
        if event is OperatorEvent.CANCEL:
            self.log.info("session cancelled by operator")
            self._abort("cancelled")
        elif event is OperatorEvent.FINISH:
            self.log.info("operator finished capturing")
            self._end_of_stream()
        elif event is OperatorEvent.CAPTURE:
            if is_fully_covered(observation, self.board):
                try:
                    self.corpus.append(observation, frame.size)
                except SizeMismatch as e:
                    self.log.error("frame=%d %s", frame.idx, e)
                    self._abort("size_mismatch")
                    return self.state
                self.log.info(
                    "frame=%d accepted at %s (%d/%d)",
                    frame.idx,
                    frame.ts_iso,
                    self.corpus.size(),
                    self.min_frames,
                )
            else:
                self.rejected_frames += 1
                self.log.warning(
                    "frame=%d rejected - missing markers %s",
                    frame.idx,
                    missing_ids(observation, self.board),
                )
        return self.state

    def run(self) -> SessionSummary:
        self.log.info(
            "session started: board=%dx%d dict=%s min_frames=%d",
            self.board.markers_x,
            self.board.markers_y,
            self.board.dictionary,
            self.min_frames,
        )
        self.capture.start()
        try:
            while self.step() is SessionState.RUNNING:
                pass
        finally:
            try:
                self.capture.stop()
            finally:
                self.render.close()

        self.log.info(
            "capture finished state=%s accepted=%d/%d rejected=%d",
            self.state.value,
            self.corpus.size(),
            self.min_frames,
            self.rejected_frames,
        )
        summary = SessionSummary(
            state=self.state,
            accepted_frames=self.corpus.size(),
            min_frames=self.min_frames,
            rejected_frames=self.rejected_frames,
            frames_processed=self.frames_processed,
            image_size=self.corpus.image_size,
            abort_reason=self.abort_reason,
        )

        if self.state is SessionState.TERMINATED_INSUFFICIENT:
            summary.error = f"Insufficient frames: {self.corpus.size()}/{self.min_frames}"
            self.log.error(summary.error)
        elif self.state is SessionState.ABORTED:
            summary.error = f"Session aborted ({self.abort_reason})"
            self.log.error(summary.error)
        elif self.state is SessionState.TERMINATED_SUCCESS:
            self._calibrate(summary)
        return summary

    def _calibrate(self, summary: SessionSummary) -> None:
        flattened = self.corpus.flatten()
        image_size = self.corpus.image_size
        try:
            result = self.solver.solve(flattened, self.board, image_size)
        except SolverFailure as e:
            summary.error = str(e)
            self.log.error("calibration failed: %s", e)
            return

        self.log.info(
            "calibration successful, reprojection error %.4f over %d frames",
            result.reprojection_error,
            result.frame_count,
        )
        summary.result = result
        try:
            self.persister.save(
                self.output_path,
                image_size,
                result,
                flags=self.calib_flags,
                timestamp=time.strftime("%c"),
                aspect_ratio=self.aspect_ratio,
            )
        except PersistenceError as e:
            summary.error = str(e)
            self.log.error("failed to save calibration: %s", e)
            return

        summary.output_path = str(self.output_path)
        self.log.info("saved calibration to %s", self.output_path)
