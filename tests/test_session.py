import logging
from unittest.mock import patch

import numpy as np
import pytest

from conftest import make_frame, make_observation

from board_calib.calib_types import CalibrationResult, FrameObservation
from board_calib.errors import AcquisitionError, PersistenceError, SolverFailure
from board_calib.session import CaptureSessionController, OperatorEvent, SessionState
from board_calib.strategies import operator_io as io_mod

FULL = [1, 2, 3, 4]


class DummyCapture:
    def __init__(self, frames):
        """Seed the fake capture object with predetermined frames."""
        self.frames = list(frames)
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def next_frame(self):
        """Return the next queued frame or None when exhausted."""
        if self.frames:
            return self.frames.pop(0)
        return None

    def stop(self):
        self.stopped = True


class FailingCapture(DummyCapture):
    def start(self):
        raise AcquisitionError("Failed to open video input: 0")


class DummyDetector:
    def __init__(self, observations):
        """Return the queued observations in order, then empty ones."""
        self.observations = list(observations)
        self.calls = 0

    def detect(self, frame):
        self.calls += 1
        if self.observations:
            return self.observations.pop(0)
        return FrameObservation.empty()


class ScriptedOperator:
    def __init__(self, events):
        self.events = list(events)
        self.timeouts = []

    def poll(self, wait_ms):
        self.timeouts.append(wait_ms)
        if self.events:
            return self.events.pop(0)
        return OperatorEvent.NONE


class RecordingRender:
    def __init__(self):
        self.shown = []
        self.closed = False

    def show(self, frame, observation, accepted, target):
        self.shown.append((frame.idx, accepted, target))

    def close(self):
        self.closed = True


class DummySolver:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def solve(self, flattened, board, image_size):
        self.calls.append((flattened, board, image_size))
        if self.fail:
            raise SolverFailure("Calibration failed: degenerate views")
        return CalibrationResult(np.eye(3), np.zeros((5, 1)), 0.42, len(flattened.counts))


class DummyPersister:
    def __init__(self, fail=False):
        self.fail = fail
        self.saved = []

    def save(self, path, image_size, result, flags=0, timestamp="", aspect_ratio=1.0):
        if self.fail:
            raise PersistenceError(f"Failed to save calibration: cannot open {path}")
        self.saved.append((path, image_size, result, flags))
        return path


class CountingCorpusSpy:
    """Wraps a corpus so tests can count flatten() calls."""

    def __init__(self, corpus):
        self._corpus = corpus
        self.flatten_calls = 0

    def flatten(self):
        self.flatten_calls += 1
        return self._corpus.flatten()

    def __getattr__(self, name):
        return getattr(self._corpus, name)


def build(board, frames, observations, events, min_frames=3, solver=None, persister=None,
          capture=None, **kwargs):
    capture = capture or DummyCapture(frames)
    ctrl = CaptureSessionController(
        capture,
        DummyDetector(observations),
        board,
        solver or DummySolver(),
        persister or DummyPersister(),
        ScriptedOperator(events),
        RecordingRender(),
        min_frames=min_frames,
        output_path="out/calib.yml",
        logger=logging.getLogger("test.session"),
        wait_ms=7,
        **kwargs,
    )
    return ctrl


def test_partial_frame_rejected_on_capture(board):
    ctrl = build(board, [make_frame(1)], [make_observation([1, 2, 3])], [OperatorEvent.CAPTURE])

    assert ctrl.step() is SessionState.RUNNING
    assert ctrl.corpus.size() == 0
    assert ctrl.rejected_frames == 1
    assert ctrl.corpus.image_size is None


def test_full_frame_with_extra_id_accepted(board):
    ctrl = build(board, [make_frame(1, 320, 240)], [make_observation([4, 3, 2, 1, 9])],
                 [OperatorEvent.CAPTURE])

    assert ctrl.step() is SessionState.RUNNING
    assert ctrl.corpus.size() == 1
    assert ctrl.corpus.image_size == (320, 240)


def test_detection_without_capture_is_not_kept(board):
    ctrl = build(board, [make_frame(1)], [make_observation(FULL)], [OperatorEvent.NONE])
    ctrl.step()
    assert ctrl.corpus.size() == 0
    assert ctrl.rejected_frames == 0


def test_insufficient_frames_at_end_of_stream(board):
    n = 15
    frames = [make_frame(i) for i in range(1, n + 1)]
    solver, persister = DummySolver(), DummyPersister()
    ctrl = build(board, frames, [make_observation(FULL)] * n, [OperatorEvent.CAPTURE] * n,
                 min_frames=20, solver=solver, persister=persister)

    summary = ctrl.run()

    assert summary.state is SessionState.TERMINATED_INSUFFICIENT
    assert summary.accepted_frames == 15
    assert "15/20" in summary.error
    assert solver.calls == []
    assert persister.saved == []
    assert summary.calibrated is False


def test_success_flattens_once_and_solves_once(board):
    n = 20
    frames = [make_frame(i) for i in range(1, n + 1)]
    solver, persister = DummySolver(), DummyPersister()
    ctrl = build(board, frames, [make_observation(FULL)] * n, [OperatorEvent.CAPTURE] * n,
                 min_frames=20, solver=solver, persister=persister)
    spy = CountingCorpusSpy(ctrl.corpus)
    ctrl.corpus = spy

    summary = ctrl.run()

    assert summary.state is SessionState.TERMINATED_SUCCESS
    assert summary.calibrated is True
    assert spy.flatten_calls == 1
    assert len(solver.calls) == 1
    flattened, solved_board, image_size = solver.calls[0]
    assert flattened.counts == (4,) * 20
    assert solved_board is board
    assert image_size == (64, 48)
    assert len(persister.saved) == 1
    assert persister.saved[0][0] == "out/calib.yml"
    assert summary.output_path == "out/calib.yml"
    assert summary.result.reprojection_error == 0.42


def test_size_change_aborts_and_keeps_earlier_frames(board):
    frames = [make_frame(i) for i in range(1, 5)] + [make_frame(5, 128, 96), make_frame(6)]
    solver, persister = DummySolver(), DummyPersister()
    ctrl = build(board, frames, [make_observation(FULL)] * 6, [OperatorEvent.CAPTURE] * 6,
                 min_frames=4, solver=solver, persister=persister)

    summary = ctrl.run()

    assert summary.state is SessionState.ABORTED
    assert summary.abort_reason == "size_mismatch"
    assert ctrl.corpus.size() == 4
    assert summary.frames_processed == 5
    assert solver.calls == []
    assert persister.saved == []


def test_cancel_aborts_even_with_enough_frames(board):
    frames = [make_frame(i) for i in range(1, 5)]
    events = [OperatorEvent.CAPTURE, OperatorEvent.CAPTURE, OperatorEvent.CANCEL, OperatorEvent.CAPTURE]
    solver = DummySolver()
    ctrl = build(board, frames, [make_observation(FULL)] * 4, events, min_frames=2, solver=solver)

    summary = ctrl.run()

    assert summary.state is SessionState.ABORTED
    assert summary.abort_reason == "cancelled"
    assert summary.accepted_frames == 2
    assert summary.frames_processed == 3
    assert solver.calls == []


def test_finish_behaves_like_end_of_stream(board):
    frames = [make_frame(i) for i in range(1, 10)]
    events = [OperatorEvent.CAPTURE] * 3 + [OperatorEvent.FINISH]
    ctrl = build(board, frames, [make_observation(FULL)] * 9, events, min_frames=3)

    summary = ctrl.run()

    assert summary.state is SessionState.TERMINATED_SUCCESS
    assert summary.frames_processed == 4
    assert summary.calibrated


def test_finish_before_min_frames_is_insufficient(board):
    frames = [make_frame(i) for i in range(1, 4)]
    ctrl = build(board, frames, [make_observation(FULL)] * 3,
                 [OperatorEvent.CAPTURE, OperatorEvent.FINISH], min_frames=3)
    assert ctrl.run().state is SessionState.TERMINATED_INSUFFICIENT


def test_success_requires_min_frames_at_end_of_stream(board):
    frames = [make_frame(i) for i in range(1, 6)]
    ctrl = build(board, frames, [make_observation(FULL)] * 5, [OperatorEvent.CAPTURE] * 5,
                 min_frames=3)

    states = [ctrl.step() for _ in range(5)]
    # reaching min_frames does not end the session by itself
    assert states == [SessionState.RUNNING] * 5
    assert ctrl.step() is SessionState.TERMINATED_SUCCESS


def test_solver_failure_is_reported_and_nothing_saved(board):
    frames = [make_frame(i) for i in range(1, 4)]
    persister = DummyPersister()
    ctrl = build(board, frames, [make_observation(FULL)] * 3, [OperatorEvent.CAPTURE] * 3,
                 solver=DummySolver(fail=True), persister=persister)

    summary = ctrl.run()

    assert summary.state is SessionState.TERMINATED_SUCCESS
    assert summary.calibrated is False
    assert "degenerate" in summary.error
    assert summary.result is None
    assert persister.saved == []


def test_persistence_failure_is_reported(board):
    frames = [make_frame(i) for i in range(1, 4)]
    ctrl = build(board, frames, [make_observation(FULL)] * 3, [OperatorEvent.CAPTURE] * 3,
                 persister=DummyPersister(fail=True))

    summary = ctrl.run()

    assert summary.calibrated is False
    assert summary.output_path is None
    assert "cannot open" in summary.error


def test_acquisition_failure_propagates(board):
    capture = FailingCapture([])
    ctrl = build(board, [], [], [], capture=capture)
    with pytest.raises(AcquisitionError):
        ctrl.run()
    assert ctrl.frames_processed == 0


def test_render_and_poll_receive_progress(board):
    frames = [make_frame(1), make_frame(2)]
    ctrl = build(board, frames, [make_observation(FULL)] * 2, [OperatorEvent.CAPTURE], min_frames=5)

    ctrl.run()

    assert ctrl.render.shown == [(1, 0, 5), (2, 1, 5)]
    assert ctrl.render.closed is True
    assert ctrl.operator.timeouts == [7, 7]
    assert ctrl.capture.started and ctrl.capture.stopped


def test_stop_request_cancels_at_next_poll(board):
    frames = [make_frame(i) for i in range(1, 4)]
    ctrl = build(board, frames, [make_observation(FULL)] * 3, [OperatorEvent.CAPTURE] * 3)

    ctrl.step()
    ctrl.stop()
    assert ctrl.step() is SessionState.ABORTED
    assert ctrl.corpus.size() == 1


def test_max_frames_ends_stream(board):
    frames = [make_frame(i) for i in range(1, 10)]
    ctrl = build(board, frames, [make_observation(FULL)] * 9, [OperatorEvent.CAPTURE] * 9,
                 min_frames=2, max_frames=3)

    summary = ctrl.run()

    assert summary.frames_processed == 3
    assert summary.state is SessionState.TERMINATED_SUCCESS


def test_step_after_terminal_state_is_noop(board):
    ctrl = build(board, [], [], [])
    assert ctrl.step() is SessionState.TERMINATED_INSUFFICIENT
    assert ctrl.step() is SessionState.TERMINATED_INSUFFICIENT
    assert ctrl.detector.calls == 0


def test_escape_key_calibrates_kept_frames(board):
    frames = [make_frame(i) for i in range(1, 6)]
    persister = DummyPersister()
    ctrl = build(board, frames, [make_observation(FULL)] * 5, [], min_frames=2,
                 persister=persister)
    ctrl.operator = io_mod.KeyboardInput()

    with patch.object(io_mod.cv2, "waitKey", side_effect=[ord("c"), ord("c"), io_mod.KEY_ESC]):
        summary = ctrl.run()

    assert summary.state is SessionState.TERMINATED_SUCCESS
    assert summary.calibrated
    assert summary.accepted_frames == 2
    assert len(persister.saved) == 1


def test_escape_key_with_too_few_frames_is_insufficient(board):
    frames = [make_frame(i) for i in range(1, 6)]
    ctrl = build(board, frames, [make_observation(FULL)] * 5, [], min_frames=3)
    ctrl.operator = io_mod.KeyboardInput()

    with patch.object(io_mod.cv2, "waitKey", side_effect=[ord("c"), io_mod.KEY_ESC]):
        summary = ctrl.run()

    assert summary.state is SessionState.TERMINATED_INSUFFICIENT
    assert "1/3" in summary.error


def test_logs_capture_time_and_solved_frame_count(board, caplog):
    frames = [make_frame(i) for i in range(1, 3)]
    ctrl = build(board, frames, [make_observation(FULL)] * 2, [OperatorEvent.CAPTURE] * 2,
                 min_frames=2)

    with caplog.at_level(logging.INFO, logger="test.session"):
        ctrl.run()

    assert "frame=2 accepted at 2026-10-18T10:00:02 (2/2)" in caplog.text
    assert "reprojection error 0.4200 over 2 frames" in caplog.text
