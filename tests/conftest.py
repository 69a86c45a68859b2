"""
Pytest configuration and shared fixtures.
"""

import numpy as np
import pytest

from board_calib.board import BoardModel
from board_calib.calib_types import Frame, FrameObservation


def square(x: float, y: float, side: float = 10.0) -> np.ndarray:
    return np.array(
        [[x, y], [x + side, y], [x + side, y + side], [x, y + side]], dtype=np.float32
    )


def make_observation(ids) -> FrameObservation:
    ids = tuple(int(i) for i in ids)
    return FrameObservation(ids, tuple(square(20.0 * k, 5.0 * k) for k in range(len(ids))))


def make_frame(idx: int, width: int = 64, height: int = 48) -> Frame:
    return Frame(idx, f"2026-10-18T10:00:{idx:02d}", np.zeros((height, width, 3), dtype=np.uint8))


@pytest.fixture
def board():
    """2x2 board whose markers carry ids 1..4."""
    return BoardModel(
        markers_x=2,
        markers_y=2,
        marker_length=0.04,
        marker_separation=0.01,
        dictionary="4x4_50",
        ids=(1, 2, 3, 4),
    )
