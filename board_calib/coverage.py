from __future__ import annotations

from .board import BoardModel
from .calib_types import FrameObservation


def is_fully_covered(observation: FrameObservation, board: BoardModel) -> bool:
    """True when every marker on the board is present in the observation.

    Extra markers that are not on the board do not affect the result.
    """
    return set(observation.ids) >= board.expected_ids


def missing_ids(observation: FrameObservation, board: BoardModel) -> list[int]:
    return sorted(board.expected_ids - set(observation.ids))
