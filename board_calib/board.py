"""ArUco grid board description."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .errors import ConfigError
from .strategies.detect_aruco import dictionary_size, get_dict, normalize_dict_name


@dataclass(frozen=True)
class BoardModel:
    """
    Expected layout of a markers_x by markers_y GridBoard.

    Lengths are in metres. ``ids`` defaults to 0..N-1, the order in which
    OpenCV numbers a GridBoard's markers.
    """

    markers_x: int
    markers_y: int
    marker_length: float
    marker_separation: float
    dictionary: str = "4x4_50"
    ids: Optional[tuple[int, ...]] = None

    def __post_init__(self):
        if self.markers_x <= 0 or self.markers_y <= 0:
            raise ConfigError(
                f"Board dimensions must be positive, got {self.markers_x}x{self.markers_y}"
            )
        if self.marker_length <= 0:
            raise ConfigError(f"Marker length must be positive, got {self.marker_length}")
        if self.marker_separation < 0:
            raise ConfigError(
                f"Marker separation must not be negative, got {self.marker_separation}"
            )

        object.__setattr__(self, "dictionary", normalize_dict_name(self.dictionary))

        count = self.markers_x * self.markers_y
        ids = tuple(range(count)) if self.ids is None else tuple(int(i) for i in self.ids)
        if len(ids) != count:
            raise ConfigError(f"Board needs {count} ids, got {len(ids)}")
        if len(set(ids)) != len(ids):
            raise ConfigError("Board ids must be unique")
        capacity = dictionary_size(self.dictionary)
        if max(ids) >= capacity or min(ids) < 0:
            raise ConfigError(
                f"Dictionary {self.dictionary} holds {capacity} markers; board uses ids up to {max(ids)}"
            )
        object.__setattr__(self, "ids", ids)

    @property
    def expected_ids(self) -> frozenset[int]:
        return frozenset(self.ids)

    @property
    def marker_count(self) -> int:
        return len(self.ids)

    @classmethod
    def from_config(cls, cfg) -> "BoardModel":
        return cls(
            markers_x=cfg.markers_x,
            markers_y=cfg.markers_y,
            marker_length=cfg.marker_length_m,
            marker_separation=cfg.marker_separation_m,
            dictionary=cfg.aruco_dict,
        )


def create_grid_board(board: BoardModel):
    """Build the OpenCV GridBoard for ``board`` (OpenCV >= 4.7 and older)."""
    dictionary = get_dict(board.dictionary)
    ids = np.array(board.ids, dtype=np.int32)
    if hasattr(cv2.aruco, "GridBoard_create"):
        return cv2.aruco.GridBoard_create(
            board.markers_x,
            board.markers_y,
            board.marker_length,
            board.marker_separation,
            dictionary,
            int(ids.min()),
        )
    return cv2.aruco.GridBoard(
        (board.markers_x, board.markers_y),
        board.marker_length,
        board.marker_separation,
        dictionary,
        ids,
    )
