from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np


Size = tuple[int, int]  # (width, height)


@dataclass
class Frame:
    idx: int
    ts_iso: str
    image: Any  # numpy array

    @property
    def size(self) -> Size:
        h, w = self.image.shape[:2]
        return (int(w), int(h))


@dataclass(frozen=True)
class FrameObservation:
    """Markers detected in one frame.

    ``ids[i]`` is the identifier of the marker whose four image-space corners
    are ``corners[i]``.
    """

    ids: tuple[int, ...] = ()
    corners: tuple[Any, ...] = ()  # (4,2) float32 arrays

    def __post_init__(self):
        if len(self.ids) != len(self.corners):
            raise ValueError(
                f"ids/corners length mismatch: {len(self.ids)} != {len(self.corners)}"
            )
        if len(set(self.ids)) != len(self.ids):
            raise ValueError(f"duplicate marker ids in observation: {list(self.ids)}")

    @classmethod
    def empty(cls) -> "FrameObservation":
        return cls((), ())

    def __len__(self) -> int:
        return len(self.ids)


@dataclass(frozen=True)
class FlattenedCorpus:
    """All accepted observations concatenated in capture order.

    ``counts[i]`` is the number of markers contributed by frame ``i``.
    """

    corners: tuple[Any, ...]
    ids: tuple[int, ...]
    counts: tuple[int, ...]

    def ids_array(self) -> np.ndarray:
        return np.array(self.ids, dtype=np.int32).reshape(-1, 1)

    def counts_array(self) -> np.ndarray:
        return np.array(self.counts, dtype=np.int32)

    def corners_list(self) -> list[np.ndarray]:
        return [np.asarray(c, dtype=np.float32).reshape(1, 4, 2) for c in self.corners]

    def per_frame(self):
        """Yield ``(ids, corners)`` for each original frame."""
        start = 0
        for n in self.counts:
            yield self.ids[start:start + n], self.corners[start:start + n]
            start += n


@dataclass
class CalibrationResult:
    camera_matrix: Any  # 3x3 ndarray
    distortion_coefficients: Any  # (k1, k2, p1, p2, k3, ...)
    reprojection_error: float
    frame_count: int
