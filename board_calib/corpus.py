from __future__ import annotations

from typing import Optional

from .calib_types import FlattenedCorpus, FrameObservation, Size
from .errors import SizeMismatch


class ObservationCorpus:
    """
    Append-only store of accepted observations.

    The image size of the first accepted frame is recorded and every later
    frame must match it; a change means the camera was reconfigured and the
    corpus can no longer be solved as one camera.
    """

    def __init__(self):
        self._frames: list[FrameObservation] = []
        self._image_size: Optional[Size] = None

    @property
    def frames(self) -> tuple[FrameObservation, ...]:
        return tuple(self._frames)

    @property
    def image_size(self) -> Optional[Size]:
        return self._image_size

    def append(self, observation: FrameObservation, frame_image_size: Size) -> None:
        size = (int(frame_image_size[0]), int(frame_image_size[1]))
        if self._frames and size != self._image_size:
            raise SizeMismatch(self._image_size, size)
        if not self._frames:
            self._image_size = size
        self._frames.append(observation)

    def size(self) -> int:
        return len(self._frames)

    __len__ = size

    def flatten(self) -> FlattenedCorpus:
        corners = []
        ids = []
        counts = []
        for obs in self._frames:
            counts.append(len(obs.ids))
            corners.extend(obs.corners)
            ids.extend(obs.ids)
        return FlattenedCorpus(tuple(corners), tuple(ids), tuple(counts))
