from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, Sequence

import numpy as np

from charucocalib.core.detection import CharucoCorners

logger = logging.getLogger(__name__)


def _frozen(a: np.ndarray) -> np.ndarray:
    a = np.array(a, copy=True)
    a.setflags(write=False)
    return a


@dataclass(frozen=True, eq=False)
class FrameObservation:
    """
    Detections of one accepted frame plus the frame itself.

    Arrays are private read-only copies; nothing outside the store can mutate them.
    """

    marker_corners: tuple[np.ndarray, ...]  # each (4,2) float32
    marker_ids: np.ndarray  # (M,) int32, unique
    charuco_corners: np.ndarray  # (K,2) float32, may be empty
    charuco_ids: np.ndarray  # (K,) int32
    image: np.ndarray

    def __post_init__(self) -> None:
        ids = np.asarray(self.marker_ids, dtype=np.int32).reshape(-1)
        corners = tuple(_frozen(np.asarray(c, dtype=np.float32).reshape(4, 2)) for c in self.marker_corners)
        if len(corners) != ids.size:
            raise ValueError(f"{len(corners)} marker polygons for {ids.size} marker ids")
        if np.unique(ids).size != ids.size:
            raise ValueError("marker ids must be unique within a frame")
        ch_corners = np.asarray(self.charuco_corners, dtype=np.float32).reshape(-1, 2)
        ch_ids = np.asarray(self.charuco_ids, dtype=np.int32).reshape(-1)
        if ch_corners.shape[0] != ch_ids.size:
            raise ValueError("charuco corners and ids must have the same length")

        object.__setattr__(self, "marker_corners", corners)
        object.__setattr__(self, "marker_ids", _frozen(ids))
        object.__setattr__(self, "charuco_corners", _frozen(ch_corners))
        object.__setattr__(self, "charuco_ids", _frozen(ch_ids))
        object.__setattr__(self, "image", _frozen(self.image))

    @property
    def n_markers(self) -> int:
        return int(self.marker_ids.size)

    @property
    def image_size(self) -> tuple[int, int]:
        """(width, height)"""
        return (int(self.image.shape[1]), int(self.image.shape[0]))

    @property
    def charuco(self) -> CharucoCorners:
        return CharucoCorners(corners=self.charuco_corners, ids=self.charuco_ids)


@dataclass(frozen=True, eq=False)
class CalibrationDataset:
    frames: tuple[FrameObservation, ...] = ()
    image_size: tuple[int, int] | None = None  # (width, height)

    def __post_init__(self) -> None:
        object.__setattr__(self, "frames", tuple(self.frames))
        if self.frames and self.image_size is None:
            object.__setattr__(self, "image_size", self.frames[0].image_size)
        for i, fr in enumerate(self.frames):
            if fr.image_size != self.image_size:
                raise ValueError(f"frame {i} has size {fr.image_size}, dataset size is {self.image_size}")

    def __len__(self) -> int:
        return len(self.frames)

    def __iter__(self) -> Iterator[FrameObservation]:
        return iter(self.frames)

    @property
    def n_frames_with_markers(self) -> int:
        return sum(1 for fr in self.frames if fr.n_markers > 0)


@dataclass
class ObservationStore:
    """Append-only store of accepted frames, owned by the capture session."""

    _frames: list[FrameObservation] = field(default_factory=list)
    image_size: tuple[int, int] | None = None

    def add(self, observation: FrameObservation) -> bool:
        """
        Append an observation. Returns False (and stores nothing) when it has no
        markers or its image size differs from the first stored frame.
        """
        if observation.n_markers == 0:
            return False
        if self.image_size is None:
            self.image_size = observation.image_size
        elif observation.image_size != self.image_size:
            logger.warning(
                "frame size %s differs from session size %s; frame not stored",
                observation.image_size,
                self.image_size,
            )
            return False
        self._frames.append(observation)
        return True

    def __len__(self) -> int:
        return len(self._frames)

    @property
    def frames(self) -> Sequence[FrameObservation]:
        return tuple(self._frames)

    def to_dataset(self) -> CalibrationDataset:
        return CalibrationDataset(frames=tuple(self._frames), image_size=self.image_size)
