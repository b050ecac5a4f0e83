from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator

import numpy as np

from charucocalib.core.image_io import list_images, load_bgr_u8
from charucocalib.errors import SourceUnavailable

logger = logging.getLogger(__name__)


class FrameSource:
    """
    Blocking frame iterator. `read()` returns None once the source is exhausted.
    """

    name = "source"

    def read(self) -> np.ndarray | None:
        raise NotImplementedError

    def release(self) -> None:
        pass

    def __iter__(self) -> Iterator[np.ndarray]:
        while True:
            frame = self.read()
            if frame is None:
                return
            yield frame

    def __enter__(self) -> "FrameSource":
        return self

    def __exit__(self, *exc) -> None:
        self.release()


class OpenCVCaptureSource(FrameSource):
    """Camera device (int index) or video file (path) read through `cv2.VideoCapture`."""

    def __init__(self, target: int | str | Path, width: int | None = None, height: int | None = None) -> None:
        import cv2  # type: ignore

        self._cv2 = cv2
        self.name = f"camera {target}" if isinstance(target, int) else str(target)
        if not isinstance(target, int) and not Path(target).exists():
            raise SourceUnavailable(f"video file not found: {target}")

        self._cap = cv2.VideoCapture(target if isinstance(target, int) else str(target))
        if not self._cap.isOpened():
            self._cap.release()
            raise SourceUnavailable(f"cannot open {self.name}")

        # Drivers may ignore the request; frames report their real size.
        if width:
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, int(width))
        if height:
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, int(height))
        logger.info("opened %s", self.name)

    def read(self) -> np.ndarray | None:
        if not self._cap.grab():
            return None
        ok, frame = self._cap.retrieve()
        if not ok or frame is None:
            return None
        return frame

    def release(self) -> None:
        self._cap.release()


class ImageDirectorySource(FrameSource):
    """Still images of a directory, in file-name order."""

    def __init__(self, directory: str | Path) -> None:
        d = Path(directory)
        if not d.is_dir():
            raise SourceUnavailable(f"image directory not found: {d}")
        self.name = str(d)
        self._paths = list_images(d)
        self._next = 0
        logger.info("found %d images in %s", len(self._paths), d)

    def read(self) -> np.ndarray | None:
        if self._next >= len(self._paths):
            return None
        p = self._paths[self._next]
        self._next += 1
        return load_bgr_u8(p)


class ArraySource(FrameSource):
    """In-memory frames (synthetic views, tests)."""

    name = "arrays"

    def __init__(self, frames: Iterable[np.ndarray]) -> None:
        self._frames = iter(list(frames))

    def read(self) -> np.ndarray | None:
        return next(self._frames, None)


def open_source(
    *,
    camera_id: int = 0,
    video: str | Path | None = None,
    image_dir: str | Path | None = None,
    width: int | None = 1280,
    height: int | None = 720,
) -> FrameSource:
    if image_dir is not None:
        return ImageDirectorySource(image_dir)
    if video is not None:
        return OpenCVCaptureSource(Path(video))
    return OpenCVCaptureSource(int(camera_id), width=width, height=height)
