from __future__ import annotations

from pathlib import Path

import numpy as np
from PIL import Image

IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".webp")


def load_bgr_u8(path: str | Path) -> np.ndarray:
    """
    Load an image as a 3-channel BGR uint8 array (OpenCV channel order).

    OpenCV is tried first; Pillow reads formats the local OpenCV build has no
    codec for (webp on minimal builds, for example).
    """
    import cv2  # type: ignore

    p = Path(path)
    img = cv2.imread(str(p), cv2.IMREAD_COLOR)
    if img is not None:
        if img.dtype != np.uint8:
            img = np.clip(img, 0, 255).astype(np.uint8)
        return img

    with Image.open(p) as im:
        rgb = np.asarray(im.convert("RGB"), dtype=np.uint8)
    return np.ascontiguousarray(rgb[:, :, ::-1])


def list_images(directory: str | Path) -> list[Path]:
    d = Path(directory)
    return sorted(p for p in d.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES)
