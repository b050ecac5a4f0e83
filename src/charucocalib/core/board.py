from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np
from PIL import Image

from charucocalib.config import BoardSpec, ConfigValidationError
from charucocalib.errors import WriteFailure

logger = logging.getLogger(__name__)


def import_aruco():
    try:
        import cv2  # type: ignore
        import cv2.aruco as aruco  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError("ChArUco boards require opencv-contrib-python (cv2.aruco).") from e
    return cv2, aruco


@dataclass(frozen=True)
class CharucoBoardModel:
    """
    OpenCV objects for one physical board.

    `board` is a `cv2.aruco.CharucoBoard`; it is also a `cv2.aruco.Board`, so the
    same object serves marker refinement and ChArUco interpolation.
    """

    spec: BoardSpec
    dictionary: Any
    board: Any

    @property
    def chessboard_corners(self) -> np.ndarray:
        """(N,3) board-frame coordinates of the inner chessboard corners, indexed by ChArUco id."""
        return np.asarray(self.board.getChessboardCorners(), dtype=np.float32).reshape(-1, 3)

    @property
    def marker_object_points(self) -> dict[int, np.ndarray]:
        """Marker id -> (4,3) board-frame corner coordinates."""
        ids = np.asarray(self.board.getIds(), dtype=np.int32).reshape(-1)
        obj = self.board.getObjPoints()
        return {int(i): np.asarray(p, dtype=np.float32).reshape(4, 3) for i, p in zip(ids.tolist(), obj, strict=True)}


def build_board(spec: BoardSpec) -> CharucoBoardModel:
    _, aruco = import_aruco()

    dict_id = getattr(aruco, spec.dictionary, None)
    if dict_id is None:
        raise ConfigValidationError(f"unknown aruco dictionary: {spec.dictionary}")
    dictionary = aruco.getPredefinedDictionary(dict_id)

    # OpenCV API differs across versions: CharucoBoard vs CharucoBoard_create.
    if hasattr(aruco, "CharucoBoard"):
        board = aruco.CharucoBoard(
            (spec.squares_x, spec.squares_y), spec.square_length, spec.marker_length, dictionary
        )
    elif hasattr(aruco, "CharucoBoard_create"):  # pragma: no cover
        board = aruco.CharucoBoard_create(
            spec.squares_x, spec.squares_y, spec.square_length, spec.marker_length, dictionary
        )
    else:  # pragma: no cover
        raise RuntimeError("cv2.aruco does not expose CharucoBoard APIs in this build.")

    return CharucoBoardModel(spec=spec, dictionary=dictionary, board=board)


def render_board(
    model: CharucoBoardModel, size: tuple[int, int] = (700, 900), margin: int = 50, border_bits: int = 1
) -> np.ndarray:
    """
    Returns a uint8 grayscale raster of the board, `size` given as (width, height).
    """
    w_px, h_px = int(size[0]), int(size[1])
    if hasattr(model.board, "generateImage"):
        img = model.board.generateImage((w_px, h_px), marginSize=int(margin), borderBits=int(border_bits))
    else:  # pragma: no cover
        img = model.board.draw((w_px, h_px), marginSize=int(margin), borderBits=int(border_bits))

    if img.ndim != 2:
        raise RuntimeError("Expected grayscale charuco image.")
    return img.astype(np.uint8, copy=False)


def write_board_image(
    model: CharucoBoardModel,
    path: str | Path,
    size: tuple[int, int] = (700, 900),
    margin: int = 50,
    border_bits: int = 1,
) -> Path:
    """Render the board and save it (format from the file suffix) for printing."""
    p = Path(path)
    img = render_board(model, size=size, margin=margin, border_bits=border_bits)
    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        Image.fromarray(img).save(p)
    except (OSError, ValueError) as e:
        raise WriteFailure(f"cannot write board image {p}: {e}") from e
    logger.info("board image written to %s", p)
    return p
