from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np
from PIL import Image

from charucocalib.core.board import CharucoBoardModel, render_board


@dataclass(frozen=True)
class BoardPose:
    """Board-to-camera pose: rotation about x then y (degrees), translation in meters."""

    rx_deg: float = 0.0
    ry_deg: float = 0.0
    tx: float = 0.0
    ty: float = 0.0
    tz: float = 0.55


def _rot_x(a: float) -> np.ndarray:
    ca, sa = np.cos(a), np.sin(a)
    return np.array([[1, 0, 0], [0, ca, -sa], [0, sa, ca]], dtype=np.float64)


def _rot_y(a: float) -> np.ndarray:
    ca, sa = np.cos(a), np.sin(a)
    return np.array([[ca, 0, sa], [0, 1, 0], [-sa, 0, ca]], dtype=np.float64)


def default_camera_matrix(width: int = 1280, height: int = 720, focal_px: float = 1000.0) -> np.ndarray:
    return np.array(
        [[focal_px, 0.0, (width - 1) * 0.5], [0.0, focal_px, (height - 1) * 0.5], [0.0, 0.0, 1.0]],
        dtype=np.float64,
    )


def default_poses(n: int = 6, distance_m: float = 0.55) -> list[BoardPose]:
    tilts = [(0.0, 0.0), (20.0, 0.0), (-20.0, 0.0), (0.0, 20.0), (0.0, -20.0), (15.0, 15.0), (-15.0, -15.0), (15.0, -15.0)]
    return [BoardPose(rx_deg=rx, ry_deg=ry, tz=distance_m) for rx, ry in tilts[: int(n)]]


def board_homography(
    model: CharucoBoardModel, camera_matrix: np.ndarray, pose: BoardPose, pixels_per_square: int
) -> np.ndarray:
    """
    Homography from board-texture pixels to image pixels for an ideal pinhole
    camera (no distortion). The board is centered on the pose origin.
    """
    spec = model.spec
    s = spec.square_length / float(pixels_per_square)  # meters per texture pixel
    w_m = spec.squares_x * spec.square_length
    h_m = spec.squares_y * spec.square_length
    tex_to_plane = np.array([[s, 0.0, 0.5 * s - 0.5 * w_m], [0.0, s, 0.5 * s - 0.5 * h_m], [0.0, 0.0, 1.0]])

    R = _rot_y(np.deg2rad(pose.ry_deg)) @ _rot_x(np.deg2rad(pose.rx_deg))
    t = np.array([pose.tx, pose.ty, pose.tz], dtype=np.float64)
    plane_to_img = np.asarray(camera_matrix, dtype=np.float64) @ np.column_stack([R[:, 0], R[:, 1], t])
    H = plane_to_img @ tex_to_plane
    return H / H[2, 2]


def render_synthetic_views(
    model: CharucoBoardModel,
    camera_matrix: np.ndarray,
    poses: Sequence[BoardPose],
    image_size: tuple[int, int] = (1280, 720),
    pixels_per_square: int = 100,
) -> list[np.ndarray]:
    """BGR uint8 views of the board on a white background, one per pose."""
    import cv2  # type: ignore

    spec = model.spec
    texture = render_board(
        model, size=(spec.squares_x * pixels_per_square, spec.squares_y * pixels_per_square), margin=0
    )
    w, h = int(image_size[0]), int(image_size[1])
    views: list[np.ndarray] = []
    for pose in poses:
        H = board_homography(model, camera_matrix, pose, pixels_per_square)
        gray = cv2.warpPerspective(
            texture, H, (w, h), flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_CONSTANT, borderValue=255
        )
        views.append(cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR))
    return views


def generate_synthetic_dataset(
    out_dir: Path,
    model: CharucoBoardModel,
    n_views: int = 6,
    image_size: tuple[int, int] = (1280, 720),
    focal_px: float = 1000.0,
    distance_m: float = 0.55,
) -> Path:
    """
    Write rendered views as PNG plus `meta.json` holding the ground-truth camera.
    The folder can be calibrated with the image-directory source.
    """
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    K = default_camera_matrix(image_size[0], image_size[1], focal_px)
    poses = default_poses(n_views, distance_m)
    views = render_synthetic_views(model, K, poses, image_size)
    for i, img in enumerate(views):
        Image.fromarray(np.ascontiguousarray(img[:, :, ::-1])).save(out_dir / f"view_{i:04d}.png")

    spec = model.spec
    meta = {
        "board": {
            "squares_x": spec.squares_x,
            "squares_y": spec.squares_y,
            "square_length": spec.square_length,
            "marker_length": spec.marker_length,
            "dictionary": spec.dictionary,
        },
        "camera_matrix": K.tolist(),
        "image": {"width_px": int(image_size[0]), "height_px": int(image_size[1])},
        "poses": [
            {"rx_deg": p.rx_deg, "ry_deg": p.ry_deg, "tx": p.tx, "ty": p.ty, "tz": p.tz} for p in poses
        ],
    }
    (out_dir / "meta.json").write_text(json.dumps(meta, indent=2), encoding="utf-8")
    return out_dir
