from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import numpy as np

from charucocalib.config import CalibrationOptions


@dataclass(frozen=True, eq=False)
class CalibrationResult:
    """
    Camera intrinsics from the refined (ChArUco) stage.

    `rvecs`/`tvecs` are the per-view board poses, (V,3) each, for the frames
    listed in `view_indices` (indices into the accepted frames).
    """

    camera_matrix: np.ndarray  # (3,3)
    dist_coeffs: np.ndarray  # (N,)
    image_size: tuple[int, int]  # (width, height)
    options: CalibrationOptions
    reprojection_error: float
    aruco_reprojection_error: float | None = None
    n_frames: int = 0
    view_indices: tuple[int, ...] = ()
    rvecs: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.float64))
    tvecs: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.float64))
    calibrated_at: datetime = field(default_factory=lambda: datetime.now().astimezone())

    def __post_init__(self) -> None:
        object.__setattr__(self, "camera_matrix", np.asarray(self.camera_matrix, dtype=np.float64).reshape(3, 3))
        object.__setattr__(self, "dist_coeffs", np.asarray(self.dist_coeffs, dtype=np.float64).reshape(-1))
        object.__setattr__(self, "image_size", (int(self.image_size[0]), int(self.image_size[1])))
        object.__setattr__(self, "rvecs", np.asarray(self.rvecs, dtype=np.float64).reshape(-1, 3))
        object.__setattr__(self, "tvecs", np.asarray(self.tvecs, dtype=np.float64).reshape(-1, 3))
        object.__setattr__(self, "view_indices", tuple(int(i) for i in self.view_indices))

    @property
    def flags(self) -> int:
        return self.options.flags

    @property
    def aspect_ratio(self) -> float | None:
        return self.options.aspect_ratio
