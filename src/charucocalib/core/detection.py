from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from charucocalib.config import DetectorConfig
from charucocalib.core.board import CharucoBoardModel, import_aruco

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MarkerDetections:
    """
    ArUco markers found in one image, in OpenCV pixel convention.
    """

    marker_corners: tuple[np.ndarray, ...]  # each (4,2) float32
    marker_ids: np.ndarray  # (M,) int32
    rejected: tuple[np.ndarray, ...]  # each (4,2) float32

    def __len__(self) -> int:
        return int(self.marker_ids.size)


@dataclass(frozen=True)
class CharucoCorners:
    corners: np.ndarray  # (K,2) float32
    ids: np.ndarray  # (K,) int32

    def __len__(self) -> int:
        return int(self.ids.size)

    @classmethod
    def empty(cls) -> "CharucoCorners":
        return cls(corners=np.zeros((0, 2), dtype=np.float32), ids=np.zeros((0,), dtype=np.int32))


def _as_polygons(corners) -> tuple[np.ndarray, ...]:
    if corners is None:
        return ()
    return tuple(np.asarray(c, dtype=np.float32).reshape(4, 2) for c in corners)


def _as_ids(ids) -> np.ndarray:
    if ids is None:
        return np.zeros((0,), dtype=np.int32)
    return np.asarray(ids, dtype=np.int32).reshape(-1)


def to_cv_corners(corners: Sequence[np.ndarray]) -> list[np.ndarray]:
    """Marker polygons in the (1,4,2) float32 layout cv2.aruco expects."""
    # Fresh writable copies: detectBoard takes markerCorners as an in/out array.
    return [np.array(c, dtype=np.float32, copy=True).reshape(1, 4, 2) for c in corners]


def to_cv_ids(ids: np.ndarray) -> np.ndarray:
    return np.array(ids, dtype=np.int32, copy=True).reshape(-1, 1)


class FrameDetector:
    """
    Marker detection and ChArUco corner interpolation for one board.

    Uses the `ArucoDetector` / `CharucoDetector` classes (OpenCV >= 4.7) when
    present and the legacy free functions otherwise.
    """

    def __init__(self, board: CharucoBoardModel, config: DetectorConfig, refine_strategy: bool = False) -> None:
        self.cv2, self.aruco = import_aruco()
        self.board = board
        self.refine_strategy = bool(refine_strategy)

        aruco = self.aruco
        if hasattr(aruco, "DetectorParameters"):
            params = aruco.DetectorParameters()
        else:  # pragma: no cover
            params = aruco.DetectorParameters_create()
        self.detector_params = config.apply(params)

        self._aruco_detector = None
        if hasattr(aruco, "ArucoDetector"):
            self._aruco_detector = aruco.ArucoDetector(board.dictionary, self.detector_params)
        self._uncalibrated_charuco = self._make_charuco_detector(None, None)

    def _make_charuco_detector(self, camera_matrix: np.ndarray | None, dist_coeffs: np.ndarray | None):
        aruco = self.aruco
        if not hasattr(aruco, "CharucoDetector"):
            return None
        charuco_params = aruco.CharucoParameters()
        if camera_matrix is not None:
            charuco_params.cameraMatrix = np.asarray(camera_matrix, dtype=np.float64).reshape(3, 3)
            charuco_params.distCoeffs = np.asarray(
                dist_coeffs if dist_coeffs is not None else np.zeros((5,)), dtype=np.float64
            ).reshape(-1, 1)
        return aruco.CharucoDetector(self.board.board, charuco_params, self.detector_params)

    def detect_markers(self, image: np.ndarray) -> MarkerDetections:
        aruco = self.aruco
        if self._aruco_detector is not None:
            corners, ids, rejected = self._aruco_detector.detectMarkers(image)
        else:  # pragma: no cover
            corners, ids, rejected = aruco.detectMarkers(image, self.board.dictionary, parameters=self.detector_params)

        # Re-find rejected candidates against the known board layout.
        if self.refine_strategy and ids is not None and len(ids) > 0 and rejected is not None and len(rejected) > 0:
            n_before = len(ids)
            if self._aruco_detector is not None:
                corners, ids, rejected, _recovered = self._aruco_detector.refineDetectedMarkers(
                    image, self.board.board, corners, ids, rejected
                )
            else:  # pragma: no cover
                corners, ids, rejected, _recovered = aruco.refineDetectedMarkers(
                    image, self.board.board, corners, ids, rejected, parameters=self.detector_params
                )
            if ids is not None and len(ids) > n_before:
                logger.debug("refine strategy recovered %d markers", len(ids) - n_before)

        return MarkerDetections(marker_corners=_as_polygons(corners), marker_ids=_as_ids(ids), rejected=_as_polygons(rejected))

    def interpolate(
        self,
        image: np.ndarray,
        marker_corners: Sequence[np.ndarray],
        marker_ids: np.ndarray,
        camera_matrix: np.ndarray | None = None,
        dist_coeffs: np.ndarray | None = None,
    ) -> CharucoCorners:
        """
        Interpolate ChArUco chessboard corners from detected markers.

        Without a camera model the corners come from local homographies; with
        `camera_matrix` (and `dist_coeffs`) the board pose is estimated first and
        the corners are reprojected, which is more accurate under distortion.
        """
        marker_ids = _as_ids(marker_ids)
        if marker_ids.size == 0:
            return CharucoCorners.empty()

        cv_corners = to_cv_corners(marker_corners)
        cv_ids = to_cv_ids(marker_ids)

        if camera_matrix is None:
            detector = self._uncalibrated_charuco
        else:
            detector = self._make_charuco_detector(camera_matrix, dist_coeffs)

        if detector is not None:
            ch_corners, ch_ids, _, _ = detector.detectBoard(image, markerCorners=cv_corners, markerIds=cv_ids)
        else:  # pragma: no cover
            if not hasattr(self.aruco, "interpolateCornersCharuco"):
                raise RuntimeError("OpenCV build has no CharucoDetector or interpolateCornersCharuco.")
            kwargs = {}
            if camera_matrix is not None:
                kwargs["cameraMatrix"] = np.asarray(camera_matrix, dtype=np.float64)
                kwargs["distCoeffs"] = np.asarray(dist_coeffs, dtype=np.float64) if dist_coeffs is not None else None
            _n, ch_corners, ch_ids = self.aruco.interpolateCornersCharuco(
                cv_corners, cv_ids, image, self.board.board, **kwargs
            )

        if ch_ids is None or ch_corners is None or len(ch_ids) == 0:
            return CharucoCorners.empty()
        return CharucoCorners(
            corners=np.asarray(ch_corners, dtype=np.float32).reshape(-1, 2),
            ids=np.asarray(ch_ids, dtype=np.int32).reshape(-1),
        )
