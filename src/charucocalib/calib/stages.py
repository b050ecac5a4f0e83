from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from charucocalib.calib.aggregate import (
    flatten_for_coarse_calibration,
    is_usable_view,
    refine_charuco_corners,
    require_usable_views,
    split_by_counts,
)
from charucocalib.calib.result import CalibrationResult
from charucocalib.capture.observations import CalibrationDataset
from charucocalib.config import CALIB_USE_INTRINSIC_GUESS, CalibrationOptions
from charucocalib.core.board import CharucoBoardModel
from charucocalib.core.detection import CharucoCorners, FrameDetector
from charucocalib.errors import InsufficientCalibrationData

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class CoarseCalibration:
    """
    Output of the ArUco-only stage. Only used to seed the ChArUco stage.
    """

    camera_matrix: np.ndarray
    dist_coeffs: np.ndarray
    reprojection_error: float
    image_size: tuple[int, int]
    options: CalibrationOptions
    n_views: int


@dataclass(frozen=True, eq=False)
class CalibrationRun:
    coarse: CoarseCalibration
    refined_corners: list[CharucoCorners]
    result: CalibrationResult


def initial_camera_matrix(options: CalibrationOptions) -> np.ndarray | None:
    """
    With a fixed aspect ratio the solver reads fx/fy from the initial matrix,
    so it is seeded as identity with (0,0) set to the ratio. Otherwise no seed.
    """
    if not options.fix_aspect_ratio:
        return None
    K = np.eye(3, dtype=np.float64)
    K[0, 0] = float(options.aspect_ratio)
    return K


def _calibrate(
    obj_pts: Sequence[np.ndarray],
    img_pts: Sequence[np.ndarray],
    image_size: tuple[int, int],
    camera_matrix: np.ndarray | None,
    dist_coeffs: np.ndarray | None,
    flags: int,
):
    import cv2  # type: ignore

    K = None if camera_matrix is None else np.array(camera_matrix, dtype=np.float64, copy=True)
    d = None if dist_coeffs is None else np.array(dist_coeffs, dtype=np.float64, copy=True)
    try:
        rms, K, d, rvecs, tvecs = cv2.calibrateCamera(
            list(obj_pts), list(img_pts), (int(image_size[0]), int(image_size[1])), K, d, flags=int(flags)
        )
    except cv2.error as e:
        raise InsufficientCalibrationData(f"calibration solver failed on {len(obj_pts)} views: {e}") from e
    return float(rms), np.asarray(K, dtype=np.float64), np.asarray(d, dtype=np.float64).reshape(-1), rvecs, tvecs


def marker_correspondences(
    dataset: CalibrationDataset, board: CharucoBoardModel
) -> tuple[list[np.ndarray], list[np.ndarray]]:
    """
    Per-frame (object, image) point arrays built from marker corners.

    Frame boundaries are recovered from the flattened marker list; markers whose
    id is not on the board are skipped, as are frames left without any.
    """
    corners, ids, counts = flatten_for_coarse_calibration(dataset.frames)
    id_to_obj = board.marker_object_points

    obj_pts: list[np.ndarray] = []
    img_pts: list[np.ndarray] = []
    for frame_corners, frame_ids in zip(split_by_counts(corners, counts), split_by_counts(ids.tolist(), counts), strict=True):
        obj: list[np.ndarray] = []
        img: list[np.ndarray] = []
        for polygon, marker_id in zip(frame_corners, frame_ids, strict=True):
            o = id_to_obj.get(int(marker_id))
            if o is None:
                continue
            obj.append(o)
            img.append(polygon)
        if not obj:
            continue
        obj_pts.append(np.concatenate(obj, axis=0).astype(np.float32).reshape(-1, 1, 3))
        img_pts.append(np.concatenate(img, axis=0).astype(np.float32).reshape(-1, 1, 2))
    return obj_pts, img_pts


def calibrate_coarse(
    dataset: CalibrationDataset, board: CharucoBoardModel, options: CalibrationOptions
) -> CoarseCalibration:
    """Stage 1: calibrate from raw ArUco marker corners."""
    if dataset.n_frames_with_markers < 1 or dataset.image_size is None:
        raise InsufficientCalibrationData("not enough captures for calibration: no accepted frame has detected markers")

    obj_pts, img_pts = marker_correspondences(dataset, board)
    if not obj_pts:
        raise InsufficientCalibrationData("not enough captures for calibration: no detected marker belongs to the board")

    # No intrinsic guess exists yet; the coarse result becomes the guess of stage 2.
    flags = options.flags & ~CALIB_USE_INTRINSIC_GUESS
    rms, K, d, _rvecs, _tvecs = _calibrate(
        obj_pts, img_pts, dataset.image_size, initial_camera_matrix(options), None, flags
    )
    logger.info("aruco calibration: %d views, rms %.4f px", len(obj_pts), rms)
    return CoarseCalibration(
        camera_matrix=K,
        dist_coeffs=d,
        reprojection_error=rms,
        image_size=dataset.image_size,
        options=options,
        n_views=len(obj_pts),
    )


def calibrate_refined(
    coarse: CoarseCalibration,
    dataset: CalibrationDataset,
    board: CharucoBoardModel,
    refined: Sequence[CharucoCorners] | None = None,
    detector: FrameDetector | None = None,
) -> CalibrationResult:
    """
    Stage 2: re-interpolate ChArUco corners with the stage 1 intrinsics and
    calibrate from them. The result of this stage is the one that gets saved.
    """
    if not isinstance(coarse, CoarseCalibration):
        raise TypeError("calibrate_refined needs the CoarseCalibration returned by calibrate_coarse")
    if dataset.image_size != coarse.image_size:
        raise ValueError(f"dataset size {dataset.image_size} != coarse calibration size {coarse.image_size}")

    if refined is None:
        refined = refine_charuco_corners(dataset.frames, board, coarse.camera_matrix, coarse.dist_coeffs, detector)
    if len(refined) != len(dataset):
        raise ValueError(f"{len(refined)} refined entries for {len(dataset)} frames")
    require_usable_views(refined)

    chess = board.chessboard_corners
    obj_pts: list[np.ndarray] = []
    img_pts: list[np.ndarray] = []
    view_indices: list[int] = []
    for i, ch in enumerate(refined):
        if not is_usable_view(ch):
            continue
        obj_pts.append(chess[ch.ids].astype(np.float32).reshape(-1, 1, 3))
        img_pts.append(np.asarray(ch.corners, dtype=np.float32).reshape(-1, 1, 2))
        view_indices.append(i)

    options = coarse.options
    rms, K, d, rvecs, tvecs = _calibrate(
        obj_pts, img_pts, coarse.image_size, coarse.camera_matrix, coarse.dist_coeffs, options.flags
    )
    logger.info("charuco calibration: %d views, rms %.4f px", len(obj_pts), rms)

    return CalibrationResult(
        camera_matrix=K,
        dist_coeffs=d,
        image_size=coarse.image_size,
        options=options,
        reprojection_error=rms,
        aruco_reprojection_error=coarse.reprojection_error,
        n_frames=len(dataset),
        view_indices=tuple(view_indices),
        rvecs=np.asarray(rvecs, dtype=np.float64).reshape(-1, 3),
        tvecs=np.asarray(tvecs, dtype=np.float64).reshape(-1, 3),
    )


def calibrate_dataset(
    dataset: CalibrationDataset,
    board: CharucoBoardModel,
    options: CalibrationOptions,
    detector: FrameDetector | None = None,
) -> CalibrationRun:
    coarse = calibrate_coarse(dataset, board, options)
    refined = refine_charuco_corners(dataset.frames, board, coarse.camera_matrix, coarse.dist_coeffs, detector)
    result = calibrate_refined(coarse, dataset, board, refined=refined)
    return CalibrationRun(coarse=coarse, refined_corners=list(refined), result=result)
