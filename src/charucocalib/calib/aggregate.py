from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from charucocalib.capture.observations import FrameObservation
from charucocalib.config import DetectorConfig
from charucocalib.core.board import CharucoBoardModel
from charucocalib.core.detection import CharucoCorners, FrameDetector
from charucocalib.errors import InsufficientCalibrationData

logger = logging.getLogger(__name__)

# Below this many views the ChArUco solve is underdetermined / unstable.
MIN_CHARUCO_VIEWS = 4
# A view needs this many corners to constrain its own pose (planar homography).
MIN_CORNERS_PER_VIEW = 4


def flatten_for_coarse_calibration(
    frames: Sequence[FrameObservation],
) -> tuple[list[np.ndarray], np.ndarray, np.ndarray]:
    """
    Concatenate marker observations of all frames, frame by frame and marker by
    marker in detection order.

    Returns `(corners, ids, counts)` where `corners[i]` is a (4,2) polygon,
    `ids[i]` its marker id and `counts[f]` the number of markers from frame f,
    so `counts.sum() == len(corners) == len(ids)`.
    """
    corners: list[np.ndarray] = []
    ids: list[int] = []
    counts: list[int] = []
    for fr in frames:
        counts.append(fr.n_markers)
        for polygon, marker_id in zip(fr.marker_corners, fr.marker_ids.tolist(), strict=True):
            corners.append(np.asarray(polygon, dtype=np.float32).reshape(4, 2))
            ids.append(int(marker_id))
    return corners, np.asarray(ids, dtype=np.int32), np.asarray(counts, dtype=np.int32)


def split_by_counts(items: Sequence, counts: np.ndarray) -> list[list]:
    """Inverse of the flattening: regroup a concatenated sequence per frame."""
    counts = np.asarray(counts, dtype=np.int64).reshape(-1)
    if int(counts.sum()) != len(items):
        raise ValueError(f"counts sum to {int(counts.sum())} but {len(items)} items were given")
    out: list[list] = []
    start = 0
    for n in counts.tolist():
        out.append(list(items[start : start + n]))
        start += n
    return out


def refine_charuco_corners(
    frames: Sequence[FrameObservation],
    board: CharucoBoardModel,
    camera_matrix: np.ndarray,
    dist_coeffs: np.ndarray,
    detector: FrameDetector | None = None,
) -> list[CharucoCorners]:
    """
    Re-interpolate every frame's ChArUco corners with a camera model.

    One entry per frame, in frame order; frames without interpolated corners get
    an empty entry rather than being dropped.
    """
    if detector is None:
        detector = FrameDetector(board, DetectorConfig.subpixel_default())

    refined: list[CharucoCorners] = []
    for i, fr in enumerate(frames):
        ch = detector.interpolate(fr.image, fr.marker_corners, fr.marker_ids, camera_matrix, dist_coeffs)
        logger.debug("frame %d: %d charuco corners after refinement", i, len(ch))
        refined.append(ch)
    return refined


def is_usable_view(corners: CharucoCorners) -> bool:
    return len(corners) >= MIN_CORNERS_PER_VIEW


def count_usable_views(refined: Sequence[CharucoCorners]) -> int:
    return sum(1 for ch in refined if is_usable_view(ch))


def require_usable_views(refined: Sequence[CharucoCorners]) -> None:
    n_usable = count_usable_views(refined)
    if n_usable < MIN_CHARUCO_VIEWS:
        raise InsufficientCalibrationData(
            f"not enough ChArUco corners for calibration: {n_usable} of {len(refined)} frames have "
            f">= {MIN_CORNERS_PER_VIEW} corners, need at least {MIN_CHARUCO_VIEWS} such frames "
            f"(frames with 1 to {MIN_CORNERS_PER_VIEW - 1} corners cannot constrain a pose and are not counted)"
        )
