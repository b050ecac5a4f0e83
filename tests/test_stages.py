from __future__ import annotations

import numpy as np
import pytest

from charucocalib.calib.stages import CoarseCalibration, calibrate_coarse, calibrate_refined, initial_camera_matrix
from charucocalib.capture.observations import CalibrationDataset, FrameObservation
from charucocalib.config import CalibrationOptions
from charucocalib.core.detection import CharucoCorners
from charucocalib.errors import InsufficientCalibrationData


def _frame(size: tuple[int, int] = (64, 48)) -> FrameObservation:
    w, h = size
    return FrameObservation(
        marker_corners=(np.zeros((4, 2), dtype=np.float32),),
        marker_ids=np.array([0], dtype=np.int32),
        charuco_corners=np.zeros((0, 2), dtype=np.float32),
        charuco_ids=np.zeros((0,), dtype=np.int32),
        image=np.zeros((h, w), dtype=np.uint8),
    )


def _coarse(image_size: tuple[int, int] = (64, 48)) -> CoarseCalibration:
    return CoarseCalibration(
        camera_matrix=np.array([[50.0, 0.0, 32.0], [0.0, 50.0, 24.0], [0.0, 0.0, 1.0]]),
        dist_coeffs=np.zeros(5),
        reprojection_error=0.5,
        image_size=image_size,
        options=CalibrationOptions(),
        n_views=4,
    )


def _charuco(n: int) -> CharucoCorners:
    return CharucoCorners(corners=np.zeros((n, 2), dtype=np.float32), ids=np.arange(n, dtype=np.int32))


def test_initial_camera_matrix_without_fixed_ratio():
    assert initial_camera_matrix(CalibrationOptions()) is None


def test_initial_camera_matrix_seeds_ratio():
    K = initial_camera_matrix(CalibrationOptions(aspect_ratio="16/9"))
    assert K is not None
    assert K[0, 0] == pytest.approx(16.0 / 9.0)
    np.testing.assert_array_equal(K[1:], np.eye(3)[1:])
    assert K[0, 1] == 0.0 and K[0, 2] == 0.0


def test_coarse_refuses_empty_dataset():
    with pytest.raises(InsufficientCalibrationData):
        calibrate_coarse(CalibrationDataset(), None, CalibrationOptions())  # type: ignore[arg-type]


def test_refined_requires_coarse_result():
    ds = CalibrationDataset(frames=(_frame(),))
    with pytest.raises(TypeError):
        calibrate_refined(None, ds, None, refined=[_charuco(6)])  # type: ignore[arg-type]


def test_refined_requires_enough_usable_views():
    ds = CalibrationDataset(frames=tuple(_frame() for _ in range(5)))
    refined = [_charuco(6), _charuco(6), _charuco(6), _charuco(3), _charuco(0)]
    with pytest.raises(InsufficientCalibrationData):
        calibrate_refined(_coarse(), ds, None, refined=refined)  # type: ignore[arg-type]


def test_refined_rejects_size_mismatch():
    ds = CalibrationDataset(frames=(_frame(size=(64, 48)),))
    with pytest.raises(ValueError):
        calibrate_refined(_coarse(image_size=(640, 480)), ds, None, refined=[_charuco(6)])  # type: ignore[arg-type]


@pytest.fixture(scope="module")
def synthetic_board():
    cv2 = pytest.importorskip("cv2")
    if not hasattr(cv2, "aruco"):
        pytest.skip("cv2.aruco not available (need opencv-contrib-python)")

    from charucocalib.core.board import build_board
    from charucocalib.config import BoardSpec

    return build_board(BoardSpec(squares_x=5, squares_y=7, square_length=0.04, marker_length=0.02))


def _captured(board, n_views: int) -> CalibrationDataset:
    from charucocalib.capture.display import AutoAcceptDisplay
    from charucocalib.capture.session import run_capture_loop
    from charucocalib.capture.sources import ArraySource
    from charucocalib.config import DetectorConfig
    from charucocalib.sim.synthetic import default_camera_matrix, default_poses, render_synthetic_views

    views = render_synthetic_views(board, default_camera_matrix(), default_poses(n_views))
    return run_capture_loop(ArraySource(views), board, DetectorConfig.subpixel_default(), AutoAcceptDisplay())


def test_refine_corners_on_stored_frames(synthetic_board):
    from charucocalib.calib.aggregate import refine_charuco_corners
    from charucocalib.sim.synthetic import default_camera_matrix

    ds = _captured(synthetic_board, 1)
    assert len(ds) == 1
    assert not ds.frames[0].marker_corners[0].flags.writeable

    refined = refine_charuco_corners(ds.frames, synthetic_board, default_camera_matrix(), np.zeros(5))
    assert len(refined) == 1
    assert len(refined[0]) >= synthetic_board.chessboard_corners.shape[0] - 4
    # Stored observations are left untouched.
    assert not ds.frames[0].marker_corners[0].flags.writeable


@pytest.mark.parametrize("n_views", [4, 5])
def test_calibrate_dataset_from_captured_views(synthetic_board, n_views: int):
    from charucocalib.calib.stages import calibrate_dataset

    ds = _captured(synthetic_board, n_views)
    assert len(ds) == n_views

    run = calibrate_dataset(ds, synthetic_board, CalibrationOptions())
    assert run.result.reprojection_error < 1.0
    assert run.result.view_indices == tuple(range(n_views))
    assert run.result.n_frames == n_views
    assert run.coarse.n_views == n_views


def test_calibrate_dataset_three_views_is_insufficient(synthetic_board):
    from charucocalib.calib.stages import calibrate_dataset

    ds = _captured(synthetic_board, 3)
    with pytest.raises(InsufficientCalibrationData):
        calibrate_dataset(ds, synthetic_board, CalibrationOptions())


def test_solver_failure_is_insufficient_data(synthetic_board, monkeypatch):
    import cv2  # type: ignore

    def _fail(*args, **kwargs):
        raise cv2.error("solver did not converge")

    ds = _captured(synthetic_board, 1)
    monkeypatch.setattr(cv2, "calibrateCamera", _fail)
    with pytest.raises(InsufficientCalibrationData, match="solver failed"):
        calibrate_coarse(ds, synthetic_board, CalibrationOptions())
