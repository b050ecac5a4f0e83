from __future__ import annotations

import numpy as np
import pytest

from charucocalib.calib.aggregate import (
    MIN_CHARUCO_VIEWS,
    count_usable_views,
    flatten_for_coarse_calibration,
    is_usable_view,
    require_usable_views,
    split_by_counts,
)
from charucocalib.capture.observations import FrameObservation
from charucocalib.core.detection import CharucoCorners
from charucocalib.errors import InsufficientCalibrationData


def _square(x: float, y: float, s: float = 10.0) -> np.ndarray:
    return np.array([[x, y], [x + s, y], [x + s, y + s], [x, y + s]], dtype=np.float32)


def _frame(ids: list[int], size: tuple[int, int] = (64, 48)) -> FrameObservation:
    w, h = size
    return FrameObservation(
        marker_corners=tuple(_square(5.0 * k, 2.0 * k) for k in range(len(ids))),
        marker_ids=np.asarray(ids, dtype=np.int32),
        charuco_corners=np.zeros((0, 2), dtype=np.float32),
        charuco_ids=np.zeros((0,), dtype=np.int32),
        image=np.zeros((h, w), dtype=np.uint8),
    )


def _charuco(n: int) -> CharucoCorners:
    return CharucoCorners(
        corners=np.arange(2 * n, dtype=np.float32).reshape(n, 2),
        ids=np.arange(n, dtype=np.int32),
    )


def test_flatten_counts_sum_to_total():
    frames = [_frame([3, 7]), _frame([1]), _frame([0, 2, 4, 6])]
    corners, ids, counts = flatten_for_coarse_calibration(frames)

    assert counts.tolist() == [2, 1, 4]
    assert int(counts.sum()) == len(corners) == len(ids) == 7
    assert ids.tolist() == [3, 7, 1, 0, 2, 4, 6]
    assert all(c.shape == (4, 2) for c in corners)


def test_flatten_preserves_frame_then_marker_order():
    frames = [_frame([3, 7]), _frame([1])]
    corners, _ids, _counts = flatten_for_coarse_calibration(frames)

    np.testing.assert_array_equal(corners[0], frames[0].marker_corners[0])
    np.testing.assert_array_equal(corners[1], frames[0].marker_corners[1])
    np.testing.assert_array_equal(corners[2], frames[1].marker_corners[0])


def test_flatten_empty():
    corners, ids, counts = flatten_for_coarse_calibration([])
    assert corners == []
    assert ids.size == 0 and counts.size == 0


def test_split_by_counts_recovers_frames():
    frames = [_frame([3, 7]), _frame([1]), _frame([0, 2, 4, 6])]
    _corners, ids, counts = flatten_for_coarse_calibration(frames)

    groups = split_by_counts(ids.tolist(), counts)
    assert groups == [[3, 7], [1], [0, 2, 4, 6]]


def test_split_by_counts_rejects_mismatch():
    with pytest.raises(ValueError):
        split_by_counts([1, 2, 3], np.array([1, 1]))


def test_usable_view_needs_four_corners():
    assert not is_usable_view(_charuco(3))
    assert is_usable_view(_charuco(4))
    assert not is_usable_view(CharucoCorners.empty())


@pytest.mark.parametrize("n_views", [0, 1, 3])
def test_require_usable_views_fails_below_minimum(n_views: int):
    refined = [_charuco(6) for _ in range(n_views)]
    with pytest.raises(InsufficientCalibrationData):
        require_usable_views(refined)


@pytest.mark.parametrize("n_views", [4, 5])
def test_require_usable_views_passes_at_minimum(n_views: int):
    refined = [_charuco(6) for _ in range(n_views)]
    require_usable_views(refined)
    assert count_usable_views(refined) == n_views >= MIN_CHARUCO_VIEWS


def test_require_usable_views_ignores_sparse_views():
    refined = [_charuco(6), _charuco(6), _charuco(6), _charuco(2), CharucoCorners.empty()]
    assert count_usable_views(refined) == 3
    with pytest.raises(InsufficientCalibrationData, match="1 to 3 corners cannot constrain a pose"):
        require_usable_views(refined)
