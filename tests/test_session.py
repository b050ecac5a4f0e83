from __future__ import annotations

from typing import Iterable

import numpy as np
import pytest

from charucocalib.capture.display import ControlSignal, Display
from charucocalib.capture.review import review_refined_corners
from charucocalib.capture.session import run_capture_loop
from charucocalib.capture.sources import ArraySource
from charucocalib.config import BoardSpec, DetectorConfig


class ScriptedDisplay(Display):
    def __init__(self, signals: Iterable[ControlSignal]) -> None:
        self._signals = list(signals)
        self.shown: list[np.ndarray] = []

    def show(self, image: np.ndarray) -> ControlSignal:
        self.shown.append(image)
        if not self._signals:
            return ControlSignal.CONTINUE
        return self._signals.pop(0)


@pytest.fixture(scope="module")
def board_and_views():
    cv2 = pytest.importorskip("cv2")
    if not hasattr(cv2, "aruco"):
        pytest.skip("cv2.aruco not available (need opencv-contrib-python)")

    from charucocalib.core.board import build_board
    from charucocalib.sim.synthetic import default_camera_matrix, default_poses, render_synthetic_views

    board = build_board(BoardSpec())
    views = render_synthetic_views(board, default_camera_matrix(), default_poses(3))
    return board, views


def test_accept_stores_only_frames_with_markers(board_and_views):
    board, views = board_and_views
    blank = np.full_like(views[0], 255)
    frames = [views[0], blank, views[1]]
    display = ScriptedDisplay([ControlSignal.ACCEPT, ControlSignal.ACCEPT, ControlSignal.ACCEPT])

    ds = run_capture_loop(ArraySource(frames), board, DetectorConfig.subpixel_default(), display)

    assert len(display.shown) == 3
    assert len(ds) == 2
    assert ds.image_size == (views[0].shape[1], views[0].shape[0])
    assert all(fr.n_markers > 0 for fr in ds)
    assert all(len(fr.charuco) > 0 for fr in ds)


def test_continue_stores_nothing(board_and_views):
    board, views = board_and_views
    display = ScriptedDisplay([ControlSignal.CONTINUE] * len(views))

    ds = run_capture_loop(ArraySource(views), board, DetectorConfig(), display)

    assert len(display.shown) == len(views)
    assert len(ds) == 0


def test_finish_stops_the_loop(board_and_views):
    board, views = board_and_views
    display = ScriptedDisplay([ControlSignal.ACCEPT, ControlSignal.FINISH, ControlSignal.ACCEPT])

    ds = run_capture_loop(ArraySource(views), board, DetectorConfig.subpixel_default(), display)

    assert len(display.shown) == 2
    assert len(ds) == 1


def test_overlay_is_bgr_and_leaves_input_untouched(board_and_views):
    board, views = board_and_views
    frame = views[0].copy()
    display = ScriptedDisplay([ControlSignal.ACCEPT])

    ds = run_capture_loop(ArraySource([frame]), board, DetectorConfig.subpixel_default(), display)

    assert display.shown[0].shape == frame.shape
    np.testing.assert_array_equal(frame, views[0])
    np.testing.assert_array_equal(ds.frames[0].image, views[0])


def test_review_shows_frames_until_finish(board_and_views):
    board, views = board_and_views
    ds = run_capture_loop(
        ArraySource(views), board, DetectorConfig.subpixel_default(), ScriptedDisplay([ControlSignal.ACCEPT] * len(views))
    )
    refined = [fr.charuco for fr in ds]

    assert review_refined_corners(ds, refined, ScriptedDisplay([])) == len(ds)
    assert review_refined_corners(ds, refined, ScriptedDisplay([ControlSignal.FINISH])) == 1
    with pytest.raises(ValueError):
        review_refined_corners(ds, refined[:-1], ScriptedDisplay([]))
