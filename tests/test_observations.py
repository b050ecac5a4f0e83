from __future__ import annotations

import numpy as np
import pytest

from charucocalib.capture.observations import CalibrationDataset, FrameObservation, ObservationStore


def _frame(n_markers: int, size: tuple[int, int] = (64, 48)) -> FrameObservation:
    w, h = size
    return FrameObservation(
        marker_corners=tuple(np.full((4, 2), float(k), dtype=np.float32) for k in range(n_markers)),
        marker_ids=np.arange(n_markers, dtype=np.int32),
        charuco_corners=np.zeros((0, 2), dtype=np.float32),
        charuco_ids=np.zeros((0,), dtype=np.int32),
        image=np.zeros((h, w, 3), dtype=np.uint8),
    )


def test_frame_observation_copies_are_read_only():
    img = np.zeros((48, 64), dtype=np.uint8)
    ids = np.array([4, 2], dtype=np.int32)
    fr = FrameObservation(
        marker_corners=(np.zeros((4, 2)), np.ones((1, 4, 2))),
        marker_ids=ids,
        charuco_corners=np.zeros((0, 2)),
        charuco_ids=np.zeros((0,)),
        image=img,
    )
    img[0, 0] = 255
    ids[0] = 99
    assert fr.image[0, 0] == 0
    assert fr.marker_ids.tolist() == [4, 2]
    assert fr.marker_corners[1].shape == (4, 2)
    with pytest.raises(ValueError):
        fr.marker_ids[0] = 1
    with pytest.raises(ValueError):
        fr.image[0, 0] = 1
    assert fr.image_size == (64, 48)


def test_frame_observation_rejects_duplicate_ids():
    with pytest.raises(ValueError):
        FrameObservation(
            marker_corners=(np.zeros((4, 2)), np.zeros((4, 2))),
            marker_ids=np.array([1, 1]),
            charuco_corners=np.zeros((0, 2)),
            charuco_ids=np.zeros((0,)),
            image=np.zeros((4, 4), dtype=np.uint8),
        )


def test_frame_observation_rejects_length_mismatch():
    with pytest.raises(ValueError):
        FrameObservation(
            marker_corners=(np.zeros((4, 2)),),
            marker_ids=np.array([1, 2]),
            charuco_corners=np.zeros((0, 2)),
            charuco_ids=np.zeros((0,)),
            image=np.zeros((4, 4), dtype=np.uint8),
        )


def test_store_skips_frames_without_markers():
    store = ObservationStore()
    assert not store.add(_frame(0))
    assert len(store) == 0
    assert store.image_size is None


def test_store_rejects_size_change(caplog):
    store = ObservationStore()
    assert store.add(_frame(2, size=(64, 48)))
    with caplog.at_level("WARNING"):
        assert not store.add(_frame(2, size=(32, 24)))
    assert len(store) == 1
    assert "differs from session size" in caplog.text


def test_store_to_dataset():
    store = ObservationStore()
    store.add(_frame(2))
    store.add(_frame(3))
    ds = store.to_dataset()
    assert len(ds) == 2
    assert ds.image_size == (64, 48)
    assert ds.n_frames_with_markers == 2
    assert [fr.n_markers for fr in ds] == [2, 3]


def test_dataset_rejects_mixed_sizes():
    with pytest.raises(ValueError):
        CalibrationDataset(frames=(_frame(1, size=(64, 48)), _frame(1, size=(32, 24))))


def test_empty_dataset():
    ds = ObservationStore().to_dataset()
    assert len(ds) == 0
    assert ds.image_size is None
    assert ds.n_frames_with_markers == 0
