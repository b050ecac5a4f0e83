from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from charucocalib.capture.display import CAPTURE_INSTRUCTIONS, ControlSignal, Display, draw_detections
from charucocalib.capture.observations import CalibrationDataset, FrameObservation, ObservationStore
from charucocalib.capture.sources import FrameSource
from charucocalib.config import DetectorConfig
from charucocalib.core.board import CharucoBoardModel
from charucocalib.core.detection import CharucoCorners, FrameDetector, MarkerDetections

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameDetection:
    markers: MarkerDetections
    charuco: CharucoCorners


def detect_frame(detector: FrameDetector, image: np.ndarray) -> FrameDetection:
    """Markers, then uncalibrated ChArUco interpolation when any marker was found."""
    markers = detector.detect_markers(image)
    if len(markers) > 0:
        charuco = detector.interpolate(image, markers.marker_corners, markers.marker_ids)
    else:
        charuco = CharucoCorners.empty()
    return FrameDetection(markers=markers, charuco=charuco)


def run_capture_loop(
    source: FrameSource,
    board: CharucoBoardModel,
    detector_config: DetectorConfig,
    display: Display,
    refine_strategy: bool = False,
    store: ObservationStore | None = None,
) -> CalibrationDataset:
    """
    Drive the interactive capture loop until the operator finishes or the
    source runs dry, and return the accepted frames.

    Frames are only stored on ACCEPT and only when at least one marker was
    detected in them.
    """
    detector = FrameDetector(board, detector_config, refine_strategy=refine_strategy)
    store = store if store is not None else ObservationStore()
    n_seen = 0

    while True:
        image = source.read()
        if image is None:
            logger.info("%s exhausted after %d frames", source.name, n_seen)
            break
        n_seen += 1

        det = detect_frame(detector, image)
        overlay = draw_detections(image, det.markers.marker_corners, det.charuco, CAPTURE_INSTRUCTIONS)
        signal = display.show(overlay)

        if signal is ControlSignal.FINISH:
            logger.info("capture finished by operator after %d frames", n_seen)
            break
        if signal is not ControlSignal.ACCEPT:
            continue
        if len(det.markers) == 0:
            logger.debug("frame %d: no markers, not captured", n_seen)
            continue

        observation = FrameObservation(
            marker_corners=det.markers.marker_corners,
            marker_ids=det.markers.marker_ids,
            charuco_corners=det.charuco.corners,
            charuco_ids=det.charuco.ids,
            image=image,
        )
        if store.add(observation):
            w, h = observation.image_size
            logger.info(
                "frame captured (%d markers, %d charuco corners, %dx%d); %d frames stored",
                observation.n_markers,
                len(det.charuco),
                w,
                h,
                len(store),
            )

    return store.to_dataset()
