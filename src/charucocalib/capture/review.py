from __future__ import annotations

from typing import Sequence

from charucocalib.capture.display import ControlSignal, Display, draw_detections
from charucocalib.capture.observations import CalibrationDataset
from charucocalib.core.detection import CharucoCorners

REVIEW_INSTRUCTIONS = "Refined ChArUco corners. Any key: next frame, 'ESC': stop"


def review_refined_corners(dataset: CalibrationDataset, refined: Sequence[CharucoCorners], display: Display) -> int:
    """
    Show every accepted frame with its re-interpolated ChArUco corners.

    Returns the number of frames shown; FINISH ends the review early.
    """
    if len(refined) != len(dataset):
        raise ValueError(f"{len(refined)} refined entries for {len(dataset)} frames")

    shown = 0
    for frame, corners in zip(dataset.frames, refined, strict=True):
        overlay = draw_detections(frame.image, charuco=corners, text=REVIEW_INSTRUCTIONS)
        shown += 1
        if display.show(overlay) is ControlSignal.FINISH:
            break
    return shown
