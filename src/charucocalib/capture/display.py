from __future__ import annotations

import enum

import numpy as np

from charucocalib.core.detection import CharucoCorners, to_cv_corners

CAPTURE_INSTRUCTIONS = "Press 'c' to add current frame. 'ESC' to finish and calibrate"


class ControlSignal(enum.Enum):
    ACCEPT = "accept"
    FINISH = "finish"
    CONTINUE = "continue"


class Display:
    """Shows an overlay and returns the operator's decision for that frame."""

    def show(self, image: np.ndarray) -> ControlSignal:
        raise NotImplementedError

    def close(self) -> None:
        pass


class OpenCVDisplay(Display):
    """
    `cv2.imshow` window. `waitKey(wait_ms)` bounds the loop rate; a timeout
    (no key) means CONTINUE.
    """

    def __init__(self, window_name: str = "out", wait_ms: int = 20, accept_key: str = "c", finish_key: int = 27) -> None:
        import cv2  # type: ignore

        self._cv2 = cv2
        self.window_name = window_name
        self.wait_ms = int(wait_ms)
        self.accept_key = ord(accept_key)
        self.finish_key = int(finish_key)

    def show(self, image: np.ndarray) -> ControlSignal:
        self._cv2.imshow(self.window_name, image)
        key = self._cv2.waitKey(self.wait_ms)
        if key == -1:
            return ControlSignal.CONTINUE
        key &= 0xFF
        if key == self.finish_key:
            return ControlSignal.FINISH
        if key == self.accept_key:
            return ControlSignal.ACCEPT
        return ControlSignal.CONTINUE

    def close(self) -> None:
        self._cv2.destroyAllWindows()


class AutoAcceptDisplay(Display):
    """Headless: accepts every frame. For batch calibration from image folders."""

    def show(self, image: np.ndarray) -> ControlSignal:
        return ControlSignal.ACCEPT


def _to_bgr(image: np.ndarray) -> np.ndarray:
    import cv2  # type: ignore

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    return image.copy()


def draw_detections(
    image: np.ndarray,
    marker_corners=(),
    charuco: CharucoCorners | None = None,
    text: str | None = None,
) -> np.ndarray:
    """Returns a BGR copy of `image` with marker outlines, ChArUco corners and `text` drawn on it."""
    import cv2  # type: ignore
    import cv2.aruco as aruco  # type: ignore

    out = _to_bgr(image)
    if len(marker_corners) > 0:
        aruco.drawDetectedMarkers(out, to_cv_corners(marker_corners))
    if charuco is not None and len(charuco) > 0:
        aruco.drawDetectedCornersCharuco(
            out,
            np.array(charuco.corners, dtype=np.float32).reshape(-1, 1, 2),
            np.array(charuco.ids, dtype=np.int32).reshape(-1, 1),
        )
    if text:
        cv2.putText(out, text, (10, 20), cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 0, 0), 2)
    return out
