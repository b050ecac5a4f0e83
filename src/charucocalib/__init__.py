from charucocalib import config, errors
from charucocalib.api import load_calibration_result, save_calibration_result
from charucocalib.calib.result import CalibrationResult
from charucocalib.calib.stages import calibrate_coarse, calibrate_dataset, calibrate_refined
from charucocalib.capture.session import run_capture_loop
from charucocalib.config import BoardSpec, CalibrationOptions, DetectorConfig
from charucocalib.core.board import build_board

__all__ = [
    "config",
    "errors",
    "BoardSpec",
    "CalibrationOptions",
    "DetectorConfig",
    "CalibrationResult",
    "build_board",
    "run_capture_loop",
    "calibrate_coarse",
    "calibrate_refined",
    "calibrate_dataset",
    "load_calibration_result",
    "save_calibration_result",
]
