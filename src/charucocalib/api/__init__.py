from charucocalib.api.result_io import load_calibration_result, result_from_dict, result_to_dict, save_calibration_result

__all__ = [
    "load_calibration_result",
    "save_calibration_result",
    "result_from_dict",
    "result_to_dict",
]
