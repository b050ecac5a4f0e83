from __future__ import annotations


def test_public_api_exports() -> None:
    import charucocalib as cc

    assert hasattr(cc, "BoardSpec")
    assert hasattr(cc, "CalibrationOptions")
    assert hasattr(cc, "DetectorConfig")
    assert hasattr(cc, "build_board")
    assert hasattr(cc, "run_capture_loop")
    assert hasattr(cc, "calibrate_dataset")
    assert hasattr(cc, "load_calibration_result")
    assert hasattr(cc, "save_calibration_result")


def test_error_exit_codes_are_distinct() -> None:
    from charucocalib import errors

    codes = [
        errors.SourceUnavailable.exit_code,
        errors.ConfigUnavailable.exit_code,
        errors.InsufficientCalibrationData.exit_code,
        errors.WriteFailure.exit_code,
    ]
    assert codes == [2, 3, 4, 5]
    assert all(issubclass(e, errors.CharucoCalibError) for e in (errors.SourceUnavailable, errors.WriteFailure))
