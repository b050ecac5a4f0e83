from __future__ import annotations


class CharucoCalibError(RuntimeError):
    """Base class for fatal pipeline errors. `exit_code` is the CLI process status."""

    exit_code = 1


class SourceUnavailable(CharucoCalibError):
    exit_code = 2


class ConfigUnavailable(CharucoCalibError):
    exit_code = 3


class InsufficientCalibrationData(CharucoCalibError):
    exit_code = 4


class WriteFailure(CharucoCalibError):
    exit_code = 5
