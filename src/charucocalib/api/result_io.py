from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

import numpy as np

from charucocalib.calib.result import CalibrationResult
from charucocalib.config import CALIB_FIX_ASPECT_RATIO, CalibrationOptions, describe_flags
from charucocalib.errors import WriteFailure

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "charucocalib.calibration.v0"
FILE_STORAGE_SUFFIXES = (".yml", ".yaml", ".xml")


def _to_float_matrix(x: Any, shape: tuple[int, ...]) -> np.ndarray:
    x = np.asarray(x, dtype=np.float64)
    x = x.reshape(shape)
    if not np.all(np.isfinite(x)):
        raise ValueError("non-finite values")
    return x


def result_to_dict(result: CalibrationResult) -> dict[str, Any]:
    """Key/value layout shared by the JSON and OpenCV FileStorage writers."""
    flags = int(result.flags)
    data: dict[str, Any] = {
        "schema_version": SCHEMA_VERSION,
        "calibration_time": result.calibrated_at.strftime("%c"),
        "calibration_timestamp": result.calibrated_at.isoformat(),
        "image_width": int(result.image_size[0]),
        "image_height": int(result.image_size[1]),
    }
    if flags & CALIB_FIX_ASPECT_RATIO:
        data["aspectRatio"] = float(result.aspect_ratio)
    if flags != 0:
        data["flags_description"] = describe_flags(flags)
    data["flags"] = flags
    data["camera_matrix"] = result.camera_matrix.tolist()
    data["distortion_coefficients"] = result.dist_coeffs.tolist()
    data["avg_reprojection_error"] = float(result.reprojection_error)
    if result.aruco_reprojection_error is not None:
        data["aruco_reprojection_error"] = float(result.aruco_reprojection_error)
    data["n_frames"] = int(result.n_frames)
    data["view_indices"] = [int(i) for i in result.view_indices]
    data["rvecs"] = result.rvecs.tolist()
    data["tvecs"] = result.tvecs.tolist()
    return data


def result_from_dict(data: dict[str, Any]) -> CalibrationResult:
    if str(data.get("schema_version")) != SCHEMA_VERSION:
        raise ValueError("unsupported calibration schema")

    flags = int(data["flags"])
    aspect = data.get("aspectRatio")
    options = CalibrationOptions.from_flags(flags, aspect_ratio=None if aspect is None else float(aspect))
    aruco_err = data.get("aruco_reprojection_error")
    stamp = data.get("calibration_timestamp")

    return CalibrationResult(
        camera_matrix=_to_float_matrix(data["camera_matrix"], (3, 3)),
        dist_coeffs=_to_float_matrix(data["distortion_coefficients"], (-1,)),
        image_size=(int(data["image_width"]), int(data["image_height"])),
        options=options,
        reprojection_error=float(data["avg_reprojection_error"]),
        aruco_reprojection_error=None if aruco_err is None else float(aruco_err),
        n_frames=int(data.get("n_frames", 0)),
        view_indices=tuple(int(i) for i in data.get("view_indices", [])),
        rvecs=np.asarray(data.get("rvecs", []), dtype=np.float64).reshape(-1, 3),
        tvecs=np.asarray(data.get("tvecs", []), dtype=np.float64).reshape(-1, 3),
        calibrated_at=datetime.fromisoformat(stamp) if stamp else datetime.now().astimezone(),
    )


def save_calibration_result(path: str | Path, result: CalibrationResult) -> Path:
    """
    Write a calibration result. `.yml`/`.yaml`/`.xml` go through
    `cv2.FileStorage`; anything else is written as JSON.

    The file is written next to its destination under a temporary name and
    renamed into place, so a failed write never leaves a partial file.
    """
    p = Path(path)
    data = result_to_dict(result)
    suffix = p.suffix.lower()

    try:
        p.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{p.name}.", suffix=p.suffix, dir=p.parent)
    except OSError as e:
        raise WriteFailure(f"cannot open {p} for writing: {e}") from e

    tmp = Path(tmp_name)
    try:
        if suffix in FILE_STORAGE_SUFFIXES:
            os.close(fd)
            _write_file_storage(tmp, data)
        else:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json.dumps(data, indent=2, sort_keys=True))
                f.write("\n")
        os.replace(tmp, p)
    except WriteFailure:
        tmp.unlink(missing_ok=True)
        raise
    except Exception as e:
        tmp.unlink(missing_ok=True)
        raise WriteFailure(f"cannot write {p}: {e}") from e

    logger.info("calibration written to %s", p)
    return p


def load_calibration_result(path: str | Path) -> CalibrationResult:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(f"Missing {p}")
    if p.suffix.lower() in FILE_STORAGE_SUFFIXES:
        data = _read_file_storage(p)
    else:
        data = json.loads(p.read_text(encoding="utf-8"))
    return result_from_dict(data)


def _write_file_storage(path: Path, data: dict[str, Any]) -> None:
    import cv2  # type: ignore

    fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_WRITE)
    if not fs.isOpened():
        raise WriteFailure(f"cannot open {path} for writing")
    try:
        for key, value in data.items():
            if key in ("camera_matrix", "rvecs", "tvecs"):
                arr = np.asarray(value, dtype=np.float64)
                if arr.size:
                    fs.write(key, arr)
            elif key == "distortion_coefficients":
                fs.write(key, np.asarray(value, dtype=np.float64).reshape(1, -1))
            elif key == "view_indices":
                if value:
                    fs.write(key, np.asarray(value, dtype=np.int32).reshape(-1, 1))
            elif isinstance(value, str):
                fs.write(key, value)
            elif isinstance(value, int):
                fs.write(key, int(value))
            else:
                fs.write(key, float(value))
    finally:
        fs.release()


_FS_INT_KEYS = ("image_width", "image_height", "flags", "n_frames")
_FS_FLOAT_KEYS = ("aspectRatio", "avg_reprojection_error", "aruco_reprojection_error")
_FS_STR_KEYS = ("schema_version", "calibration_time", "calibration_timestamp", "flags_description")


def _read_file_storage(path: Path) -> dict[str, Any]:
    import cv2  # type: ignore

    fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    if not fs.isOpened():
        raise ValueError(f"cannot read {path}")
    data: dict[str, Any] = {}
    try:
        for key in _FS_STR_KEYS:
            n = _fs_node(fs, key)
            if n is not None:
                data[key] = n.string()
        for key in _FS_INT_KEYS:
            n = _fs_node(fs, key)
            if n is not None:
                data[key] = int(n.real())
        for key in _FS_FLOAT_KEYS:
            n = _fs_node(fs, key)
            if n is not None:
                data[key] = float(n.real())
        for key in ("camera_matrix", "distortion_coefficients", "rvecs", "tvecs"):
            n = _fs_node(fs, key)
            if n is not None:
                data[key] = np.asarray(n.mat(), dtype=np.float64).tolist()
        n = _fs_node(fs, "view_indices")
        if n is not None:
            data["view_indices"] = np.asarray(n.mat()).reshape(-1).astype(int).tolist()
    finally:
        fs.release()
    return data


def _fs_node(fs, key: str):
    n = fs.getNode(key)
    return None if n.empty() or n.isNone() else n
