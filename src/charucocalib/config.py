from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from charucocalib.errors import ConfigUnavailable

logger = logging.getLogger(__name__)


class ConfigValidationError(ValueError):
    pass


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigValidationError(msg)


# ---------------------------------------------------------------------------
# Board geometry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BoardSpec:
    squares_x: int = 5
    squares_y: int = 7
    square_length: float = 0.04  # meters
    marker_length: float = 0.02  # meters
    dictionary: str = "DICT_6X6_250"


def parse_board_spec(data: Mapping[str, Any]) -> BoardSpec:
    defaults = BoardSpec()
    squares_x = int(data.get("squares_x", defaults.squares_x))
    squares_y = int(data.get("squares_y", defaults.squares_y))
    square_length = float(data.get("square_length", defaults.square_length))
    marker_length = float(data.get("marker_length", defaults.marker_length))
    dictionary = str(data.get("dictionary", defaults.dictionary))

    _require(squares_x >= 2 and squares_y >= 2, "board squares_x/squares_y must be >= 2")
    _require(square_length > 0.0 and marker_length > 0.0, "board square/marker lengths must be > 0")
    _require(marker_length < square_length, "board marker_length must be < square_length")
    _require(dictionary.startswith("DICT_"), f"unknown aruco dictionary name: {dictionary}")

    return BoardSpec(
        squares_x=squares_x,
        squares_y=squares_y,
        square_length=square_length,
        marker_length=marker_length,
        dictionary=dictionary,
    )


# ---------------------------------------------------------------------------
# Marker detector parameters
# ---------------------------------------------------------------------------

DETECTOR_PARAMETER_TYPES: Mapping[str, type] = MappingProxyType(
    {
        "adaptiveThreshWinSizeMin": int,
        "adaptiveThreshWinSizeMax": int,
        "adaptiveThreshWinSizeStep": int,
        "adaptiveThreshConstant": float,
        "minMarkerPerimeterRate": float,
        "maxMarkerPerimeterRate": float,
        "polygonalApproxAccuracyRate": float,
        "minCornerDistanceRate": float,
        "minDistanceToBorder": int,
        "minMarkerDistanceRate": float,
        "cornerRefinementMethod": int,
        "cornerRefinementWinSize": int,
        "cornerRefinementMaxIterations": int,
        "cornerRefinementMinAccuracy": float,
        "markerBorderBits": int,
        "perspectiveRemovePixelPerCell": int,
        "perspectiveRemoveIgnoredMarginPerCell": float,
        "maxErroneousBitsInBorderRate": float,
        "minOtsuStdDev": float,
        "errorCorrectionRate": float,
    }
)

# Values of cv2.aruco.CORNER_REFINE_*.
CORNER_REFINE_METHODS: Mapping[str, int] = MappingProxyType(
    {
        "CORNER_REFINE_NONE": 0,
        "CORNER_REFINE_SUBPIX": 1,
        "CORNER_REFINE_CONTOUR": 2,
        "CORNER_REFINE_APRILTAG": 3,
    }
)


@dataclass(frozen=True)
class DetectorConfig:
    """
    Overrides applied on top of OpenCV's `aruco.DetectorParameters()` defaults.

    Keys not present keep the library default.
    """

    params: Mapping[str, int | float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    @classmethod
    def subpixel_default(cls) -> "DetectorConfig":
        return cls(
            {
                "cornerRefinementMethod": CORNER_REFINE_METHODS["CORNER_REFINE_SUBPIX"],
                "cornerRefinementWinSize": 5,
                "cornerRefinementMaxIterations": 50,
                "cornerRefinementMinAccuracy": 1e-3,
            }
        )

    def apply(self, detector_params: Any) -> Any:
        for name, value in self.params.items():
            setattr(detector_params, name, value)
        return detector_params


def parse_detector_config(data: Mapping[str, Any]) -> DetectorConfig:
    params: dict[str, int | float] = {}
    for key, raw in data.items():
        typ = DETECTOR_PARAMETER_TYPES.get(key)
        if typ is None:
            logger.warning("ignoring unknown detector parameter %r", key)
            continue
        if raw is None:
            continue
        if key == "cornerRefinementMethod" and isinstance(raw, str):
            _require(raw in CORNER_REFINE_METHODS, f"cornerRefinementMethod: unknown method {raw!r}")
            params[key] = CORNER_REFINE_METHODS[raw]
            continue
        try:
            value = typ(raw) if typ is float else int(round(float(raw)))
        except (TypeError, ValueError) as e:
            raise ConfigValidationError(f"{key}: expected {typ.__name__}, got {raw!r}") from e
        _require(math.isfinite(float(value)), f"{key} must be finite")
        params[key] = value

    lo = params.get("adaptiveThreshWinSizeMin")
    hi = params.get("adaptiveThreshWinSizeMax")
    if lo is not None and hi is not None:
        _require(lo <= hi, "adaptiveThreshWinSizeMin must be <= adaptiveThreshWinSizeMax")
    return DetectorConfig(params)


def load_detector_config(path: str | Path) -> DetectorConfig:
    """
    Read a detector parameter file.

    `.json` files are parsed as a flat JSON object. Anything else is read with
    `cv2.FileStorage` (the YAML/XML layout OpenCV's own samples use, e.g.
    `detector_params.yml`).
    """
    p = Path(path)
    if not p.is_file():
        raise ConfigUnavailable(f"detector parameter file not found: {p}")

    try:
        if p.suffix.lower() == ".json":
            try:
                data = json.loads(p.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigUnavailable(f"cannot read detector parameter file {p}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigUnavailable(f"{p} must contain a JSON object")
        else:
            data = _read_file_storage(p)
        config = parse_detector_config(data)
    except ConfigValidationError as e:
        raise ConfigUnavailable(f"invalid detector parameter file {p}: {e}") from e

    logger.info("loaded %d detector parameters from %s", len(config.params), p)
    return config


def _read_file_storage(path: Path) -> dict[str, Any]:
    import cv2  # type: ignore

    try:
        fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    except cv2.error as e:
        raise ConfigUnavailable(f"cannot parse detector parameter file {path}: {e}") from e
    if not fs.isOpened():
        raise ConfigUnavailable(f"cannot open detector parameter file {path}")

    data: dict[str, Any] = {}
    try:
        for key in DETECTOR_PARAMETER_TYPES:
            node = fs.getNode(key)
            if node.empty() or node.isNone():
                continue
            data[key] = node.string() if node.isString() else node.real()
    finally:
        fs.release()
    return data


# ---------------------------------------------------------------------------
# Calibration options
# ---------------------------------------------------------------------------

# Bit values of cv2.CALIB_*.
CALIB_USE_INTRINSIC_GUESS = 0x00001
CALIB_FIX_ASPECT_RATIO = 0x00002
CALIB_FIX_PRINCIPAL_POINT = 0x00004
CALIB_ZERO_TANGENT_DIST = 0x00008

# Output order of the flag description string.
_FLAG_NAMES: tuple[tuple[int, str], ...] = (
    (CALIB_USE_INTRINSIC_GUESS, "use_intrinsic_guess"),
    (CALIB_FIX_ASPECT_RATIO, "fix_aspectRatio"),
    (CALIB_FIX_PRINCIPAL_POINT, "fix_principal_point"),
    (CALIB_ZERO_TANGENT_DIST, "zero_tangent_dist"),
)


def parse_aspect_ratio(value: str | float | int | None) -> float | None:
    """
    Parse an fx/fy ratio. Fraction strings use true division: "16/9" -> 1.777...
    """
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            ratio = float(Fraction(text))
        except (ValueError, ZeroDivisionError) as e:
            raise ConfigValidationError(f"invalid aspect ratio: {value!r}") from e
    else:
        ratio = float(value)
    _require(math.isfinite(ratio) and ratio > 0.0, f"aspect ratio must be finite and > 0, got {value!r}")
    return ratio


@dataclass(frozen=True)
class CalibrationOptions:
    aspect_ratio: float | None = None
    zero_tangent_dist: bool = False
    fix_principal_point: bool = False
    use_intrinsic_guess: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "aspect_ratio", parse_aspect_ratio(self.aspect_ratio))

    @property
    def fix_aspect_ratio(self) -> bool:
        return self.aspect_ratio is not None

    @property
    def flags(self) -> int:
        bits = 0
        if self.use_intrinsic_guess:
            bits |= CALIB_USE_INTRINSIC_GUESS
        if self.fix_aspect_ratio:
            bits |= CALIB_FIX_ASPECT_RATIO
        if self.fix_principal_point:
            bits |= CALIB_FIX_PRINCIPAL_POINT
        if self.zero_tangent_dist:
            bits |= CALIB_ZERO_TANGENT_DIST
        return bits

    @property
    def flag_names(self) -> tuple[str, ...]:
        return decode_flags(self.flags)

    @classmethod
    def from_flags(cls, flags: int, aspect_ratio: float | None = None) -> "CalibrationOptions":
        flags = int(flags)
        if flags & CALIB_FIX_ASPECT_RATIO:
            _require(aspect_ratio is not None, "fix_aspectRatio flag set without an aspect ratio")
        else:
            aspect_ratio = None
        return cls(
            aspect_ratio=aspect_ratio,
            zero_tangent_dist=bool(flags & CALIB_ZERO_TANGENT_DIST),
            fix_principal_point=bool(flags & CALIB_FIX_PRINCIPAL_POINT),
            use_intrinsic_guess=bool(flags & CALIB_USE_INTRINSIC_GUESS),
        )


def decode_flags(flags: int) -> tuple[str, ...]:
    return tuple(name for bit, name in _FLAG_NAMES if int(flags) & bit)


def describe_flags(flags: int) -> str:
    return "flags: " + "".join(f"+{name}" for name in decode_flags(flags))
