from __future__ import annotations

import argparse
import sys
from pathlib import Path

from charucocalib.api.result_io import save_calibration_result
from charucocalib.calib.stages import calibrate_dataset
from charucocalib.capture.display import AutoAcceptDisplay, OpenCVDisplay
from charucocalib.capture.review import review_refined_corners
from charucocalib.capture.session import run_capture_loop
from charucocalib.capture.sources import open_source
from charucocalib.config import (
    CalibrationOptions,
    ConfigValidationError,
    DetectorConfig,
    load_detector_config,
    parse_board_spec,
)
from charucocalib.core.board import build_board, write_board_image
from charucocalib.core.detection import FrameDetector
from charucocalib.errors import CharucoCalibError, ConfigUnavailable
from charucocalib.log import setup_logging
from charucocalib.sim.synthetic import generate_synthetic_dataset


def _add_board_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--squares-x", type=int, default=5, help="Number of squares in X direction.")
    p.add_argument("--squares-y", type=int, default=7, help="Number of squares in Y direction.")
    p.add_argument("--square-length", type=float, default=0.04, help="Square side length (meters).")
    p.add_argument("--marker-length", type=float, default=0.02, help="Marker side length (meters).")
    p.add_argument("--dictionary", type=str, default="DICT_6X6_250", help="Predefined cv2.aruco dictionary name.")


def _board_from_args(args: argparse.Namespace):
    spec = parse_board_spec(
        {
            "squares_x": args.squares_x,
            "squares_y": args.squares_y,
            "square_length": args.square_length,
            "marker_length": args.marker_length,
            "dictionary": args.dictionary,
        }
    )
    return build_board(spec)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="charucocalib")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    parser.add_argument("--log-file", type=str, default=None)
    sub = parser.add_subparsers(dest="cmd", required=True)

    cal = sub.add_parser(
        "calibrate",
        help="Capture ChArUco frames and calibrate the camera.",
        description=(
            "To capture a frame for calibration press 'c'. "
            "If input comes from video, press any key for next frame. "
            "To finish capturing press 'ESC' and calibration starts."
        ),
    )
    _add_board_args(cal)
    cal.add_argument("--out", type=Path, default=Path("calibration.json"), help="Output file (.json, .yml or .xml).")
    cal.add_argument("--detector-params", type=Path, default=None, help="Marker detector parameter file.")
    cal.add_argument("--camera-id", type=int, default=0, help="Camera id when no --video/--image-dir is given.")
    cal.add_argument("--video", type=Path, default=None, help="Read frames from a video file.")
    cal.add_argument("--image-dir", type=Path, default=None, help="Read frames from a directory of images.")
    cal.add_argument("--width", type=int, default=1280, help="Requested camera frame width.")
    cal.add_argument("--height", type=int, default=720, help="Requested camera frame height.")
    cal.add_argument("--wait-ms", type=int, default=20, help="Key polling interval per displayed frame.")
    cal.add_argument(
        "--auto-accept",
        action="store_true",
        help="No window; accept every frame with markers (implied by --image-dir).",
    )
    cal.add_argument("--refine-strategy", action="store_true", help="Re-find rejected markers against the board.")
    cal.add_argument("--zero-tangent-dist", action="store_true", help="Assume zero tangential distortion.")
    cal.add_argument("--aspect-ratio", type=str, default=None, help="Fix fx/fy to this value (e.g. 1.0 or 16/9).")
    cal.add_argument("--fix-principal-point", action="store_true", help="Fix the principal point at the center.")
    cal.add_argument("--show-corners", action="store_true", help="Show refined ChArUco corners after calibration.")
    cal.add_argument(
        "--board-image",
        type=str,
        default="charuco_board.png",
        help="Where to write the board preview image ('' disables).",
    )

    draw = sub.add_parser("draw-board", help="Write the board image for printing.")
    _add_board_args(draw)
    draw.add_argument("--out", type=Path, default=Path("charuco_board.png"))
    draw.add_argument("--width-px", type=int, default=700)
    draw.add_argument("--height-px", type=int, default=900)
    draw.add_argument("--margin", type=int, default=50)
    draw.add_argument("--border-bits", type=int, default=1)

    syn = sub.add_parser("generate-synthetic", help="Render synthetic board views from a known pinhole camera.")
    _add_board_args(syn)
    syn.add_argument("--out", type=Path, required=True)
    syn.add_argument("--views", type=int, default=6)
    syn.add_argument("--image-width", type=int, default=1280)
    syn.add_argument("--image-height", type=int, default=720)
    syn.add_argument("--focal-px", type=float, default=1000.0)
    syn.add_argument("--distance-m", type=float, default=0.55)

    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose, log_file=args.log_file)

    try:
        if args.cmd == "calibrate":
            return _run_calibrate(args)

        if args.cmd == "draw-board":
            board = _board_from_args(args)
            out = write_board_image(
                board,
                args.out,
                size=(args.width_px, args.height_px),
                margin=args.margin,
                border_bits=args.border_bits,
            )
            print(f"Wrote {out}")
            return 0

        if args.cmd == "generate-synthetic":
            board = _board_from_args(args)
            out = generate_synthetic_dataset(
                args.out,
                board,
                n_views=args.views,
                image_size=(args.image_width, args.image_height),
                focal_px=args.focal_px,
                distance_m=args.distance_m,
            )
            print(f"Wrote {out}")
            return 0
    except ConfigValidationError as e:
        print(f"error: {e}", file=sys.stderr)
        return ConfigUnavailable.exit_code
    except CharucoCalibError as e:
        print(f"error: {e}", file=sys.stderr)
        return e.exit_code

    raise AssertionError(f"Unhandled cmd: {args.cmd}")


def _run_calibrate(args: argparse.Namespace) -> int:
    # Everything that can be validated up front is, before the source is opened.
    options = CalibrationOptions(
        aspect_ratio=args.aspect_ratio,
        zero_tangent_dist=args.zero_tangent_dist,
        fix_principal_point=args.fix_principal_point,
    )
    if args.detector_params is not None:
        detector_config = load_detector_config(args.detector_params)
    else:
        detector_config = DetectorConfig.subpixel_default()
    board = _board_from_args(args)

    if args.board_image:
        write_board_image(board, args.board_image)

    headless = args.auto_accept or args.image_dir is not None
    display = AutoAcceptDisplay() if headless else OpenCVDisplay(wait_ms=args.wait_ms)

    with open_source(
        camera_id=args.camera_id,
        video=args.video,
        image_dir=args.image_dir,
        width=args.width,
        height=args.height,
    ) as source:
        try:
            dataset = run_capture_loop(source, board, detector_config, display, refine_strategy=args.refine_strategy)
        finally:
            if not headless:
                display.close()

    # Stage 2 re-interpolates with the same detector tuning as the capture.
    detector = FrameDetector(board, detector_config, refine_strategy=args.refine_strategy)
    run = calibrate_dataset(dataset, board, options, detector=detector)
    out = save_calibration_result(args.out, run.result)

    print(f"Rep Error: {run.result.reprojection_error}")
    print(f"Rep Error Aruco: {run.coarse.reprojection_error}")
    print(f"Wrote {out}")

    if args.show_corners and not headless:
        review = OpenCVDisplay(wait_ms=args.wait_ms)
        try:
            review_refined_corners(dataset, run.refined_corners, review)
        finally:
            review.close()
    return 0
