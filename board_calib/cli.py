import argparse
import logging
import signal
import sys

from .config import CalibConfig, load_config
from .errors import AcquisitionError, ConfigError
from .factory import StrategyFactory
from .logging_utils import add_file_handler, setup_logger
from .session import CaptureSessionController, SessionState
from .strategies.calibrate_aruco import parse_calib_flags

EXIT_OK = 0
EXIT_INSUFFICIENT = 1
EXIT_CONFIG = 2
EXIT_ABORTED = 3
EXIT_CALIBRATION_FAILED = 4


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Calibrate a camera from an ArUco grid board",
        epilog="Keys: 'c' capture frame, ESC or 'q' finish and calibrate, 'x' cancel",
    )
    ap.add_argument("outfile", nargs="?", help="Output calibration file (YAML)")
    ap.add_argument("--config", help="Path to JSON/YAML config")

    ap.add_argument("-w", "--markers-x", type=int, help="Number of markers in X direction")
    ap.add_argument("--markers-y", type=int, help="Number of markers in Y direction")
    ap.add_argument("-l", "--marker-length-m", type=float, help="Marker side length (metres)")
    ap.add_argument("-s", "--marker-separation-m", type=float, help="Separation between markers (metres)")
    ap.add_argument("-d", "--dict", help="Dictionary name (4x4_50) or OpenCV id (16 = aruco_original)")
    ap.add_argument("--ci", "--device", dest="device", help="Camera index, /dev/videoN or video file")
    ap.add_argument("--dp", dest="detector_params", help="Detector parameters file")
    ap.add_argument("--waitkey", type=int, help="Delay for key press (ms)")
    ap.add_argument("--minframes", type=int, help="Minimum frames required")
    ap.add_argument("--fps", type=int)
    ap.add_argument("--width", type=int)
    ap.add_argument("--height", type=int)
    ap.add_argument("--flag", dest="calib_flags", action="append",
                    help="Calibration flag (repeatable), e.g. fix_aspect_ratio")
    ap.add_argument("--aspect-ratio", type=float)
    ap.add_argument("--max-frames", type=int)
    ap.add_argument("--no-window", action="store_true")
    ap.add_argument("--log-file")
    ap.add_argument("--log-level")
    return ap


def _apply_args(cfg: CalibConfig, args: argparse.Namespace) -> CalibConfig:
    device = args.device
    if isinstance(device, str) and device.isdigit():
        device = int(device)

    cfg.apply_overrides(
        output_path=args.outfile,
        markers_x=args.markers_x,
        markers_y=args.markers_y,
        marker_length_m=args.marker_length_m,
        marker_separation_m=args.marker_separation_m,
        aruco_dict=args.dict,
        device=device,
        detector_params_path=args.detector_params,
        wait_ms=args.waitkey,
        min_frames=args.minframes,
        fps=args.fps,
        width=args.width,
        height=args.height,
        calib_flags=args.calib_flags,
        aspect_ratio=args.aspect_ratio,
        max_frames=args.max_frames,
        show_window=False if args.no_window else None,
        log_path=args.log_file,
        log_level=args.log_level,
    )
    return cfg


def exit_code_for(summary) -> int:
    if summary.state is SessionState.TERMINATED_INSUFFICIENT:
        return EXIT_INSUFFICIENT
    if summary.state is SessionState.ABORTED:
        return EXIT_ABORTED
    if not summary.calibrated:
        return EXIT_CALIBRATION_FAILED
    return EXIT_OK


def main(argv=None) -> int:
    ap = _build_parser()
    args = ap.parse_args(argv)

    try:
        cfg = load_config(args.config) if args.config else CalibConfig()
        cfg = _apply_args(cfg, args)
        cfg.validate()
    except (ConfigError, ValueError, FileNotFoundError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    logger = setup_logger(cfg.session_name, getattr(logging, cfg.log_level.upper()))
    if cfg.log_path:
        add_file_handler(logger, cfg.session_name, cfg.log_path)
    logger.info("config: %s", cfg.as_dict())

    try:
        board, cap, det, solver, persister, operator, render = StrategyFactory.from_config(cfg)
    except ConfigError as e:
        logger.error("%s", e)
        return EXIT_CONFIG

    controller = CaptureSessionController(
        cap, det, board, solver, persister, operator, render,
        min_frames=cfg.min_frames,
        output_path=cfg.output_path,
        logger=logger,
        wait_ms=cfg.wait_ms,
        max_frames=cfg.max_frames,
        calib_flags=parse_calib_flags(cfg.calib_flags),
        aspect_ratio=cfg.aspect_ratio,
    )

    def _handle_signal(_sig, _frame):
        controller.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)

    try:
        summary = controller.run()
    except AcquisitionError as e:
        logger.error("%s", e)
        return EXIT_CONFIG

    if summary.calibrated:
        result = summary.result
        print("Calibration successful!")
        print(f"Reprojection error: {result.reprojection_error}")
        print(f"Camera matrix:\n{result.camera_matrix}")
        print(f"Distortion coefficients: {result.distortion_coefficients.ravel()}")
    return exit_code_for(summary)


if __name__ == "__main__":
    sys.exit(main())
