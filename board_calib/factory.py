from .board import BoardModel
from .services.storage import CalibrationStorage
from .strategies.calibrate_aruco import ArucoBoardSolver, parse_calib_flags
from .strategies.capture_usb import USBWebcamCapture
from .strategies.detect_aruco import ArucoDetect, load_detector_params
from .strategies.operator_io import KeyboardInput, NullRender, WindowRender


class StrategyFactory:
    @staticmethod
    def from_config(config):
        board = BoardModel.from_config(config)

        cap = USBWebcamCapture(
            device=config.device,
            requested_fps=config.fps,
            w=config.width,
            h=config.height,
        )

        params = None
        if config.detector_params_path:
            params = load_detector_params(config.detector_params_path)
        det = ArucoDetect(board.dictionary, params)

        solver = ArucoBoardSolver(parse_calib_flags(config.calib_flags), config.aspect_ratio)
        persister = CalibrationStorage()

        operator = KeyboardInput()
        render = WindowRender(config.session_name) if config.show_window else NullRender()

        return board, cap, det, solver, persister, operator, render
