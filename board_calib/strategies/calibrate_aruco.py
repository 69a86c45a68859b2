from __future__ import annotations

import logging

import cv2
import numpy as np

from ..board import BoardModel, create_grid_board
from ..calib_types import CalibrationResult, FlattenedCorpus, Size
from ..errors import ConfigError, SolverFailure

log = logging.getLogger(__name__)

CALIB_FLAGS = {
    "use_intrinsic_guess": cv2.CALIB_USE_INTRINSIC_GUESS,
    "fix_aspect_ratio": cv2.CALIB_FIX_ASPECT_RATIO,
    "fix_principal_point": cv2.CALIB_FIX_PRINCIPAL_POINT,
    "zero_tangent_dist": cv2.CALIB_ZERO_TANGENT_DIST,
    "fix_k3": cv2.CALIB_FIX_K3,
    "rational_model": cv2.CALIB_RATIONAL_MODEL,
}


def parse_calib_flags(names) -> int:
    flags = 0
    for name in names or ():
        key = str(name).strip().lower()
        if key not in CALIB_FLAGS:
            raise ConfigError(f"Unknown calibration flag: {name!r}")
        flags |= CALIB_FLAGS[key]
    return flags


def describe_flags(flags: int) -> str:
    """Human readable form, e.g. ``flags: +fix_aspect_ratio+zero_tangent_dist``."""
    names = [name for name, bit in CALIB_FLAGS.items() if flags & bit]
    return "flags: " + "".join(f"+{n}" for n in names)


class ArucoBoardSolver:
    """
    Strategy: solve intrinsics from a flattened corpus of GridBoard observations.

    Uses cv2.aruco.calibrateCameraAruco when the build ships it (contrib,
    OpenCV < 4.7), otherwise matches every frame against the board and calls
    cv2.calibrateCamera.
    """

    def __init__(self, flags: int = 0, aspect_ratio: float = 1.0):
        self.flags = flags
        self.aspect_ratio = aspect_ratio

    def _initial_guess(self):
        K = np.eye(3, dtype=np.float64)
        if self.flags & cv2.CALIB_FIX_ASPECT_RATIO:
            K[0, 0] = self.aspect_ratio
        dist = np.zeros((5, 1), dtype=np.float64)
        return K, dist

    def solve(self, flattened: FlattenedCorpus, board: BoardModel, image_size: Size) -> CalibrationResult:
        if not flattened.counts or not flattened.ids:
            raise SolverFailure("No observations to calibrate from")

        grid = create_grid_board(board)
        K, dist = self._initial_guess()
        try:
            if hasattr(cv2.aruco, "calibrateCameraAruco"):
                err, K, dist, _rvecs, _tvecs = cv2.aruco.calibrateCameraAruco(
                    flattened.corners_list(),
                    flattened.ids_array(),
                    flattened.counts_array(),
                    grid,
                    tuple(image_size),
                    K,
                    dist,
                    flags=self.flags,
                )
            else:
                obj_points, img_points = self._match_frames(flattened, grid)
                err, K, dist, _rvecs, _tvecs = cv2.calibrateCamera(
                    obj_points, img_points, tuple(image_size), K, dist, flags=self.flags,
                )
        except cv2.error as e:
            raise SolverFailure(f"Calibration failed: {e}") from e

        if not np.isfinite(err) or not np.all(np.isfinite(K)):
            raise SolverFailure(f"Calibration diverged (reprojection error {err})")

        log.info("calibration rms=%.4f frames=%d", err, len(flattened.counts))
        return CalibrationResult(K, dist, float(err), len(flattened.counts))

    @staticmethod
    def _match_frames(flattened: FlattenedCorpus, grid):
        obj_points, img_points = [], []
        for ids, corners in flattened.per_frame():
            frame_corners = [np.asarray(c, dtype=np.float32).reshape(1, 4, 2) for c in corners]
            frame_ids = np.array(ids, dtype=np.int32).reshape(-1, 1)
            obj, img = grid.matchImagePoints(frame_corners, frame_ids)
            if obj is None or len(obj) == 0:
                continue
            obj_points.append(obj)
            img_points.append(img)
        if not obj_points:
            raise SolverFailure("No frame matched the board layout")
        return obj_points, img_points
