from pathlib import Path

import cv2
import numpy as np

from ..calib_types import CalibrationResult
from ..errors import PersistenceError
from ..strategies.calibrate_aruco import describe_flags


class CalibrationStorage:
    """Writes calibration results as OpenCV FileStorage YAML.

    The file is written next to the target and moved into place once complete,
    so a failed save leaves any previous calibration untouched.
    """

    def save(self, path, image_size, result: CalibrationResult, flags: int = 0,
             timestamp: str = "", aspect_ratio: float = 1.0) -> str:
        p = Path(path)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create output directory {p.parent}: {e}") from e

        # keep the suffix, FileStorage picks the format from it
        tmp = p.with_name(f".{p.stem}.tmp{p.suffix}")
        fs = cv2.FileStorage(str(tmp), cv2.FILE_STORAGE_WRITE)
        if not fs.isOpened():
            raise PersistenceError(f"Failed to save calibration: cannot open {p}")
        try:
            try:
                fs.write("calibration_time", timestamp)
                fs.write("image_width", int(image_size[0]))
                fs.write("image_height", int(image_size[1]))
                if flags & cv2.CALIB_FIX_ASPECT_RATIO:
                    fs.write("aspectRatio", float(aspect_ratio))
                if flags:
                    fs.writeComment(describe_flags(flags))
                fs.write("flags", int(flags))
                fs.write("camera_matrix", np.asarray(result.camera_matrix, dtype=np.float64))
                fs.write("distortion_coefficients",
                         np.asarray(result.distortion_coefficients, dtype=np.float64))
                fs.write("avg_reprojection_error", float(result.reprojection_error))
            finally:
                fs.release()
            tmp.replace(p)
        except (cv2.error, OSError) as e:
            tmp.unlink(missing_ok=True)
            raise PersistenceError(f"Failed to save calibration to {p}: {e}") from e
        return str(p)
