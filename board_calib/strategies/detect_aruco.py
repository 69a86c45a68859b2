from __future__ import annotations

import logging

import cv2
import numpy as np

from ..calib_types import Frame, FrameObservation
from ..errors import ConfigError

log = logging.getLogger(__name__)

# name -> (cv2.aruco attribute, number of markers in the dictionary)
DICTIONARIES = {
    "4x4_50": ("DICT_4X4_50", 50),
    "4x4_100": ("DICT_4X4_100", 100),
    "4x4_250": ("DICT_4X4_250", 250),
    "4x4_1000": ("DICT_4X4_1000", 1000),
    "5x5_50": ("DICT_5X5_50", 50),
    "5x5_100": ("DICT_5X5_100", 100),
    "5x5_250": ("DICT_5X5_250", 250),
    "5x5_1000": ("DICT_5X5_1000", 1000),
    "6x6_50": ("DICT_6X6_50", 50),
    "6x6_100": ("DICT_6X6_100", 100),
    "6x6_250": ("DICT_6X6_250", 250),
    "6x6_1000": ("DICT_6X6_1000", 1000),
    "7x7_50": ("DICT_7X7_50", 50),
    "7x7_100": ("DICT_7X7_100", 100),
    "7x7_250": ("DICT_7X7_250", 250),
    "7x7_1000": ("DICT_7X7_1000", 1000),
    "aruco_original": ("DICT_ARUCO_ORIGINAL", 1024),
    "apriltag_16h5": ("DICT_APRILTAG_16h5", 30),
    "apriltag_25h9": ("DICT_APRILTAG_25h9", 35),
    "apriltag_36h10": ("DICT_APRILTAG_36h10", 2320),
    "apriltag_36h11": ("DICT_APRILTAG_36h11", 587),
}

# OpenCV's numeric predefined dictionary ids, in enum order
_DICT_BY_ID = list(DICTIONARIES)

# Detector parameters readable from an OpenCV YAML file
DETECTOR_PARAM_NAMES = (
    "adaptiveThreshWinSizeMin",
    "adaptiveThreshWinSizeMax",
    "adaptiveThreshWinSizeStep",
    "adaptiveThreshConstant",
    "minMarkerPerimeterRate",
    "maxMarkerPerimeterRate",
    "polygonalApproxAccuracyRate",
    "minCornerDistanceRate",
    "minDistanceToBorder",
    "minMarkerDistanceRate",
    "cornerRefinementMethod",
    "cornerRefinementWinSize",
    "cornerRefinementMaxIterations",
    "cornerRefinementMinAccuracy",
    "markerBorderBits",
    "perspectiveRemovePixelPerCell",
    "perspectiveRemoveIgnoredMarginPerCell",
    "maxErroneousBitsInBorderRate",
    "minOtsuStdDev",
    "errorCorrectionRate",
)


def normalize_dict_name(name) -> str:
    """
    Map a dictionary identifier to a key of DICTIONARIES.
    Accepts "4x4_50", "DICT_4X4_50" or OpenCV's numeric id (0..20).
    """
    if isinstance(name, (int, np.integer)) or (isinstance(name, str) and name.strip().isdigit()):
        code = int(name)
        if not 0 <= code < len(_DICT_BY_ID):
            raise ConfigError(f"Unknown dictionary id: {code}")
        return _DICT_BY_ID[code]
    key = (name or "").strip()
    if key.upper().startswith("DICT_"):
        key = key[5:]
    key = key.lower()
    if key not in DICTIONARIES:
        raise ConfigError(f"Unknown ArUco dictionary: {name!r}")
    return key


def dictionary_size(name) -> int:
    return DICTIONARIES[normalize_dict_name(name)][1]


def get_dict(name):
    """Resolve a dictionary on OpenCV >= 4.7 (getPredefinedDictionary) and older (Dictionary_get)."""
    attr, _ = DICTIONARIES[normalize_dict_name(name)]
    code = getattr(cv2.aruco, attr)

    if hasattr(cv2.aruco, "getPredefinedDictionary"):           # OpenCV >= 4.7
        return cv2.aruco.getPredefinedDictionary(code)
    return cv2.aruco.Dictionary_get(code)                        # Older OpenCV


def _make_params():
    """Create detector parameters across OpenCV versions."""
    if hasattr(cv2.aruco, "DetectorParameters_create"):
        return cv2.aruco.DetectorParameters_create()
    return cv2.aruco.DetectorParameters()


def load_detector_params(path: str):
    """
    Build detector parameters from an OpenCV FileStorage (YAML/XML) file.
    Keys missing from the file keep their OpenCV defaults.
    """
    params = _make_params()
    fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    if not fs.isOpened():
        raise ConfigError(f"Invalid detector parameters file: {path}")
    try:
        for key in DETECTOR_PARAM_NAMES:
            node = fs.getNode(key)
            if node.empty():
                continue
            current = getattr(params, key)
            value = node.real()
            setattr(params, key, int(value) if isinstance(current, int) else float(value))
    finally:
        fs.release()
    return params


class ArucoDetect:
    """
    Strategy: detect ArUco markers in a frame.
    Returns a FrameObservation; a frame with no markers gives an empty one.
    """
    def __init__(self, dict_name="4x4_50", params=None):
        self.dictionary = get_dict(dict_name)
        self.params = params if params is not None else _make_params()
        self._detector = None
        # Prefer the newer ArucoDetector API if present
        if hasattr(cv2.aruco, "ArucoDetector"):
            self._detector = cv2.aruco.ArucoDetector(self.dictionary, self.params)

    def detect(self, f: Frame) -> FrameObservation:
        if self._detector is not None:
            corners, ids, _rej = self._detector.detectMarkers(f.image)
        else:
            corners, ids, _rej = cv2.aruco.detectMarkers(
                f.image, self.dictionary, parameters=self.params
            )

        if ids is None or len(ids) == 0:
            return FrameObservation.empty()

        seen: dict[int, np.ndarray] = {}
        for i, mid in enumerate(np.asarray(ids).flatten()):
            mid = int(mid)
            if mid in seen:
                log.debug("frame=%d duplicate marker id %d dropped", f.idx, mid)
                continue
            seen[mid] = np.asarray(corners[i], dtype=np.float32).reshape(4, 2)
        return FrameObservation(tuple(seen), tuple(seen.values()))
