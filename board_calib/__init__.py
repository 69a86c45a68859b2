"""Interactive camera calibration from an ArUco grid board."""

from .board import BoardModel
from .calib_types import CalibrationResult, FlattenedCorpus, Frame, FrameObservation
from .config import CalibConfig, load_config
from .corpus import ObservationCorpus
from .coverage import is_fully_covered, missing_ids
from .session import CaptureSessionController, OperatorEvent, SessionState, SessionSummary

__all__ = [
    "BoardModel",
    "CalibConfig",
    "CalibrationResult",
    "CaptureSessionController",
    "FlattenedCorpus",
    "Frame",
    "FrameObservation",
    "ObservationCorpus",
    "OperatorEvent",
    "SessionState",
    "SessionSummary",
    "is_fully_covered",
    "load_config",
    "missing_ids",
]
