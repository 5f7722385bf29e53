"""Laughter intensity meter: streaming detector and recording sessions."""

from laughter_meter.meter.config import MeterConfig
from laughter_meter.meter.detectors.base import LaughterDetector
from laughter_meter.meter.detectors.heuristic import HeuristicLaughterDetector
from laughter_meter.meter.levels import normalize_level
from laughter_meter.meter.session import RecordingSessionController
from laughter_meter.meter.state import PermissionStatus, RecordingState, SessionSnapshot

__all__ = [
    "MeterConfig",
    "LaughterDetector",
    "HeuristicLaughterDetector",
    "normalize_level",
    "RecordingSessionController",
    "PermissionStatus",
    "RecordingState",
    "SessionSnapshot",
]
