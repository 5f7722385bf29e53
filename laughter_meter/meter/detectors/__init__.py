"""Laughter detector implementations."""

from laughter_meter.meter.detectors.base import LaughterDetector
from laughter_meter.meter.detectors.heuristic import DetectorState, HeuristicLaughterDetector, score_levels

__all__ = ["LaughterDetector", "DetectorState", "HeuristicLaughterDetector", "score_levels"]
