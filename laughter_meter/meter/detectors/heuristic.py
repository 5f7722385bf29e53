from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Deque, Iterable, Optional

from laughter_meter.meter.detectors.base import LaughterDetector
from laughter_meter.meter.levels import clamp_unit, normalize_level

if TYPE_CHECKING:
    from laughter_meter.meter.config import MeterConfig


DEFAULT_WINDOW_SIZE = 4
SMOOTHING_ALPHA = 0.85
ENERGY_WEIGHT = 0.7
VARIABILITY_WEIGHT = 0.3
NOISE_FLOOR = 0.0

# Short loud blips (speech peaks) never reach the window.
CONSECUTIVE_ABOVE_FLOOR_REQUIRED = 3
# Gated level above this counts toward the sustained ratio.
ACTIVE_THRESHOLD = 0.2
# Raw score above this unlocks the upper half on its own.
VERY_LOUD_THRESHOLD = 0.78
SUSTAINED_RATIO_REQUIRED = 0.75
UNLOCK_CAP = 0.5


@dataclass
class DetectorState:
    window: Deque[float]
    smoothed_score: float = 0.0
    peak_score: float = 0.0
    total_samples: int = 0
    active_samples: int = 0
    consecutive_above_floor: int = 0

    @classmethod
    def empty(cls, window_size: int) -> "DetectorState":
        return cls(window=deque(maxlen=window_size))

    @property
    def sustained_ratio(self) -> float:
        if self.total_samples == 0:
            return 0.0
        return self.active_samples / self.total_samples


def apply_noise_gate(level: float, floor: float) -> float:
    if level <= floor:
        return 0.0
    return (level - floor) / (1.0 - floor)


class HeuristicLaughterDetector:
    """Energy plus short-term variability heuristic.

    Laughter tends to be both loud and irregular, while speech is bursty and
    steady tones are flat. The reported score is the session's peak smoothed
    score, held at or below 0.5 unless the current instant is very loud or
    sound has been present for most of the session.
    """

    def __init__(
        self,
        window_size: int = DEFAULT_WINDOW_SIZE,
        smoothing_alpha: float = SMOOTHING_ALPHA,
        energy_weight: float = ENERGY_WEIGHT,
        variability_weight: float = VARIABILITY_WEIGHT,
        noise_floor: float = NOISE_FLOOR,
    ) -> None:
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        if not 0.0 < smoothing_alpha <= 1.0:
            raise ValueError("smoothing_alpha must be in (0, 1]")
        if not 0.0 <= noise_floor < 1.0:
            raise ValueError("noise_floor must be in [0, 1)")
        self.window_size = int(window_size)
        self.smoothing_alpha = float(smoothing_alpha)
        self.energy_weight = float(energy_weight)
        self.variability_weight = float(variability_weight)
        self.noise_floor = float(noise_floor)
        self._state = DetectorState.empty(self.window_size)

    @classmethod
    def from_config(cls, config: MeterConfig) -> "HeuristicLaughterDetector":
        return cls(
            window_size=config.window_size,
            smoothing_alpha=config.smoothing_alpha,
            energy_weight=config.energy_weight,
            variability_weight=config.variability_weight,
            noise_floor=config.noise_floor,
        )

    @property
    def state(self) -> DetectorState:
        return self._state

    def process_level(self, level: Optional[float]) -> float:
        state = self._state
        level = 0.0 if level is None else float(level)
        level = clamp_unit(level) if math.isfinite(level) else 0.0

        if level > self.noise_floor:
            state.consecutive_above_floor += 1
        else:
            state.consecutive_above_floor = 0

        sustained_loud = state.consecutive_above_floor >= CONSECUTIVE_ABOVE_FLOOR_REQUIRED
        gated_level = apply_noise_gate(level, self.noise_floor) if sustained_loud else 0.0

        state.window.append(gated_level)
        state.total_samples += 1
        if gated_level > ACTIVE_THRESHOLD:
            state.active_samples += 1

        recent_mean = sum(state.window) / len(state.window)
        energy = 0.7 * gated_level + 0.3 * recent_mean

        # Spread is measured around the energy estimate, not the window mean.
        variability = 0.0
        if len(state.window) >= 2:
            variance = sum((value - energy) ** 2 for value in state.window) / len(state.window)
            variability = min(1.0, math.sqrt(variance) * 4)

        raw_score = self.energy_weight * energy + self.variability_weight * variability
        state.smoothed_score = (
            self.smoothing_alpha * raw_score + (1.0 - self.smoothing_alpha) * state.smoothed_score
        )
        state.peak_score = max(state.peak_score, state.smoothed_score)

        very_loud = raw_score > VERY_LOUD_THRESHOLD
        unlocked = very_loud or state.sustained_ratio >= SUSTAINED_RATIO_REQUIRED
        capped_score = state.peak_score if unlocked else min(state.peak_score, UNLOCK_CAP)
        return clamp_unit(capped_score)

    def reset(self) -> None:
        self._state = DetectorState.empty(self.window_size)


def score_levels(detector: LaughterDetector, raw_levels: Iterable[float | None]) -> list[float]:
    """Run a fresh detection pass over a sequence of dB readings."""
    detector.reset()
    return [detector.process_level(normalize_level(raw)) for raw in raw_levels]
