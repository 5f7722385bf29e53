from __future__ import annotations

import math

import numpy as np


# -30 dB maps to 0, 0 dB maps to 1.
MIN_DB = -30.0
RANGE_DB = 30.0

SILENCE_DB = -160.0
MAX_MIC_GAIN_DB = 30.0
METERING_INTERVAL_SECONDS = 0.05


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def normalize_level(raw_db: float | None) -> float:
    """Map a dB reading onto 0..1. Missing readings count as silence."""
    if raw_db is None:
        return 0.0
    raw_db = float(raw_db)
    if not math.isfinite(raw_db):
        return 0.0
    return clamp_unit((raw_db - MIN_DB) / RANGE_DB)


def _bounded_gain_db(gain_db: float) -> float:
    if gain_db > MAX_MIC_GAIN_DB:
        return MAX_MIC_GAIN_DB
    if gain_db < -MAX_MIC_GAIN_DB:
        return -MAX_MIC_GAIN_DB
    return gain_db


def apply_gain(samples: np.ndarray, gain_db: float) -> np.ndarray:
    gain_db = _bounded_gain_db(gain_db)
    if abs(gain_db) < 1e-6:
        return samples.astype(np.float32, copy=False)
    factor = float(10 ** (gain_db / 20.0))
    boosted = np.clip(samples.astype(np.float32, copy=False) * factor, -1.0, 1.0)
    return boosted.astype(np.float32, copy=False)


def block_level_db(samples: np.ndarray, gain_db: float = 0.0) -> float | None:
    """dBFS of one metering block, or None when the block holds no audio."""
    block = np.asarray(samples, dtype=np.float32).ravel()
    if block.size == 0:
        return None
    block = apply_gain(block, gain_db)
    rms = float(np.sqrt(np.mean(np.square(block, dtype=np.float64))))
    if rms <= 0.0:
        return SILENCE_DB
    return max(SILENCE_DB, 20.0 * math.log10(rms))
