from __future__ import annotations

import os
from dataclasses import dataclass


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    return float(value)


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    return int(value)


@dataclass(frozen=True)
class MeterConfig:
    session_seconds: float = 5.0
    metering_interval_seconds: float = 0.05
    sample_rate: int = 16000
    audio_device: str = ""
    mic_gain_db: float = 0.0
    window_size: int = 4
    smoothing_alpha: float = 0.85
    energy_weight: float = 0.7
    variability_weight: float = 0.3
    noise_floor: float = 0.0
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    @classmethod
    def from_env(cls) -> "MeterConfig":
        session_seconds = _float_env("SESSION_SECONDS", 5.0)
        if session_seconds <= 0:
            raise ValueError("SESSION_SECONDS must be positive")

        interval = _float_env("METERING_INTERVAL_SECONDS", 0.05)
        if interval <= 0 or interval > session_seconds:
            raise ValueError("METERING_INTERVAL_SECONDS must be positive and no longer than the session")

        window_size = _int_env("WINDOW_SIZE", 4)
        if window_size < 1:
            raise ValueError("WINDOW_SIZE must be at least 1")

        smoothing_alpha = _float_env("SMOOTHING_ALPHA", 0.85)
        if not 0.0 < smoothing_alpha <= 1.0:
            raise ValueError("SMOOTHING_ALPHA must be in (0, 1]")

        noise_floor = _float_env("NOISE_FLOOR", 0.0)
        if not 0.0 <= noise_floor < 1.0:
            raise ValueError("NOISE_FLOOR must be in [0, 1)")

        return cls(
            session_seconds=session_seconds,
            metering_interval_seconds=interval,
            sample_rate=_int_env("SAMPLE_RATE", 16000),
            audio_device=os.getenv("AUDIO_DEVICE", "").strip(),
            mic_gain_db=_float_env("MIC_GAIN_DB", 0.0),
            window_size=window_size,
            smoothing_alpha=smoothing_alpha,
            energy_weight=_float_env("ENERGY_WEIGHT", 0.7),
            variability_weight=_float_env("VARIABILITY_WEIGHT", 0.3),
            noise_floor=noise_floor,
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
            api_host=os.getenv("API_HOST", "0.0.0.0").strip(),
            api_port=_int_env("API_PORT", 8080),
        )
