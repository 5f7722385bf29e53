from __future__ import annotations

from typing import Protocol


class LaughterDetector(Protocol):
    """Streaming scorer fed one normalized level (0..1) per metering tick."""

    def process_level(self, level: float) -> float:
        raise NotImplementedError

    def reset(self) -> None:
        raise NotImplementedError
