from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class RecordingState(str, Enum):
    """Lifecycle of the mic button.

    idle: no session, the meter keeps its last value.
    recording: a fixed-length session is sampling and scoring.
    completed: the session timed out, the final score stays until the next tap.
    """

    IDLE = "idle"
    RECORDING = "recording"
    COMPLETED = "completed"


class PermissionStatus(str, Enum):
    UNDETERMINED = "undetermined"
    GRANTED = "granted"
    DENIED = "denied"


@dataclass(frozen=True)
class SessionSnapshot:
    session_id: int
    recording_state: RecordingState
    meter_value: float
    permission_status: PermissionStatus
    last_error: str = ""

    def as_dict(self) -> dict[str, object]:
        return {
            "session_id": self.session_id,
            "recording_state": self.recording_state.value,
            "meter_value": round(self.meter_value, 4),
            "permission_status": self.permission_status.value,
            "last_error": self.last_error,
        }
