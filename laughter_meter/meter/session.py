from __future__ import annotations

import logging
import threading
from functools import partial
from typing import Any, Callable, Optional, Protocol

from laughter_meter.meter.audio import (
    CaptureBackend,
    CaptureHandle,
    CaptureStartError,
    PermissionDeniedError,
)
from laughter_meter.meter.detectors.base import LaughterDetector
from laughter_meter.meter.levels import normalize_level
from laughter_meter.meter.state import PermissionStatus, RecordingState, SessionSnapshot


DEFAULT_SESSION_SECONDS = 5.0

SnapshotListener = Callable[[SessionSnapshot], None]


class Cancellable(Protocol):
    def cancel(self) -> None:
        raise NotImplementedError


class TimerScheduler:
    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> Cancellable:
        timer = threading.Timer(delay_seconds, callback)
        timer.daemon = True
        timer.start()
        return timer


class RecordingSessionController:
    """Runs one fixed-length capture session at a time and feeds the detector.

    Every session gets a new generation number. Capture and timer callbacks
    carry the generation they were issued for and are dropped once a newer
    session has started, so samples from a torn-down stream never reach the
    detector of the current one.
    """

    def __init__(
        self,
        detector: LaughterDetector,
        capture: CaptureBackend,
        scheduler: Any = None,
        session_seconds: float = DEFAULT_SESSION_SECONDS,
    ) -> None:
        if session_seconds <= 0:
            raise ValueError("session_seconds must be positive")
        self.detector = detector
        self.capture = capture
        self.scheduler = scheduler if scheduler is not None else TimerScheduler()
        self.session_seconds = session_seconds
        self.recording_state = RecordingState.IDLE
        self.meter_value = 0.0
        self.permission_status = capture.authorization_status()
        self.last_error: Optional[Exception] = None
        self._generation = 0
        self._handle: Optional[CaptureHandle] = None
        self._timer: Optional[Cancellable] = None
        self._listeners: list[SnapshotListener] = []
        self._lock = threading.RLock()

    @property
    def session_id(self) -> int:
        return self._generation

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                session_id=self._generation,
                recording_state=self.recording_state,
                meter_value=self.meter_value,
                permission_status=self.permission_status,
                last_error=str(self.last_error) if self.last_error is not None else "",
            )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def handle_mic_press(self) -> None:
        """Start a session, or throw away the running one and start over."""
        with self._lock:
            previous_handle, previous_timer = self._detach()
            self._generation += 1
            generation = self._generation
            self.detector.reset()
            self.meter_value = 0.0
            self.last_error = None
            self.recording_state = RecordingState.RECORDING
        self._release(previous_handle, previous_timer)
        self._publish()
        logging.info("Recording session %d started (%.1fs)", generation, self.session_seconds)

        if not self._ensure_permission():
            self._on_error(generation, PermissionDeniedError("Microphone permission denied"))
            return

        try:
            handle = self.capture.start(
                self.session_seconds,
                on_sample=partial(self._on_sample, generation),
                on_stop=partial(self._on_stop, generation),
                on_error=partial(self._on_error, generation),
            )
        except PermissionDeniedError as exc:
            self._on_error(generation, exc)
            return
        except Exception as exc:
            error = exc if isinstance(exc, CaptureStartError) else CaptureStartError(str(exc))
            self._on_error(generation, error)
            return

        with self._lock:
            current = generation == self._generation and self.recording_state is RecordingState.RECORDING
            if current:
                self._handle = handle
                self._timer = self.scheduler.call_later(
                    self.session_seconds,
                    partial(self._on_timeout, generation),
                )
        if not current:
            # Superseded or failed while the stream was opening.
            self._release(handle, None)

    def stop(self) -> None:
        with self._lock:
            if self.recording_state is not RecordingState.RECORDING:
                return
            handle, timer = self._detach()
            self.recording_state = RecordingState.COMPLETED
            generation = self._generation
        self._release(handle, timer)
        self._publish()
        logging.info("Recording session %d stopped (score=%.2f)", generation, self.meter_value)

    def _ensure_permission(self) -> bool:
        status = self.capture.authorization_status()
        if status is not PermissionStatus.GRANTED:
            status = self.capture.request_authorization()
        with self._lock:
            self.permission_status = status
        return status is PermissionStatus.GRANTED

    def _is_live(self, generation: int) -> bool:
        return generation == self._generation and self.recording_state is RecordingState.RECORDING

    def _on_sample(self, generation: int, raw_level: Optional[float]) -> None:
        with self._lock:
            if not self._is_live(generation):
                logging.debug("Dropping sample from stale session %d", generation)
                return
            self.meter_value = self.detector.process_level(normalize_level(raw_level))
        self._publish()

    def _on_timeout(self, generation: int) -> None:
        with self._lock:
            if not self._is_live(generation):
                return
            handle, _ = self._detach()
            self._timer = None
            self.recording_state = RecordingState.COMPLETED
        self._release(handle, None)
        self._publish()
        logging.info("Recording session %d completed (score=%.2f)", generation, self.meter_value)

    def _on_stop(self, generation: int) -> None:
        # The capture ran out on its own before the timer fired.
        with self._lock:
            if not self._is_live(generation):
                return
            handle, timer = self._detach()
            self.recording_state = RecordingState.COMPLETED
        self._release(handle, timer)
        self._publish()
        logging.info("Recording session %d completed by capture (score=%.2f)", generation, self.meter_value)

    def _on_error(self, generation: int, error: Exception) -> None:
        with self._lock:
            if not self._is_live(generation):
                logging.debug("Ignoring error from stale session %d: %s", generation, error)
                return
            handle, timer = self._detach()
            self.recording_state = RecordingState.IDLE
            self.last_error = error
        self._release(handle, timer)
        self._publish()
        logging.error("Recording session %d failed: %s", generation, error)

    def _detach(self) -> tuple[Optional[CaptureHandle], Optional[Cancellable]]:
        handle, timer = self._handle, self._timer
        self._handle = None
        self._timer = None
        return handle, timer

    def _release(self, handle: Optional[CaptureHandle], timer: Optional[Cancellable]) -> None:
        if timer is not None:
            timer.cancel()
        if handle is None:
            return
        try:
            self.capture.stop(handle)
        except Exception as exc:
            # Double stops are routine during rapid retriggers.
            logging.debug("Ignoring capture stop failure: %s", exc)

    def _publish(self) -> None:
        snapshot = self.snapshot()
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as exc:
                logging.error("Session listener failed: %s", exc)
