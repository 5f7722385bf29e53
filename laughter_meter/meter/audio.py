from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import threading
from typing import Any, Callable, Optional, Protocol

import numpy as np

from laughter_meter.meter.levels import METERING_INTERVAL_SECONDS, apply_gain, block_level_db
from laughter_meter.meter.state import PermissionStatus


SampleCallback = Callable[[Optional[float]], None]
StopCallback = Callable[[], None]
ErrorCallback = Callable[[Exception], None]


class CaptureError(RuntimeError):
    pass


class PermissionDeniedError(CaptureError):
    pass


class CaptureStartError(CaptureError):
    pass


@dataclass
class CaptureHandle:
    stream: Any = None
    stopped: bool = False
    aborted: bool = False
    frames_seen: int = 0
    closer: Optional[threading.Thread] = field(default=None, repr=False)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class CaptureBackend(Protocol):
    def authorization_status(self) -> PermissionStatus:
        raise NotImplementedError

    def request_authorization(self) -> PermissionStatus:
        raise NotImplementedError

    def start(
        self,
        duration_seconds: float,
        on_sample: SampleCallback,
        on_stop: StopCallback,
        on_error: ErrorCallback,
    ) -> CaptureHandle:
        raise NotImplementedError

    def stop(self, handle: CaptureHandle) -> None:
        raise NotImplementedError


def probe_audio_input(device: str = "") -> tuple[bool, str]:
    try:
        import sounddevice as sd

        sd.check_input_settings(device=device if device else None, channels=1)
    except Exception as exc:
        return False, f"no input device ({exc})"

    if device:
        return True, f"portaudio device '{device}'"
    input_device = sd.default.device[0] if isinstance(sd.default.device, (list, tuple)) else sd.default.device
    return True, f"portaudio default device {input_device}"


def _claim_teardown(handle: CaptureHandle) -> bool:
    with handle.lock:
        if handle.stopped:
            return False
        handle.stopped = True
        return True


def _close_stream(stream: Any) -> None:
    try:
        stream.close()
    except Exception as exc:
        logging.debug("Ignoring input stream close failure: %s", exc)


class SoundDeviceCapture:
    """Microphone metering through a PortAudio input stream.

    Each block of ``interval_seconds`` audio is reduced to one dBFS reading and
    handed to ``on_sample`` from the PortAudio callback thread. The stream
    stops itself once ``duration_seconds`` of audio has been metered.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        device: str = "",
        interval_seconds: float = METERING_INTERVAL_SECONDS,
        mic_gain_db: float = 0.0,
    ) -> None:
        self.sample_rate = sample_rate
        self.device = device
        self.interval_seconds = interval_seconds
        self.mic_gain_db = mic_gain_db
        self._status = PermissionStatus.UNDETERMINED

    def authorization_status(self) -> PermissionStatus:
        return self._status

    def request_authorization(self) -> PermissionStatus:
        ok, detail = probe_audio_input(device=self.device)
        self._status = PermissionStatus.GRANTED if ok else PermissionStatus.DENIED
        logging.info("Microphone authorization %s (%s)", self._status.value, detail)
        return self._status

    def start(
        self,
        duration_seconds: float,
        on_sample: SampleCallback,
        on_stop: StopCallback,
        on_error: ErrorCallback,
    ) -> CaptureHandle:
        import sounddevice as sd

        blocksize = max(1, int(self.interval_seconds * self.sample_rate))
        max_frames = max(blocksize, int(duration_seconds * self.sample_rate))
        handle = CaptureHandle()

        def _callback(indata, frames, time_info, status) -> None:
            del time_info
            if status:
                logging.debug("Input stream status: %s", status)
            try:
                on_sample(block_level_db(indata[:, 0], gain_db=self.mic_gain_db))
            except Exception as exc:
                # The stream is closed from _finished, never from this thread.
                handle.aborted = True
                _claim_teardown(handle)
                on_error(exc)
                raise sd.CallbackAbort from exc
            handle.frames_seen += frames
            if handle.frames_seen >= max_frames:
                raise sd.CallbackStop

        def _finished() -> None:
            # PortAudio must not be stopped or closed from its own callbacks.
            if _claim_teardown(handle) or handle.aborted:
                handle.closer = threading.Thread(target=_close_stream, args=(handle.stream,), daemon=True)
                handle.closer.start()
            on_stop()

        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                blocksize=blocksize,
                channels=1,
                dtype="float32",
                device=self.device if self.device else None,
                callback=_callback,
                finished_callback=_finished,
            )
            handle.stream = stream
            stream.start()
        except Exception as exc:
            try:
                self.stop(handle)
            except Exception:
                logging.debug("Ignoring cleanup failure of unopened stream", exc_info=True)
            raise CaptureStartError(f"Could not open microphone input stream: {exc}") from exc
        return handle

    def stop(self, handle: CaptureHandle) -> None:
        if not _claim_teardown(handle):
            return
        stream = handle.stream
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()


def clip_levels(
    path: str | Path,
    sample_rate: int = 16000,
    interval_seconds: float = METERING_INTERVAL_SECONDS,
    gain_db: float = 0.0,
) -> list[float | None]:
    """Meter an audio file into the same per-interval dB readings a live session yields."""
    import librosa

    audio, sr = librosa.load(str(path), sr=sample_rate, mono=True)
    samples = apply_gain(np.asarray(audio, dtype=np.float32), gain_db)
    hop = max(1, int(interval_seconds * sr))
    if samples.size < hop:
        return [block_level_db(samples)] if samples.size else []

    rms = librosa.feature.rms(y=samples, frame_length=hop, hop_length=hop, center=False)[0]
    levels = librosa.amplitude_to_db(rms, ref=1.0, amin=1e-8, top_db=None)
    return [float(value) for value in levels]
