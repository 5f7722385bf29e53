import sys
import types

import numpy as np
import pytest

from laughter_meter.meter import audio
from laughter_meter.meter.audio import CaptureHandle, SoundDeviceCapture
from laughter_meter.meter.detectors.heuristic import HeuristicLaughterDetector
from laughter_meter.meter.session import RecordingSessionController
from laughter_meter.meter.state import PermissionStatus, RecordingState


class _CallbackStop(Exception):
    pass


class _CallbackAbort(Exception):
    pass


class _FakeStream:
    """Input stream double that runs callbacks when the test drives it."""

    def __init__(self, callback=None, finished_callback=None, **kwargs):
        self.callback = callback
        self.finished_callback = finished_callback
        self.kwargs = kwargs
        self.calls = []
        self.in_finished = False

    def start(self):
        self.calls.append(("start", self.in_finished))

    def stop(self):
        self.calls.append(("stop", self.in_finished))

    def close(self):
        self.calls.append(("close", self.in_finished))

    def feed(self, block):
        """Deliver one block; returns True once the stream has finished."""
        try:
            self.callback(block.reshape(-1, 1), block.size, None, None)
        except (_CallbackStop, _CallbackAbort):
            self.finish()
            return True
        return False

    def finish(self):
        self.in_finished = True
        try:
            self.finished_callback()
        finally:
            self.in_finished = False


@pytest.fixture
def fake_sd(monkeypatch):
    streams = []

    def _input_stream(**kwargs):
        stream = _FakeStream(**kwargs)
        streams.append(stream)
        return stream

    module = types.SimpleNamespace(
        InputStream=_input_stream,
        CallbackStop=_CallbackStop,
        CallbackAbort=_CallbackAbort,
        streams=streams,
    )
    monkeypatch.setitem(sys.modules, "sounddevice", module)
    return module


def _block(value, frames=800):
    return np.full(frames, value, dtype=np.float32)


def _join_closer(handle):
    assert handle.closer is not None
    handle.closer.join(timeout=1)
    assert not handle.closer.is_alive()


def test_stop_is_idempotent():
    stream = _FakeStream()
    handle = CaptureHandle(stream=stream)
    capture = SoundDeviceCapture()

    capture.stop(handle)
    capture.stop(handle)

    assert stream.calls == [("stop", False), ("close", False)]


def test_blocks_reach_on_sample_as_dbfs(fake_sd):
    levels = []
    handle = SoundDeviceCapture(sample_rate=16000, interval_seconds=0.05).start(
        5.0, on_sample=levels.append, on_stop=lambda: None, on_error=lambda exc: None
    )
    stream = fake_sd.streams[0]

    assert stream.kwargs["blocksize"] == 800
    assert stream.calls == [("start", False)]
    assert handle.stream is stream

    stream.feed(_block(0.1))
    stream.feed(_block(0.0))

    assert levels[0] == pytest.approx(-20.0, abs=1e-3)
    assert levels[1] == -160.0


def test_stream_stops_itself_after_duration(fake_sd):
    stops = []
    handle = SoundDeviceCapture(sample_rate=16000, interval_seconds=0.05).start(
        0.1, on_sample=lambda level: None, on_stop=lambda: stops.append(1), on_error=lambda exc: None
    )
    stream = fake_sd.streams[0]

    assert stream.feed(_block(0.5)) is False
    assert stream.feed(_block(0.5)) is True
    _join_closer(handle)

    assert stops == [1]
    assert handle.stopped
    assert ("close", False) in stream.calls
    assert all(not inside for _, inside in stream.calls)


def test_sample_failure_reports_error_and_aborts(fake_sd):
    errors = []

    def _broken(level):
        raise ValueError("consumer failed")

    handle = SoundDeviceCapture().start(
        5.0, on_sample=_broken, on_stop=lambda: None, on_error=errors.append
    )
    stream = fake_sd.streams[0]

    assert stream.feed(_block(0.2)) is True
    _join_closer(handle)

    assert isinstance(errors[0], ValueError)
    assert handle.aborted
    assert ("close", False) in stream.calls
    assert ("stop", False) not in stream.calls


class _RecordingCapture(SoundDeviceCapture):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.handles = []

    def start(self, *args, **kwargs):
        handle = super().start(*args, **kwargs)
        self.handles.append(handle)
        return handle


class _IdleScheduler:
    def call_later(self, delay_seconds, callback):
        del delay_seconds, callback
        return self

    def cancel(self):
        return None


def test_session_completed_by_stream_is_closed_off_the_stream_thread(fake_sd, monkeypatch):
    monkeypatch.setattr(audio, "probe_audio_input", lambda device="": (True, "default"))
    capture = _RecordingCapture(sample_rate=16000, interval_seconds=0.05)
    controller = RecordingSessionController(
        detector=HeuristicLaughterDetector(),
        capture=capture,
        scheduler=_IdleScheduler(),
        session_seconds=0.2,
    )

    controller.handle_mic_press()
    stream = fake_sd.streams[0]
    finished = False
    while not finished:
        finished = stream.feed(_block(0.7))
    _join_closer(capture.handles[0])

    assert controller.recording_state is RecordingState.COMPLETED
    assert controller.meter_value > 0.5
    assert [call for call in stream.calls if call[1]] == []
    assert stream.calls.count(("close", False)) == 1
    assert ("stop", False) not in stream.calls


def test_start_failure_raises_capture_start_error(monkeypatch):
    class _BrokenInputStream:
        def __init__(self, **kwargs):
            raise OSError("device unavailable")

    fake_sd = types.SimpleNamespace(
        InputStream=_BrokenInputStream,
        CallbackStop=_CallbackStop,
        CallbackAbort=_CallbackAbort,
    )
    monkeypatch.setitem(sys.modules, "sounddevice", fake_sd)

    with pytest.raises(audio.CaptureStartError):
        SoundDeviceCapture().start(5.0, on_sample=lambda level: None, on_stop=lambda: None, on_error=lambda exc: None)


def test_request_authorization_follows_probe(monkeypatch):
    capture = SoundDeviceCapture()
    assert capture.authorization_status() is PermissionStatus.UNDETERMINED

    monkeypatch.setattr(audio, "probe_audio_input", lambda device="": (False, "none"))
    assert capture.request_authorization() is PermissionStatus.DENIED

    monkeypatch.setattr(audio, "probe_audio_input", lambda device="": (True, "default"))
    assert capture.request_authorization() is PermissionStatus.GRANTED
    assert capture.authorization_status() is PermissionStatus.GRANTED


def test_probe_denies_without_openable_device_even_with_pulse(monkeypatch):
    def _check_input_settings(device=None, channels=None):
        raise RuntimeError("Error querying device -1")

    fake_sd = types.SimpleNamespace(
        check_input_settings=_check_input_settings,
        default=types.SimpleNamespace(device=(-1, -1)),
    )
    monkeypatch.setitem(sys.modules, "sounddevice", fake_sd)
    monkeypatch.setenv("PULSE_SERVER", "unix:/run/pulse")

    ok, detail = audio.probe_audio_input()

    assert not ok
    assert "Error querying device" in detail


def test_probe_accepts_openable_default_device(monkeypatch):
    checked = []
    fake_sd = types.SimpleNamespace(
        check_input_settings=lambda device=None, channels=None: checked.append((device, channels)),
        default=types.SimpleNamespace(device=(3, 5)),
    )
    monkeypatch.setitem(sys.modules, "sounddevice", fake_sd)

    ok, detail = audio.probe_audio_input()

    assert ok
    assert checked == [(None, 1)]
    assert detail == "portaudio default device 3"
