from __future__ import annotations

import argparse
import logging
from pathlib import Path
import sys
import threading

from laughter_meter.meter.config import MeterConfig
from laughter_meter.meter.detectors.heuristic import HeuristicLaughterDetector, score_levels
from laughter_meter.meter.state import RecordingState, SessionSnapshot


METER_WIDTH = 30


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Laughter meter")
    parser.add_argument("command", choices=["record", "replay", "status"], help="Meter command")
    parser.add_argument("--clip-path", default="", help="Audio clip scored by the replay command")
    parser.add_argument("--sessions", type=int, default=1, help="Number of back-to-back recording sessions")
    return parser


def render_meter(value: float, width: int = METER_WIDTH) -> str:
    value = max(0.0, min(1.0, float(value)))
    filled = int(round(value * width))
    return "[" + "#" * filled + "." * (width - filled) + f"] {value * 100:5.1f}%"


def _build_capture(config: MeterConfig):
    from laughter_meter.meter.audio import SoundDeviceCapture

    return SoundDeviceCapture(
        sample_rate=config.sample_rate,
        device=config.audio_device,
        interval_seconds=config.metering_interval_seconds,
        mic_gain_db=config.mic_gain_db,
    )


def _run_replay(config: MeterConfig, clip_path: Path) -> int:
    from laughter_meter.meter.audio import clip_levels

    if not clip_path.exists():
        raise FileNotFoundError(f"Replay clip not found: {clip_path}")

    levels = clip_levels(
        clip_path,
        sample_rate=config.sample_rate,
        interval_seconds=config.metering_interval_seconds,
        gain_db=config.mic_gain_db,
    )
    scores = score_levels(HeuristicLaughterDetector.from_config(config), levels)
    final_score = scores[-1] if scores else 0.0
    logging.info("Replayed %d metering samples from %s", len(scores), clip_path)
    print(f"{render_meter(final_score)} samples={len(scores)}")
    return 0


def _run_sessions(config: MeterConfig, sessions: int) -> int:
    from laughter_meter.meter.session import RecordingSessionController

    controller = RecordingSessionController(
        detector=HeuristicLaughterDetector.from_config(config),
        capture=_build_capture(config),
        session_seconds=config.session_seconds,
    )
    finished = threading.Event()

    def _on_change(snapshot: SessionSnapshot) -> None:
        sys.stdout.write(f"\r{render_meter(snapshot.meter_value)} {snapshot.recording_state.value:<9}")
        sys.stdout.flush()
        if snapshot.recording_state is not RecordingState.RECORDING:
            finished.set()

    controller.subscribe(_on_change)

    exit_code = 0
    for idx in range(1, max(1, sessions) + 1):
        finished.clear()
        controller.handle_mic_press()
        # Grace period for the stream to drain after the timer.
        finished.wait(timeout=config.session_seconds + 5.0)
        controller.stop()
        sys.stdout.write("\n")
        snapshot = controller.snapshot()
        if snapshot.recording_state is RecordingState.IDLE:
            logging.error("Session %d aborted: %s", idx, snapshot.last_error or "unknown error")
            exit_code = 1
            break
        print(f"session {idx}: {render_meter(snapshot.meter_value)}")
    return exit_code


def main() -> int:
    args = _build_parser().parse_args()
    config = MeterConfig.from_env()
    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))

    if args.command == "status":
        from laughter_meter.meter.audio import probe_audio_input

        ok, detail = probe_audio_input(device=config.audio_device)
        print(f"mic_ready:{detail}" if ok else f"mic_unavailable:{detail}")
        return 0 if ok else 1

    if args.command == "replay":
        if not args.clip_path:
            raise SystemExit("replay requires --clip-path")
        return _run_replay(config, Path(args.clip_path))

    return _run_sessions(config, args.sessions)


if __name__ == "__main__":
    raise SystemExit(main())
