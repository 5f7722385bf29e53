from __future__ import annotations

import logging
from pathlib import Path
import tempfile
from typing import Any, Optional

from fastapi import FastAPI, File, UploadFile
from fastapi.responses import JSONResponse

from laughter_meter.meter.config import MeterConfig
from laughter_meter.meter.detectors.heuristic import HeuristicLaughterDetector, score_levels
from laughter_meter.meter.session import RecordingSessionController


def create_app(
    config: Optional[MeterConfig] = None,
    controller: Optional[RecordingSessionController] = None,
) -> FastAPI:
    app = FastAPI(title="Laughter Meter", version="0.1.0")

    config = config or MeterConfig.from_env()
    if controller is None:
        from laughter_meter.meter.audio import SoundDeviceCapture

        controller = RecordingSessionController(
            detector=HeuristicLaughterDetector.from_config(config),
            capture=SoundDeviceCapture(
                sample_rate=config.sample_rate,
                device=config.audio_device,
                interval_seconds=config.metering_interval_seconds,
                mic_gain_db=config.mic_gain_db,
            ),
            session_seconds=config.session_seconds,
        )

    @app.on_event("shutdown")
    def shutdown_event() -> None:
        controller.stop()

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/session")
    def session() -> dict[str, Any]:
        return controller.snapshot().as_dict()

    @app.post("/session/tap")
    def tap() -> dict[str, Any]:
        controller.handle_mic_press()
        return controller.snapshot().as_dict()

    @app.post("/session/stop")
    def stop() -> dict[str, Any]:
        controller.stop()
        return controller.snapshot().as_dict()

    @app.post("/score")
    async def score(file: UploadFile = File(...)):
        from laughter_meter.meter.audio import clip_levels

        suffix = Path(file.filename or "clip.wav").suffix or ".wav"
        with tempfile.TemporaryDirectory() as tmp_dir:
            tmp_path = Path(tmp_dir) / f"upload{suffix}"
            tmp_path.write_bytes(await file.read())
            try:
                levels = clip_levels(
                    tmp_path,
                    sample_rate=config.sample_rate,
                    interval_seconds=config.metering_interval_seconds,
                    gain_db=config.mic_gain_db,
                )
            except Exception as exc:
                logging.error("Could not meter uploaded clip: %s", exc)
                return JSONResponse({"status": "error", "reason": str(exc)}, status_code=422)

        scores = score_levels(HeuristicLaughterDetector.from_config(config), levels)
        payload = {
            "status": "ok",
            "samples": len(scores),
            "final_score": round(scores[-1], 4) if scores else 0.0,
            "scores": [round(value, 4) for value in scores],
        }
        return JSONResponse(payload)

    return app


def main() -> int:
    import uvicorn

    config = MeterConfig.from_env()
    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))
    uvicorn.run(create_app(config=config), host=config.api_host, port=config.api_port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
