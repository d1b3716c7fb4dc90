from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from backend.video_atlas.config import load_settings
from backend.video_atlas.logging_config import configure_application_logging
from backend.video_atlas.telemetry import build_telemetry_client


def test_configure_application_logging_writes_json_files(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("VIDEO_ATLAS_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("VIDEO_ATLAS_LOG_LEVEL", "warning")
    settings = load_settings(validate_api_key=False)

    paths = configure_application_logging(settings)
    logging.getLogger("video_atlas.catalog").info("video cache refreshed items=%s", 7)
    build_telemetry_client(enabled=True, sink="log").emit(
        "videos.refresh.finish",
        item_count=7,
        youtube_api_key="AIza-secret",
    )
    for handler in logging.getLogger("video_atlas").handlers:
        handler.flush()
    for handler in logging.getLogger("video_atlas.telemetry").handlers:
        handler.flush()

    assert paths.log_file == (tmp_path / "logs" / "video-atlas.log").resolve()
    records = [
        json.loads(line)
        for line in paths.log_file.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    refreshed = [record for record in records if record["logger"] == "video_atlas.catalog"]
    assert refreshed[-1]["event"] == "video cache refreshed items=7"
    assert refreshed[-1]["level"] == "info"
    assert "timestamp" in refreshed[-1]

    telemetry_lines = paths.telemetry_log_file.read_text(encoding="utf-8").splitlines()
    telemetry_record = json.loads(telemetry_lines[-1])
    assert telemetry_record["telemetry_event"] == "videos.refresh.finish"
    assert telemetry_record["item_count"] == 7
    assert telemetry_record["youtube_api_key"] == "[redacted]"
