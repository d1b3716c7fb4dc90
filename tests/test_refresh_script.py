from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import pytest

from backend.video_atlas.config import AppSettings
from backend.video_atlas.scripts import refresh_videos
from backend.video_atlas.services.video_catalog_service import VideoCatalogResult
from backend.video_atlas.services.youtube_service import VideoItem, YouTubeServiceError


class _FakeCatalog:
    def __init__(self, *, error: Exception | None = None) -> None:
        self._error = error
        self.calls: list[tuple[list[str], bool]] = []

    def get_videos_with_metadata(
        self,
        channel_ids: Sequence[str],
        *,
        force_refresh: bool = False,
    ) -> VideoCatalogResult:
        self.calls.append((list(channel_ids), force_refresh))
        if self._error is not None:
            raise self._error
        return VideoCatalogResult(
            videos=[
                VideoItem(
                    video_id="v1",
                    title="Fjord kayaking",
                    channel_id="UC_one",
                    channel_title="Paddle",
                    published_at=datetime(2026, 4, 2, 9, 0, tzinfo=UTC),
                    city="Bergen",
                    country="Norway",
                )
            ],
            cache_hit=False,
            refreshed=True,
            last_refresh_at=datetime(2026, 4, 3, tzinfo=UTC),
        )


def _install_catalog(monkeypatch: pytest.MonkeyPatch, catalog: _FakeCatalog) -> None:
    def _build(settings: AppSettings, **_: Any) -> _FakeCatalog:
        return catalog

    monkeypatch.setattr(refresh_videos, "build_catalog_service", _build)


def test_refresh_script_prints_listing(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    catalog = _FakeCatalog()
    _install_catalog(monkeypatch, catalog)

    exit_code = refresh_videos.main(["--force", "--channel", "UC_one", "--channel", "UC_two"])

    assert exit_code == 0
    assert catalog.calls == [(["UC_one", "UC_two"], True)]
    output = capsys.readouterr().out
    assert "1 videos from youtube" in output
    assert "2026-04-02\tv1\tPaddle\tBergen, Norway\tFjord kayaking" in output


def test_refresh_script_uses_configured_channels(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VIDEO_ATLAS_CHANNEL_IDS", "UC_env")
    catalog = _FakeCatalog()
    _install_catalog(monkeypatch, catalog)

    assert refresh_videos.main([]) == 0
    assert catalog.calls == [(["UC_env"], False)]


def test_refresh_script_without_channels_exits_2(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    catalog = _FakeCatalog()
    _install_catalog(monkeypatch, catalog)

    assert refresh_videos.main([]) == 2
    assert catalog.calls == []
    assert "No channels configured" in capsys.readouterr().out


def test_refresh_script_reports_source_failure(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    _install_catalog(monkeypatch, _FakeCatalog(error=YouTubeServiceError("HTTP 403 quota")))

    assert refresh_videos.main(["--channel", "UC_one"]) == 1
    assert "HTTP 403 quota" in capsys.readouterr().err
