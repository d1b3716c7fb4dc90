from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from backend.video_atlas.dependencies import reset_cached_dependencies
from backend.video_atlas.logging_config import ROOT_LOGGER_NAME, TELEMETRY_LOGGER_NAME
from backend.video_atlas.repositories.database import Database
from backend.video_atlas.repositories.video_cache_repository import VideoCacheRepository


@pytest.fixture(autouse=True)
def _isolated_settings_env(  # pyright: ignore[reportUnusedFunction]
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> Iterator[None]:
    for name in list(os.environ):
        if name.startswith("VIDEO_ATLAS_"):
            monkeypatch.delenv(name, raising=False)
    # Keep a developer's local .env out of the settings under test.
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("VIDEO_ATLAS_DATA_DIR", str(tmp_path / "runtime-data"))
    reset_cached_dependencies()
    yield
    reset_cached_dependencies()
    _detach_application_handlers()


def _detach_application_handlers() -> None:
    # Handlers bound to a test's captured stdout must not outlive it.
    for name in (TELEMETRY_LOGGER_NAME, ROOT_LOGGER_NAME):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = True


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "cache" / "videos_cache.db")
    db.initialize()
    return db


@pytest.fixture
def cache_repository(database: Database) -> VideoCacheRepository:
    return VideoCacheRepository(database)
