from __future__ import annotations

import json
import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import cast

from backend.video_atlas.repositories.common import parse_timestamp, utc_now_iso
from backend.video_atlas.repositories.database import Database

LAST_REFRESH_KEY = "last_refresh"


@dataclass(frozen=True)
class CachedVideoRow:
    """Flat persisted form of a video; dates stay as ISO-8601 text."""

    video_id: str
    title: str
    channel_id: str
    channel_title: str
    published_at: str
    thumbnail_url: str
    tags: tuple[str, ...]
    country: str | None
    city: str | None
    latitude: float | None
    longitude: float | None
    recording_date: str | None


@dataclass(frozen=True)
class VideoCacheStatus:
    item_count: int
    last_refresh_at: datetime | None


class VideoCacheRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    def clear_all_items(self) -> None:
        with self._db.connection() as conn:
            conn.execute("DELETE FROM video_cache")

    def upsert_items(self, rows: Sequence[CachedVideoRow]) -> None:
        with self._db.connection() as conn:
            _insert_rows(conn, rows, start_position=_next_position(conn))

    def get_all_items(self) -> list[CachedVideoRow]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT
                    video_id,
                    title,
                    channel_id,
                    channel_title,
                    published_at,
                    thumbnail_url,
                    tags_json,
                    country,
                    city,
                    latitude,
                    longitude,
                    recording_date
                FROM video_cache
                ORDER BY position ASC, video_id ASC
                """
            ).fetchall()

        return [
            CachedVideoRow(
                video_id=str(row["video_id"]),
                title=str(row["title"]),
                channel_id=str(row["channel_id"]),
                channel_title=str(row["channel_title"]),
                published_at=str(row["published_at"]),
                thumbnail_url=str(row["thumbnail_url"]),
                tags=_decode_tags(row["tags_json"]),
                country=_to_optional_str(row["country"]),
                city=_to_optional_str(row["city"]),
                latitude=_to_optional_float(row["latitude"]),
                longitude=_to_optional_float(row["longitude"]),
                recording_date=_to_optional_str(row["recording_date"]),
            )
            for row in rows
        ]

    def count_items(self) -> int:
        with self._db.connection() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM video_cache").fetchone()
        if row is None:
            return 0
        return int(row["total"])

    def replace_items(self, *, rows: Sequence[CachedVideoRow], refreshed_at: datetime) -> None:
        """Swap the whole snapshot and stamp the refresh time in one transaction."""
        with self._db.connection() as conn:
            conn.execute("DELETE FROM video_cache")
            _insert_rows(conn, rows, start_position=0)
            _write_state(conn, LAST_REFRESH_KEY, refreshed_at.isoformat())

    def set_last_refresh(self, refreshed_at: datetime) -> None:
        with self._db.connection() as conn:
            _write_state(conn, LAST_REFRESH_KEY, refreshed_at.isoformat())

    def get_last_refresh(self) -> datetime | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT value_text
                FROM video_cache_state
                WHERE cache_key = ?
                """,
                (LAST_REFRESH_KEY,),
            ).fetchone()

        if row is None:
            return None
        return parse_timestamp(row["value_text"])

    def status(self) -> VideoCacheStatus:
        return VideoCacheStatus(
            item_count=self.count_items(),
            last_refresh_at=self.get_last_refresh(),
        )


def _next_position(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT MAX(position) AS last_position FROM video_cache").fetchone()
    if row is None or row["last_position"] is None:
        return 0
    return int(row["last_position"]) + 1


def _insert_rows(
    conn: sqlite3.Connection,
    rows: Sequence[CachedVideoRow],
    *,
    start_position: int,
) -> None:
    now_iso = utc_now_iso()
    for offset, video in enumerate(rows):
        conn.execute(
            """
            INSERT INTO video_cache
            (
                video_id,
                position,
                title,
                channel_id,
                channel_title,
                published_at,
                thumbnail_url,
                tags_json,
                country,
                city,
                latitude,
                longitude,
                recording_date,
                cached_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(video_id) DO UPDATE SET
                position = excluded.position,
                title = excluded.title,
                channel_id = excluded.channel_id,
                channel_title = excluded.channel_title,
                published_at = excluded.published_at,
                thumbnail_url = excluded.thumbnail_url,
                tags_json = excluded.tags_json,
                country = excluded.country,
                city = excluded.city,
                latitude = excluded.latitude,
                longitude = excluded.longitude,
                recording_date = excluded.recording_date,
                cached_at = excluded.cached_at
            """,
            (
                video.video_id,
                start_position + offset,
                video.title,
                video.channel_id,
                video.channel_title,
                video.published_at,
                video.thumbnail_url,
                json.dumps(list(video.tags), ensure_ascii=False),
                video.country,
                video.city,
                video.latitude,
                video.longitude,
                video.recording_date,
                now_iso,
            ),
        )


def _write_state(conn: sqlite3.Connection, cache_key: str, value_text: str) -> None:
    conn.execute(
        """
        INSERT INTO video_cache_state (cache_key, value_text, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(cache_key) DO UPDATE SET
            value_text = excluded.value_text,
            updated_at = excluded.updated_at
        """,
        (cache_key, value_text, utc_now_iso()),
    )


def _to_optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _to_optional_float(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    return None


def _decode_tags(raw_value: object) -> tuple[str, ...]:
    if not isinstance(raw_value, str):
        return ()
    try:
        parsed = cast(object, json.loads(raw_value))
    except json.JSONDecodeError:
        return ()
    if not isinstance(parsed, list):
        return ()
    return tuple(item for item in cast(list[object], parsed) if isinstance(item, str))
