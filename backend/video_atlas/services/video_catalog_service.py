from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from backend.video_atlas.repositories.common import (
    parse_timestamp,
    parse_timestamp_or_epoch,
    utc_now,
)
from backend.video_atlas.repositories.video_cache_repository import (
    CachedVideoRow,
    VideoCacheRepository,
    VideoCacheStatus,
)
from backend.video_atlas.services.youtube_service import VideoItem, YouTubeService
from backend.video_atlas.telemetry import TelemetryClient

LOGGER = logging.getLogger("video_atlas.catalog")

DEFAULT_CACHE_TTL_SECONDS = 86_400


@dataclass(frozen=True)
class VideoCatalogResult:
    videos: list[VideoItem]
    cache_hit: bool
    refreshed: bool
    last_refresh_at: datetime | None


class VideoCatalogService:
    """Serves the combined feed from the local cache while it is fresh."""

    def __init__(
        self,
        *,
        youtube_service: YouTubeService,
        cache_repository: VideoCacheRepository,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        telemetry: TelemetryClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._youtube_service = youtube_service
        self._cache_repository = cache_repository
        self._cache_ttl = timedelta(seconds=max(0, cache_ttl_seconds))
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._clock = clock

    def get_videos(
        self,
        channel_ids: Sequence[str],
        *,
        force_refresh: bool = False,
    ) -> list[VideoItem]:
        return self.get_videos_with_metadata(channel_ids, force_refresh=force_refresh).videos

    def get_videos_with_metadata(
        self,
        channel_ids: Sequence[str],
        *,
        force_refresh: bool = False,
    ) -> VideoCatalogResult:
        now = self._clock()
        last_refresh_at = self._cache_repository.get_last_refresh()

        if not force_refresh and self._is_fresh(last_refresh_at, now=now):
            videos = [cached_row_to_video(row) for row in self._cache_repository.get_all_items()]
            self._telemetry.emit(
                "videos.cache.hit",
                item_count=len(videos),
                age_seconds=_age_seconds(last_refresh_at, now=now),
            )
            LOGGER.debug("serving cached videos count=%s", len(videos))
            return VideoCatalogResult(
                videos=videos,
                cache_hit=True,
                refreshed=False,
                last_refresh_at=last_refresh_at,
            )

        videos = self._refresh(channel_ids, now=now, forced=force_refresh)
        return VideoCatalogResult(
            videos=videos,
            cache_hit=False,
            refreshed=True,
            last_refresh_at=now,
        )

    def cache_status(self) -> VideoCacheStatus:
        return self._cache_repository.status()

    def cache_is_stale(self) -> bool:
        return not self._is_fresh(self._cache_repository.get_last_refresh(), now=self._clock())

    def _is_fresh(self, last_refresh_at: datetime | None, *, now: datetime) -> bool:
        if last_refresh_at is None:
            return False
        return now - last_refresh_at < self._cache_ttl

    def _refresh(
        self,
        channel_ids: Sequence[str],
        *,
        now: datetime,
        forced: bool,
    ) -> list[VideoItem]:
        LOGGER.info(
            "refreshing video cache channels=%s forced=%s",
            len(channel_ids),
            forced,
        )
        with self._telemetry.timed(
            "videos.refresh",
            channel_count=len(channel_ids),
            forced=forced,
        ) as finish_attributes:
            try:
                videos = self._youtube_service.fetch_combined_videos(channel_ids)
            except Exception as exc:
                LOGGER.warning("video cache refresh failed; cache left unchanged error=%s", exc)
                raise

            # Only a complete fetch reaches the cache.
            self._cache_repository.replace_items(
                rows=[video_to_cached_row(video) for video in videos],
                refreshed_at=now,
            )
            finish_attributes["item_count"] = len(videos)

        LOGGER.info("video cache refreshed items=%s", len(videos))
        return videos


def video_to_cached_row(video: VideoItem) -> CachedVideoRow:
    return CachedVideoRow(
        video_id=video.video_id,
        title=video.title,
        channel_id=video.channel_id,
        channel_title=video.channel_title,
        published_at=video.published_at.isoformat(),
        thumbnail_url=video.thumbnail_url,
        tags=video.tags,
        country=video.country,
        city=video.city,
        latitude=video.latitude,
        longitude=video.longitude,
        recording_date=(
            video.recording_date.isoformat() if video.recording_date is not None else None
        ),
    )


def cached_row_to_video(row: CachedVideoRow) -> VideoItem:
    latitude = row.latitude
    longitude = row.longitude
    if latitude is None or longitude is None:
        latitude = None
        longitude = None

    return VideoItem(
        video_id=row.video_id,
        title=row.title,
        channel_id=row.channel_id,
        channel_title=row.channel_title,
        published_at=parse_timestamp_or_epoch(row.published_at),
        thumbnail_url=row.thumbnail_url,
        tags=row.tags,
        country=row.country,
        city=row.city,
        latitude=latitude,
        longitude=longitude,
        recording_date=parse_timestamp(row.recording_date),
    )


def _age_seconds(last_refresh_at: datetime | None, *, now: datetime) -> int | None:
    if last_refresh_at is None:
        return None
    return int((now - last_refresh_at).total_seconds())
