from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, cast

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from httplib2 import HttpLib2Error

from backend.video_atlas.repositories.common import parse_timestamp, parse_timestamp_or_epoch
from backend.video_atlas.services.geocoding_service import GeocodingService

LOGGER = logging.getLogger("video_atlas.youtube")

YOUTUBE_API_MAX_RESULTS = 50
WATCH_URL_TEMPLATE = "https://www.youtube.com/watch?v={video_id}"
THUMBNAIL_PREFERENCE: tuple[str, ...] = ("medium", "default", "high")
SEARCH_PART = "snippet"
DETAIL_PART = "snippet,recordingDetails"

_SOURCE_ERRORS: tuple[type[Exception], ...] = (HttpError, HttpLib2Error, OSError)


@dataclass(frozen=True)
class VideoItem:
    video_id: str
    title: str
    channel_id: str
    channel_title: str
    published_at: datetime
    thumbnail_url: str = ""
    tags: tuple[str, ...] = ()
    country: str | None = None
    city: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    recording_date: datetime | None = None

    @property
    def watch_url(self) -> str:
        return WATCH_URL_TEMPLATE.format(video_id=self.video_id)

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def location_label(self) -> str | None:
        parts = [part for part in (self.city, self.country) if part]
        if not parts:
            return None
        return ", ".join(parts)


class YouTubeServiceError(Exception):
    pass


@dataclass(frozen=True)
class _SearchPage:
    videos: list[VideoItem]
    next_page_token: str | None
    dropped_without_id: int


@dataclass(frozen=True)
class VideoDetails:
    video_id: str
    tags: tuple[str, ...] = ()
    latitude: float | None = None
    longitude: float | None = None
    location_description: str | None = None
    recording_date: datetime | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class DetailBatchOutcome:
    """Result of one videos.list call; a failed batch carries no details."""

    video_ids: tuple[str, ...]
    details: dict[str, VideoDetails] = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ChannelFetchReport:
    channel_id: str
    videos: list[VideoItem]
    pages_fetched: int
    detail_batches: tuple[DetailBatchOutcome, ...]
    geocode_lookups: int

    @property
    def failed_batches(self) -> tuple[DetailBatchOutcome, ...]:
        return tuple(batch for batch in self.detail_batches if not batch.ok)

    @property
    def degraded(self) -> bool:
        return bool(self.failed_batches)


YouTubeClientFactory = Callable[[], Any]


class YouTubeService:
    def __init__(
        self,
        *,
        api_key: str | None,
        geocoder: GeocodingService | None = None,
        client_factory: YouTubeClientFactory | None = None,
        page_size: int = YOUTUBE_API_MAX_RESULTS,
        detail_batch_size: int = YOUTUBE_API_MAX_RESULTS,
        max_pages_per_channel: int | None = None,
        max_workers: int = 8,
    ) -> None:
        self._api_key = api_key.strip() if isinstance(api_key, str) and api_key.strip() else None
        self._geocoder = geocoder
        self._client_factory = client_factory
        self._page_size = max(1, min(YOUTUBE_API_MAX_RESULTS, page_size))
        self._detail_batch_size = max(1, min(YOUTUBE_API_MAX_RESULTS, detail_batch_size))
        self._max_pages_per_channel = (
            max(1, max_pages_per_channel) if max_pages_per_channel is not None else None
        )
        self._max_workers = max(1, max_workers)

    def fetch_combined_videos(self, channel_ids: Sequence[str]) -> list[VideoItem]:
        """Fetch every channel concurrently and merge into one list, newest first.

        The first channel failure observed fails the whole call; results from
        sibling channels are discarded in that case. A video id returned by
        more than one channel is kept once, from the first configured channel.
        """
        unique_channel_ids = _unique_nonempty(channel_ids)
        if not unique_channel_ids:
            return []

        reports = self._fetch_channel_reports(unique_channel_ids)
        combined: dict[str, VideoItem] = {}
        for channel_id in unique_channel_ids:
            for video in reports[channel_id].videos:
                combined.setdefault(video.video_id, video)
        return sort_videos_newest_first(list(combined.values()))

    def fetch_channel_videos(self, channel_id: str) -> list[VideoItem]:
        return self.fetch_channel_report(channel_id).videos

    def fetch_channel_report(self, channel_id: str) -> ChannelFetchReport:
        client = self._build_client()

        preliminary, pages_fetched = self._search_channel_videos(client, channel_id)
        batches = self._fetch_detail_batches(client, [video.video_id for video in preliminary])

        details_by_id: dict[str, VideoDetails] = {}
        for batch in batches:
            details_by_id.update(batch.details)

        videos: list[VideoItem] = []
        geocode_lookups = 0
        for video in preliminary:
            details = details_by_id.get(video.video_id)
            if details is None:
                videos.append(video)
                continue
            if details.has_coordinates and self._geocoder is not None:
                geocode_lookups += 1
            videos.append(self._merge_details(video, details))

        report = ChannelFetchReport(
            channel_id=channel_id,
            videos=videos,
            pages_fetched=pages_fetched,
            detail_batches=tuple(batches),
            geocode_lookups=geocode_lookups,
        )
        LOGGER.info(
            (
                "channel fetch complete channel_id=%s videos=%s pages=%s "
                "detail_batches=%s failed_batches=%s geocode_lookups=%s"
            ),
            channel_id,
            len(report.videos),
            report.pages_fetched,
            len(report.detail_batches),
            len(report.failed_batches),
            report.geocode_lookups,
        )
        return report

    def _fetch_channel_reports(self, channel_ids: list[str]) -> dict[str, ChannelFetchReport]:
        executor = ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(channel_ids)),
            thread_name_prefix="video-atlas-channel",
        )
        try:
            futures: dict[Future[ChannelFetchReport], str] = {
                executor.submit(self.fetch_channel_report, channel_id): channel_id
                for channel_id in channel_ids
            }
            reports: dict[str, ChannelFetchReport] = {}
            for future in as_completed(futures):
                channel_id = futures[future]
                try:
                    reports[channel_id] = future.result()
                except Exception:
                    LOGGER.warning("channel fetch failed channel_id=%s", channel_id)
                    raise
            return reports
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _build_client(self) -> Any:
        if self._client_factory is not None:
            return self._client_factory()
        if self._api_key is None:
            raise YouTubeServiceError("YouTube API key is not configured.")
        return build("youtube", "v3", developerKey=self._api_key, cache_discovery=False)

    def _search_channel_videos(self, client: Any, channel_id: str) -> tuple[list[VideoItem], int]:
        videos: list[VideoItem] = []
        seen_ids: set[str] = set()
        pages_fetched = 0
        next_page_token: str | None = None

        while True:
            page = self._search_page(client, channel_id=channel_id, page_token=next_page_token)
            pages_fetched += 1
            if page.dropped_without_id:
                LOGGER.debug(
                    "search results without video id dropped channel_id=%s count=%s",
                    channel_id,
                    page.dropped_without_id,
                )
            for video in page.videos:
                if video.video_id in seen_ids:
                    continue
                seen_ids.add(video.video_id)
                videos.append(video)

            if page.next_page_token is None:
                break
            if (
                self._max_pages_per_channel is not None
                and pages_fetched >= self._max_pages_per_channel
            ):
                LOGGER.info(
                    "search page limit reached channel_id=%s pages=%s",
                    channel_id,
                    pages_fetched,
                )
                break
            next_page_token = page.next_page_token

        return videos, pages_fetched

    def _search_page(
        self,
        client: Any,
        *,
        channel_id: str,
        page_token: str | None,
    ) -> _SearchPage:
        query_kwargs: dict[str, object] = {
            "part": SEARCH_PART,
            "channelId": channel_id,
            "type": "video",
            "order": "date",
            "maxResults": self._page_size,
        }
        if page_token is not None:
            query_kwargs["pageToken"] = page_token

        try:
            response = cast(dict[str, Any], client.search().list(**query_kwargs).execute())
        except _SOURCE_ERRORS as exc:
            raise YouTubeServiceError(
                f"Failed to fetch videos for channel {channel_id}: {_describe_source_error(exc)}"
            ) from exc

        return _parse_search_page(_as_dict(response))

    def _fetch_detail_batches(
        self,
        client: Any,
        video_ids: list[str],
    ) -> list[DetailBatchOutcome]:
        batches: list[DetailBatchOutcome] = []
        for index in range(0, len(video_ids), self._detail_batch_size):
            chunk = tuple(video_ids[index : index + self._detail_batch_size])
            batches.append(self._fetch_detail_batch(client, chunk))
        return batches

    def _fetch_detail_batch(self, client: Any, video_ids: tuple[str, ...]) -> DetailBatchOutcome:
        try:
            response = cast(
                dict[str, Any],
                client.videos()
                .list(part=DETAIL_PART, id=",".join(video_ids), maxResults=len(video_ids))
                .execute(),
            )
        except _SOURCE_ERRORS as exc:
            message = _describe_source_error(exc)
            LOGGER.warning(
                "video detail batch failed; keeping search data batch_size=%s error=%s",
                len(video_ids),
                message,
            )
            return DetailBatchOutcome(video_ids=video_ids, error=message)

        details: dict[str, VideoDetails] = {}
        for item in _as_list(_as_dict(response).get("items")):
            parsed = _parse_video_details(_as_dict(item))
            if parsed is not None:
                details[parsed.video_id] = parsed
        return DetailBatchOutcome(video_ids=video_ids, details=details)

    def _merge_details(self, video: VideoItem, details: VideoDetails) -> VideoItem:
        city, country = split_location_description(details.location_description)
        if details.latitude is not None and details.longitude is not None:
            if self._geocoder is not None:
                geocoded = self._geocoder.reverse_geocode(details.latitude, details.longitude)
                if geocoded.city is not None:
                    city = geocoded.city
                if geocoded.country is not None:
                    country = geocoded.country

        return replace(
            video,
            tags=details.tags,
            city=city,
            country=country,
            latitude=details.latitude,
            longitude=details.longitude,
            recording_date=details.recording_date,
        )


def sort_videos_newest_first(videos: Sequence[VideoItem]) -> list[VideoItem]:
    return sorted(videos, key=lambda video: video.published_at, reverse=True)


def split_location_description(raw_value: object) -> tuple[str | None, str | None]:
    """Split a free-text "City, Region, Country" description into (city, country).

    Two or more comma-separated tokens give the first as city and the last as
    country; a single token is taken as the country. Tokens are counted before
    blanks are discarded, so "Paris," keeps Paris as the city.
    """
    if not isinstance(raw_value, str):
        return None, None
    tokens = [token.strip() for token in raw_value.split(",")]
    if len(tokens) == 1:
        return None, tokens[0] or None
    return tokens[0] or None, tokens[-1] or None


def extract_thumbnail_url(snippet: dict[str, Any]) -> str:
    """Pick the `medium` rendition, then `default`, then `high`; empty if none."""
    thumbnails = _as_dict(snippet.get("thumbnails"))
    for quality in THUMBNAIL_PREFERENCE:
        url_value = _as_dict(thumbnails.get(quality)).get("url")
        if isinstance(url_value, str) and url_value.strip():
            return url_value
    return ""


def _parse_search_page(response: dict[str, Any]) -> _SearchPage:
    videos: list[VideoItem] = []
    dropped = 0
    for item in _as_list(response.get("items")):
        video = _parse_search_result(_as_dict(item))
        if video is None:
            dropped += 1
            continue
        videos.append(video)

    return _SearchPage(
        videos=videos,
        next_page_token=_coerce_nonempty_string(response.get("nextPageToken")),
        dropped_without_id=dropped,
    )


def _parse_search_result(item: dict[str, Any]) -> VideoItem | None:
    video_id = _coerce_nonempty_string(_as_dict(item.get("id")).get("videoId"))
    if video_id is None:
        return None

    snippet = _as_dict(item.get("snippet"))
    return VideoItem(
        video_id=video_id,
        title=_coerce_string(snippet.get("title")),
        channel_id=_coerce_string(snippet.get("channelId")),
        channel_title=_coerce_string(snippet.get("channelTitle")),
        published_at=parse_timestamp_or_epoch(snippet.get("publishedAt")),
        thumbnail_url=extract_thumbnail_url(snippet),
    )


def _parse_video_details(item: dict[str, Any]) -> VideoDetails | None:
    video_id = _coerce_nonempty_string(item.get("id"))
    if video_id is None:
        return None

    snippet = _as_dict(item.get("snippet"))
    recording_details = _as_dict(item.get("recordingDetails"))
    location = _as_dict(recording_details.get("location"))

    latitude = _coerce_float(location.get("latitude"))
    longitude = _coerce_float(location.get("longitude"))
    if latitude is None or longitude is None:
        latitude = None
        longitude = None

    return VideoDetails(
        video_id=video_id,
        tags=_extract_string_list(snippet.get("tags")),
        latitude=latitude,
        longitude=longitude,
        location_description=_coerce_nonempty_string(
            recording_details.get("locationDescription")
        ),
        recording_date=parse_timestamp(recording_details.get("recordingDate")),
    )


def _describe_source_error(exc: Exception) -> str:
    if isinstance(exc, HttpError):
        status = getattr(exc.resp, "status", None)
        reason = exc.reason if isinstance(exc.reason, str) and exc.reason else "unknown"
        return f"HTTP {status} {reason}"
    raw = str(exc).strip()
    return raw if raw else type(exc).__name__


def _unique_nonempty(values: Sequence[str]) -> list[str]:
    unique: list[str] = []
    for value in values:
        stripped = value.strip()
        if stripped and stripped not in unique:
            unique.append(stripped)
    return unique


def _extract_string_list(raw_value: object) -> tuple[str, ...]:
    if not isinstance(raw_value, list):
        return ()
    return tuple(item for item in cast(list[Any], raw_value) if isinstance(item, str))


def _coerce_string(raw_value: object) -> str:
    if isinstance(raw_value, str):
        return raw_value
    return ""


def _coerce_nonempty_string(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value
    return None


def _coerce_float(raw_value: object) -> float | None:
    if isinstance(raw_value, bool):
        return None
    if isinstance(raw_value, int | float):
        return float(raw_value)
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        converted: dict[str, Any] = {}
        for key, item in raw_dict.items():
            if isinstance(key, str):
                converted[key] = item
        return converted
    return {}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return list(cast(list[Any], value))
    return []
