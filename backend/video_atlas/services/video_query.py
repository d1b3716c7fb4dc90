from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from backend.video_atlas.repositories.common import EPOCH_UTC
from backend.video_atlas.services.youtube_service import VideoItem


class SortField(StrEnum):
    PUBLISHED_DATE = "published_date"
    RECORDING_DATE = "recording_date"


class SortOrder(StrEnum):
    DESC = "desc"
    ASC = "asc"


@dataclass(frozen=True)
class VideoQuery:
    channel_id: str | None = None
    country: str | None = None
    sort_field: SortField = SortField.PUBLISHED_DATE
    sort_order: SortOrder = SortOrder.DESC


def apply_video_query(videos: Sequence[VideoItem], query: VideoQuery) -> list[VideoItem]:
    """Filter by channel and country, then sort.

    Country matching ignores case. Videos without a recording date sort before
    dated ones in ascending order and after them in descending order.
    """
    channel_id = _normalize_filter(query.channel_id)
    country = _normalize_filter(query.country)

    selected = list(videos)
    if channel_id is not None:
        selected = [video for video in selected if video.channel_id == channel_id]
    if country is not None:
        wanted = country.lower()
        selected = [video for video in selected if (video.country or "").lower() == wanted]

    reverse = query.sort_order == SortOrder.DESC
    if query.sort_field == SortField.RECORDING_DATE:
        return sorted(selected, key=_recording_date_sort_key, reverse=reverse)
    return sorted(selected, key=lambda video: video.published_at, reverse=reverse)


def videos_with_location(videos: Sequence[VideoItem]) -> list[VideoItem]:
    return [video for video in videos if video.has_location]


def _recording_date_sort_key(video: VideoItem) -> tuple[int, datetime]:
    if video.recording_date is None:
        return (0, EPOCH_UTC)
    return (1, video.recording_date)


def _normalize_filter(raw_value: str | None) -> str | None:
    if raw_value is None:
        return None
    stripped = raw_value.strip()
    return stripped if stripped else None
