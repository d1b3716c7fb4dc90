from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from backend.video_atlas.services.youtube_service import VideoItem


class VideoResponseItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_id: str
    title: str
    channel_id: str
    channel_title: str
    published_at: datetime
    thumbnail_url: str
    watch_url: str
    tags: list[str] = Field(default_factory=list)
    country: str | None = None
    city: str | None = None
    location_label: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    recording_date: datetime | None = None

    @classmethod
    def from_video(cls, video: VideoItem) -> VideoResponseItem:
        return cls(
            video_id=video.video_id,
            title=video.title,
            channel_id=video.channel_id,
            channel_title=video.channel_title,
            published_at=video.published_at,
            thumbnail_url=video.thumbnail_url,
            watch_url=video.watch_url,
            tags=list(video.tags),
            country=video.country,
            city=video.city,
            location_label=video.location_label,
            latitude=video.latitude,
            longitude=video.longitude,
            recording_date=video.recording_date,
        )


class VideoListResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: list[VideoResponseItem]
    count: int
    cache_hit: bool
    refreshed: bool
    last_refresh_at: datetime | None = None


class VideoCacheStatusResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    item_count: int
    last_refresh_at: datetime | None = None
    stale: bool
