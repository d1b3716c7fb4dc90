from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from backend.video_atlas.config import AppSettings
from backend.video_atlas.dependencies import get_catalog_service, get_settings
from backend.video_atlas.models.video_contracts import (
    VideoCacheStatusResponse,
    VideoListResponse,
    VideoResponseItem,
)
from backend.video_atlas.services.video_catalog_service import (
    VideoCatalogResult,
    VideoCatalogService,
)
from backend.video_atlas.services.video_query import (
    SortField,
    SortOrder,
    VideoQuery,
    apply_video_query,
    videos_with_location,
)
from backend.video_atlas.services.youtube_service import YouTubeServiceError

LOGGER = logging.getLogger("video_atlas.api")

router = APIRouter()


def _load_catalog(
    catalog: VideoCatalogService,
    settings: AppSettings,
    *,
    force_refresh: bool,
) -> VideoCatalogResult:
    try:
        return catalog.get_videos_with_metadata(
            settings.channel_ids,
            force_refresh=force_refresh,
        )
    except YouTubeServiceError as exc:
        LOGGER.warning("video catalog load failed error=%s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@router.get(
    "/videos",
    response_model=VideoListResponse,
    tags=["videos"],
    operation_id="videos_list",
)
def videos_list(
    catalog: Annotated[VideoCatalogService, Depends(get_catalog_service)],
    settings: Annotated[AppSettings, Depends(get_settings)],
    force_refresh: bool = False,
    channel_id: str | None = None,
    country: str | None = None,
    sort_field: Annotated[SortField, Query()] = SortField.PUBLISHED_DATE,
    sort_order: Annotated[SortOrder, Query()] = SortOrder.DESC,
) -> VideoListResponse:
    result = _load_catalog(catalog, settings, force_refresh=force_refresh)
    videos = apply_video_query(
        result.videos,
        VideoQuery(
            channel_id=channel_id,
            country=country,
            sort_field=sort_field,
            sort_order=sort_order,
        ),
    )
    return VideoListResponse(
        items=[VideoResponseItem.from_video(video) for video in videos],
        count=len(videos),
        cache_hit=result.cache_hit,
        refreshed=result.refreshed,
        last_refresh_at=result.last_refresh_at,
    )


@router.get(
    "/videos/map",
    response_model=VideoListResponse,
    tags=["videos"],
    operation_id="videos_map",
)
def videos_map(
    catalog: Annotated[VideoCatalogService, Depends(get_catalog_service)],
    settings: Annotated[AppSettings, Depends(get_settings)],
) -> VideoListResponse:
    result = _load_catalog(catalog, settings, force_refresh=False)
    located = videos_with_location(result.videos)
    return VideoListResponse(
        items=[VideoResponseItem.from_video(video) for video in located],
        count=len(located),
        cache_hit=result.cache_hit,
        refreshed=result.refreshed,
        last_refresh_at=result.last_refresh_at,
    )


@router.get(
    "/videos/cache",
    response_model=VideoCacheStatusResponse,
    tags=["videos"],
    operation_id="videos_cache_status",
)
def videos_cache_status(
    catalog: Annotated[VideoCatalogService, Depends(get_catalog_service)],
) -> VideoCacheStatusResponse:
    status = catalog.cache_status()
    return VideoCacheStatusResponse(
        item_count=status.item_count,
        last_refresh_at=status.last_refresh_at,
        stale=catalog.cache_is_stale(),
    )
