from __future__ import annotations

from functools import lru_cache

from backend.video_atlas.config import AppSettings, load_settings
from backend.video_atlas.repositories.database import Database
from backend.video_atlas.repositories.video_cache_repository import VideoCacheRepository
from backend.video_atlas.services.geocoding_service import GeocodingService
from backend.video_atlas.services.video_catalog_service import VideoCatalogService
from backend.video_atlas.services.youtube_service import YouTubeService
from backend.video_atlas.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


def build_catalog_service(
    settings: AppSettings,
    *,
    telemetry: TelemetryClient | None = None,
) -> VideoCatalogService:
    database = Database(settings.db_path)
    database.initialize()

    return VideoCatalogService(
        youtube_service=YouTubeService(
            api_key=settings.youtube_api_key,
            geocoder=GeocodingService(
                enabled=settings.geocoding_enabled,
                base_url=settings.geocoding_base_url,
                user_agent=settings.geocoding_user_agent,
                http_timeout_seconds=settings.geocoding_http_timeout_seconds,
            ),
            page_size=settings.youtube_page_size,
            detail_batch_size=settings.youtube_detail_batch_size,
            max_pages_per_channel=settings.youtube_max_pages_per_channel,
            max_workers=settings.channel_fetch_max_workers,
        ),
        cache_repository=VideoCacheRepository(database),
        cache_ttl_seconds=settings.cache_ttl_seconds,
        telemetry=telemetry,
    )


@lru_cache(maxsize=1)
def get_catalog_service() -> VideoCatalogService:
    return build_catalog_service(get_settings(), telemetry=get_telemetry())


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    get_catalog_service.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
