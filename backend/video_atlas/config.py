from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ENV_PREFIX = "VIDEO_ATLAS_"
DEFAULT_DATA_DIR = Path(".video-atlas")
YOUTUBE_API_MAX_RESULTS = 50

# Paths that follow VIDEO_ATLAS_DATA_DIR unless set explicitly.
_DATA_DIR_CHILDREN: dict[str, Path] = {
    "db_path": Path("videos_cache.db"),
    "log_dir": Path("logs"),
}
_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off"})
_TELEMETRY_SINKS = ("none", "log")


def _env_name(field_name: str) -> str:
    return f"{ENV_PREFIX}{field_name.upper()}"


def _lenient_bool(value: Any, *, fallback: bool) -> bool:
    """Accept common on/off spellings; anything unrecognised keeps the fallback."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return fallback


def _split_channel_ids(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        candidates: list[Any] = value.split(",")
    elif isinstance(value, list | tuple):
        candidates = list(value)
    else:
        raise ValueError(f"{_env_name('channel_ids')} must be a comma-separated string.")

    # dict.fromkeys keeps first-seen order while dropping repeats.
    return list(
        dict.fromkeys(
            candidate.strip()
            for candidate in candidates
            if isinstance(candidate, str) and candidate.strip()
        )
    )


class AppSettings(BaseSettings):
    """
    Runtime configuration for the feed service and the refresh script.

    Values come from `VIDEO_ATLAS_*` environment variables or a local `.env`.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Storage.
    data_dir: Path = Field(
        default=DEFAULT_DATA_DIR,
        description="Directory holding the SQLite cache and log files.",
    )
    db_path: Path = Field(
        default=DEFAULT_DATA_DIR / _DATA_DIR_CHILDREN["db_path"],
        description="SQLite cache file. Follows `${VIDEO_ATLAS_DATA_DIR}` unless set.",
    )

    # YouTube Data API.
    youtube_api_key: str | None = Field(
        default=None,
        description="YouTube Data API v3 key used for search and video detail calls.",
    )
    channel_ids: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Comma-separated channel ids aggregated into the combined feed.",
    )
    youtube_page_size: int = Field(
        default=YOUTUBE_API_MAX_RESULTS,
        description="Search page size per channel (the API allows at most 50).",
    )
    youtube_detail_batch_size: int = Field(
        default=YOUTUBE_API_MAX_RESULTS,
        description="Video ids per videos.list call (the API allows at most 50).",
    )
    youtube_max_pages_per_channel: int | None = Field(
        default=None,
        description="Stop paginating a channel after this many search pages. Unbounded if unset.",
    )
    channel_fetch_max_workers: int = Field(
        default=8,
        description="Upper bound on channels fetched concurrently.",
    )

    # Cache policy.
    cache_ttl_seconds: int = Field(
        default=86_400,
        description="Age after which the cached feed is refetched on the next read.",
    )

    # Reverse geocoding.
    geocoding_enabled: bool = Field(
        default=True,
        description="Resolve recording coordinates to city/country names.",
    )
    geocoding_base_url: str = Field(
        default="https://nominatim.openstreetmap.org",
        description="Base URL of a Nominatim-compatible `/reverse` endpoint.",
    )
    geocoding_user_agent: str = Field(
        default="video-atlas/0.1 (+https://github.com/video-atlas/video-atlas)",
        description="User-Agent identifying this app to the geocoder, with a contact URL.",
    )
    geocoding_http_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for one reverse geocoding request.",
    )

    # Logging and telemetry.
    log_dir: Path = Field(
        default=DEFAULT_DATA_DIR / _DATA_DIR_CHILDREN["log_dir"],
        description="Directory for JSON log files. Follows `${VIDEO_ATLAS_DATA_DIR}` unless set.",
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level printed to the console.",
    )
    telemetry_enabled: bool = Field(
        default=True,
        description="Emit cache and request telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description="`log` writes telemetry to its own JSON file; `none` drops it.",
    )

    @field_validator("channel_ids", mode="before")
    @classmethod
    def _parse_channel_ids(cls, value: Any) -> list[str]:
        return _split_channel_ids(value)

    @field_validator("youtube_page_size", "youtube_detail_batch_size", mode="after")
    @classmethod
    def _clamp_to_api_maximum(cls, value: int) -> int:
        return max(1, min(YOUTUBE_API_MAX_RESULTS, value))

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _parse_telemetry_sink(cls, value: Any) -> str:
        sink = value.strip().lower() if isinstance(value, str) else ""
        if sink not in _TELEMETRY_SINKS:
            raise ValueError(
                f"{_env_name('telemetry_sink')} must be one of: {', '.join(_TELEMETRY_SINKS)}."
            )
        return sink

    @field_validator("geocoding_base_url", "geocoding_user_agent", mode="before")
    @classmethod
    def _require_text(cls, value: Any, info: ValidationInfo) -> str:
        text = value.strip() if isinstance(value, str) else ""
        if info.field_name == "geocoding_base_url":
            text = text.rstrip("/")
        if not text:
            raise ValueError(f"{_env_name(str(info.field_name))} must be a non-empty string.")
        return text

    @field_validator("data_dir", *_DATA_DIR_CHILDREN, mode="before")
    @classmethod
    def _expand_path(cls, value: Any, info: ValidationInfo) -> Path:
        if not isinstance(value, str | Path) or not str(value).strip():
            raise ValueError(f"{_env_name(str(info.field_name))} must be a non-empty path.")
        return Path(value).expanduser().resolve()

    @field_validator("geocoding_enabled", "telemetry_enabled", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any, info: ValidationInfo) -> bool:
        fallback = cls.model_fields[str(info.field_name)].default
        return _lenient_bool(value, fallback=bool(fallback))

    @field_validator("youtube_api_key", mode="before")
    @classmethod
    def _blank_key_is_missing(cls, value: Any) -> str | None:
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None


def _missing_source_settings(settings: AppSettings) -> list[str]:
    problems: list[str] = []
    if settings.youtube_api_key is None:
        problems.append(f"{_env_name('youtube_api_key')} is required to fetch channel videos.")
    if not settings.channel_ids:
        problems.append(f"{_env_name('channel_ids')} must list at least one channel id.")
    return problems


def _with_resolved_paths(settings: AppSettings) -> AppSettings:
    data_dir = settings.data_dir.expanduser().resolve()
    updates: dict[str, Path] = {"data_dir": data_dir}
    for field_name, child in _DATA_DIR_CHILDREN.items():
        if field_name in settings.model_fields_set:
            updates[field_name] = Path(getattr(settings, field_name)).expanduser().resolve()
        else:
            updates[field_name] = data_dir / child
    return settings.model_copy(update=updates)


def load_settings(*, validate_api_key: bool = True) -> AppSettings:
    """Read settings from the environment and anchor paths under the data dir.

    With `validate_api_key`, a missing API key or empty channel list raises a
    `ValueError` listing every problem at once.
    """
    settings = _with_resolved_paths(AppSettings())

    if validate_api_key:
        problems = _missing_source_settings(settings)
        if problems:
            bullets = "\n".join(f"- {problem}" for problem in problems)
            raise ValueError(f"Invalid video source configuration:\n{bullets}")

    return settings
