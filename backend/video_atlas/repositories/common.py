from __future__ import annotations

from datetime import UTC, datetime

EPOCH_UTC = datetime.fromtimestamp(0, tz=UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def parse_timestamp(raw_value: object) -> datetime | None:
    """Parse ISO-8601 text (including a trailing `Z`) into an aware UTC datetime."""
    if not isinstance(raw_value, str) or not raw_value.strip():
        return None
    normalized = raw_value.strip()
    if normalized.endswith(("Z", "z")):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def parse_timestamp_or_epoch(raw_value: object) -> datetime:
    parsed = parse_timestamp(raw_value)
    if parsed is None:
        return EPOCH_UTC
    return parsed
