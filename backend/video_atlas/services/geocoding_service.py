from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from threading import Lock
from typing import Any, cast
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

LOGGER = logging.getLogger("video_atlas.geocoding")

# Three decimals is roughly 100m; nearby recordings share one lookup.
COORDINATE_KEY_DECIMALS = 3
REVERSE_GEOCODE_ZOOM = 10
_CITY_ADDRESS_FIELDS: tuple[str, ...] = ("city", "town", "village", "hamlet")


@dataclass(frozen=True)
class ReverseGeocodeResult:
    city: str | None = None
    country: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.city is None and self.country is None


EMPTY_GEOCODE_RESULT = ReverseGeocodeResult()


def coordinate_cache_key(latitude: float, longitude: float) -> str:
    return (
        f"{round(latitude, COORDINATE_KEY_DECIMALS):.{COORDINATE_KEY_DECIMALS}f},"
        f"{round(longitude, COORDINATE_KEY_DECIMALS):.{COORDINATE_KEY_DECIMALS}f}"
    )


class GeocodeCache:
    """Unbounded in-memory memo of reverse geocode results, safe across threads."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._entries: dict[str, ReverseGeocodeResult] = {}
        self._key_locks: dict[str, Lock] = {}

    def key_lock(self, key: str) -> Lock:
        """Lock serialising lookups of one key, so concurrent misses fetch once."""
        with self._lock:
            return self._key_locks.setdefault(key, Lock())

    def get(self, key: str) -> ReverseGeocodeResult | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, result: ReverseGeocodeResult) -> None:
        with self._lock:
            self._entries[key] = result

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._key_locks.clear()


@dataclass(frozen=True)
class _GeocodeResponse:
    status_code: int
    payload: dict[str, Any] | None
    error: str | None = None


class GeocodingService:
    def __init__(
        self,
        *,
        enabled: bool = True,
        base_url: str = "https://nominatim.openstreetmap.org",
        user_agent: str,
        http_timeout_seconds: float = 10.0,
        cache: GeocodeCache | None = None,
    ) -> None:
        self._enabled = enabled
        self._base_url = base_url.strip().rstrip("/")
        self._user_agent = user_agent
        self._http_timeout_seconds = max(0.5, http_timeout_seconds)
        self._cache = cache if cache is not None else GeocodeCache()

    @property
    def cache(self) -> GeocodeCache:
        return self._cache

    def reverse_geocode(self, latitude: float, longitude: float) -> ReverseGeocodeResult:
        """Resolve a coordinate to city/country.

        Never raises: failed lookups resolve to an empty result, and that empty
        result is memoized like any other so a failing coordinate bucket is not
        retried within this process.
        """
        if not self._enabled:
            return EMPTY_GEOCODE_RESULT

        key = coordinate_cache_key(latitude, longitude)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        with self._cache.key_lock(key):
            # Another thread may have resolved the key while this one waited.
            cached = self._cache.get(key)
            if cached is not None:
                return cached
            result = self._lookup(key, latitude, longitude)
            self._cache.put(key, result)
        return result

    def _lookup(self, key: str, latitude: float, longitude: float) -> ReverseGeocodeResult:
        response = _fetch_reverse_geocode_json(
            base_url=self._base_url,
            latitude=latitude,
            longitude=longitude,
            user_agent=self._user_agent,
            timeout_seconds=self._http_timeout_seconds,
        )
        if response.payload is None or not 200 <= response.status_code < 300:
            LOGGER.warning(
                "reverse geocode failed key=%s status=%s error=%s",
                key,
                response.status_code,
                response.error,
            )
            result = EMPTY_GEOCODE_RESULT
        else:
            result = _extract_reverse_geocode_result(response.payload)
            LOGGER.debug(
                "reverse geocode resolved key=%s city=%s country=%s",
                key,
                result.city,
                result.country,
            )
        return result


def _fetch_reverse_geocode_json(
    *,
    base_url: str,
    latitude: float,
    longitude: float,
    user_agent: str,
    timeout_seconds: float,
) -> _GeocodeResponse:
    query = urlencode(
        {
            "format": "jsonv2",
            "lat": f"{latitude}",
            "lon": f"{longitude}",
            "zoom": str(REVERSE_GEOCODE_ZOOM),
            "addressdetails": "1",
        }
    )
    request = Request(
        f"{base_url}/reverse?{query}",
        headers={
            "accept": "application/json",
            "user-agent": user_agent,
        },
        method="GET",
    )

    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            status_code = int(response.getcode() or 0)
            raw_body = response.read().decode("utf-8", errors="replace")
    except HTTPError as exc:
        return _GeocodeResponse(status_code=int(exc.code), payload=None, error=str(exc))
    except (URLError, TimeoutError, OSError) as exc:
        return _GeocodeResponse(status_code=0, payload=None, error=str(exc))

    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError as exc:
        return _GeocodeResponse(status_code=status_code, payload=None, error=str(exc))
    if not isinstance(parsed, dict):
        return _GeocodeResponse(
            status_code=status_code,
            payload=None,
            error="unexpected payload shape",
        )
    return _GeocodeResponse(status_code=status_code, payload=cast(dict[str, Any], parsed))


def _extract_reverse_geocode_result(payload: dict[str, Any]) -> ReverseGeocodeResult:
    address = payload.get("address")
    if not isinstance(address, dict):
        return EMPTY_GEOCODE_RESULT
    address_dict = cast(dict[str, Any], address)

    city: str | None = None
    for field_name in _CITY_ADDRESS_FIELDS:
        city = _coerce_nonempty_string(address_dict.get(field_name))
        if city is not None:
            break
    return ReverseGeocodeResult(
        city=city,
        country=_coerce_nonempty_string(address_dict.get("country")),
    )


def _coerce_nonempty_string(raw_value: object) -> str | None:
    if isinstance(raw_value, str) and raw_value.strip():
        return raw_value.strip()
    return None
