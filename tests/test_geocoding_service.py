from __future__ import annotations

import json
import threading
import time
from typing import Any
from urllib.error import URLError
from urllib.parse import parse_qs, urlsplit
from urllib.request import Request

import pytest

from backend.video_atlas.services import geocoding_service
from backend.video_atlas.services.geocoding_service import (
    GeocodeCache,
    GeocodingService,
    ReverseGeocodeResult,
    _GeocodeResponse,  # pyright: ignore[reportPrivateUsage]
    coordinate_cache_key,
)

USER_AGENT = "video-atlas-tests/1.0 (+tests@example.com)"


def _service(**kwargs: Any) -> GeocodingService:
    return GeocodingService(
        base_url="https://geo.example/",
        user_agent=USER_AGENT,
        **kwargs,
    )


class _RecordingFetcher:
    def __init__(self, responses: list[_GeocodeResponse]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def __call__(self, **kwargs: Any) -> _GeocodeResponse:
        self.calls.append(kwargs)
        return self._responses.pop(0)


def _ok(address: dict[str, str]) -> _GeocodeResponse:
    return _GeocodeResponse(status_code=200, payload={"address": address})


def test_reverse_geocode_memoizes_by_rounded_coordinate(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    fetcher = _RecordingFetcher([_ok({"city": "Paris", "country": "France"})])
    monkeypatch.setattr(geocoding_service, "_fetch_reverse_geocode_json", fetcher)
    service = _service()

    first = service.reverse_geocode(48.8566, 2.3522)
    second = service.reverse_geocode(48.8568, 2.3524)

    assert first == ReverseGeocodeResult(city="Paris", country="France")
    assert second == first
    assert len(fetcher.calls) == 1
    assert fetcher.calls[0]["base_url"] == "https://geo.example"
    assert fetcher.calls[0]["user_agent"] == USER_AGENT
    assert len(service.cache) == 1


def test_reverse_geocode_failure_is_empty_and_memoized(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    fetcher = _RecordingFetcher(
        [_GeocodeResponse(status_code=503, payload=None, error="unavailable")]
    )
    monkeypatch.setattr(geocoding_service, "_fetch_reverse_geocode_json", fetcher)
    service = _service()

    first = service.reverse_geocode(10.0, 20.0)
    second = service.reverse_geocode(10.0001, 20.0001)

    assert first.is_empty
    assert second.is_empty
    assert len(fetcher.calls) == 1


def test_reverse_geocode_non_success_status_with_payload_is_empty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    fetcher = _RecordingFetcher(
        [_GeocodeResponse(status_code=429, payload={"address": {"city": "Ignored"}})]
    )
    monkeypatch.setattr(geocoding_service, "_fetch_reverse_geocode_json", fetcher)

    assert _service().reverse_geocode(1.0, 2.0).is_empty


@pytest.mark.parametrize(
    ("address", "expected"),
    [
        ({"town": "Hallstatt", "country": "Austria"}, ReverseGeocodeResult("Hallstatt", "Austria")),
        ({"village": "Giethoorn", "country": "Netherlands"}, ReverseGeocodeResult("Giethoorn", "Netherlands")),
        ({"hamlet": "Reine", "country": "Norway"}, ReverseGeocodeResult("Reine", "Norway")),
        ({"city": "Oslo", "town": "Ignored", "country": "Norway"}, ReverseGeocodeResult("Oslo", "Norway")),
        ({"country": "Antarctica"}, ReverseGeocodeResult(None, "Antarctica")),
        ({"city": "  "}, ReverseGeocodeResult(None, None)),
    ],
)
def test_reverse_geocode_city_fallback_order(
    monkeypatch: pytest.MonkeyPatch,
    address: dict[str, str],
    expected: ReverseGeocodeResult,
) -> None:
    monkeypatch.setattr(
        geocoding_service,
        "_fetch_reverse_geocode_json",
        _RecordingFetcher([_ok(address)]),
    )

    assert _service().reverse_geocode(0.5, 0.5) == expected


def test_reverse_geocode_payload_without_address_is_empty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        geocoding_service,
        "_fetch_reverse_geocode_json",
        _RecordingFetcher([_GeocodeResponse(status_code=200, payload={"error": "none"})]),
    )

    assert _service().reverse_geocode(0.5, 0.5).is_empty


def test_disabled_geocoder_skips_network(monkeypatch: pytest.MonkeyPatch) -> None:
    fetcher = _RecordingFetcher([])
    monkeypatch.setattr(geocoding_service, "_fetch_reverse_geocode_json", fetcher)

    result = _service(enabled=False).reverse_geocode(48.85, 2.35)

    assert result.is_empty
    assert fetcher.calls == []


def test_shared_cache_is_reused_across_services(monkeypatch: pytest.MonkeyPatch) -> None:
    fetcher = _RecordingFetcher([_ok({"city": "Lisbon", "country": "Portugal"})])
    monkeypatch.setattr(geocoding_service, "_fetch_reverse_geocode_json", fetcher)
    cache = GeocodeCache()

    _service(cache=cache).reverse_geocode(38.7223, -9.1393)
    result = _service(cache=cache).reverse_geocode(38.7223, -9.1393)

    assert result.city == "Lisbon"
    assert len(fetcher.calls) == 1


@pytest.mark.parametrize(
    ("latitude", "longitude", "expected"),
    [
        (48.8566, 2.3522, "48.857,2.352"),
        (-33.86882, 151.20929, "-33.869,151.209"),
        (0.0, 0.0, "0.000,0.000"),
        (10.0, -20.5, "10.000,-20.500"),
    ],
)
def test_coordinate_cache_key(latitude: float, longitude: float, expected: str) -> None:
    assert coordinate_cache_key(latitude, longitude) == expected


class _FakeHttpResponse:
    def __init__(self, status: int, body: bytes) -> None:
        self._status = status
        self._body = body

    def __enter__(self) -> _FakeHttpResponse:
        return self

    def __exit__(self, *_: object) -> None:
        return None

    def getcode(self) -> int:
        return self._status

    def read(self) -> bytes:
        return self._body


def test_fetch_reverse_geocode_builds_request(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    def _fake_urlopen(request: Request, timeout: float) -> _FakeHttpResponse:
        captured["request"] = request
        captured["timeout"] = timeout
        body = json.dumps({"address": {"city": "Kyoto", "country": "Japan"}}).encode("utf-8")
        return _FakeHttpResponse(200, body)

    monkeypatch.setattr(geocoding_service, "urlopen", _fake_urlopen)

    result = _service(http_timeout_seconds=4.0).reverse_geocode(35.0116, 135.7681)

    assert result == ReverseGeocodeResult(city="Kyoto", country="Japan")
    request = captured["request"]
    assert captured["timeout"] == 4.0
    assert request.get_method() == "GET"
    assert request.get_header("User-agent") == USER_AGENT

    url = urlsplit(request.full_url)
    assert f"{url.scheme}://{url.netloc}{url.path}" == "https://geo.example/reverse"
    query = parse_qs(url.query)
    assert query["format"] == ["jsonv2"]
    assert query["lat"] == ["35.0116"]
    assert query["lon"] == ["135.7681"]
    assert query["zoom"] == ["10"]
    assert query["addressdetails"] == ["1"]


def test_fetch_reverse_geocode_transport_error_is_empty(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _failing_urlopen(request: Request, timeout: float) -> _FakeHttpResponse:
        raise URLError("connection refused")

    monkeypatch.setattr(geocoding_service, "urlopen", _failing_urlopen)

    assert _service().reverse_geocode(1.0, 1.0).is_empty


def test_fetch_reverse_geocode_invalid_json_is_empty(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        geocoding_service,
        "urlopen",
        lambda request, timeout: _FakeHttpResponse(200, b"<html>busy</html>"),
    )

    assert _service().reverse_geocode(1.0, 1.0).is_empty


def test_concurrent_lookups_of_one_bucket_fetch_once(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[float, float]] = []
    entered = threading.Event()
    release = threading.Event()

    def _slow_fetch(**kwargs: Any) -> _GeocodeResponse:
        calls.append((kwargs["latitude"], kwargs["longitude"]))
        entered.set()
        release.wait(timeout=2)
        return _ok({"city": "Vienna", "country": "Austria"})

    monkeypatch.setattr(geocoding_service, "_fetch_reverse_geocode_json", _slow_fetch)
    service = _service()
    results: list[ReverseGeocodeResult] = []

    def _lookup(latitude: float, longitude: float) -> None:
        results.append(service.reverse_geocode(latitude, longitude))

    first = threading.Thread(target=_lookup, args=(48.2082, 16.3738))
    second = threading.Thread(target=_lookup, args=(48.2081, 16.3739))
    first.start()
    assert entered.wait(timeout=2)
    second.start()
    time.sleep(0.05)
    release.set()
    first.join(timeout=2)
    second.join(timeout=2)

    assert len(calls) == 1
    assert results == [ReverseGeocodeResult(city="Vienna", country="Austria")] * 2
