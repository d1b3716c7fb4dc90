from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from structlog.contextvars import bound_contextvars

from backend.video_atlas.api.routes import router
from backend.video_atlas.dependencies import get_settings, get_telemetry
from backend.video_atlas.logging_config import configure_application_logging

REQUEST_ID_HEADER = "X-Request-ID"

CallNext = Callable[[Request], Awaitable[Response]]


def health_check() -> dict[str, str]:
    return {"status": "ok"}


def _request_id(request: Request) -> str:
    supplied = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    return supplied or uuid4().hex


async def request_telemetry_middleware(request: Request, call_next: CallNext) -> Response:
    """Tag logs with a request id and report each request as a telemetry span."""
    request_id = _request_id(request)
    path = request.url.path
    with (
        bound_contextvars(http_request_id=request_id, http_method=request.method, http_path=path),
        get_telemetry().timed(
            "http.request",
            request_id=request_id,
            method=request.method,
            path=path,
        ) as finish_attributes,
    ):
        response = await call_next(request)
        finish_attributes["status_code"] = response.status_code

    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    configure_application_logging(get_settings())
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="Video Atlas API", version="0.1.0", lifespan=app_lifespan)
    app.middleware("http")(request_telemetry_middleware)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    return app


app = create_app()
