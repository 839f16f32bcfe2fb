from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from structlog.contextvars import bound_contextvars

from backend.app.api.routes import router
from backend.app.config import validate_http_configuration
from backend.app.dependencies import close_dependencies, get_settings, get_telemetry
from backend.app.logging_config import configure_application_logging

REQUEST_ID_HEADER = "X-Request-ID"

logger = logging.getLogger("media_companion.http")


def health_check() -> dict[str, str]:
    return {"status": "ok"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    # Refuse to serve HTTP at all without a bearer credential.
    validate_http_configuration(api_key=settings.api_key)
    configure_application_logging(settings)
    logger.info(
        "http transport starting storage_backend=%s enrichment=%s",
        settings.storage_backend,
        settings.enrichment_enabled,
    )
    try:
        yield
    finally:
        await close_dependencies()
        logger.info("http transport stopped")


def _request_id_for(request: Request) -> str:
    incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
    return incoming or uuid4().hex


async def request_context_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = _request_id_for(request)
    method = request.method
    path = request.url.path
    with bound_contextvars(http_request_id=request_id, http_method=method, http_path=path):
        with get_telemetry().timed(
            "http.request",
            request_id=request_id,
            method=method,
            path=path,
        ) as outcome:
            response = await call_next(request)
            outcome["status_code"] = response.status_code
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def create_app() -> FastAPI:
    app = FastAPI(
        title="Media Companion API",
        version="0.1.0",
        summary="Track movies, books and TV shows and get recommendations from your history.",
        lifespan=app_lifespan,
    )
    app.middleware("http")(request_context_middleware)
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
