from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Any

from anyio import to_thread
from litestar import Litestar, Request, Response, get, post, route
from litestar.config.cors import CORSConfig
from litestar.enums import HttpMethod
from litestar.params import FromPath
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController
from litestar.response import Stream

from .errors import (
    AuthFailureError,
    InvalidKeyError,
    KeyNotFoundError,
    StorageIOError,
    StorageUnavailableError,
)
from .streaming import MediaStreamer

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from .streaming import MediaSlice

LOG = logging.getLogger("media_range.app")

prometheus_config = PrometheusConfig(app_name="media_range", prefix="media_range")


async def _run_sync(func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
    return await to_thread.run_sync(partial(func, *args, **kwargs))


def _stream_response(media: MediaSlice) -> Stream:
    headers = media.headers
    content_type = headers.pop("Content-Type")

    async def iterator() -> AsyncIterator[bytes]:
        try:
            while True:
                block = await _run_sync(media.read_block)
                if not block:
                    break
                yield block
        finally:
            await _run_sync(media.close)

    return Stream(
        content=iterator,
        status_code=media.status_code,
        headers=headers,
        media_type=content_type,
    )


def _head_response(headers: dict[str, str]) -> Stream:
    headers = dict(headers)
    content_type = headers.pop("Content-Type")

    async def empty() -> AsyncIterator[bytes]:
        return
        yield  # pragma: no cover

    return Stream(content=empty, status_code=200, headers=headers, media_type=content_type)


def _error_handler(status_code: int) -> Callable[[Request, Exception], Response]:
    def handler(request: Request, exc: Exception) -> Response:
        LOG.debug(
            "%s %s failed with %s: %s",
            request.method,
            request.url.path,
            type(exc).__name__,
            exc,
        )
        headers = {"Retry-After": "30"} if status_code == 503 else None
        return Response(
            content={"status_code": status_code, "detail": str(exc)},
            status_code=status_code,
            headers=headers,
        )

    return handler


def create_app(streamer: MediaStreamer | None = None) -> Litestar:
    """Create the media range streaming ASGI application."""
    media = streamer or MediaStreamer.from_env()

    @get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @get("/media")
    async def list_media() -> list[str]:
        return media.catalog_keys()

    @route("/range/media/{key:path}", http_method=[HttpMethod.GET, HttpMethod.HEAD])
    async def range_media(request: Request, key: FromPath[str]) -> Stream:
        # path parameters keep their leading slash
        key = key.lstrip("/")
        if request.method == HttpMethod.HEAD:
            return _head_response(await _run_sync(media.head, key))
        range_header = request.headers.get("range")
        media_slice = await _run_sync(media.open, key, range_header)
        return _stream_response(media_slice)

    # Single-segment keys only; nested keys go through batch-tokens
    @get("/token/media/{key:str}/token")
    async def issue_token(key: FromPath[str]) -> dict[str, str]:
        return {"token": media.issue_token(key)}

    @post("/token/media/batch-tokens", status_code=200)
    async def issue_tokens(data: list[str]) -> dict[str, str]:
        return media.issue_tokens(data)

    @route(
        "/token/media/signed/{token:str}",
        http_method=[HttpMethod.GET, HttpMethod.HEAD],
    )
    async def signed_media(request: Request, token: FromPath[str]) -> Stream:
        key = media.key_from_token(token)
        if request.method == HttpMethod.HEAD:
            return _head_response(await _run_sync(media.head, key))
        range_header = request.headers.get("range")
        media_slice = await _run_sync(
            media.open, key, range_header, bound_unranged=True
        )
        return _stream_response(media_slice)

    async def startup(app: Litestar) -> None:
        await _run_sync(media.startup)

    async def shutdown(app: Litestar) -> None:
        await _run_sync(media.shutdown)

    cors_config = CORSConfig(
        allow_origins=["*"],
        allow_methods=["GET", "HEAD", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Accept-Ranges", "Content-Length", "Content-Range"],
    )

    return Litestar(
        route_handlers=[
            health,
            list_media,
            range_media,
            issue_token,
            issue_tokens,
            signed_media,
            PrometheusController,
        ],
        on_startup=[startup],
        on_shutdown=[shutdown],
        cors_config=cors_config,
        middleware=[prometheus_config.middleware],
        exception_handlers={
            InvalidKeyError: _error_handler(400),
            AuthFailureError: _error_handler(401),
            KeyNotFoundError: _error_handler(404),
            StorageIOError: _error_handler(502),
            StorageUnavailableError: _error_handler(503),
        },
    )


app = create_app()
