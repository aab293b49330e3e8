"""
上游地址、凭据与 HTTP 转发。从 router 拆出，便于维护与单测。
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator

import httpx

from azproxy.config.settings import settings
from azproxy.core.cancellation import CancellationToken
from azproxy.core.errors import (
    StreamingFault,
    UpstreamCancelled,
    UpstreamConnectionError,
    UpstreamStatusError,
)
from azproxy.util.logger import logger

_upstream_async_client: httpx.AsyncClient | None = None
_upstream_client_lock: Any = None


def _upstream_http_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=max(10, int(settings.upstream_max_connections)),
        max_keepalive_connections=max(5, int(settings.upstream_max_keepalive_connections)),
    )


def _upstream_http_timeout() -> httpx.Timeout:
    # 流式响应可能持续很久，只限制建连
    return httpx.Timeout(None, connect=float(settings.upstream_connect_timeout_seconds))


async def _get_upstream_async_client() -> httpx.AsyncClient:
    global _upstream_async_client, _upstream_client_lock
    if _upstream_async_client is not None:
        return _upstream_async_client
    if _upstream_client_lock is None:
        _upstream_client_lock = asyncio.Lock()
    async with _upstream_client_lock:
        if _upstream_async_client is None:
            _upstream_async_client = httpx.AsyncClient(
                http2=False,
                timeout=_upstream_http_timeout(),
                limits=_upstream_http_limits(),
            )
    return _upstream_async_client


async def close_upstream_async_client() -> None:
    global _upstream_async_client
    if _upstream_async_client is not None:
        await _upstream_async_client.aclose()
        _upstream_async_client = None


def resolve_credential(authorization: str | None) -> str:
    """Token after the auth scheme if present, else the configured key."""
    _, _, token = (authorization or "").strip().partition(" ")
    token = token.strip()
    if token:
        return token
    return (settings.azure_api_key or "").strip()


def resolve_user_agent(user_agent: str | None) -> str:
    candidate = (user_agent or "").strip()
    return candidate or settings.fallback_user_agent


def _endpoint_base() -> str:
    base = (settings.azure_api_endpoint or "").strip().rstrip("/")
    if not base:
        raise UpstreamConnectionError("AZURE_API_ENDPOINT is not configured")
    return base


def build_upstream_url(request_path: str) -> str:
    """``<endpoint><path>`` with ``api-version`` added next to any existing query."""
    route_path = request_path or "/"
    if not route_path.startswith("/"):
        route_path = f"/{route_path}"
    try:
        url = httpx.URL(f"{_endpoint_base()}{route_path}")
    except httpx.InvalidURL as exc:
        raise UpstreamConnectionError(f"invalid upstream url: {exc}") from exc
    return str(url.copy_add_param("api-version", settings.azure_api_version))


def build_upstream_headers(credential: str, user_agent: str | None) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Accept": "text/event-stream",
        settings.upstream_credential_header: credential or "",
        "user-agent": resolve_user_agent(user_agent),
    }


def _connection_detail(exc: Exception) -> str:
    detail = (str(exc) or "").strip()
    return detail or type(exc).__name__ or "connection_failed_or_timeout"


class UpstreamStream:
    """An open 2xx upstream response, owned by exactly one relay."""

    def __init__(self, response: httpx.Response, cancellation: CancellationToken) -> None:
        self._response = response
        self._cancellation = cancellation
        self._closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    @property
    def closed(self) -> bool:
        return self._closed

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        chunks = self._response.aiter_bytes()
        while True:
            try:
                chunk = await self._cancellation.guard(anext(chunks))
            except StopAsyncIteration:
                return
            except (httpx.HTTPError, httpx.StreamError) as exc:
                raise StreamingFault(_connection_detail(exc)) from exc
            if chunk:
                yield chunk

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()


async def _read_error_body(response: httpx.Response, cancellation: CancellationToken) -> str:
    try:
        raw = await cancellation.guard(response.aread())
    except (httpx.HTTPError, httpx.StreamError) as exc:
        logger.debug("upstream error body unreadable status=%s error=%s", response.status_code, exc)
        return ""
    return raw.decode("utf-8", errors="replace")


async def open_upstream_stream(
    payload: dict[str, Any],
    request_path: str,
    credential: str,
    user_agent: str | None,
    cancellation: CancellationToken,
) -> UpstreamStream:
    """POST *payload* upstream and return the open SSE response.

    Raises UpstreamConnectionError, UpstreamStatusError or UpstreamCancelled.
    """
    url = build_upstream_url(request_path)
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    headers = build_upstream_headers(credential, user_agent)
    logger.debug("forward_stream start url=%s payload_bytes=%d", url, len(body))

    client = await _get_upstream_async_client()
    request = client.build_request("POST", url, content=body, headers=headers)
    try:
        response = await cancellation.guard(client.send(request, stream=True))
    except httpx.HTTPError as exc:
        detail = _connection_detail(exc)
        logger.warning("forward_stream http_error url=%s error=%s", url, detail)
        raise UpstreamConnectionError(detail) from exc
    logger.debug("forward_stream connected url=%s status=%s", url, response.status_code)

    if response.is_success:
        return UpstreamStream(response, cancellation)

    try:
        error_text = await _read_error_body(response, cancellation)
    except UpstreamCancelled:
        await response.aclose()
        raise
    await response.aclose()
    logger.warning("forward_stream upstream_status url=%s status=%s", url, response.status_code)
    raise UpstreamStatusError(response.status_code, response.reason_phrase, error_text)
