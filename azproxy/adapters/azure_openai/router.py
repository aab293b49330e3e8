"""Azure OpenAI chat-completion proxy route."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, Response
from starlette.requests import ClientDisconnect

from azproxy.adapters.azure_openai.mapper import transform_request
from azproxy.adapters.azure_openai.stream_utils import _build_streaming_response, relay_sse
from azproxy.adapters.azure_openai.upstream import (
    UpstreamStream,
    open_upstream_stream,
    resolve_credential,
)
from azproxy.core.cancellation import (
    CancellationToken,
    start_disconnect_watcher,
    stop_disconnect_watcher,
)
from azproxy.core.diagnostics import build_request_summary, diagnostics
from azproxy.core.errors import (
    ClientInputError,
    ProxyError,
    StreamingFault,
    UpstreamCancelled,
    UpstreamConnectionError,
    UpstreamStatusError,
)
from azproxy.observability.logging import log_event
from azproxy.util.logger import logger


router = APIRouter()

INVALID_JSON_MESSAGE = "Invalid JSON from client"
UPSTREAM_ERROR_PREFIX = "Error communicating with Azure OpenAI"
# nginx 约定：客户端在响应前关闭连接
CLIENT_CLOSED_REQUEST = 499


class RequestPhase(str, Enum):
    READING_BODY = "reading_body"
    TRANSFORMING = "transforming"
    AWAITING_UPSTREAM = "awaiting_upstream"
    STREAMING = "streaming"
    EMITTING_ERROR = "emitting_error"
    DONE = "done"


@dataclass(slots=True)
class ProxyExchange:
    path: str
    phase: RequestPhase = RequestPhase.READING_BODY
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    watcher: asyncio.Task[None] | None = None

    @property
    def headers_sent(self) -> bool:
        return self.phase is RequestPhase.STREAMING

    def advance(self, phase: RequestPhase) -> None:
        logger.debug("exchange phase path=%s %s -> %s", self.path, self.phase.value, phase.value)
        self.phase = phase


def _request_path(request: Request) -> str:
    # 使用未解码的 raw_path，%2F 等编码段原样转发
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1").split("?", 1)[0] if raw_path else request.url.path
    query = request.url.query
    return f"{path}?{query}" if query else path


def _parse_client_payload(raw: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ClientInputError(INVALID_JSON_MESSAGE) from exc
    if not isinstance(payload, dict):
        raise ClientInputError(INVALID_JSON_MESSAGE)
    return payload


def _upstream_error_text(exc: ProxyError) -> str:
    if isinstance(exc, UpstreamStatusError):
        return f"{UPSTREAM_ERROR_PREFIX}: {exc.status_code} {exc.reason}\n{exc.body}"
    return f"{UPSTREAM_ERROR_PREFIX}: {exc}"


async def _error_response(exchange: ProxyExchange, exc: ProxyError) -> Response:
    await stop_disconnect_watcher(exchange.watcher)
    exchange.advance(RequestPhase.EMITTING_ERROR)
    if isinstance(exc, UpstreamCancelled):
        logger.debug("upstream call cancelled before response path=%s reason=%s", exchange.path, exc)
        response: Response = Response(status_code=CLIENT_CLOSED_REQUEST)
    else:
        diagnostics.mark_result(False)
        message = _upstream_error_text(exc)
        logger.error("upstream request failed path=%s error=%s", exchange.path, message)
        response = PlainTextResponse(message, status_code=502)
    exchange.advance(RequestPhase.DONE)
    return response


async def _stream_to_client(exchange: ProxyExchange, stream: UpstreamStream) -> AsyncGenerator[bytes, None]:
    try:
        async for line in relay_sse(stream, exchange.cancellation):
            yield line
        diagnostics.mark_result(True)
        logger.info("stream completed path=%s", exchange.path)
    except UpstreamCancelled:
        pass
    except StreamingFault:
        # 响应头已发出，不能再改状态码，只结束连接
        diagnostics.mark_result(False)
        logger.warning("stream ended after upstream fault path=%s headers_sent=%s", exchange.path, exchange.headers_sent)
    finally:
        await stop_disconnect_watcher(exchange.watcher)
        exchange.advance(RequestPhase.DONE)


@router.post("/{subpath:path}")
async def chat_completions(subpath: str, request: Request) -> Response:
    exchange = ProxyExchange(path=_request_path(request))

    try:
        raw = await request.body()
    except ClientDisconnect:
        logger.debug("client disconnected while sending body path=%s", exchange.path)
        exchange.advance(RequestPhase.DONE)
        return Response(status_code=CLIENT_CLOSED_REQUEST)

    try:
        client_payload = _parse_client_payload(raw)
    except ClientInputError as exc:
        logger.warning("client payload rejected path=%s bytes=%d", exchange.path, len(raw))
        exchange.advance(RequestPhase.DONE)
        return PlainTextResponse(str(exc), status_code=400)

    exchange.advance(RequestPhase.TRANSFORMING)
    upstream_payload = transform_request(client_payload)
    credential = resolve_credential(request.headers.get("authorization"))
    user_agent = request.headers.get("user-agent")

    summary = build_request_summary(
        client_payload,
        url=exchange.path,
        user_agent=user_agent,
        credential=credential,
    )
    diagnostics.record_request(summary)
    log_event("request_summary", **summary.as_dict())

    exchange.advance(RequestPhase.AWAITING_UPSTREAM)
    exchange.watcher = start_disconnect_watcher(request.receive, exchange.cancellation)
    try:
        stream = await open_upstream_stream(
            upstream_payload,
            exchange.path,
            credential,
            user_agent,
            exchange.cancellation,
        )
    except (UpstreamConnectionError, UpstreamStatusError, UpstreamCancelled) as exc:
        return await _error_response(exchange, exc)

    exchange.advance(RequestPhase.STREAMING)
    return _build_streaming_response(_stream_to_client(exchange, stream))
