"""
SSE 行解码、过滤与转发。从 router 拆出，便于维护与单测。
"""

from __future__ import annotations

import asyncio
import codecs
import json
from typing import Any, AsyncGenerator, AsyncIterable, Iterable

from fastapi.responses import StreamingResponse

from azproxy.adapters.azure_openai.upstream import UpstreamStream
from azproxy.core.cancellation import CancellationToken
from azproxy.core.errors import StreamingFault, UpstreamCancelled
from azproxy.util.logger import logger

DONE_TOKEN = "[DONE]"
DATA_PREFIX = "data:"


class SseLineDecoder:
    """Turn arbitrarily split UTF-8 chunks into complete text lines.

    Multi-byte characters split across chunks are held by the incremental
    decoder; a partial line stays in the buffer until its newline arrives.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += self._decoder.decode(chunk)
        return self._drain_lines()

    def finish(self) -> list[str]:
        self._buffer += self._decoder.decode(b"", final=True)
        lines = self._drain_lines()
        if self._buffer:
            tail = self._buffer
            self._buffer = ""
            lines.append(tail[:-1] if tail.endswith("\r") else tail)
        return lines

    def _drain_lines(self) -> list[str]:
        lines: list[str] = []
        while True:
            newline_index = self._buffer.find("\n")
            if newline_index == -1:
                return lines
            line = self._buffer[:newline_index]
            self._buffer = self._buffer[newline_index + 1 :]
            if line.endswith("\r"):
                line = line[:-1]
            lines.append(line)


def _has_empty_choices(data_payload: str) -> bool:
    try:
        event: Any = json.loads(data_payload)
    except (json.JSONDecodeError, RecursionError):
        return False
    if not isinstance(event, dict):
        return False
    choices = event.get("choices")
    return isinstance(choices, list) and not choices


def filter_sse_line(line: str) -> str | None:
    """Return the text to forward for one upstream line, or None to drop it."""
    if line == "":
        # 空行是事件分隔符，必须保留
        return "\n"
    if not line.startswith(DATA_PREFIX):
        return f"{line}\n"

    data_payload = line[len(DATA_PREFIX) :].strip()
    if data_payload == DONE_TOKEN:
        return f"{DATA_PREFIX} {DONE_TOKEN}\n\n"
    if not data_payload:
        return None
    if _has_empty_choices(data_payload):
        # keepalive 事件：choices 为空数组
        return None
    return f"{line}\n"


def filter_sse_lines(lines: Iterable[str]) -> list[str]:
    return [out for out in (filter_sse_line(line) for line in lines) if out is not None]


async def relay_sse(
    stream: UpstreamStream,
    cancellation: CancellationToken,
) -> AsyncGenerator[bytes, None]:
    """Yield filtered SSE lines from *stream*, one body chunk per line.

    Ends quietly on cancellation, logs and ends on a read fault, and always
    closes the upstream response.
    """
    decoder = SseLineDecoder()
    line_count = 0
    try:
        async for chunk in stream.iter_chunks():
            for out in filter_sse_lines(decoder.feed(chunk)):
                cancellation.raise_if_cancelled()
                line_count += 1
                yield out.encode("utf-8")
        for out in filter_sse_lines(decoder.finish()):
            line_count += 1
            yield out.encode("utf-8")
        logger.debug("sse relay finished lines=%d", line_count)
    except UpstreamCancelled as exc:
        logger.debug("sse relay cancelled reason=%s lines=%d", exc, line_count)
        raise
    except StreamingFault as exc:
        logger.error("sse relay upstream read failed lines=%d error=%s", line_count, exc)
        raise
    except asyncio.CancelledError:
        cancellation.cancel("task_cancelled")
        raise
    finally:
        # 服务端取消时 finally 里的 await 也会被取消，关闭上游需要 shield
        await asyncio.shield(stream.aclose())


def _build_streaming_response(generator: Iterable[bytes] | AsyncIterable[bytes]) -> StreamingResponse:
    return StreamingResponse(
        generator,
        status_code=200,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
