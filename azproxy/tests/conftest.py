import asyncio
import logging
from typing import Callable

import httpx
import pytest

from azproxy.adapters.azure_openai import upstream
from azproxy.config.settings import settings
from azproxy.core.diagnostics import diagnostics
from azproxy.util.logger import logger

TEST_ENDPOINT = "https://demo.cognitiveservices.azure.com/openai/deployments/gpt-4o"


class BlockingBody(httpx.AsyncByteStream):
    """Yields the given chunks, then blocks forever like an idle upstream."""

    def __init__(self, chunks: list[bytes]) -> None:
        self.chunks = list(chunks)
        self.reads = 0
        self.closed = False
        self.blocked = asyncio.Event()

    async def __aiter__(self):
        for chunk in self.chunks:
            self.reads += 1
            yield chunk
        self.reads += 1
        self.blocked.set()
        await asyncio.Event().wait()

    async def aclose(self) -> None:
        self.closed = True


class ChunkedBody(httpx.AsyncByteStream):
    def __init__(self, chunks: list[bytes], error: Exception | None = None) -> None:
        self.chunks = list(chunks)
        self.error = error
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def _reset_state(monkeypatch):
    monkeypatch.setattr(settings, "azure_api_endpoint", TEST_ENDPOINT)
    monkeypatch.setattr(settings, "azure_api_version", "2025-01-01-preview")
    monkeypatch.setattr(settings, "azure_api_key", "configured-key-123456")
    diagnostics.reset()
    yield
    diagnostics.reset()


@pytest.fixture
def mock_upstream(monkeypatch) -> Callable[[Callable], list[httpx.Request]]:
    """Route the shared upstream client through an httpx.MockTransport."""

    def install(handler: Callable) -> list[httpx.Request]:
        seen: list[httpx.Request] = []

        async def recording_handler(request: httpx.Request):
            seen.append(request)
            result = handler(request)
            if asyncio.iscoroutine(result):
                result = await result
            return result

        client = httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))
        monkeypatch.setattr(upstream, "_upstream_async_client", client)
        return seen

    return install


@pytest.fixture
def proxy_logs():
    records: list[logging.LogRecord] = []

    class _Collector(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            records.append(record)

    handler = _Collector(level=logging.DEBUG)
    previous_level = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    try:
        yield records
    finally:
        logger.removeHandler(handler)
        logger.setLevel(previous_level)
