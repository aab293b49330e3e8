"""Cooperative cancellation shared by the upstream call and the SSE relay."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, TypeVar

from starlette.types import Receive

from azproxy.core.errors import UpstreamCancelled
from azproxy.util.logger import logger

T = TypeVar("T")


class CancellationToken:
    """Set once when the downstream client disconnects.

    Every upstream suspension point goes through :meth:`guard`, so a cancel
    aborts whatever the request is currently waiting on.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "client_disconnected") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise UpstreamCancelled(self.reason)

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await *awaitable* unless the token fires first.

        On cancel the pending work is cancelled and awaited, then
        :class:`UpstreamCancelled` is raised.
        """
        if self._event.is_set():
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise UpstreamCancelled(self.reason)

        work: asyncio.Future[T] = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            waiter.cancel()
            self.cancel("task_cancelled")
            raise

        if work in done:
            waiter.cancel()
            return work.result()

        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise UpstreamCancelled(self.reason)


async def _watch_disconnect(receive: Receive, token: CancellationToken) -> None:
    while not token.cancelled:
        message: dict[str, Any] = await receive()
        if message.get("type") == "http.disconnect":
            logger.debug("downstream disconnected, cancelling upstream")
            token.cancel("client_disconnected")
            return


def start_disconnect_watcher(receive: Receive, token: CancellationToken) -> asyncio.Task[None]:
    """Cancel *token* when the ASGI receive channel reports ``http.disconnect``.

    Only call this after the request body has been fully read.
    """
    return asyncio.create_task(_watch_disconnect(receive, token), name="azproxy-disconnect-watcher")


async def stop_disconnect_watcher(task: asyncio.Task[None] | None) -> None:
    if task is None or task.done():
        return
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
