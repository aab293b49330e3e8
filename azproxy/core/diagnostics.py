"""In-memory request diagnostics.

Best effort only: everything here is lost on restart.
"""

from __future__ import annotations

import json
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from azproxy.config.settings import settings
from azproxy.util.masking import mask_credential


def _now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


@dataclass(slots=True)
class RequestSummary:
    url: str
    user_agent: str
    authorization: str
    model: Any
    message_count: int
    tools: str
    timestamp: str = field(default_factory=_now_iso)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_request_summary(
    payload: dict[str, Any],
    *,
    url: str,
    user_agent: str | None,
    credential: str,
) -> RequestSummary:
    messages = payload.get("messages")
    tools = payload.get("tools")
    return RequestSummary(
        url=url,
        user_agent=user_agent or "unknown",
        authorization=mask_credential(credential),
        model=payload.get("model"),
        message_count=len(messages) if isinstance(messages, list) else 0,
        tools=json.dumps(tools, ensure_ascii=False) if isinstance(tools, list) else "none",
    )


class DiagnosticsState:
    """Request log plus the last-request-successful flag."""

    def __init__(self, max_entries: int) -> None:
        self._lock = threading.Lock()
        self._requests: deque[RequestSummary] = deque(maxlen=max(1, int(max_entries)))
        self._last_request_successful = False

    def record_request(self, summary: RequestSummary) -> None:
        with self._lock:
            self._requests.append(summary)

    def recent_requests(self, limit: int | None = None) -> list[RequestSummary]:
        with self._lock:
            items = list(self._requests)
        if limit is None:
            return items
        if limit <= 0:
            return []
        return items[-limit:]

    def request_count(self) -> int:
        with self._lock:
            return len(self._requests)

    def mark_result(self, successful: bool) -> None:
        with self._lock:
            self._last_request_successful = bool(successful)

    @property
    def last_request_successful(self) -> bool:
        with self._lock:
            return self._last_request_successful

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()
            self._last_request_successful = False


diagnostics = DiagnosticsState(max_entries=settings.request_log_max_entries)
