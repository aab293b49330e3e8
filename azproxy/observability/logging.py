"""Structured event lines for the proxy log."""

from __future__ import annotations

from azproxy.util.logger import logger


def format_event(event: str, **payload: object) -> str:
    """Render ``event=<name> key=value ...`` with payload keys in call order."""
    fields = " ".join(f"{key}={value!r}" if isinstance(value, str) else f"{key}={value}" for key, value in payload.items())
    return f"event={event} {fields}" if fields else f"event={event}"


def log_event(event: str, **payload: object) -> None:
    logger.info("%s", format_event(event, **payload))
