"""Map OpenAI-compatible client payloads to Azure chat-completion payloads."""

from __future__ import annotations

from typing import Any

SYSTEM_PROMPT = "You must always respond in markdown format."
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 200


def system_message() -> dict[str, str]:
    return {"role": "system", "content": SYSTEM_PROMPT}


def _prompt_to_chat(payload: dict[str, Any]) -> dict[str, Any]:
    mapped: dict[str, Any] = {
        "messages": [system_message(), {"role": "user", "content": payload["prompt"]}],
        "temperature": DEFAULT_TEMPERATURE,
        "max_tokens": DEFAULT_MAX_TOKENS,
        "stream": True,
    }
    for key, value in payload.items():
        # messages/stream 已由本分支构造，不允许被调用方覆盖
        if key in {"prompt", "messages", "stream"}:
            continue
        mapped[key] = value
    return mapped


def _messages_to_chat(payload: dict[str, Any]) -> dict[str, Any]:
    mapped: dict[str, Any] = {**payload, "stream": True}
    messages = payload.get("messages")
    if isinstance(messages, list):
        mapped["messages"] = [system_message(), *messages]
    else:
        mapped["messages"] = [system_message()]
    return mapped


def transform_request(payload: dict[str, Any]) -> dict[str, Any]:
    """Return the upstream payload for *payload*; the input is left untouched.

    A ``prompt`` key selects the prompt shape (even when ``messages`` is also
    present); everything else is handled as the messages shape. The output
    always streams and always starts with the markdown system message;
    transforming an already transformed payload adds a second one.
    """
    if "prompt" in payload:
        return _prompt_to_chat(payload)
    return _messages_to_chat(payload)
