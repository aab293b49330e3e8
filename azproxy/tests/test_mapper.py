import copy

from azproxy.adapters.azure_openai.mapper import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    SYSTEM_PROMPT,
    system_message,
    transform_request,
)

SYSTEM = {"role": "system", "content": "You must always respond in markdown format."}


def test_system_message_is_fixed_markdown_instruction():
    assert system_message() == SYSTEM
    assert SYSTEM_PROMPT == SYSTEM["content"]


def test_prompt_shape_builds_two_message_conversation_with_defaults():
    mapped = transform_request({"model": "x", "prompt": "hi"})

    assert mapped["messages"] == [SYSTEM, {"role": "user", "content": "hi"}]
    assert mapped["stream"] is True
    assert mapped["temperature"] == DEFAULT_TEMPERATURE
    assert mapped["max_tokens"] == DEFAULT_MAX_TOKENS
    assert mapped["model"] == "x"
    assert "prompt" not in mapped


def test_prompt_shape_caller_values_override_defaults():
    tools = [{"type": "function", "function": {"name": "read"}}]
    mapped = transform_request(
        {"prompt": "hi", "temperature": 0.1, "max_tokens": 5, "tools": tools, "stream": False}
    )

    assert mapped["temperature"] == 0.1
    assert mapped["max_tokens"] == 5
    assert mapped["tools"] == tools
    assert mapped["stream"] is True


def test_prompt_shape_explicit_null_is_passed_through():
    mapped = transform_request({"prompt": "hi", "temperature": None})
    assert mapped["temperature"] is None
    assert mapped["max_tokens"] == DEFAULT_MAX_TOKENS


def test_prompt_wins_over_messages_when_both_present():
    mapped = transform_request(
        {"prompt": "from prompt", "messages": [{"role": "user", "content": "from messages"}]}
    )
    assert mapped["messages"] == [SYSTEM, {"role": "user", "content": "from prompt"}]


def test_prompt_value_is_passed_through_as_is():
    mapped = transform_request({"prompt": ["a", "b"]})
    assert mapped["messages"][1] == {"role": "user", "content": ["a", "b"]}


def test_messages_shape_prepends_system_message():
    history = [
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "hi there"},
        {"role": "user", "content": "explain"},
    ]
    mapped = transform_request({"model": "gpt-4o", "messages": history, "temperature": 1})

    assert mapped["messages"] == [SYSTEM, *history]
    assert mapped["stream"] is True
    assert mapped["model"] == "gpt-4o"
    assert mapped["temperature"] == 1
    assert "max_tokens" not in mapped


def test_messages_shape_forces_stream():
    mapped = transform_request({"messages": [], "stream": False})
    assert mapped["stream"] is True
    assert mapped["messages"] == [SYSTEM]


def test_payload_without_prompt_or_messages_gets_only_system_message():
    mapped = transform_request({"model": "x"})
    assert mapped == {"model": "x", "stream": True, "messages": [SYSTEM]}


def test_non_list_messages_value_is_replaced():
    assert transform_request({"messages": "hello"})["messages"] == [SYSTEM]
    assert transform_request({"messages": {"0": {"role": "user", "content": "hi"}}})["messages"] == [SYSTEM]
    assert transform_request({"messages": None})["messages"] == [SYSTEM]


def test_transform_does_not_mutate_input():
    payload = {"messages": [{"role": "user", "content": "hi"}], "stream": False}
    snapshot = copy.deepcopy(payload)
    transform_request(payload)
    assert payload == snapshot


def test_transform_twice_duplicates_system_message():
    once = transform_request({"messages": [{"role": "user", "content": "hi"}]})
    twice = transform_request(once)

    assert twice["messages"][0] == SYSTEM
    assert twice["messages"][1] == SYSTEM
    assert twice["messages"][2] == {"role": "user", "content": "hi"}


def test_system_message_is_not_shared_between_calls():
    first = transform_request({"prompt": "a"})
    first["messages"][0]["content"] = "changed"
    second = transform_request({"prompt": "b"})
    assert second["messages"][0] == SYSTEM
