"""Tests for LiteLLM-backed model invocation.

Updates:
  v0.1.1 - 2026-10-19 - Cover parameter-dropping retries.
  v0.1.0 - 2026-10-19 - Cover payload parsing and invoker request building.
"""

from __future__ import annotations

from typing import Any

import pytest
from pytest import MonkeyPatch

from core import llm
from core.exceptions import ModelInvocationError
from core.litellm_adapter import call_completion_with_fallback
from core.llm import (
    ChatCompletionRequest,
    ChatMessage,
    LiteLLMInvoker,
    parse_completion_payload,
)

COMPLETION = {
    "model": "gpt-4o-mini-2024",
    "choices": [{"message": {"role": "assistant", "content": "Hello there"}}],
    "usage": {"prompt_tokens": 12, "completion_tokens": 3},
}


class _ProviderError(Exception):
    pass


class _RecordingCompletion:
    def __init__(self, *, reject: str | None = None, result: Any = None) -> None:
        self.reject = reject
        self.result = COMPLETION if result is None else result
        self.calls: list[dict[str, Any]] = []

    def __call__(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if self.reject and self.reject in kwargs:
            raise _ProviderError(f"{self.reject} is not supported by this model")
        return self.result


def _install(monkeypatch: MonkeyPatch, completion: _RecordingCompletion) -> None:
    monkeypatch.setattr(llm, "get_completion", lambda: (completion, _ProviderError))


def test_parse_completion_payload_from_mapping() -> None:
    """Choices, usage, and the model name are extracted from dict payloads."""
    response = parse_completion_payload(COMPLETION)

    assert response.content == "Hello there"
    assert response.usage["prompt_tokens"] == 12
    assert response.model == "gpt-4o-mini-2024"


def test_parse_completion_payload_from_model_dump() -> None:
    """Objects exposing model_dump are accepted as well."""

    class _Response:
        def model_dump(self) -> dict[str, Any]:
            return COMPLETION

    assert parse_completion_payload(_Response()).choices == [
        ChatMessage("assistant", "Hello there")
    ]


@pytest.mark.parametrize("payload", [{"choices": []}, {"model": "x"}, "plain text"])
def test_parse_completion_payload_rejects_unexpected_shapes(payload: object) -> None:
    """Payloads without choices are model failures."""
    with pytest.raises(ModelInvocationError):
        parse_completion_payload(payload)


def test_empty_choice_content_raises() -> None:
    """A response whose choices are all blank has no usable content."""
    response = parse_completion_payload(
        {"choices": [{"message": {"role": "assistant", "content": "  "}}]}
    )

    with pytest.raises(ModelInvocationError):
        _ = response.content


def test_invoker_builds_litellm_request(monkeypatch: MonkeyPatch) -> None:
    """Credentials, JSON mode, and sampling options are forwarded to LiteLLM."""
    completion = _RecordingCompletion()
    _install(monkeypatch, completion)
    invoker = LiteLLMInvoker(api_key="sk-test", api_base="http://proxy", timeout_seconds=30)

    response = invoker.invoke(
        "user-1",
        "gpt-4o-mini",
        ChatCompletionRequest(
            messages=[ChatMessage("user", "Hi")], temperature=0.2, max_tokens=64, json_mode=True
        ),
    )

    assert response.content == "Hello there"
    assert response.duration_ms >= 0
    call = completion.calls[0]
    assert call["model"] == "gpt-4o-mini"
    assert call["messages"] == [{"role": "user", "content": "Hi"}]
    assert call["user"] == "user-1"
    assert call["response_format"] == {"type": "json_object"}
    assert (call["temperature"], call["max_tokens"]) == (0.2, 64)
    assert (call["api_key"], call["api_base"], call["timeout"]) == ("sk-test", "http://proxy", 30)


def test_invoker_uses_default_model_and_requires_one(monkeypatch: MonkeyPatch) -> None:
    """A blank model key falls back to the default and fails without one."""
    completion = _RecordingCompletion(result={"choices": COMPLETION["choices"]})
    _install(monkeypatch, completion)
    request = ChatCompletionRequest(messages=[ChatMessage("user", "Hi")])

    response = LiteLLMInvoker(default_model="fallback-model").invoke("user-1", "", request)

    assert completion.calls[0]["model"] == "fallback-model"
    assert response.model == "fallback-model"
    with pytest.raises(ModelInvocationError):
        LiteLLMInvoker().invoke("user-1", " ", request)


def test_invoker_wraps_provider_errors(monkeypatch: MonkeyPatch) -> None:
    """Provider exceptions become ModelInvocationError."""

    def _fail(**kwargs: Any) -> Any:
        raise _ProviderError("rate limited")

    monkeypatch.setattr(llm, "get_completion", lambda: (_fail, _ProviderError))

    with pytest.raises(ModelInvocationError, match="rate limited"):
        LiteLLMInvoker().invoke(
            "user-1", "gpt-4o-mini", ChatCompletionRequest(messages=[ChatMessage("user", "Hi")])
        )


def test_completion_retries_without_unsupported_parameter() -> None:
    """Parameters named in the provider's rejection are dropped for one retry."""
    completion = _RecordingCompletion(reject="temperature")

    result = call_completion_with_fallback(
        {"model": "m", "temperature": 0.5, "messages": []}, completion, _ProviderError
    )

    assert result == COMPLETION
    assert len(completion.calls) == 2
    assert "temperature" not in completion.calls[1]


def test_completion_reraises_unrelated_errors() -> None:
    """Errors that do not name a droppable parameter propagate."""

    def _fail(**kwargs: Any) -> Any:
        raise _ProviderError("invalid api key")

    with pytest.raises(_ProviderError):
        call_completion_with_fallback({"model": "m"}, _fail, _ProviderError)
