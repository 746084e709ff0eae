"""Chat-completion invocation used by interpretation and draft generation.

Updates:
  v0.1.1 - 2026-10-19 - Request JSON objects when the caller asks for JSON mode.
  v0.1.0 - 2026-10-19 - Introduce ModelInvoker protocol and LiteLLM implementation.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, cast

from .exceptions import ModelInvocationError
from .litellm_adapter import call_completion_with_fallback, get_completion

logger = logging.getLogger("prompt_workbench.llm")


@dataclass(slots=True, frozen=True)
class ChatMessage:
    role: str
    content: str

    def to_payload(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(slots=True)
class ChatCompletionRequest:
    """Provider-agnostic chat completion request."""

    messages: list[ChatMessage]
    temperature: float | None = None
    max_tokens: int | None = None
    json_mode: bool = False


@dataclass(slots=True)
class ChatCompletionResponse:
    """Normalised completion payload."""

    choices: list[ChatMessage] = field(default_factory=list)
    usage: dict[str, Any] = field(default_factory=dict)
    model: str = ""
    duration_ms: int = 0

    @property
    def content(self) -> str:
        """Return the first choice's content or raise when none is present."""
        for choice in self.choices:
            if choice.content.strip():
                return choice.content
        raise ModelInvocationError("Model response contained no content")


class ModelInvoker(Protocol):
    """Capability interface for chat-completion providers."""

    def invoke(
        self, user_id: str, model_key: str, request: ChatCompletionRequest
    ) -> ChatCompletionResponse: ...


def _to_mapping(payload: Any) -> Mapping[str, Any]:
    if isinstance(payload, Mapping):
        return cast("Mapping[str, Any]", payload)
    model_dump = getattr(payload, "model_dump", None)
    if callable(model_dump):
        dumped = model_dump()
        if isinstance(dumped, Mapping):
            return cast("Mapping[str, Any]", dumped)
    raise ModelInvocationError("LiteLLM returned an unexpected payload")


def parse_completion_payload(payload: Any) -> ChatCompletionResponse:
    """Convert a LiteLLM response (object or mapping) into a response dataclass."""
    mapping = _to_mapping(payload)
    choices_value = mapping.get("choices")
    if not isinstance(choices_value, Sequence) or not choices_value:
        raise ModelInvocationError("LiteLLM returned an unexpected payload")
    choices: list[ChatMessage] = []
    for entry in cast("Sequence[Any]", choices_value):
        if not isinstance(entry, Mapping):
            continue
        message = cast("Mapping[str, Any]", entry).get("message")
        if isinstance(message, Mapping):
            message_mapping = cast("Mapping[str, Any]", message)
            choices.append(
                ChatMessage(
                    role=str(message_mapping.get("role") or "assistant"),
                    content=str(message_mapping.get("content") or ""),
                )
            )
    usage_value = mapping.get("usage")
    usage = dict(cast("Mapping[str, Any]", usage_value)) if isinstance(usage_value, Mapping) else {}
    return ChatCompletionResponse(
        choices=choices,
        usage=usage,
        model=str(mapping.get("model") or ""),
    )


class LiteLLMInvoker:
    """Model invoker routing requests through ``litellm.completion``."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_base = api_base
        self._default_model = default_model
        self._timeout_seconds = timeout_seconds

    def invoke(
        self, user_id: str, model_key: str, request: ChatCompletionRequest
    ) -> ChatCompletionResponse:
        model = (model_key or self._default_model or "").strip()
        if not model:
            raise ModelInvocationError("No model configured for invocation")
        completion, lite_llm_exception = get_completion()
        payload: dict[str, object] = {
            "model": model,
            "messages": [message.to_payload() for message in request.messages],
            "user": user_id,
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        if request.json_mode:
            payload["response_format"] = {"type": "json_object"}
        if self._api_key:
            payload["api_key"] = self._api_key
        if self._api_base:
            payload["api_base"] = self._api_base
        if self._timeout_seconds:
            payload["timeout"] = self._timeout_seconds

        started = time.perf_counter()
        try:
            raw = call_completion_with_fallback(payload, completion, lite_llm_exception)
        except lite_llm_exception as exc:
            logger.warning(
                "Model invocation failed",
                exc_info=exc,
                extra={"model": model, "user_id": user_id},
            )
            raise ModelInvocationError(f"Model invocation failed: {exc}") from exc
        response = parse_completion_payload(raw)
        response.duration_ms = int((time.perf_counter() - started) * 1000)
        if not response.model:
            response.model = model
        logger.debug(
            "Model invocation complete",
            extra={
                "model": model,
                "duration_ms": response.duration_ms,
                "prompt_tokens": response.usage.get("prompt_tokens"),
                "completion_tokens": response.usage.get("completion_tokens"),
            },
        )
        return response


__all__ = [
    "ChatCompletionRequest",
    "ChatCompletionResponse",
    "ChatMessage",
    "LiteLLMInvoker",
    "ModelInvoker",
    "parse_completion_payload",
]
