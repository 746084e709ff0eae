"""Shared LiteLLM adapters for the prompt workbench.

Updates:
  v0.2.1 - 2026-10-19 - Retry completions without parameters the provider rejects.
  v0.2.0 - 2026-10-19 - Trim adapter to completion helpers used by the model invoker.
  v0.1.0 - 2026-10-19 - Provide lazy LiteLLM completion import helper.
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable


class LiteLLMNotInstalledError(RuntimeError):
    """Raised when LiteLLM is not available in the current environment."""


_completion: Callable[..., object] | None = None
_LiteLLMException: type[Exception] = Exception

_DROP_CANDIDATES = frozenset({"max_tokens", "temperature", "timeout", "response_format"})


def _ensure_loaded() -> None:
    """Import LiteLLM lazily so importing the core package stays cheap."""

    global _completion, _LiteLLMException
    if _completion is not None:
        return
    try:  # pragma: no cover - runtime import path
        litellm = importlib.import_module("litellm")
    except ImportError as exc:
        raise LiteLLMNotInstalledError(
            "Model invocation requires the 'litellm' package. Install it with `pip install litellm`."
        ) from exc

    completion = getattr(litellm, "completion", None)
    if completion is None:
        raise RuntimeError("litellm completion API is unavailable in the installed version.")
    exceptions_module = importlib.import_module("litellm.exceptions")
    _completion = completion
    _LiteLLMException = getattr(exceptions_module, "LiteLLMException", Exception)


def get_completion() -> tuple[Callable[..., object], type[Exception]]:
    """Return the LiteLLM completion callable and exception type."""

    _ensure_loaded()
    assert _completion is not None  # pragma: no cover - defensive
    return _completion, _LiteLLMException


def call_completion_with_fallback(
    request: dict[str, object],
    completion: Callable[..., object],
    lite_llm_exception: type[Exception],
) -> object:
    """Invoke LiteLLM completion and retry once without unsupported params."""

    try:
        return completion(**request)
    except lite_llm_exception as exc:
        unsupported = _detect_unsupported_parameters(str(exc), request.keys())
        if not unsupported:
            raise
        trimmed_request = {key: value for key, value in request.items() if key not in unsupported}
        logging.getLogger("prompt_workbench.litellm").info(
            "LiteLLM model rejected parameters %s; retrying request without them.",
            ", ".join(sorted(unsupported)),
        )
        return completion(**trimmed_request)


def _detect_unsupported_parameters(message: str, parameters: Iterable[str]) -> set[str]:
    lowered = message.lower()
    indicators = ("not support", "unsupported", "not allowed", "unexpected", "unknown")
    if not any(token in lowered for token in indicators):
        return set()
    unsupported: set[str] = set()
    for key in parameters:
        if key not in _DROP_CANDIDATES:
            continue
        key_forms = (key, key.replace("_", " "), key.replace("_", "-"))
        if any(form in lowered for form in key_forms):
            unsupported.add(key)
    return unsupported


__all__ = [
    "LiteLLMNotInstalledError",
    "call_completion_with_fallback",
    "get_completion",
]
