"""Run request-path side effects detached from the caller's lifetime.

A request handler may give up (client disconnect, deadline) while a cache write
or model call is still in flight. Work submitted here keeps running on a pool
thread with the caller's context variables and its own timeout; only the wait
is abandoned, never the operation.

Updates:
  v0.1.0 - 2026-10-19 - Introduce DetachedCaller with per-call timeouts.
"""

from __future__ import annotations

import contextvars
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TYPE_CHECKING, ParamSpec, TypeVar

from .exceptions import WorkbenchError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger("prompt_workbench.detached")

DEFAULT_WORKSPACE_TIMEOUT_SECONDS = 5.0
DEFAULT_MODEL_TIMEOUT_SECONDS = 35.0

P = ParamSpec("P")
R = TypeVar("R")


class DetachedTimeoutError(WorkbenchError):
    """Raised when the caller stops waiting for a detached operation."""


class DetachedCaller:
    """Execute callables in a copied context with an independent timeout."""

    def __init__(
        self,
        *,
        max_workers: int = 8,
        workspace_timeout: float = DEFAULT_WORKSPACE_TIMEOUT_SECONDS,
        model_timeout: float = DEFAULT_MODEL_TIMEOUT_SECONDS,
    ) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="workbench-detached"
        )
        self.workspace_timeout = workspace_timeout
        self.model_timeout = model_timeout

    def call(
        self,
        timeout: float,
        func: Callable[P, R],
        /,
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> R:
        """Run ``func(*args, **kwargs)`` detached and wait up to *timeout* seconds."""
        context = contextvars.copy_context()
        future = self._executor.submit(context.run, func, *args, **kwargs)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError as exc:
            name = getattr(func, "__name__", repr(func))
            logger.warning(
                "Detached call exceeded timeout; operation continues in background",
                extra={"operation": name, "timeout": timeout},
            )
            raise DetachedTimeoutError(f"{name} did not finish within {timeout:.1f}s") from exc

    def workspace(self, func: Callable[P, R], /, *args: P.args, **kwargs: P.kwargs) -> R:
        """Run a fast-store write with the workspace timeout."""
        return self.call(self.workspace_timeout, func, *args, **kwargs)

    def model(self, func: Callable[P, R], /, *args: P.args, **kwargs: P.kwargs) -> R:
        """Run a model invocation with the model timeout."""
        return self.call(self.model_timeout, func, *args, **kwargs)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


__all__ = [
    "DEFAULT_MODEL_TIMEOUT_SECONDS",
    "DEFAULT_WORKSPACE_TIMEOUT_SECONDS",
    "DetachedCaller",
    "DetachedTimeoutError",
]
