"""Logging setup and background worker hosting.

Updates:
  v0.2.0 - 2026-10-19 - Add WorkerHost to start and stop all background loops together.
  v0.1.0 - 2026-10-19 - Extract logging configuration helpers.
"""

from __future__ import annotations

import logging
import logging.config
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger("prompt_workbench.runtime")

DEFAULT_LOGGING_CONFIG = Path("config") / "logging.conf"


def setup_logging(logging_conf_path: Path | None) -> None:
    """Configure logging using *logging_conf_path* when available."""
    path = logging_conf_path or DEFAULT_LOGGING_CONFIG
    if path.exists():
        try:
            logging.config.fileConfig(path, disable_existing_loggers=False)
            return
        except (OSError, ValueError, KeyError, RuntimeError) as exc:
            logging.basicConfig(
                level=logging.INFO,
                format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            )
            logger.warning("Invalid logging config %s; using defaults", path, exc_info=exc)
            return
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def configure_litellm_logging(enabled: bool) -> None:
    """Enable or disable upstream LiteLLM library logs."""
    litellm_loggers = (
        logging.getLogger("litellm"),
        logging.getLogger("LiteLLM"),
        logging.getLogger("LiteLLM Router"),
    )
    for litellm_logger in litellm_loggers:
        litellm_logger.propagate = True
        if enabled:
            litellm_logger.disabled = False
            litellm_logger.setLevel(logging.NOTSET)
        else:
            litellm_logger.disabled = True
            litellm_logger.setLevel(logging.CRITICAL)


class BackgroundWorker(Protocol):
    """Loop started with a stop event and joined on shutdown."""

    def start(self, stop_event: threading.Event) -> None: ...

    def join(self, timeout: float | None = 2.0) -> None: ...


class WorkerHost:
    """Run a set of background workers bound to one shared stop event."""

    def __init__(self, workers: Iterable[BackgroundWorker | None]) -> None:
        self._workers = [worker for worker in workers if worker is not None]
        self._stop_event = threading.Event()
        self._started = False

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    @property
    def workers(self) -> list[BackgroundWorker]:
        return list(self._workers)

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        for worker in self._workers:
            worker.start(self._stop_event)
        logger.info("Background workers started", extra={"count": len(self._workers)})

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal every worker to stop and wait for each in turn."""
        self._stop_event.set()
        for worker in self._workers:
            worker.join(timeout)
        self._started = False
        logger.info("Background workers stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until stop is requested; returns True once it has been."""
        return self._stop_event.wait(timeout)


__all__ = [
    "BackgroundWorker",
    "DEFAULT_LOGGING_CONFIG",
    "WorkerHost",
    "configure_litellm_logging",
    "setup_logging",
]
