"""Worker host entry point for the prompt workbench pipeline.

Updates:
  v0.2.0 - 2026-10-19 - Add --print-settings summary and single-pass score refresh.
  v0.1.0 - 2026-10-19 - Run persistence, visit flush, and score refresh workers until signalled.
"""

from __future__ import annotations

import argparse
import logging
import signal
from pathlib import Path
from typing import TYPE_CHECKING

from config import SettingsError, load_settings
from core.factory import build_runtime
from core.runtime import WorkerHost, configure_litellm_logging, setup_logging

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from config import WorkbenchSettings


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Prompt workbench background workers")
    parser.add_argument(
        "--logging-config",
        type=Path,
        default=None,
        help="Path to a logging.conf file (defaults to config/logging.conf).",
    )
    parser.add_argument(
        "--print-settings",
        action="store_true",
        help="Print the resolved settings (secrets masked) and exit.",
    )
    parser.add_argument(
        "--refresh-scores",
        action="store_true",
        help="Run a single quality score refresh pass and exit.",
    )
    return parser.parse_args(argv)


def print_settings_summary(settings: WorkbenchSettings) -> None:
    for name, value in settings.model_dump().items():
        if name == "litellm_api_key":
            value = "***" if value else None
        print(f"{name}: {value}")


def main(argv: Sequence[str] | None = None) -> int:
    """Entrypoint that wires settings, the runtime, and the worker host."""
    args = parse_args(argv)
    logger = logging.getLogger("prompt_workbench.main")
    try:
        settings = load_settings()
    except SettingsError as exc:
        setup_logging(args.logging_config)
        logger.error("Failed to load settings: %s", exc)
        return 2

    setup_logging(args.logging_config or settings.log_config_path)
    configure_litellm_logging(settings.litellm_logging_enabled)
    if args.print_settings:
        print_settings_summary(settings)
        return 0

    runtime = build_runtime(settings)
    try:
        if args.refresh_scores:
            summary = runtime.scorer.refresh_all()
            logger.info(
                "Score refresh finished",
                extra={"scored": summary.scored, "failed": summary.failed},
            )
            return 0 if summary.failed == 0 else 1

        host = WorkerHost(
            [runtime.persistence_worker, runtime.flush_worker, runtime.refresh_worker]
        )

        def _request_stop(signum: int, _frame: FrameType | None) -> None:
            logger.info("Received signal %s; stopping workers", signum)
            host.stop_event.set()

        signal.signal(signal.SIGINT, _request_stop)
        signal.signal(signal.SIGTERM, _request_stop)
        host.start()
        while not host.wait(1.0):
            pass
        host.stop()
        return 0
    finally:
        runtime.close()


if __name__ == "__main__":
    raise SystemExit(main())
