# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""structlog + stdlib bridge for scan runs.

stderr gets ConsoleRenderer (terminal) or JSONRenderer (machine output).
A run can additionally mirror every event into ``run.log.jsonl`` inside
its output directory, one JSON object per line.

Leaf module with no pagepassport imports. Safe to call early in startup.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

# Chatty third-party loggers that drown out stage messages at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "PIL")

_RUN_FILE_HANDLER_NAME = "pagepassport.run_file"


def _shared_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]


def _formatter(renderer) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=_shared_processors(),
    )


def configure(*, json_output: bool = False, level: str = "INFO") -> None:
    """Configure structlog with stdlib bridge.

    Args:
        json_output: True for JSON lines (CI, log shipping), False for human-readable.
        level: Root logger level (default INFO).
    """
    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_formatter(renderer))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def attach_run_log(run_dir: Path) -> Path:
    """Mirror all log events into ``run_dir/run.log.jsonl`` (fresh file per run).

    Replaces a previously attached run file handler so consecutive runs in
    one process never write into each other's log.
    """
    detach_run_log()
    run_dir.mkdir(parents=True, exist_ok=True)
    log_path = run_dir / "run.log.jsonl"
    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    handler.set_name(_RUN_FILE_HANDLER_NAME)
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    logging.getLogger().addHandler(handler)
    return log_path


def detach_run_log() -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() == _RUN_FILE_HANDLER_NAME:
            root.removeHandler(handler)
            handler.close()


def bind_run(run_id: str, url: str) -> None:
    """Attach run_id/url to every subsequent log event in this context."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(run_id=run_id, url=url)
