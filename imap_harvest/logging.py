"""Structured logging setup for harvester runs.

Log lines go to stderr by default so that command output on stdout (the
folder tree printed by ``folders``) stays machine-readable.
"""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any, TextIO

import structlog

from .config import HarvestConfig

# imapclient echoes every protocol line on these loggers at DEBUG.
PROTOCOL_LOGGERS = ("imapclient",)


def setup_logging(
    *,
    json: bool = True,
    level: str = "INFO",
    stream: TextIO | None = None,
    protocol_level: str = "WARNING",
) -> None:
    """Configure structlog for a harvester process.

    Parameters
    ----------
    json:
        If *True* (the default), output JSON lines with non-ASCII text
        (attachment names, folder names) left readable.  If *False*, use a
        human-friendly console renderer for interactive runs.
    level:
        Root log level name (e.g. ``"DEBUG"``, ``"INFO"``).
    stream:
        Where log lines go; ``sys.stderr`` when omitted.
    protocol_level:
        Level for the IMAP library's own loggers, kept apart from *level*
        so ``DEBUG`` runs do not dump raw server traffic.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(
            ensure_ascii=False
        )
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())

    for name in PROTOCOL_LOGGERS:
        logging.getLogger(name).setLevel(protocol_level.upper())


def setup_logging_from_config(config: HarvestConfig) -> None:
    """Apply the ``HARVEST_LOG_*`` settings."""
    setup_logging(
        json=config.log_json,
        level=config.log_level,
        stream=sys.stdout if config.log_stream == "stdout" else sys.stderr,
        protocol_level=config.log_protocol_level,
    )


def run_context(command: str, config: HarvestConfig, **extra: Any) -> AbstractContextManager:
    """Tag every log line emitted inside the block with the run's identity."""
    return structlog.contextvars.bound_contextvars(
        command=command,
        host=config.imap.host,
        user=config.imap.username,
        **extra,
    )
