"""
observability/logger.py — LocalBot Structured Logger

Every log line is a JSON object written to a rotating file under
`logging.log_dir`, optionally mirrored to stdout. Event names are dotted
(`agent.turn_start`, `router.decision`, `tool_executor.timeout`) and the
prefix before the first dot becomes the `component` field.

Context carried through contextvars:
    bind_session()  session_id, user_id    for one run_stream() call
    bind_turn()     turn, model            for one loop iteration

so router, gateway and transport lines logged during a turn can be
joined back to it without passing ids around.

Usage:
    setup_logging(get_settings())
    log = get_logger(__name__)
    log.info("agent.turn_start", tools=3)
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

import structlog

from localbot.config.settings import LoggingConfig, Settings

LOG_FILE_NAME = "localbot.log"


def _add_component(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Derive `component` from a dotted event name unless already bound."""
    event = event_dict.get("event")
    if isinstance(event, str) and "." in event:
        event_dict.setdefault("component", event.split(".", 1)[0])
    return event_dict


def setup_logging(
    settings: Optional[Settings] = None,
    *,
    level: Optional[str] = None,
    log_dir: Optional[str | Path] = None,
    console_output: Optional[bool] = None,
    json_format: Optional[bool] = None,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at startup.

    Values come from `settings.logging` (or its defaults when no settings
    are given); keyword arguments override individual fields.
    """
    cfg = settings.logging if settings is not None else LoggingConfig()
    level = (level or cfg.level).upper()
    log_dir = Path(log_dir if log_dir is not None else cfg.log_dir)
    console_output = cfg.console_output if console_output is None else console_output
    json_format = cfg.json_format if json_format is None else json_format

    log_dir.mkdir(parents=True, exist_ok=True)
    numeric_level = getattr(logging, level, logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _add_component,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            filename=log_dir / LOG_FILE_NAME,
            maxBytes=cfg.max_file_size_mb * 1024 * 1024,
            backupCount=cfg.backup_count,
            encoding="utf-8",
        )
    ]
    if console_output:
        handlers.append(logging.StreamHandler(sys.stdout))

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=handlers,
        force=True,
    )

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    file_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    )
    handlers[0].setFormatter(file_formatter)
    handlers[0].setLevel(numeric_level)

    if console_output:
        console_renderer = (
            structlog.processors.JSONRenderer()
            if json_format
            else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        )
        handlers[1].setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    console_renderer,
                ],
                foreign_pre_chain=shared_processors,
            )
        )
        handlers[1].setLevel(numeric_level)


def get_logger(name: str = "localbot", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


# ─────────────────────────────────────────────────────────────────────────────
# Request context
# ─────────────────────────────────────────────────────────────────────────────

def bind_session(session_id: str, user_id: str) -> None:
    structlog.contextvars.bind_contextvars(session_id=session_id, user_id=user_id)


def bind_turn(turn: int, model: str) -> None:
    """Attach the loop iteration and its model to every line until cleared."""
    structlog.contextvars.bind_contextvars(turn=turn, model=model)


def clear_session() -> None:
    structlog.contextvars.clear_contextvars()
