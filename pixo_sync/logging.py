"""Loguru setup for pixo-sync.

Console output is either a coloured single-line format or one JSON object
per line. Each record carries the interaction it belongs to (``user_id``,
``entity_id``, ``operation``) from a context variable, so log lines from
concurrent controllers in one event loop stay attributable.

Example:
    >>> from pixo_sync.logging import logger, log_context
    >>> with log_context(user_id="u-1", entity_id="n1", operation="like"):
    ...     logger.info("Optimistic like applied")
"""

import json
import sys
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from loguru import logger

from pixo_sync.config import settings

CONTEXT_FIELDS = ("user_id", "entity_id", "operation")

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("pixo_log_context", default=_EMPTY)

HUMAN_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


# =============================================================================
# Interaction Context
# =============================================================================


def _merged(**fields: str | None) -> Mapping[str, str]:
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"Unknown log context field(s): {', '.join(sorted(unknown))}")
    merged = dict(_context.get())
    merged.update({k: v for k, v in fields.items() if v is not None})
    return MappingProxyType(merged)


def set_log_context(
    user_id: str | None = None,
    entity_id: str | None = None,
    operation: str | None = None,
) -> None:
    """Set context fields for the current task; None leaves a field as is."""
    _context.set(_merged(user_id=user_id, entity_id=entity_id, operation=operation))


@contextmanager
def log_context(**fields: str | None) -> Iterator[None]:
    """Bind context fields for the duration of a block, then restore."""
    token = _context.set(_merged(**fields))
    try:
        yield
    finally:
        _context.reset(token)


def clear_log_context() -> None:
    _context.set(_EMPTY)


def get_log_context() -> dict[str, str | None]:
    current = _context.get()
    return {name: current.get(name) for name in CONTEXT_FIELDS}


# =============================================================================
# JSON Output
# =============================================================================


def serialize(record: Mapping[str, Any]) -> str:
    """Render a loguru record as one JSON line (without the newline)."""
    payload: dict[str, Any] = {
        "time": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "module": record["module"],
        "function": record["function"],
        "line": record["line"],
        **_context.get(),
        **record["extra"],
    }

    exc = record["exception"]
    if exc is not None:
        payload["exception"] = {
            "type": exc.type.__name__ if exc.type else None,
            "value": str(exc.value),
            "traceback": "".join(
                traceback.format_exception(exc.type, exc.value, exc.traceback)
            ),
        }

    return json.dumps(payload, default=str)


def json_sink(message: Any) -> None:
    """Loguru sink writing ``serialize(record)`` to stderr."""
    sys.stderr.write(serialize(message.record) + "\n")


# =============================================================================
# Logger Configuration
# =============================================================================


def setup_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: Path | None = None,
    colorize: bool = True,
) -> Any:
    """Replace loguru's handlers with pixo-sync's.

    Args:
        level: Minimum log level
        json_logs: One JSON object per line on stderr instead of the coloured format
        log_file: Optional plain-text log file, rotated at 10 MB
        colorize: Colour the human-readable console format

    Returns:
        The configured loguru logger
    """
    logger.remove()

    if json_logs:
        logger.add(json_sink, level=level, format="{message}")
    else:
        logger.add(sys.stderr, level=level, format=HUMAN_FORMAT, colorize=colorize)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {name}:{line} | {message}",
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )

    return logger


setup_logging(
    level=settings.log_level,
    json_logs=settings.log_json,
    log_file=settings.data_dir / "pixo_sync.log" if settings.log_to_file else None,
    colorize=not settings.log_json,
)


__all__ = [
    "logger",
    "log_context",
    "set_log_context",
    "clear_log_context",
    "get_log_context",
    "serialize",
    "json_sink",
    "setup_logging",
]
