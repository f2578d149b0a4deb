"""Loguru configuration and per-request log context.

Records carry three context fields when they are set in the current async
context: ``request_id``, ``viewer_id`` and ``operation``. In production the
records are rendered as one JSON object per line; in development as coloured
text.

Example:
    >>> from puros.logging import logger, request_context
    >>> with request_context(request_id="req-1", viewer_id="alice"):
    ...     logger.info("Loading feed")
"""

import json
import sys
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from pathlib import Path
from typing import Any

from loguru import logger as loguru_logger

from puros.config import settings

CONTEXT_FIELDS = ("request_id", "viewer_id", "operation")

_context: dict[str, ContextVar[str | None]] = {
    name: ContextVar(name, default=None) for name in CONTEXT_FIELDS
}

TEXT_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


# =============================================================================
# JSON Rendering
# =============================================================================


def serialize(record: dict[str, Any]) -> str:
    """Render a Loguru record as a single JSON line.

    Context fields are added only when set; ``logger.bind()`` extras are
    merged last.
    """
    payload: dict[str, Any] = {
        "time": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "module": record["module"],
        "function": record["function"],
        "line": record["line"],
    }
    payload.update({k: v for k, v in get_request_context().items() if v})
    payload.update(record["extra"])

    exc = record["exception"]
    if exc:
        payload["exception"] = {
            "type": exc.type.__name__ if exc.type else None,
            "value": str(exc.value),
            "traceback": traceback.format_exception(exc.type, exc.value, exc.traceback),
        }

    return json.dumps(payload, default=str)


def _attach_serialized(record: dict[str, Any]) -> None:
    record["serialized"] = serialize(record)


def _json_line(record: dict[str, Any]) -> str:
    return "{serialized}\n"


# =============================================================================
# Logger Configuration
# =============================================================================


def setup_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: Path | None = None,
    colorize: bool = True,
) -> Any:
    """Replace Loguru's handlers with the Puros ones.

    Args:
        level: Minimum level for every handler
        json_logs: Emit JSON lines on stdout instead of coloured text
        log_file: Also write to this file, rotated at 100 MB and kept 30 days
        colorize: Colour the text format (ignored for JSON)

    Returns:
        The patched logger
    """
    loguru_logger.remove()
    patched = loguru_logger.patch(_attach_serialized)

    if json_logs:
        patched.add(sys.stdout, level=level, format=_json_line, serialize=False)
    else:
        patched.add(sys.stdout, level=level, format=TEXT_FORMAT, colorize=colorize)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        patched.add(
            log_file,
            level=level,
            format=_json_line if json_logs else "{time} | {level} | {message}",
            rotation="100 MB",
            retention="30 days",
            compression="zip",
            enqueue=True,
        )

    return patched


logger = setup_logging(
    level=settings.log_level,
    json_logs=settings.log_json,
    log_file=settings.data_dir / "puros.log" if settings.log_to_file else None,
    colorize=not settings.log_json,
)


# =============================================================================
# Request Context
# =============================================================================


def set_request_context(
    request_id: str | None = None,
    viewer_id: str | None = None,
    operation: str | None = None,
) -> None:
    """Set context fields for the current async context; None leaves a field as is."""
    values = {"request_id": request_id, "viewer_id": viewer_id, "operation": operation}
    for name, value in values.items():
        if value is not None:
            _context[name].set(value)


def clear_request_context() -> None:
    for var in _context.values():
        var.set(None)


def get_request_context() -> dict[str, str | None]:
    return {name: var.get() for name, var in _context.items()}


@contextmanager
def request_context(**values: str | None) -> Iterator[None]:
    """Scope context fields to a block, restoring the previous values after.

    Raises:
        KeyError: For a field other than request_id, viewer_id or operation
    """
    tokens: list[tuple[ContextVar[str | None], Token[str | None]]] = []
    for name, value in values.items():
        var = _context[name]
        tokens.append((var, var.set(value)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


__all__ = [
    "CONTEXT_FIELDS",
    "clear_request_context",
    "get_request_context",
    "logger",
    "request_context",
    "serialize",
    "set_request_context",
    "setup_logging",
]
