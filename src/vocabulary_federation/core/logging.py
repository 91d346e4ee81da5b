"""
Structured logging helpers for the federation layer.

Loggers obtained through :func:`get_logger` share one stderr handler whose
formatter appends ``key=value`` pairs for the ``extra`` fields attached to a
record. Adapters bind their source URI once; individual calls add the
operation, URL, status code or cache outcome.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from logging import Logger, LoggerAdapter
from typing import Any, Iterator, Mapping, MutableMapping, Optional, Sequence, Tuple

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LEVEL = "INFO"
_ENV_LEVEL = "VOCAB_FEDERATION_LOG_LEVEL"

# Extras printed first, in this order; everything else follows alphabetically.
_FOCUS_KEYS: Sequence[str] = ("source", "operation", "phase", "status", "method", "url", "status_code", "attempt", "delay", "cache")

# Attributes every LogRecord carries; anything else on a record came from ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {"message", "asctime"}

_configured = False


def _resolve_level(level: Optional[int | str]) -> int:
    if isinstance(level, int):
        return level
    name = (level or os.getenv(_ENV_LEVEL) or DEFAULT_LEVEL).upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _record_extras(record: logging.LogRecord) -> Iterator[Tuple[str, Any]]:
    extras = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS and not key.startswith("_") and value is not None}
    for key in _FOCUS_KEYS:
        if key in extras:
            yield key, extras.pop(key)
    yield from sorted(extras.items())


def _render(value: Any) -> str:
    if isinstance(value, Mapping):
        return json.dumps(value, ensure_ascii=False, default=str)
    if isinstance(value, (list, tuple, set)):
        return "[" + ", ".join(_render(item) for item in value) + "]"
    if isinstance(value, float):
        return f"{value:.4g}"
    return str(value)


class StructuredLogFormatter(logging.Formatter):
    """Formatter appending the record's extras as ``key=value`` pairs."""

    def __init__(self) -> None:
        super().__init__(DEFAULT_FORMAT, datefmt=DEFAULT_DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = " ".join(f"{key}={_render(value)}" for key, value in _record_extras(record))
        return f"{line} | {extras}" if extras else line


class StructuredLoggerAdapter(LoggerAdapter):
    """Adapter that merges per-call ``extra`` fields with the bound ones."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def configure_logging(level: Optional[int | str] = None, *, force: bool = False) -> None:
    """
    Install the structured stderr handler on the root logger.

    Parameters
    ----------
    level:
        Level name or number. Falls back to ``VOCAB_FEDERATION_LOG_LEVEL`` or ``INFO``.
    force:
        Replace an existing configuration, e.g. when the CLI receives ``--log-level``.
    """

    global _configured
    if _configured and not force:
        return
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setFormatter(StructuredLogFormatter())
    logging.basicConfig(level=_resolve_level(level), handlers=[handler], force=force)
    _configured = True


def get_logger(name: str, *, extra: Optional[Mapping[str, object]] = None) -> LoggerAdapter:
    """Return a logger whose records carry ``extra`` (``None`` values dropped)."""

    configure_logging()
    bound = {key: value for key, value in (extra or {}).items() if value is not None}
    return StructuredLoggerAdapter(logging.getLogger(name), bound)


def log_progress(
    logger: LoggerAdapter | Logger,
    message: str,
    *,
    phase: Optional[str] = None,
    status: Optional[str] = None,
    level: int = logging.INFO,
    extra: Optional[Mapping[str, object]] = None,
) -> None:
    """Log a step of a multi-source operation with its ``phase`` and ``status``."""

    payload: dict[str, object] = {}
    if extra:
        payload.update(extra)
    if phase:
        payload["phase"] = phase
    if status:
        payload["status"] = status
    logger.log(level, message, extra=payload)
