"""
Logging helpers for the ``hsearch`` logger hierarchy.

Every log line can carry a request-id held in a ``ContextVar``. Work started
by an :class:`~hsearch.operation.Operation` runs on the background loop
thread and its completion callback on a pool thread, neither of which sees
the caller's context. The operation captures the id at ``start()`` and
re-binds it there with :func:`request_id_bound`, so network, polling and
callback log lines stay correlated with the call that caused them.

Usage::

    from hsearch.logging import configure_logging, bind_request_id
    configure_logging()            # JSON lines to stderr, INFO level
    bind_request_id("req-abc123")  # operations started from here log request_id
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import IO

_request_id_var: ContextVar[str] = ContextVar("hsearch_request_id", default="")

# Attributes every LogRecord has; anything else on a record came from ``extra``.
_STDLIB_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys())

_TEXT_FORMAT = "%(asctime)s %(levelname)-5s [%(request_id)s] %(threadName)s %(name)s - %(message)s"


def bind_request_id(request_id: str | None = None) -> str:
    """Bind *request_id* in the current context, generating one if omitted.

    Returns the bound id.
    """
    rid = request_id or uuid.uuid4().hex[:12]
    _request_id_var.set(rid)
    return rid


def get_request_id() -> str:
    """Return the bound request-id, or ``""``."""
    return _request_id_var.get()


@contextmanager
def request_id_bound(request_id: str) -> Iterator[str]:
    """Bind *request_id* for the duration of the block, then restore the previous id.

    An empty id leaves the current binding alone. Used on worker threads that
    run on behalf of a caller whose id was captured earlier.
    """
    if not request_id:
        yield _request_id_var.get()
        return
    token = _request_id_var.set(request_id)
    try:
        yield request_id
    finally:
        _request_id_var.reset(token)


class _RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id_var.get()  # type: ignore[attr-defined]
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    Fields: ``timestamp``, ``level``, ``logger``, ``thread``, ``message``,
    ``request_id`` when bound, any ``extra`` values, and ``exception``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        rid = getattr(record, "request_id", "") or _request_id_var.get()
        if rid:
            entry["request_id"] = rid

        entry.update(
            (key, val)
            for key, val in record.__dict__.items()
            if key not in _STDLIB_ATTRS and key != "request_id"
        )

        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = True,
    stream: IO[str] | None = None,
) -> None:
    """Install a single handler on the ``hsearch`` logger.

    Args:
        level: Level number or name, e.g. ``logging.DEBUG`` or ``"DEBUG"``.
        json_format: JSON lines if ``True``; otherwise a text format showing
            the request-id and thread name.
        stream: Destination, stderr by default.
    """
    handler = logging.StreamHandler(stream)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, defaults={"request_id": ""}))
    handler.addFilter(_RequestIdFilter())

    root = logging.getLogger("hsearch")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False
