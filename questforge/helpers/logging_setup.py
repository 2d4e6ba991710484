"""
questforge/helpers/logging_setup.py
-----------------------------------
Process-wide logging configuration.

Every record is stamped with the current request id and the correlation
fields of the active request context, so a line emitted five calls deep in
the worker still says which user, session and job it belongs to.

Optionally (SYSTEM_LOGS_ENABLED=true) records from the ``questforge`` logger
tree are also written to the ``system_logs`` table. That sink is best-effort
and asynchronous: callers only enqueue, a QueueListener thread inserts.
"""
from __future__ import annotations

import atexit
import logging
import os
import queue
import threading
from logging.handlers import QueueHandler, QueueListener
from typing import Any, Callable, Dict, Optional

from questforge.helpers.request_context import current_context

LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  [%(request_id)s] %(message)s%(ctx)s"

# Correlation fields rendered in the compact suffix, in this order.
_SUFFIX_FIELDS = (
    ("user_id", "user"),
    ("session_id", "session"),
    ("chapter_quest_id", "cq"),
    ("chapter_id", "chapter"),
    ("job_id", "job"),
)


class RequestContextFilter(logging.Filter):
    """Adds ``request_id`` and ``ctx`` attributes to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = current_context()
        if ctx is None:
            record.request_id = "-"
            record.ctx = ""
            return True

        record.request_id = ctx.request_id
        parts = []
        for attr, label in _SUFFIX_FIELDS:
            value = getattr(ctx, attr)
            if value:
                parts.append(f"{label}={value}")
        record.ctx = ("  " + " ".join(parts)) if parts else ""
        return True


class SystemLogHandler(logging.Handler):
    """
    Writes log records into the ``system_logs`` table.

    The client factory is called lazily so the handler can be installed
    before the Supabase environment is known. Records emitted while the
    handler is itself writing (e.g. by the HTTP client) are dropped.
    """

    def __init__(self, client_factory: Callable[[], Any], level: int = logging.INFO):
        super().__init__(level=level)
        self._client_factory = client_factory
        self._local = threading.local()

    def build_row(self, record: logging.LogRecord) -> Dict[str, Any]:
        ctx = current_context()
        row: Dict[str, Any] = {
            "level": record.levelname.lower(),
            "message": record.getMessage(),
            "source": record.name,
            "file": record.pathname,
            "line": record.lineno,
            "function_name": record.funcName,
            "request_id": None,
            "route": None,
            "method": None,
            "duration_ms": None,
            "user_id": None,
            "session_id": None,
            "adventure_id": None,
            "chapter_id": None,
            "chapter_quest_id": None,
            "metadata": {},
        }
        if ctx is not None:
            fields = ctx.as_log_fields()
            for key in list(row):
                if key in fields:
                    row[key] = fields[key]
            row["duration_ms"] = ctx.elapsed_ms()
            if ctx.job_id:
                row["metadata"]["job_id"] = ctx.job_id
            if ctx.extra:
                row["metadata"].update(ctx.extra)
        if record.exc_info and record.exc_info[0] is not None:
            exc = record.exc_info[1]
            row["error_name"] = type(exc).__name__
            row["error_message"] = str(exc)
            row["stack"] = logging.Formatter().formatException(record.exc_info)
        return row

    def emit(self, record: logging.LogRecord) -> None:
        if getattr(self._local, "busy", False):
            return
        self._local.busy = True
        try:
            row = getattr(record, "system_log_row", None) or self.build_row(record)
            self._client_factory().table("system_logs").insert(row).execute()
        except Exception:
            self.handleError(record)
        finally:
            self._local.busy = False


class SystemLogQueueHandler(QueueHandler):
    """
    Front half of the durable sink: runs on the logging thread (the event
    loop, for the middleware's records) and only enqueues. The row is built
    here, where the request context and exc_info are still available; the
    insert happens on the QueueListener thread.
    """

    def __init__(self, log_queue: "queue.Queue[logging.LogRecord]", sink: SystemLogHandler):
        super().__init__(log_queue)
        self.sink = sink
        self.setLevel(sink.level)

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        record.system_log_row = self.sink.build_row(record)
        return super().prepare(record)


def install_system_log_sink(
    client_factory: Callable[[], Any],
    logger_name: str = "questforge",
    level: int = logging.INFO,
) -> QueueListener:
    """Attach the system_logs sink to ``logger_name`` behind a queue. Caller owns listener.stop()."""
    sink = SystemLogHandler(client_factory, level)
    log_queue: "queue.Queue[logging.LogRecord]" = queue.Queue(-1)
    listener = QueueListener(log_queue, sink, respect_handler_level=True)
    listener.start()
    logging.getLogger(logger_name).addHandler(SystemLogQueueHandler(log_queue, sink))
    return listener


_system_log_listener: Optional[QueueListener] = None


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once at process start."""
    global _system_log_listener

    level_name = (level or os.environ.get("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=level_name, format=LOG_FORMAT)

    ctx_filter = RequestContextFilter()
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RequestContextFilter) for f in handler.filters):
            handler.addFilter(ctx_filter)

    # Keep the provider / queue HTTP chatter out of INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    if os.environ.get("SYSTEM_LOGS_ENABLED", "").lower() in ("1", "true", "yes") and _system_log_listener is None:
        from questforge.supabase.supabase_client import get_supabase

        _system_log_listener = install_system_log_sink(get_supabase)
        atexit.register(_system_log_listener.stop)
