"""
questforge/helpers/request_context.py
-------------------------------------
Request-scoped correlation fields, carried implicitly across calls.

One ``RequestLogContext`` object lives in a ``ContextVar`` for the duration
of a request (or a job, or a test). Code anywhere below the scope can read it
with ``current_context()`` or fill in ids as they become known with
``patch_context()``, without threading the object through every signature.

The object itself is mutable and shared by reference inside a scope, so a
field patched from a threadpool worker (sync FastAPI routes) is visible to
the middleware that opened the scope. Separate requests, tasks and threads
each get their own object.

Import
------
    from questforge.helpers.request_context import (
        current_context, patch_context, request_scope, run_with_context,
    )
"""
from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, fields
from typing import Any, Awaitable, Callable, Dict, Iterator, Optional, TypeVar

T = TypeVar("T")


@dataclass
class RequestLogContext:
    request_id: str
    route: Optional[str] = None
    method: Optional[str] = None

    user_id: Optional[str] = None
    session_id: Optional[str] = None

    adventure_id: Optional[str] = None
    chapter_id: Optional[str] = None
    chapter_quest_id: Optional[str] = None
    job_id: Optional[str] = None
    trace_id: Optional[str] = None

    started_at: float = field(default_factory=time.monotonic)
    extra: Dict[str, Any] = field(default_factory=dict)

    def elapsed_ms(self) -> int:
        return max(0, int((time.monotonic() - self.started_at) * 1000))

    def as_log_fields(self) -> Dict[str, Any]:
        """Flat dict of the populated correlation fields."""
        out: Dict[str, Any] = {}
        for f in fields(self):
            if f.name in ("started_at", "extra"):
                continue
            value = getattr(self, f.name)
            if value is not None:
                out[f.name] = value
        out.update(self.extra)
        return out


_FIELD_NAMES = {f.name for f in fields(RequestLogContext)} - {"started_at", "extra"}

_CURRENT: ContextVar[Optional[RequestLogContext]] = ContextVar(
    "questforge_request_context", default=None
)


def _build(initial: Optional[Dict[str, Any]]) -> RequestLogContext:
    initial = dict(initial or {})
    request_id = initial.pop("request_id", None) or str(uuid.uuid4())
    ctx = RequestLogContext(request_id=str(request_id))
    for key, value in initial.items():
        if value is None:
            continue
        if key in _FIELD_NAMES:
            setattr(ctx, key, value)
        else:
            ctx.extra[key] = value
    return ctx


@contextmanager
def request_scope(**initial: Any) -> Iterator[RequestLogContext]:
    """Open a context scope; the previous scope (if any) is restored on exit."""
    ctx = _build(initial)
    token = _CURRENT.set(ctx)
    try:
        yield ctx
    finally:
        _CURRENT.reset(token)


def run_with_context(
    initial: Optional[Dict[str, Any]],
    fn: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Run a sync callable inside a fresh context scope."""
    with request_scope(**(initial or {})):
        return fn(*args, **kwargs)


async def arun_with_context(
    initial: Optional[Dict[str, Any]],
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Run a coroutine function inside a fresh context scope."""
    with request_scope(**(initial or {})):
        return await fn(*args, **kwargs)


def current_context() -> Optional[RequestLogContext]:
    return _CURRENT.get()


def patch_context(**patch: Any) -> None:
    """
    Merge non-None fields into the active context.

    No-op outside a scope. Never raises: logging is best-effort and must not
    change the outcome of the operation that called it.
    """
    ctx = _CURRENT.get()
    if ctx is None:
        return
    for key, value in patch.items():
        if value is None:
            continue
        if key in _FIELD_NAMES:
            setattr(ctx, key, str(value) if key.endswith("_id") else value)
        else:
            ctx.extra[key] = value
