"""
questforge/helpers/middleware.py
--------------------------------
Opens a request context scope around every HTTP request.

Pure ASGI rather than BaseHTTPMiddleware so the scope is set in the same
context the route (and FastAPI's threadpool copy of it) runs in.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, MutableMapping, Optional

from questforge.helpers.request_context import request_scope

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = b"x-request-id"

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]
ASGIApp = Callable[[Scope, Receive, Send], Awaitable[None]]


def _header(scope: Scope, name: bytes) -> Optional[str]:
    for key, value in scope.get("headers") or []:
        if key.lower() == name:
            return value.decode("latin-1").strip() or None
    return None


class RequestContextMiddleware:
    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        initial: Dict[str, Any] = {
            "request_id": _header(scope, REQUEST_ID_HEADER),
            "route": scope.get("path"),
            "method": scope.get("method"),
        }
        status = {"code": 500}

        with request_scope(**initial) as ctx:

            async def send_wrapper(message: Message) -> None:
                if message["type"] == "http.response.start":
                    status["code"] = message["status"]
                    headers = list(message.get("headers") or [])
                    headers.append((REQUEST_ID_HEADER, ctx.request_id.encode("latin-1")))
                    message["headers"] = headers
                await send(message)

            try:
                await self.app(scope, receive, send_wrapper)
            except Exception:
                logger.exception(
                    "request.failed method=%s path=%s ms=%d",
                    ctx.method, ctx.route, ctx.elapsed_ms(),
                )
                raise

            logger.info(
                "request.complete method=%s path=%s status=%d ms=%d",
                ctx.method, ctx.route, status["code"], ctx.elapsed_ms(),
            )
