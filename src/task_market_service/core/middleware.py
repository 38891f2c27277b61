"""ASGI middleware for request validation."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send


_JSON_ENDPOINTS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^/tasks$"),
    re.compile(r"^/tasks/[^/]+/(complete|archive|unarchive|delete|hide)$"),
    re.compile(r"^/tasks/[^/]+/bids$"),
    re.compile(r"^/tasks/[^/]+/bids/[^/]+/accept$"),
    re.compile(r"^/tasks/[^/]+/assignment/cancel$"),
    re.compile(r"^/tasks/[^/]+/progress$"),
    re.compile(r"^/tasks/[^/]+/revisions(/complete)?$"),
    re.compile(r"^/tasks/[^/]+/work-complete$"),
    re.compile(r"^/tasks/[^/]+/payment/(checkout|reconcile|status)$"),
    re.compile(r"^/tasks/[^/]+/payout$"),
    re.compile(r"^/tasks/[^/]+/reviews$"),
    re.compile(r"^/payments/webhook$"),
    re.compile(r"^/profiles$"),
    re.compile(r"^/settings$"),
)


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": {}},
    )


class RequestValidationMiddleware:
    """
    ASGI middleware that validates Content-Type and body size.

    Runs before FastAPI routes. Every mutating endpoint takes a JSON body:
    returns 415 for any other content type and 413 for oversized bodies.
    """

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        method = cast("str", scope.get("method", "GET"))
        path = cast("str", scope.get("path", ""))

        # Unknown endpoint/method combos are left to the router (404/405)
        if method != "POST" or not any(pattern.match(path) for pattern in _JSON_ENDPOINTS):
            await self.app(scope, receive, send)
            return

        raw_headers = cast("list[tuple[bytes, bytes]]", scope.get("headers", []))
        headers: dict[bytes, bytes] = dict(raw_headers)
        content_type = headers.get(b"content-type", b"").decode().lower()

        if not content_type.startswith("application/json"):
            response = _error_response(
                415, "UNSUPPORTED_MEDIA_TYPE", "Content-Type must be application/json"
            )
            await response(scope, receive, send)
            return

        body_parts: list[bytes] = []
        body_size = 0

        while True:
            message = cast("dict[str, Any]", await receive())
            chunk = cast("bytes", message.get("body", b""))
            body_parts.append(chunk)
            body_size += len(chunk)

            if body_size > self.max_body_size:
                response = _error_response(
                    413, "PAYLOAD_TOO_LARGE", "Request body exceeds maximum allowed size"
                )
                await response(scope, receive, send)
                return

            if not message.get("more_body", False):
                break

        # Replay buffered body for downstream app
        full_body = b"".join(body_parts)
        body_sent = False

        async def buffered_receive() -> dict[str, Any]:
            nonlocal body_sent
            if not body_sent:
                body_sent = True
                return {"type": "http.request", "body": full_body, "more_body": False}
            return {"type": "http.disconnect"}

        await self.app(scope, buffered_receive, send)
