"""ASGI middleware that guards the JSON write endpoints."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, cast

from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send


_JSON_ROUTES: tuple[tuple[str, str], ...] = (
    ("POST", "/auth/register"),
    ("POST", "/auth/login"),
    ("POST", "/auth/verify-email"),
    ("POST", "/agents/register"),
    ("POST", "/users/wallet"),
    ("POST", "/tasks"),
    ("POST", "/tasks/{id}/apply"),
    ("POST", "/tasks/{id}/assign"),
    ("POST", "/tasks/{id}/start"),
    ("POST", "/tasks/{id}/complete"),
    ("POST", "/tasks/{id}/approve"),
    ("POST", "/tasks/{id}/reject"),
    ("POST", "/tasks/{id}/dispute"),
    ("POST", "/tasks/{id}/cancel"),
    ("PATCH", "/tasks/{id}"),
    ("POST", "/escrow"),
    ("POST", "/messages"),
)


def _compile(template: str) -> re.Pattern[str]:
    return re.compile("^" + re.escape(template).replace(r"\{id\}", "[^/]+") + "$")


_JSON_ENDPOINTS: dict[str, tuple[re.Pattern[str], ...]] = {}
for _method, _template in _JSON_ROUTES:
    _JSON_ENDPOINTS[_method] = (*_JSON_ENDPOINTS.get(_method, ()), _compile(_template))


def expects_json(method: str, path: str) -> bool:
    """Whether the route at (method, path) takes a JSON body."""
    return any(pattern.match(path) for pattern in _JSON_ENDPOINTS.get(method, ()))


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "details": {}},
    )


def _too_large() -> JSONResponse:
    return _error_response(413, "PAYLOAD_TOO_LARGE", "Request body exceeds maximum allowed size")


class RequestValidationMiddleware:
    """
    Rejects bad write requests before they reach a router.

    Only the routes in the JSON table are checked. Anything else, including
    unknown paths, passes through so FastAPI can answer 404 or 405.

    - 415 UNSUPPORTED_MEDIA_TYPE when Content-Type is not application/json
    - 413 PAYLOAD_TOO_LARGE when the declared or received body exceeds
      ``max_body_size``
    """

    def __init__(self, app: ASGIApp, max_body_size: int) -> None:
        self.app = app
        self.max_body_size = max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not expects_json(
            cast("str", scope.get("method", "GET")), cast("str", scope.get("path", ""))
        ):
            await self.app(scope, receive, send)
            return

        headers = dict(cast("list[tuple[bytes, bytes]]", scope.get("headers", [])))
        content_type = headers.get(b"content-type", b"").decode("latin-1").lower()
        if not content_type.startswith("application/json"):
            response = _error_response(
                415, "UNSUPPORTED_MEDIA_TYPE", "Content-Type must be application/json"
            )
            await response(scope, receive, send)
            return

        declared = headers.get(b"content-length", b"")
        if declared.isdigit() and int(declared) > self.max_body_size:
            await _too_large()(scope, receive, send)
            return

        body = await self._read_body(receive)
        if body is None:
            await _too_large()(scope, receive, send)
            return

        await self.app(scope, _replay(body), send)

    async def _read_body(self, receive: Receive) -> bytes | None:
        """Buffer the request body, or return None once it passes the size limit."""
        chunks: list[bytes] = []
        size = 0
        more_body = True
        while more_body:
            message = cast("dict[str, Any]", await receive())
            chunk = cast("bytes", message.get("body", b""))
            size += len(chunk)
            if size > self.max_body_size:
                return None
            chunks.append(chunk)
            more_body = bool(message.get("more_body", False))
        return b"".join(chunks)


def _replay(body: bytes) -> Receive:
    sent = False

    async def receive() -> Message:
        nonlocal sent
        if sent:
            return {"type": "http.disconnect"}
        sent = True
        return {"type": "http.request", "body": body, "more_body": False}

    return receive
