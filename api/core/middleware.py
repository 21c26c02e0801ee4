"""Pure ASGI middleware that stamps security headers on API responses."""

from __future__ import annotations

from starlette.types import ASGIApp, Message, Receive, Scope, Send

_BASE_HEADERS: tuple[tuple[bytes, bytes], ...] = (
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"DENY"),
    (b"referrer-policy", b"no-referrer"),
    (b"content-security-policy", b"default-src 'none'; frame-ancestors 'none'"),
    (b"cache-control", b"no-store"),
)
_HSTS = (b"strict-transport-security", b"max-age=31536000; includeSubDomains")


class SecurityHeadersMiddleware:
    """Adds a fixed set of security headers to every HTTP response.

    Responses carry booking, staff and expense data scoped to one
    requester, so nothing is cacheable. HSTS is only sent when ``hsts`` is
    set (deployed environments behind TLS). ``exempt_paths`` are skipped
    entirely; Swagger UI needs its CDN scripts.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        hsts: bool = True,
        exempt_paths: tuple[str, ...] = ("/docs", "/redoc"),
    ) -> None:
        self.app = app
        self.exempt_paths = exempt_paths
        self.headers = list(_BASE_HEADERS)
        if hsts:
            self.headers.append(_HSTS)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        path: str = scope.get("path", "")
        if scope["type"] != "http" or (
            self.exempt_paths and path.startswith(self.exempt_paths)
        ):
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                message["headers"] = [*message.get("headers", []), *self.headers]
            await send(message)

        await self.app(scope, receive, send_with_headers)
