"""Request timing and the canonical ``request.completed`` log line."""

import re
import time
import uuid
from typing import Any

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.logger import bind_contextvars, clear_contextvars, get_logger
from core.wide_event import clear_wide_event, get_wide_event, init_wide_event

logger = get_logger(__name__)

REQUEST_ID_HEADER = b"x-request-id"
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


def _incoming_request_id(scope: Scope) -> str | None:
    """Request id forwarded by the gateway, if it looks like one."""
    for name, value in scope.get("headers", []):
        if name.lower() == REQUEST_ID_HEADER:
            candidate = value.decode("latin-1").strip()
            return candidate if _REQUEST_ID_PATTERN.match(candidate) else None
    return None


class RequestTimingMiddleware:
    """Times each request and emits one wide event for it.

    The request id (the gateway's, or a fresh UUID) is echoed back in
    ``X-Request-Id``, bound to structlog contextvars and reused as the
    correlation id of outbox events written during the request.

    The line is emitted for errors, slow requests and any request that
    resolved a requester; anonymous 2xx health probes stay quiet.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        service_name: str = "workforce-api",
        service_version: str = "0.1.0",
        slow_request_ms: float = 1000.0,
    ) -> None:
        self.app = app
        self.service_name = service_name
        self.service_version = service_version
        self.slow_request_ms = slow_request_ms

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        started = time.perf_counter()
        request_id = _incoming_request_id(scope) or str(uuid.uuid4())
        client = scope.get("client")

        event = init_wide_event()
        event.update(
            service_name=self.service_name,
            service_version=self.service_version,
            request_id=request_id,
            http_method=scope.get("method", "UNKNOWN"),
            http_path=scope.get("path", ""),
            http_client_ip=client[0] if client else "unknown",
        )
        bind_contextvars(request_id=request_id)
        status: int | None = None

        def elapsed_ms() -> float:
            return (time.perf_counter() - started) * 1000

        async def send_wrapper(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = int(message.get("status", 0))
                message["headers"] = [
                    *message.get("headers", []),
                    (b"x-request-duration-ms", f"{elapsed_ms():.2f}".encode()),
                    (REQUEST_ID_HEADER, request_id.encode()),
                ]
            elif message["type"] == "http.response.body" and not message.get(
                "more_body", False
            ):
                self._finish(scope, status, elapsed_ms())
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            get_wide_event()["exception_type"] = type(exc).__name__
            self._finish(scope, None, elapsed_ms(), outcome="exception")
            raise

    def _finish(
        self,
        scope: Scope,
        status: int | None,
        duration_ms: float,
        outcome: str | None = None,
    ) -> None:
        event: dict[str, Any] = get_wide_event()
        route = scope.get("route")
        event["http_route"] = getattr(route, "path", None) or scope.get("path", "")
        event["http_status_code"] = status
        event["duration_ms"] = round(duration_ms, 2)
        event["outcome"] = outcome or (
            "success" if status is not None and status < 400 else "error"
        )

        if (
            outcome is not None
            or status is None
            or status >= 400
            or duration_ms > self.slow_request_ms
            or event.get("requester_id")
        ):
            logger.info("request.completed", **event)

        clear_wide_event()
        clear_contextvars()
