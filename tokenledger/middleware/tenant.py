"""Request-scoped tenant state.

The middleware only initializes ``request.state.tenant_id`` and ``user_id``;
``get_current_user`` fills them in once the bearer token is verified.  Every
service filters its queries by the tenant it was constructed with.
"""

import structlog
from starlette.types import ASGIApp, Receive, Scope, Send


class TenantMiddleware:
    """Pure ASGI middleware that initializes tenant state and clears log context."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            scope.setdefault("state", {})
            scope["state"].setdefault("tenant_id", None)
            scope["state"].setdefault("user_id", None)
            structlog.contextvars.clear_contextvars()
            headers = dict(scope.get("headers", []))
            request_id = headers.get(b"x-request-id")
            if request_id:
                structlog.contextvars.bind_contextvars(request_id=request_id.decode(errors="replace"))
        await self.app(scope, receive, send)
