"""Request-scoped middleware for API requests."""

from uuid import UUID, uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from utils.tenant_context import tenant_context


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns a unique request ID to every request."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Scopes every request to the tenant named in the X-Tenant-ID header.

    Sets the tenant context (used by the record store for scoping and by
    Postgres for RLS) for the duration of the request and clears it after.

    Public paths bypass tenant scoping. The Stripe webhook scopes itself
    from the checkout session metadata.
    """

    HEADER = "X-Tenant-ID"

    PUBLIC_PATHS = [
        "/health",
        "/webhooks/",
        "/docs",
        "/openapi.json",
    ]

    def _is_public_path(self, path: str) -> bool:
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path):
                return True
        return False

    async def dispatch(self, request: Request, call_next):
        if self._is_public_path(request.url.path):
            return await call_next(request)

        raw = request.headers.get(self.HEADER)
        try:
            tenant_id = UUID(raw) if raw else None
        except ValueError:
            tenant_id = None

        if tenant_id is None:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.TENANT_REQUIRED,
                    f"A valid {self.HEADER} header is required",
                ).model_dump(mode="json"),
            )

        request.state.tenant_id = tenant_id
        with tenant_context(tenant_id):
            return await call_next(request)
