"""Tenant middleware — resolves tenant context from the JWT on every request.

Flow:
  1. Extract Bearer token from Authorization header
  2. Decode JWT → get `tenant_id` claim
  3. Validate the tenant id
  4. Set ContextVar so downstream code (cache scoping, etc.) can read it
  5. After the response, clear the ContextVar

Routes that don't require a tenant (health, demo) simply never read it.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from hrportal.auth.jwt import decode_token
from hrportal.tenancy import (
    clear_tenant_context,
    set_current_tenant_id,
    validate_tenant_id,
)

_PUBLIC_PREFIXES = ("/docs", "/openapi.json", "/health")


class TenantMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        auth_header = request.headers.get("authorization", "")
        path = request.url.path

        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
            payload = decode_token(token)

            if not payload:
                # Token present but expired/malformed.
                clear_tenant_context()
                if not any(path.startswith(p) for p in _PUBLIC_PREFIXES):
                    return JSONResponse(
                        status_code=401,
                        content={
                            "error": {
                                "code": "HTTP_401",
                                "message": "Token expired or invalid",
                            }
                        },
                        headers={"WWW-Authenticate": "Bearer"},
                    )
            else:
                tenant_id = payload.get("tenant_id")
                if tenant_id:
                    try:
                        validate_tenant_id(tenant_id)
                        set_current_tenant_id(tenant_id)
                    except ValueError:
                        clear_tenant_context()
                else:
                    clear_tenant_context()
        else:
            clear_tenant_context()

        try:
            response = await call_next(request)
        finally:
            clear_tenant_context()

        return response
