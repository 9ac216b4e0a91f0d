"""
Impersonation Context Middleware
Marks every response with the impersonation state of the request and logs
each request made under an impersonation token
"""
import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from middleware.request_info import client_info

logger = structlog.get_logger(__name__)


class ImpersonationContextMiddleware(BaseHTTPMiddleware):
    """
    Reads the AuthContext that get_current_context stores on request.state

    Headers:
    - X-Impersonation-Active: "true" / "false"
    - X-Impersonation-Session, X-Impersonator-Id, X-Target-User-Id while impersonating
    """

    async def dispatch(self, request: Request, call_next):
        # create the shared state dict before the route handler writes to it
        state = request.state
        response = await call_next(request)

        ctx = getattr(state, "auth", None)
        if ctx is None or not ctx.is_impersonation:
            response.headers["X-Impersonation-Active"] = "false"
            return response

        response.headers["X-Impersonation-Active"] = "true"
        response.headers["X-Impersonation-Session"] = ctx.session_id
        response.headers["X-Impersonator-Id"] = ctx.impersonator_id
        response.headers["X-Target-User-Id"] = ctx.principal.id

        client = client_info(request)
        logger.info(
            "Impersonation activity",
            session_id=ctx.session_id,
            impersonator_id=ctx.impersonator_id,
            target_user_id=ctx.principal.id,
            method=request.method,
            endpoint=request.url.path,
            status_code=response.status_code,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return response
