"""
Rate Limiter Dependencies
Apply an endpoint class policy to a route

Per-IP limits (login) run before any credential check so a limited caller
learns nothing about whether a credential would have worked. Per-user
limits (impersonation, admin operations) key on the authenticated actor.
"""
import logging

from fastapi import Depends, Request

from core.rate_limiter import EndpointClass
from middleware.auth import (
    AuthContext,
    AuthorizationMiddleware,
    get_authorization,
    get_current_context,
)
from middleware.request_info import client_info

logger = logging.getLogger(__name__)


def rate_limit_by_ip(endpoint_class: EndpointClass):
    """
    FastAPI dependency factory keyed on the client IP

    Usage:
        @router.post("/auth/login", dependencies=[Depends(rate_limit_by_ip(EndpointClass.LOGIN))])
    """
    def limiter(
        request: Request,
        authz: AuthorizationMiddleware = Depends(get_authorization),
    ):
        client = client_info(request)
        authz.enforce_rate_limit(endpoint_class, client.ip_address or "unknown", client=client)

    return limiter


def rate_limit_by_user(endpoint_class: EndpointClass):
    """
    FastAPI dependency factory keyed on the real actor

    During impersonation the impersonator's id is used, so switching
    identities does not reset the budget.
    """
    def limiter(
        request: Request,
        ctx: AuthContext = Depends(get_current_context),
        authz: AuthorizationMiddleware = Depends(get_authorization),
    ) -> AuthContext:
        actor_id = ctx.impersonator_id or ctx.principal.id
        authz.enforce_rate_limit(
            endpoint_class,
            f"user:{actor_id}",
            client=client_info(request),
            actor_id=actor_id,
        )
        return ctx

    return limiter
