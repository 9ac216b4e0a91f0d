"""
Authorization Middleware
Per-request pipeline: bearer extraction, token verification, impersonation
session check, request context, role/scope gates

Rate limiting on limited routes runs before any credential check
(see middleware/rate_limiter.py).
"""
import logging
from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from prometheus_client import Counter

from core import roles
from core.engine import AuthEngine
from core.exceptions import (
    AuditUnavailable,
    Forbidden,
    PrincipalInactive,
    RateLimited,
    SessionEnded,
    Unauthenticated,
)
from core.impersonation import ClientInfo
from core.rate_limiter import EndpointClass
from middleware.request_info import client_info
from schemas.audit import AuditAction, ResourceType
from schemas.impersonation import EndReason
from schemas.jwt_claims import AccessTokenClaims, ImpersonationTokenClaims
from schemas.principal import Principal, Role

logger = logging.getLogger(__name__)

authorization_denials_total = Counter(
    'auth_authorization_denials_total',
    'Requests denied by role or scope checks',
    ['reason']
)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    """
    Authenticated request context

    principal is the effective identity (the impersonated user during
    impersonation); impersonator_id carries the real actor.
    """
    principal: Principal
    claims: AccessTokenClaims
    impersonator_id: Optional[str] = None
    session_id: Optional[str] = None

    @property
    def is_impersonation(self) -> bool:
        return self.impersonator_id is not None

    @property
    def token_id(self) -> str:
        return self.claims.jti


class AuthorizationMiddleware:
    """Request-time composition of the engine's checks"""

    def __init__(self, engine: AuthEngine):
        self.engine = engine

    @staticmethod
    def extract_bearer(authorization: Optional[str]) -> str:
        """
        Pull the token out of an Authorization header value

        Raises:
            Unauthenticated: header missing or not a Bearer credential
        """
        if not authorization:
            raise Unauthenticated("Missing Authorization header")
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            raise Unauthenticated("Authorization header is not a Bearer token")
        return token.strip()

    def authenticate(self, token: str) -> AuthContext:
        """
        Verify the token and, for impersonation tokens, the live session
        and the impersonator's current status

        The session check runs before the revocation check so a token of a
        stopped session is answered with SessionEnded.

        Raises:
            Unauthenticated (and subclasses): verification failed
            SessionEnded: impersonation session stopped or expired, or impersonator inactive
        """
        claims = self.engine.tokens.verify_claims(token, check_revocation=False)
        principal = claims.to_principal()

        if self.engine.settings.CHECK_PRINCIPAL_STATUS:
            current = self.engine.directory.find_by_id(claims.sub)
            if current is None or not current.is_active:
                logger.warning(f"Token presented for inactive or unknown principal {claims.sub}")
                raise PrincipalInactive()

        if isinstance(claims, ImpersonationTokenClaims):
            if not self.engine.sessions.is_active(claims.session_id):
                logger.warning(
                    f"Impersonation token for ended session {claims.session_id} "
                    f"(impersonator={claims.impersonator_id})"
                )
                raise SessionEnded(details={"session_id": claims.session_id})
            self._check_impersonator(claims)

        self.engine.tokens.ensure_not_revoked(claims)
        if isinstance(claims, ImpersonationTokenClaims):
            return AuthContext(
                principal=principal,
                claims=claims,
                impersonator_id=claims.impersonator_id,
                session_id=claims.session_id,
            )
        return AuthContext(principal=principal, claims=claims)

    def _check_impersonator(self, claims: ImpersonationTokenClaims):
        """
        The real actor must still be active; otherwise the session is ended

        Raises:
            SessionEnded: impersonator unknown or no longer active
        """
        impersonator = self.engine.directory.find_by_id(claims.impersonator_id)
        if impersonator is not None and impersonator.is_active:
            return
        logger.warning(
            f"Impersonator {claims.impersonator_id} no longer active; "
            f"ending session {claims.session_id}"
        )
        try:
            self.engine.sessions.terminate(claims.session_id, EndReason.IMPERSONATOR_INACTIVE)
        except AuditUnavailable:
            # the request is refused either way; the next request retries the end
            logger.error(f"Could not audit end of session {claims.session_id}")
        raise SessionEnded(details={"session_id": claims.session_id})

    def _deny(self, ctx: AuthContext, reason: str, message: str,
              resource_type: ResourceType = ResourceType.AUTH,
              resource_id: Optional[str] = None,
              client: Optional[ClientInfo] = None):
        client = client or ClientInfo()
        authorization_denials_total.labels(reason=reason).inc()
        logger.warning(
            f"Access denied: user={ctx.principal.id} role={ctx.principal.role.value} "
            f"impersonator={ctx.impersonator_id} reason={reason}"
        )
        self.engine.audit.record(
            AuditAction.ACCESS_DENIED,
            resource_type,
            actor_id=ctx.principal.id,
            impersonator_id=ctx.impersonator_id,
            resource_id=resource_id,
            new_values={"reason": reason},
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        raise Forbidden(message)

    def require_roles(self, ctx: AuthContext, *allowed: Role, client: Optional[ClientInfo] = None):
        if ctx.principal.role not in allowed:
            self._deny(ctx, "role", "Insufficient privileges", client=client)

    def require_not_impersonating(self, ctx: AuthContext, client: Optional[ClientInfo] = None):
        """Sensitive operations must be performed as oneself"""
        if ctx.is_impersonation:
            self._deny(ctx, "impersonation", "Not permitted while impersonating", client=client)

    def require_manage(self, ctx: AuthContext, target_role: Role, client: Optional[ClientInfo] = None):
        if not roles.can_manage(ctx.principal.role, target_role):
            self._deny(ctx, "manage", "Insufficient privileges", client=client)

    def require_account_access(self, ctx: AuthContext, account_id: str,
                               client: Optional[ClientInfo] = None):
        if not self.engine.scope.can_access_account(ctx.principal, account_id):
            self._deny(ctx, "account_scope", "Access to this account is not allowed",
                       ResourceType.ACCOUNT, account_id, client)

    def require_user_access(self, ctx: AuthContext, user_id: str,
                            client: Optional[ClientInfo] = None):
        if not self.engine.scope.can_access_user(ctx.principal, user_id):
            self._deny(ctx, "user_scope", "Access to this user is not allowed",
                       ResourceType.USER, user_id, client)

    def enforce_rate_limit(self, endpoint_class: EndpointClass, identity: str,
                           client: Optional[ClientInfo] = None, actor_id: Optional[str] = None):
        """
        Raises:
            RateLimited: identity is over the class limit (audited)
        """
        client = client or ClientInfo()
        try:
            self.engine.rate_limiter.check(endpoint_class, identity)
        except RateLimited as e:
            self.engine.audit.record(
                AuditAction.RATE_LIMIT_EXCEEDED,
                ResourceType.SECURITY,
                actor_id=actor_id,
                resource_id=EndpointClass(endpoint_class).value,
                new_values={"identity": identity, "retry_after": e.retry_after},
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
            raise


# ============================================================================
# FASTAPI DEPENDENCIES
# ============================================================================

def get_engine(request: Request) -> AuthEngine:
    return request.app.state.engine


def get_authorization(request: Request) -> AuthorizationMiddleware:
    return request.app.state.authorization


def get_current_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    authz: AuthorizationMiddleware = Depends(get_authorization),
) -> AuthContext:
    """
    FastAPI dependency: authenticated request context

    Usage:
        @router.get("/auth/me")
        def me(ctx: AuthContext = Depends(get_current_context)):
            ...
    """
    if credentials is not None:
        token = credentials.credentials
    else:
        token = authz.extract_bearer(request.headers.get("authorization"))
    ctx = authz.authenticate(token)
    request.state.auth = ctx
    structlog.contextvars.bind_contextvars(
        user_id=ctx.principal.id,
        impersonator_id=ctx.impersonator_id,
    )
    return ctx


def require_roles(*allowed: Role):
    """
    FastAPI dependency factory for role-gated endpoints

    Usage:
        @router.post("/auth/admin/rotate-secret")
        def rotate(ctx: AuthContext = Depends(require_roles(Role.SUPERADMIN))):
            ...
    """
    def role_checker(
        request: Request,
        ctx: AuthContext = Depends(get_current_context),
        authz: AuthorizationMiddleware = Depends(get_authorization),
    ) -> AuthContext:
        authz.require_roles(ctx, *allowed, client=client_info(request))
        return ctx

    return role_checker
