"""
Auth routes: login, logout, me, secret rotation
"""
import structlog
from fastapi import APIRouter, Depends, Request

from api.models import (
    LoginRequest,
    MeResponse,
    RotateSecretResponse,
    TokenResponse,
    UserOut,
)
from core.engine import AuthEngine
from core.rate_limiter import EndpointClass
from middleware.auth import (
    AuthContext,
    AuthorizationMiddleware,
    get_authorization,
    get_current_context,
    get_engine,
)
from middleware.rate_limiter import rate_limit_by_ip, rate_limit_by_user
from middleware.request_info import client_info
from schemas.principal import Role

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/login",
    response_model=TokenResponse,
    dependencies=[Depends(rate_limit_by_ip(EndpointClass.LOGIN))],
)
def login(body: LoginRequest, request: Request, engine: AuthEngine = Depends(get_engine)):
    result = engine.authenticator.login(body.email, body.password, client_info(request))
    return TokenResponse(
        access_token=result.issued.token,
        expires_at=result.issued.expires_at,
        user=UserOut.from_principal(result.principal),
    )


@router.post("/logout")
def logout(
    request: Request,
    ctx: AuthContext = Depends(get_current_context),
    engine: AuthEngine = Depends(get_engine),
):
    engine.authenticator.logout(ctx.claims, client_info(request))
    return {"message": "Logged out"}


@router.get("/me", response_model=MeResponse)
def me(ctx: AuthContext = Depends(get_current_context)):
    return MeResponse(
        user=UserOut.from_principal(ctx.principal),
        is_impersonation=ctx.is_impersonation,
        impersonator_id=ctx.impersonator_id,
        session_id=ctx.session_id,
        token_expires_at=ctx.claims.exp,
    )


@router.post("/admin/rotate-secret", response_model=RotateSecretResponse)
def rotate_secret(
    request: Request,
    ctx: AuthContext = Depends(rate_limit_by_user(EndpointClass.ADMIN_OPERATIONS)),
    authz: AuthorizationMiddleware = Depends(get_authorization),
    engine: AuthEngine = Depends(get_engine),
):
    client = client_info(request)
    authz.require_not_impersonating(ctx, client=client)
    authz.require_roles(ctx, Role.SUPERADMIN, client=client)
    fingerprint = engine.rotate_secret(actor=ctx.principal, client=client)
    logger.info("Signing secret rotated on demand", actor_id=ctx.principal.id, fingerprint=fingerprint)
    return RotateSecretResponse(
        fingerprint=fingerprint,
        rotated_at=engine.secrets.current.created_at,
    )
