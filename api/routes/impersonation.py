"""
Impersonation routes: start, stop, active sessions, history
"""
from datetime import timedelta
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    ImpersonationStartRequest,
    ImpersonationStartResponse,
    ImpersonationStopRequest,
    ImpersonationStopResponse,
    SessionListResponse,
    SessionOut,
    UserOut,
)
from core.engine import AuthEngine
from core.exceptions import PrincipalInactive, SessionNotFound, UserNotFound
from core.rate_limiter import EndpointClass
from middleware.auth import (
    AuthContext,
    AuthorizationMiddleware,
    get_authorization,
    get_current_context,
    get_engine,
)
from middleware.rate_limiter import rate_limit_by_user
from middleware.request_info import client_info
from schemas.principal import Principal, Role

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth/impersonate", tags=["impersonation"])

IMPERSONATOR_ROLES = (Role.ADMIN, Role.SUPERADMIN)


def _real_actor(ctx: AuthContext, engine: AuthEngine) -> Principal:
    """The human behind the request: the impersonator during impersonation"""
    if not ctx.is_impersonation:
        return ctx.principal
    impersonator = engine.directory.find_by_id(ctx.impersonator_id)
    if impersonator is None or not impersonator.is_active:
        raise PrincipalInactive()
    return impersonator


def _session_out(session) -> SessionOut:
    return SessionOut(**session.to_dict())


@router.post("/start", response_model=ImpersonationStartResponse)
def start_impersonation(
    body: ImpersonationStartRequest,
    request: Request,
    ctx: AuthContext = Depends(rate_limit_by_user(EndpointClass.IMPERSONATION)),
    authz: AuthorizationMiddleware = Depends(get_authorization),
    engine: AuthEngine = Depends(get_engine),
):
    client = client_info(request)
    if not ctx.is_impersonation:
        authz.require_roles(ctx, *IMPERSONATOR_ROLES, client=client)

    target = engine.directory.find_by_id(body.target_user_id)
    if target is None:
        raise UserNotFound(details={"user_id": body.target_user_id})

    ttl = timedelta(minutes=body.ttl_minutes) if body.ttl_minutes else None
    grant = engine.sessions.start(
        ctx.principal,
        target,
        reason=body.reason,
        ttl=ttl,
        client=client,
        via_impersonation=ctx.is_impersonation,
    )
    logger.info(
        "Impersonation session started",
        session_id=grant.session.session_id,
        target_user_id=target.id,
    )
    return ImpersonationStartResponse(
        impersonation_token=grant.token,
        session_id=grant.session.session_id,
        expires_at=grant.claims.exp,
        target_user=UserOut.from_principal(target),
    )


@router.post("/stop", response_model=ImpersonationStopResponse)
def stop_impersonation(
    request: Request,
    body: Optional[ImpersonationStopRequest] = None,
    ctx: AuthContext = Depends(get_current_context),
    engine: AuthEngine = Depends(get_engine),
):
    session_id = (body.session_id if body else None) or ctx.session_id
    if not session_id:
        raise SessionNotFound("No impersonation session given or active on this token")
    session = engine.sessions.stop(session_id, _real_actor(ctx, engine), client_info(request))
    return ImpersonationStopResponse(session=_session_out(session))


def _listing_actor(ctx: AuthContext, authz: AuthorizationMiddleware, request: Request) -> Principal:
    client = client_info(request)
    authz.require_not_impersonating(ctx, client=client)
    authz.require_roles(ctx, *IMPERSONATOR_ROLES, client=client)
    return ctx.principal


@router.get("/active", response_model=SessionListResponse)
def active_sessions(
    request: Request,
    ctx: AuthContext = Depends(get_current_context),
    authz: AuthorizationMiddleware = Depends(get_authorization),
    engine: AuthEngine = Depends(get_engine),
):
    actor = _listing_actor(ctx, authz, request)
    # superadmin sees every session, admins only their own
    impersonator_id = None if actor.role is Role.SUPERADMIN else actor.id
    sessions = [_session_out(s) for s in engine.sessions.active_sessions(impersonator_id)]
    return SessionListResponse(sessions=sessions, count=len(sessions))


@router.get("/history", response_model=SessionListResponse)
def session_history(
    request: Request,
    target_user_id: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    ctx: AuthContext = Depends(get_current_context),
    authz: AuthorizationMiddleware = Depends(get_authorization),
    engine: AuthEngine = Depends(get_engine),
):
    actor = _listing_actor(ctx, authz, request)
    impersonator_id = None if actor.role is Role.SUPERADMIN else actor.id
    sessions = [
        _session_out(s)
        for s in engine.sessions.history(impersonator_id=impersonator_id, target_id=target_user_id, limit=limit)
    ]
    return SessionListResponse(sessions=sessions, count=len(sessions))
