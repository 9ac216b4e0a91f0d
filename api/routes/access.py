"""
Scope checks used by business handlers and the admin UI
"""
from fastapi import APIRouter, Depends, Request

from api.models import AccessCheckResponse, VisibleRolesResponse
from core import roles
from middleware.auth import (
    AuthContext,
    AuthorizationMiddleware,
    get_authorization,
    get_current_context,
)
from middleware.request_info import client_info

router = APIRouter(prefix="/auth/access", tags=["access"])


@router.get("/accounts/{account_id}", response_model=AccessCheckResponse)
def check_account_access(
    account_id: str,
    request: Request,
    ctx: AuthContext = Depends(get_current_context),
    authz: AuthorizationMiddleware = Depends(get_authorization),
):
    authz.require_account_access(ctx, account_id, client=client_info(request))
    return AccessCheckResponse(resource_type="account", resource_id=account_id)


@router.get("/users/{user_id}", response_model=AccessCheckResponse)
def check_user_access(
    user_id: str,
    request: Request,
    ctx: AuthContext = Depends(get_current_context),
    authz: AuthorizationMiddleware = Depends(get_authorization),
):
    authz.require_user_access(ctx, user_id, client=client_info(request))
    return AccessCheckResponse(resource_type="user", resource_id=user_id)


@router.get("/visible-roles", response_model=VisibleRolesResponse)
def visible_roles(ctx: AuthContext = Depends(get_current_context)):
    visible = sorted(roles.visible_roles(ctx.principal.role), key=roles.rank, reverse=True)
    return VisibleRolesResponse(role=ctx.principal.role, visible_roles=visible)
