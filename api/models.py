"""
Request / response bodies for the auth routes
"""
from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from schemas.principal import Principal, PrincipalStatus, Role


class UserOut(BaseModel):
    id: str
    email: str
    role: Role
    status: PrincipalStatus

    @classmethod
    def from_principal(cls, principal: Principal) -> "UserOut":
        return cls(id=principal.id, email=principal.email, role=principal.role, status=principal.status)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=1, max_length=1024)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserOut


class MeResponse(BaseModel):
    user: UserOut
    is_impersonation: bool = False
    impersonator_id: Optional[str] = None
    session_id: Optional[str] = None
    token_expires_at: datetime


class ImpersonationStartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_user_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("target_user_id", "targetUserId"),
    )
    reason: Optional[str] = Field(default=None, max_length=500)
    ttl_minutes: Optional[int] = Field(
        default=None,
        ge=1,
        validation_alias=AliasChoices("ttl_minutes", "ttlMinutes"),
    )


class ImpersonationStartResponse(BaseModel):
    impersonation_token: str
    session_id: str
    expires_at: datetime
    target_user: UserOut


class ImpersonationStopRequest(BaseModel):
    session_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("session_id", "sessionId"),
    )


class SessionOut(BaseModel):
    session_id: str
    impersonator_id: str
    impersonator_role: Role
    impersonated_user_id: str
    reason: Optional[str] = None
    status: str
    start_time: datetime
    expires_at: datetime
    end_time: Optional[datetime] = None
    end_reason: Optional[str] = None
    ended_by: Optional[str] = None
    ip_address: Optional[str] = None


class ImpersonationStopResponse(BaseModel):
    message: str = "Impersonation ended"
    session: SessionOut


class SessionListResponse(BaseModel):
    sessions: List[SessionOut]
    count: int


class RotateSecretResponse(BaseModel):
    fingerprint: str
    rotated_at: datetime


class AccessCheckResponse(BaseModel):
    allowed: bool = True
    resource_type: str
    resource_id: str


class VisibleRolesResponse(BaseModel):
    role: Role
    visible_roles: List[Role]
