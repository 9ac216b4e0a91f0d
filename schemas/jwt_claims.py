"""
JWT Claims Schema
Defines the access token and impersonation token structures
"""
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict

from pydantic import BaseModel, ConfigDict, Field, model_validator

from schemas.principal import Principal, PrincipalStatus, Role


class TokenType(str, Enum):
    """Discriminator carried in the `type` claim"""
    ACCESS = "access"
    IMPERSONATION = "impersonation"


class AccessTokenClaims(BaseModel):
    """
    Access token claims

    CONTRACT: every token the service signs carries these claims.
    Tokens are never mutated; a new one is issued instead.
    """
    model_config = ConfigDict(frozen=True, extra="ignore")

    expected_type: ClassVar[TokenType] = TokenType.ACCESS

    sub: str = Field(..., min_length=1, description="Subject (user ID)")
    role: Role = Field(..., description="Role of the subject at issuance")
    email: str = Field(..., min_length=1)
    iat: datetime = Field(..., description="Issued at")
    exp: datetime = Field(..., description="Expires at")
    jti: str = Field(..., min_length=1, description="Unique token ID for traceability")
    type: TokenType = Field(default=TokenType.ACCESS)

    @model_validator(mode="after")
    def _check_claims(self):
        if self.type is not self.expected_type:
            raise ValueError(f"type must be '{self.expected_type.value}'")
        if self.exp <= self.iat:
            raise ValueError("exp must be later than iat")
        return self

    @property
    def impersonating(self) -> bool:
        return self.type is TokenType.IMPERSONATION

    @property
    def lifetime_seconds(self) -> float:
        return (self.exp - self.iat).total_seconds()

    def to_principal(self) -> Principal:
        """Principal the token authenticates (tokens are only issued to active principals)"""
        return Principal(
            id=self.sub,
            email=self.email,
            role=self.role,
            status=PrincipalStatus.ACTIVE,
        )

    def to_payload(self) -> Dict[str, Any]:
        """Wire payload with NumericDate timestamps"""
        payload = self.model_dump(mode="json")
        payload["iat"] = int(self.iat.timestamp())
        payload["exp"] = int(self.exp.timestamp())
        return payload


class ImpersonationTokenClaims(AccessTokenClaims):
    """
    Impersonation token claims

    The subject is the impersonated user; the impersonator travels
    alongside so every action can be attributed to the real actor.
    """
    expected_type: ClassVar[TokenType] = TokenType.IMPERSONATION

    type: TokenType = Field(default=TokenType.IMPERSONATION)
    impersonator_id: str = Field(..., min_length=1)
    impersonated_user_id: str = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1)
    is_impersonation: bool = True

    @model_validator(mode="after")
    def _check_impersonation(self):
        if not self.is_impersonation:
            raise ValueError("is_impersonation must be true")
        if self.impersonated_user_id != self.sub:
            raise ValueError("impersonated_user_id must equal sub")
        if self.impersonator_id == self.sub:
            raise ValueError("impersonator_id must differ from sub")
        return self


def parse_claims(payload: Dict[str, Any]) -> AccessTokenClaims:
    """
    Build the claims model matching the payload's `type`

    Raises:
        pydantic.ValidationError: if required claims are missing or invalid
    """
    if payload.get("type") == TokenType.IMPERSONATION.value:
        return ImpersonationTokenClaims.model_validate(payload)
    return AccessTokenClaims.model_validate(payload)
