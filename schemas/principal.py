"""
Principal schema
Authenticated identity with exactly one role from the fixed hierarchy
"""
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    """
    Role enumeration for the admin platform

    Closed set: free-form role strings are rejected at the boundary
    (e.g. 'super_admin' or 'admn' never reach a hierarchy check).

    Hierarchy (highest to lowest):
    - superadmin: Vendor staff, full control including other admins
    - admin: Manages CSMs and customer users
    - csm: Customer success manager, scoped to assigned accounts
    - user: Customer account user
    """
    SUPERADMIN = "superadmin"
    ADMIN = "admin"
    CSM = "csm"
    USER = "user"


class PrincipalStatus(str, Enum):
    """Account status as reported by the user directory"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING = "pending"


class Principal(BaseModel):
    """
    Authenticated identity

    Immutable within a request. Created by the user directory; the
    engine never changes a principal's role or status.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="User ID")
    email: str = Field(..., min_length=3, description="Login email")
    role: Role = Field(..., description="Single role from the hierarchy")
    status: PrincipalStatus = Field(default=PrincipalStatus.ACTIVE)

    @property
    def is_active(self) -> bool:
        return self.status is PrincipalStatus.ACTIVE
