"""
Impersonation session record

State machine: none -> active -> ended. The record is mutated exactly
once (end_time set) and retained afterwards for audit.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from schemas.principal import Role


class SessionState(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


class EndReason(str, Enum):
    STOPPED = "stopped"
    EXPIRED = "expired"
    LOGOUT = "logout"
    IMPERSONATOR_INACTIVE = "impersonator_inactive"


@dataclass
class ImpersonationSession:
    """Server-side authority for whether an impersonation is still allowed"""
    session_id: str
    impersonator_id: str
    impersonator_role: Role
    impersonated_user_id: str
    start_time: datetime
    expires_at: datetime
    token_id: str
    reason: Optional[str] = None
    end_time: Optional[datetime] = None
    end_reason: Optional[EndReason] = None
    ended_by: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def state(self) -> SessionState:
        return SessionState.ENDED if self.end_time is not None else SessionState.ACTIVE

    @property
    def is_ended(self) -> bool:
        return self.end_time is not None

    def is_due(self, now: datetime) -> bool:
        """True once the bound token has expired"""
        return now >= self.expires_at

    def end(self, at: datetime, reason: EndReason, ended_by: Optional[str] = None):
        if self.end_time is not None:
            raise ValueError(f"Session {self.session_id} already ended")
        self.end_time = at
        self.end_reason = reason
        self.ended_by = ended_by

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "impersonator_id": self.impersonator_id,
            "impersonator_role": self.impersonator_role.value,
            "impersonated_user_id": self.impersonated_user_id,
            "reason": self.reason,
            "status": self.state.value,
            "start_time": self.start_time.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "end_reason": self.end_reason.value if self.end_reason else None,
            "ended_by": self.ended_by,
            "ip_address": self.ip_address,
        }
