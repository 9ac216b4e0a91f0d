"""
Audit log schema

Contract:
- AuditLogEntry is append-only: never mutated or deleted by the engine
- AuditLogRecord is the durable row written by the SQL audit sink
"""
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import JSON, Column, DateTime, Index, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class AuditAction(str, Enum):
    """Privileged and security-relevant actions recorded by the engine"""
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGOUT = "LOGOUT"
    IMPERSONATION_STARTED = "IMPERSONATION_STARTED"
    IMPERSONATION_ENDED = "IMPERSONATION_ENDED"
    IMPERSONATION_EXPIRED = "IMPERSONATION_EXPIRED"
    IMPERSONATION_DENIED = "IMPERSONATION_DENIED"
    ACCESS_DENIED = "ACCESS_DENIED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    JWT_SECRET_ROTATED = "JWT_SECRET_ROTATED"


class ResourceType(str, Enum):
    AUTH = "AUTH"
    IMPERSONATION = "IMPERSONATION"
    SECURITY = "SECURITY"
    ACCOUNT = "ACCOUNT"
    USER = "USER"


class AuditLogEntry(BaseModel):
    """
    One audit trail entry

    actor_id is the effective actor; impersonator_id is set whenever the
    action was performed by (or on behalf of) an impersonating admin.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    actor_id: Optional[str] = None
    impersonator_id: Optional[str] = None
    action: AuditAction
    resource_type: ResourceType
    resource_id: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuditLogRecord(Base):
    """Durable audit row (append-only)"""
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True)
    actor_id = Column(String(255), nullable=True)
    impersonator_id = Column(String(255), nullable=True)
    action = Column(String(64), nullable=False)
    resource_type = Column(String(32), nullable=False)
    resource_id = Column(String(255), nullable=True)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_actor_ts", "actor_id", "timestamp"),
        Index("ix_audit_logs_action_ts", "action", "timestamp"),
    )

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditLogRecord":
        return cls(**entry.model_dump(mode="json", exclude={"timestamp"}), timestamp=entry.timestamp)

    def to_entry(self) -> AuditLogEntry:
        return AuditLogEntry(
            id=self.id,
            actor_id=self.actor_id,
            impersonator_id=self.impersonator_id,
            action=AuditAction(self.action),
            resource_type=ResourceType(self.resource_type),
            resource_id=self.resource_id,
            old_values=self.old_values,
            new_values=self.new_values,
            timestamp=self.timestamp,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
        )
