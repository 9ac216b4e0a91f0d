"""
Authorization engine wiring

Builds every component from Settings and bundles them for the API layer.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from core.access_scope import AccessScopeResolver
from core.audit import AuditLogger
from core.audit_store import InMemoryAuditSink, PersistentAuditSink, SqlAuditSink
from core.authentication import Authenticator
from core.clock import Clock, utcnow
from core.config import Settings
from core.directory import AssignmentStore, UserDirectory
from core.impersonation import ClientInfo, ImpersonationSessionManager
from core.rate_limiter import RateLimiter
from core.revocation import RevocationList
from core.secrets import SecretStore
from core.tokens import TokenService
from schemas.audit import AuditAction, ResourceType
from schemas.principal import Principal

logger = logging.getLogger(__name__)


@dataclass
class AuthEngine:
    settings: Settings
    directory: UserDirectory
    secrets: SecretStore
    revocations: RevocationList
    tokens: TokenService
    audit: AuditLogger
    scope: AccessScopeResolver
    sessions: ImpersonationSessionManager
    rate_limiter: RateLimiter
    authenticator: Authenticator

    def rotate_secret(self, actor: Optional[Principal] = None,
                      client: Optional[ClientInfo] = None, trigger: str = "manual") -> str:
        """Rotate the signing secret and audit it; returns the new fingerprint"""
        client = client or ClientInfo()
        old_fp = self.secrets.current.fingerprint
        snapshot = self.tokens.rotate_secret(trigger=trigger)
        self.audit.record(
            AuditAction.JWT_SECRET_ROTATED,
            ResourceType.SECURITY,
            actor_id=actor.id if actor else None,
            resource_id="jwt_secret",
            old_values={"fingerprint": old_fp},
            new_values={
                "fingerprint": snapshot.current.fingerprint,
                "rotated_at": snapshot.current.created_at.isoformat(),
                "trigger": trigger,
            },
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        return snapshot.current.fingerprint

    def run_maintenance(self) -> Dict[str, int]:
        """Scheduled rotation plus sweeps of sessions, revocations and limiter windows"""
        rotated = 0
        if self.secrets.should_rotate():
            self.rotate_secret(trigger="scheduled")
            rotated = 1
        self.secrets.discard_expired_previous()
        result = {
            "rotated": rotated,
            "sessions_expired": self.sessions.sweep_expired(),
            "revocations_purged": self.revocations.cleanup(),
            "rate_limit_windows_swept": self.rate_limiter.sweep(),
        }
        logger.debug(f"Maintenance run: {result}")
        return result

    def shutdown(self):
        self.audit.shutdown()
        dispose = getattr(self.audit.sink, "dispose", None)
        if dispose is not None:
            dispose()


def build_audit_sink(settings: Settings) -> PersistentAuditSink:
    if settings.AUDIT_DATABASE_URL:
        return SqlAuditSink(settings.AUDIT_DATABASE_URL)
    if settings.is_production:
        logger.warning("AUDIT_DATABASE_URL not set in production; audit entries are kept in memory only")
    return InMemoryAuditSink()


def build_engine(
    settings: Settings,
    directory: UserDirectory,
    assignments: AssignmentStore,
    audit_sink: Optional[PersistentAuditSink] = None,
    clock: Clock = utcnow,
    authenticator_kwargs: Optional[dict] = None,
) -> AuthEngine:
    secrets = SecretStore.from_settings(settings, clock=clock)
    revocations = RevocationList(clock=clock)
    tokens = TokenService.from_settings(settings, secrets, revocations=revocations, clock=clock)
    audit = AuditLogger(
        audit_sink if audit_sink is not None else build_audit_sink(settings),
        fail_closed_actions=settings.AUDIT_FAIL_CLOSED_ACTIONS,
        timeout_seconds=settings.AUDIT_SINK_TIMEOUT_SECONDS,
        clock=clock,
    )
    sessions = ImpersonationSessionManager(tokens, audit, clock=clock)
    engine = AuthEngine(
        settings=settings,
        directory=directory,
        secrets=secrets,
        revocations=revocations,
        tokens=tokens,
        audit=audit,
        scope=AccessScopeResolver(assignments),
        sessions=sessions,
        rate_limiter=RateLimiter.from_settings(settings, clock=clock),
        authenticator=Authenticator(directory, tokens, audit, sessions=sessions, **(authenticator_kwargs or {})),
    )
    logger.info(f"Authorization engine built: env={settings.ENV}")
    return engine
