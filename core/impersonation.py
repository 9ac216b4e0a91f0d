"""
Impersonation Session Manager

Per-session state machine: none -> active -> ended. The session table,
not the token, is the authority on whether an impersonation is still
allowed right now.

Locking:
- one lock per session id; different sessions never contend
- the registry lock only guards insertion of a new session/lock pair
- is_active() reads without a lock unless the session is due to expire

Audit:
- IMPERSONATION_STARTED / IMPERSONATION_ENDED are fail-closed by default;
  a session is only registered (or ended) once its entry is written
- IMPERSONATION_DENIED / IMPERSONATION_EXPIRED are best effort
"""
import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, List, Optional
from uuid import uuid4

from prometheus_client import Counter, Gauge

from core import roles
from core.audit import AuditLogger
from core.clock import Clock, utcnow
from core.exceptions import (
    AuditUnavailable,
    Forbidden,
    ImpersonationNotAllowed,
    SelfImpersonation,
    SessionAlreadyEnded,
    SessionNotFound,
)
from core.tokens import TokenService
from schemas.audit import AuditAction, ResourceType
from schemas.impersonation import EndReason, ImpersonationSession
from schemas.jwt_claims import ImpersonationTokenClaims
from schemas.principal import Principal

logger = logging.getLogger(__name__)

impersonation_started_total = Counter(
    'auth_impersonation_sessions_started_total',
    'Impersonation sessions started',
    ['impersonator_role', 'target_role']
)

impersonation_ended_total = Counter(
    'auth_impersonation_sessions_ended_total',
    'Impersonation sessions ended',
    ['reason']
)

impersonation_denied_total = Counter(
    'auth_impersonation_denied_total',
    'Impersonation attempts denied',
    ['reason']
)

impersonation_active = Gauge(
    'auth_impersonation_sessions_active',
    'Impersonation sessions currently active'
)


@dataclass(frozen=True)
class ClientInfo:
    """Request origin recorded on audit entries"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class ImpersonationGrant:
    token: str
    claims: ImpersonationTokenClaims
    session: ImpersonationSession


class ImpersonationSessionManager:
    """
    Start, stop and check impersonation sessions

    Concurrent sessions per impersonator are allowed (one per target).
    Chained impersonation (starting while impersonating) is refused.
    """

    def __init__(self, token_service: TokenService, audit: AuditLogger, clock: Clock = utcnow):
        self.token_service = token_service
        self.audit = audit
        self._clock = clock
        self._sessions: Dict[str, ImpersonationSession] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, session_id: str) -> Optional[threading.Lock]:
        return self._locks.get(session_id)

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    def _deny(self, impersonator: Principal, target: Principal, reason: str,
              client: ClientInfo, error: Exception):
        impersonation_denied_total.labels(reason=reason).inc()
        logger.warning(
            f"Impersonation denied: impersonator={impersonator.id} ({impersonator.role.value}) "
            f"target={target.id} ({target.role.value}) reason={reason}"
        )
        self.audit.record(
            AuditAction.IMPERSONATION_DENIED,
            ResourceType.IMPERSONATION,
            actor_id=impersonator.id,
            resource_id=target.id,
            new_values={"reason": reason, "target_role": target.role.value},
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        raise error

    def start(
        self,
        impersonator: Principal,
        target: Principal,
        reason: Optional[str] = None,
        ttl: Optional[timedelta] = None,
        client: Optional[ClientInfo] = None,
        via_impersonation: bool = False,
    ) -> ImpersonationGrant:
        """
        Open a session and issue its token

        Raises:
            SelfImpersonation, ImpersonationNotAllowed: denied (audited)
            ImpersonationTTLExceeded: ttl above the cap
            AuditUnavailable: start could not be audited; no session exists
        """
        client = client or ClientInfo()

        if via_impersonation:
            self._deny(impersonator, target, "chained", client,
                       ImpersonationNotAllowed("Cannot start an impersonation while impersonating"))
        decision = roles.check_impersonation(impersonator, target)
        if not decision.allowed:
            error = SelfImpersonation() if decision.reason == "self_impersonation" else ImpersonationNotAllowed()
            self._deny(impersonator, target, decision.reason, client, error)
        if not target.is_active:
            self._deny(impersonator, target, "target_inactive", client,
                       ImpersonationNotAllowed("Target user is not active"))

        session_id = str(uuid4())
        issued = self.token_service.issue_impersonation(
            target,
            impersonator_id=impersonator.id,
            session_id=session_id,
            ttl=ttl,
            impersonator_role=impersonator.role,
        )
        session = ImpersonationSession(
            session_id=session_id,
            impersonator_id=impersonator.id,
            impersonator_role=impersonator.role,
            impersonated_user_id=target.id,
            start_time=issued.claims.iat,
            expires_at=issued.claims.exp,
            token_id=issued.claims.jti,
            reason=reason,
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )

        self.audit.record(
            AuditAction.IMPERSONATION_STARTED,
            ResourceType.IMPERSONATION,
            actor_id=impersonator.id,
            impersonator_id=impersonator.id,
            resource_id=session_id,
            new_values={
                "session_id": session_id,
                "impersonated_user_id": target.id,
                "target_role": target.role.value,
                "reason": reason,
                "expires_at": issued.claims.exp.isoformat(),
            },
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )

        with self._registry_lock:
            self._locks[session_id] = threading.Lock()
            self._sessions[session_id] = session
        impersonation_started_total.labels(
            impersonator_role=impersonator.role.value,
            target_role=target.role.value,
        ).inc()
        impersonation_active.inc()
        logger.info(
            f"Impersonation started: session={session_id} impersonator={impersonator.id} "
            f"target={target.id} expires_at={issued.claims.exp.isoformat()}"
        )
        return ImpersonationGrant(token=issued.token, claims=issued.claims, session=session)

    # ------------------------------------------------------------------
    # stop
    # ------------------------------------------------------------------

    def _may_stop(self, session: ImpersonationSession, requested_by: Principal) -> bool:
        if requested_by.id == session.impersonator_id:
            return True
        return roles.outranks(requested_by.role, session.impersonator_role)

    def stop(self, session_id: str, requested_by: Principal,
             client: Optional[ClientInfo] = None) -> ImpersonationSession:
        """
        End an active session

        Raises:
            SessionNotFound: unknown session id
            Forbidden: requester is neither the impersonator nor outranks them
            SessionAlreadyEnded: second stop, or the session already expired
            AuditUnavailable: end could not be audited; session stays active
        """
        client = client or ClientInfo()
        lock = self._lock_for(session_id)
        if lock is None:
            raise SessionNotFound(details={"session_id": session_id})

        with lock:
            session = self._sessions[session_id]
            if not self._may_stop(session, requested_by):
                raise Forbidden("Not allowed to stop this impersonation session")
            self._expire_locked(session)
            if session.is_ended:
                raise SessionAlreadyEnded(details={
                    "session_id": session_id,
                    "end_reason": session.end_reason.value,
                })

            self._end_locked(session, EndReason.STOPPED, requested_by.id, client)
        return session

    def terminate(self, session_id: str, reason: EndReason, ended_by: Optional[str] = None,
                  client: Optional[ClientInfo] = None) -> bool:
        """
        End a session on behalf of the system (logout, impersonator lost access)

        No permission check. Returns False if the session is unknown or
        already ended.

        Raises:
            AuditUnavailable: end could not be audited; session stays active
        """
        lock = self._lock_for(session_id)
        if lock is None:
            return False
        with lock:
            session = self._sessions[session_id]
            self._expire_locked(session)
            if session.is_ended:
                return False
            self._end_locked(session, reason, ended_by, client or ClientInfo())
        return True

    def _end_locked(self, session: ImpersonationSession, reason: EndReason,
                    ended_by: Optional[str], client: ClientInfo):
        """Audit, end and revoke; caller holds the session lock"""
        now = self._clock()
        self.audit.record(
            AuditAction.IMPERSONATION_ENDED,
            ResourceType.IMPERSONATION,
            actor_id=ended_by,
            impersonator_id=session.impersonator_id,
            resource_id=session.session_id,
            old_values={"status": "active"},
            new_values={
                "status": "ended",
                "end_reason": reason.value,
                "impersonated_user_id": session.impersonated_user_id,
                "duration_seconds": int((now - session.start_time).total_seconds()),
            },
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        session.end(now, reason, ended_by=ended_by)
        self.token_service.revocations.revoke(session.token_id, session.expires_at)
        impersonation_ended_total.labels(reason=reason.value).inc()
        impersonation_active.dec()
        logger.info(f"Impersonation ended: session={session.session_id} reason={reason.value} by={ended_by}")

    # ------------------------------------------------------------------
    # is_active / expiry
    # ------------------------------------------------------------------

    def _expire_locked(self, session: ImpersonationSession) -> bool:
        """End a due session; caller holds the session lock"""
        if session.is_ended:
            return False
        now = self._clock()
        if not session.is_due(now):
            return False
        session.end(session.expires_at, EndReason.EXPIRED)
        impersonation_ended_total.labels(reason=EndReason.EXPIRED.value).inc()
        impersonation_active.dec()
        logger.info(f"Impersonation expired: session={session.session_id}")
        try:
            self.audit.record(
                AuditAction.IMPERSONATION_EXPIRED,
                ResourceType.IMPERSONATION,
                impersonator_id=session.impersonator_id,
                resource_id=session.session_id,
                old_values={"status": "active"},
                new_values={"status": "ended", "impersonated_user_id": session.impersonated_user_id},
            )
        except AuditUnavailable:
            # expiry has already happened; the record is best effort
            logger.error(f"Could not audit expiry of session {session.session_id}")
        return True

    def is_active(self, session_id: str) -> bool:
        """True only for a known, unended session whose token has not expired"""
        session = self._sessions.get(session_id)
        if session is None or session.is_ended:
            return False
        if not session.is_due(self._clock()):
            return True
        with self._locks[session_id]:
            self._expire_locked(session)
        return False

    def sweep_expired(self) -> int:
        """End every session past its expiry; returns how many were ended"""
        now = self._clock()
        due = [s for s in list(self._sessions.values()) if not s.is_ended and s.is_due(now)]
        ended = 0
        for session in due:
            with self._locks[session.session_id]:
                if self._expire_locked(session):
                    ended += 1
        if ended:
            logger.info(f"Impersonation sweep ended {ended} expired sessions")
        return ended

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> Optional[ImpersonationSession]:
        return self._sessions.get(session_id)

    def active_sessions(self, impersonator_id: Optional[str] = None) -> List[ImpersonationSession]:
        return [
            s for s in list(self._sessions.values())
            if (impersonator_id is None or s.impersonator_id == impersonator_id)
            and self.is_active(s.session_id)
        ]

    def history(
        self,
        impersonator_id: Optional[str] = None,
        target_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[ImpersonationSession]:
        """Sessions newest first, ended ones included"""
        sessions = [
            s for s in list(self._sessions.values())
            if (impersonator_id is None or s.impersonator_id == impersonator_id)
            and (target_id is None or s.impersonated_user_id == target_id)
        ]
        sessions.sort(key=lambda s: s.start_time, reverse=True)
        return sessions[:limit] if limit is not None else sessions
