"""
Audit logging for privileged and impersonation actions

Every entry goes to a PersistentAuditSink. Whether a sink failure fails
the triggering action is an explicit per-action policy:
- fail-closed actions raise AuditUnavailable (no audit, no action)
- fail-open actions are logged locally and the caller proceeds
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any, Dict, Iterable, List, Optional

from prometheus_client import Counter, Histogram

from core.audit_store import InMemoryAuditSink, PersistentAuditSink
from core.clock import Clock, utcnow
from core.exceptions import AuditUnavailable
from schemas.audit import AuditAction, AuditLogEntry, ResourceType

logger = logging.getLogger(__name__)

DEFAULT_FAIL_CLOSED = frozenset({
    AuditAction.IMPERSONATION_STARTED,
    AuditAction.IMPERSONATION_ENDED,
})

audit_writes_total = Counter(
    'auth_audit_writes_total',
    'Audit sink writes',
    ['action', 'outcome']
)

audit_write_latency = Histogram(
    'auth_audit_write_latency_seconds',
    'Latency of audit sink writes'
)


class AuditLogger:
    """
    Append-only recorder with per-action failure policy

    Example:
        audit = AuditLogger(SqlAuditSink(url), timeout_seconds=2.0)
        audit.record(AuditAction.IMPERSONATION_STARTED, ResourceType.IMPERSONATION,
                     actor_id=admin.id, resource_id=session_id)
    """

    def __init__(
        self,
        sink: Optional[PersistentAuditSink] = None,
        fail_closed_actions: Optional[Iterable[AuditAction]] = None,
        timeout_seconds: float = 2.0,
        clock: Clock = utcnow,
    ):
        self.sink = sink if sink is not None else InMemoryAuditSink()
        self.fail_closed_actions = frozenset(
            DEFAULT_FAIL_CLOSED if fail_closed_actions is None else fail_closed_actions
        )
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="audit")

    def is_fail_closed(self, action: AuditAction) -> bool:
        return action in self.fail_closed_actions

    def log(self, entry: AuditLogEntry) -> bool:
        """
        Append an entry to the sink

        Returns:
            True if durably written, False if a fail-open write was dropped

        Raises:
            AuditUnavailable: sink failed or timed out for a fail-closed action
        """
        try:
            with audit_write_latency.time():
                future = self._executor.submit(self.sink.append, entry)
                future.result(timeout=self.timeout_seconds)
        except FutureTimeout as e:
            return self._handle_failure(entry, f"timed out after {self.timeout_seconds}s", e)
        except Exception as e:
            return self._handle_failure(entry, str(e), e)

        audit_writes_total.labels(action=entry.action.value, outcome="written").inc()
        logger.debug(f"Audit entry written: {entry.action.value} actor={entry.actor_id}")
        return True

    def _handle_failure(self, entry: AuditLogEntry, error: str, cause: Exception) -> bool:
        if self.is_fail_closed(entry.action):
            audit_writes_total.labels(action=entry.action.value, outcome="failed_closed").inc()
            logger.error(f"Audit sink unavailable for fail-closed action {entry.action.value}: {error}")
            raise AuditUnavailable(details={"action": entry.action.value}) from cause
        audit_writes_total.labels(action=entry.action.value, outcome="dropped").inc()
        logger.warning(
            f"Audit sink unavailable, proceeding without durable record: "
            f"action={entry.action.value} actor={entry.actor_id} error={error}"
        )
        return False

    def record(
        self,
        action: AuditAction,
        resource_type: ResourceType,
        *,
        actor_id: Optional[str] = None,
        impersonator_id: Optional[str] = None,
        resource_id: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        """Build an entry from keyword fields and log it"""
        return self.log(AuditLogEntry(
            action=action,
            resource_type=resource_type,
            actor_id=actor_id,
            impersonator_id=impersonator_id,
            resource_id=resource_id,
            old_values=old_values,
            new_values=new_values,
            ip_address=ip_address,
            user_agent=user_agent,
            timestamp=self._clock(),
        ))

    def recent(self, limit: int = 100, action: Optional[AuditAction] = None) -> List[AuditLogEntry]:
        """Latest entries, newest first (empty when the sink cannot be queried)"""
        recent = getattr(self.sink, "recent", None)
        if recent is None:
            return []
        return recent(limit=limit, action=action)

    def get_last_entry(self) -> Optional[AuditLogEntry]:
        entries = self.recent(limit=1)
        return entries[0] if entries else None

    def shutdown(self):
        self._executor.shutdown(wait=False)
