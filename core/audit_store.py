"""
Persistent audit sinks

- InMemoryAuditSink: development and tests
- SqlAuditSink: durable append-only table `audit_logs` (SQLAlchemy)
"""
import logging
import threading
from typing import List, Optional, Protocol

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from schemas.audit import AuditAction, AuditLogEntry, AuditLogRecord, Base

logger = logging.getLogger(__name__)


class PersistentAuditSink(Protocol):
    def append(self, entry: AuditLogEntry) -> None:
        ...

    def recent(self, limit: int = 100, action: Optional[AuditAction] = None) -> List[AuditLogEntry]:
        ...


class InMemoryAuditSink:
    """List-backed sink; entries are never removed"""

    def __init__(self):
        self._entries: List[AuditLogEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: AuditLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def recent(self, limit: int = 100, action: Optional[AuditAction] = None) -> List[AuditLogEntry]:
        entries = [e for e in self._entries if action is None or e.action is action]
        return list(reversed(entries[-limit:]))

    @property
    def entries(self) -> List[AuditLogEntry]:
        return list(self._entries)


class SqlAuditSink:
    """
    SQLAlchemy-backed sink

    Example:
        sink = SqlAuditSink("postgresql+psycopg://audit@db/admin")
        sink.append(entry)
    """

    def __init__(self, database_url: str, create_tables: bool = True, **engine_kwargs):
        engine_kwargs.setdefault("pool_pre_ping", True)
        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        if create_tables:
            Base.metadata.create_all(bind=self.engine, tables=[AuditLogRecord.__table__])
        logger.info(f"SqlAuditSink initialized: dialect={self.engine.dialect.name}")

    def append(self, entry: AuditLogEntry) -> None:
        session: Session = self.SessionLocal()
        try:
            session.add(AuditLogRecord.from_entry(entry))
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def recent(self, limit: int = 100, action: Optional[AuditAction] = None) -> List[AuditLogEntry]:
        stmt = select(AuditLogRecord).order_by(AuditLogRecord.timestamp.desc()).limit(limit)
        if action is not None:
            stmt = stmt.where(AuditLogRecord.action == action.value)
        with self.SessionLocal() as session:
            return [record.to_entry() for record in session.scalars(stmt)]

    def dispose(self):
        self.engine.dispose()
