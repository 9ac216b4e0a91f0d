"""
Engine wiring and maintenance tests
"""
from datetime import timedelta

from core.audit_store import InMemoryAuditSink
from core.engine import build_audit_sink
from schemas.audit import AuditAction


class TestRotation:

    def test_manual_rotation_is_audited(self, engine, superadmin, audit_sink):
        old = engine.secrets.current.fingerprint
        new = engine.rotate_secret(actor=superadmin)

        assert new != old
        entry = audit_sink.entries[-1]
        assert entry.action is AuditAction.JWT_SECRET_ROTATED
        assert entry.actor_id == superadmin.id
        assert entry.old_values == {"fingerprint": old}
        assert entry.new_values["fingerprint"] == new
        assert entry.new_values["trigger"] == "manual"
        # the audit trail never carries secret material
        assert engine.secrets.current.secret not in str(entry.model_dump())


class TestMaintenance:

    def test_idle_run(self, engine):
        assert engine.run_maintenance() == {
            "rotated": 0,
            "sessions_expired": 0,
            "revocations_purged": 0,
            "rate_limit_windows_swept": 0,
        }

    def test_scheduled_rotation_and_sweeps(self, engine, admin, csm, clock, audit_sink):
        grant = engine.sessions.start(admin, csm, ttl=timedelta(minutes=5))
        engine.sessions.stop(grant.session.session_id, admin)
        engine.sessions.start(admin, csm, ttl=timedelta(minutes=5))

        clock.advance(days=30)
        result = engine.run_maintenance()

        assert result["rotated"] == 1
        assert result["sessions_expired"] == 1
        assert result["revocations_purged"] == 1
        rotated = [e for e in audit_sink.entries if e.action is AuditAction.JWT_SECRET_ROTATED]
        assert rotated[0].new_values["trigger"] == "scheduled"


class TestAuditSinkSelection:

    def test_memory_sink_without_database(self, settings):
        assert isinstance(build_audit_sink(settings), InMemoryAuditSink)


class TestAuditTimestamps:

    def test_entries_use_engine_clock(self, engine, admin, csm, clock, audit_sink):
        clock.advance(hours=3)
        grant = engine.sessions.start(admin, csm)
        clock.advance(minutes=7)
        engine.sessions.stop(grant.session.session_id, admin)

        started, ended = audit_sink.entries
        assert started.timestamp == grant.session.start_time
        assert ended.timestamp == engine.sessions.get(grant.session.session_id).end_time
        assert ended.timestamp == clock()
