"""
Shared fixtures: a controllable clock, a cast of principals and a fully
wired engine backed by in-memory collaborators.
"""
from datetime import UTC, datetime, timedelta

import pytest
from argon2 import PasswordHasher

from core.audit_store import InMemoryAuditSink
from core.config import Settings
from core.directory import InMemoryAssignmentStore, InMemoryUserDirectory
from core.engine import build_engine
from schemas.principal import Principal, PrincipalStatus, Role

TEST_SECRET = "test-signing-secret-0123456789-abcdefghijklmnopqrstuvwxyz"
PASSWORD = "correct-horse-battery-staple"


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC))


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        values = {"JWT_SECRET": TEST_SECRET, "LOG_LEVEL": "WARNING"}
        values.update(overrides)
        return Settings(_env_file=None, **values)
    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def hasher():
    # cheap parameters keep the suite fast
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def password():
    return PASSWORD


@pytest.fixture
def superadmin():
    return Principal(id="sa-1", email="root@framtt.com", role=Role.SUPERADMIN)


@pytest.fixture
def admin():
    return Principal(id="admin-1", email="admin@framtt.com", role=Role.ADMIN)


@pytest.fixture
def other_admin():
    return Principal(id="admin-2", email="admin2@framtt.com", role=Role.ADMIN)


@pytest.fixture
def csm():
    return Principal(id="csm-1", email="csm@framtt.com", role=Role.CSM)


@pytest.fixture
def user():
    return Principal(id="user-1", email="driver@acme-rentals.com", role=Role.USER)


@pytest.fixture
def other_user():
    return Principal(id="user-2", email="owner@other-rentals.com", role=Role.USER)


@pytest.fixture
def suspended_user():
    return Principal(
        id="user-9",
        email="gone@acme-rentals.com",
        role=Role.USER,
        status=PrincipalStatus.SUSPENDED,
    )


@pytest.fixture
def directory(hasher, superadmin, admin, other_admin, csm, user, other_user, suspended_user):
    directory = InMemoryUserDirectory()
    password_hash = hasher.hash(PASSWORD)
    for principal in (superadmin, admin, other_admin, csm, user, other_user, suspended_user):
        directory.add(principal, password_hash)
    return directory


@pytest.fixture
def assignments(csm, user, other_user):
    store = InMemoryAssignmentStore()
    store.assign_csm(csm.id, ["acct-A"])
    store.assign_user(user.id, ["acct-A"])
    store.assign_user(other_user.id, ["acct-B"])
    return store


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def engine(settings, directory, assignments, audit_sink, clock, hasher):
    engine = build_engine(
        settings,
        directory,
        assignments,
        audit_sink=audit_sink,
        clock=clock,
        authenticator_kwargs={"hasher": hasher},
    )
    yield engine
    engine.shutdown()
