"""
Access scope tests
Account and user visibility from assignments; lookups never raise
"""
import threading
from unittest.mock import Mock

from core.access_scope import AccessScopeResolver


class TestAccountAccess:

    def test_privileged_roles_see_every_account(self, assignments, superadmin, admin):
        resolver = AccessScopeResolver(assignments)
        assert resolver.can_access_account(superadmin, "acct-Z") is True
        assert resolver.can_access_account(admin, "acct-Z") is True

    def test_csm_scoped_to_assigned_accounts(self, assignments, csm):
        resolver = AccessScopeResolver(assignments)
        assert resolver.can_access_account(csm, "acct-A") is True
        assert resolver.can_access_account(csm, "acct-B") is False

    def test_user_scoped_to_own_accounts(self, assignments, user):
        resolver = AccessScopeResolver(assignments)
        assert resolver.can_access_account(user, "acct-A") is True
        assert resolver.can_access_account(user, "acct-B") is False

    def test_accessible_account_ids(self, assignments, admin, csm, user):
        resolver = AccessScopeResolver(assignments)
        assert resolver.accessible_account_ids(admin) is None
        assert resolver.accessible_account_ids(csm) == {"acct-A"}
        assert resolver.accessible_account_ids(user) == {"acct-A"}


class TestUserAccess:

    def test_privileged_roles_see_every_user(self, assignments, admin, other_user):
        assert AccessScopeResolver(assignments).can_access_user(admin, other_user.id) is True

    def test_csm_sees_users_sharing_an_account(self, assignments, csm, user, other_user):
        resolver = AccessScopeResolver(assignments)
        assert resolver.can_access_user(csm, user.id) is True
        assert resolver.can_access_user(csm, other_user.id) is False

    def test_csm_without_assignments_sees_no_one(self, assignments, user):
        from schemas.principal import Principal, Role

        lonely = Principal(id="csm-9", email="new-csm@framtt.com", role=Role.CSM)
        assert AccessScopeResolver(assignments).can_access_user(lonely, user.id) is False

    def test_user_sees_only_self(self, assignments, user, other_user):
        resolver = AccessScopeResolver(assignments)
        assert resolver.can_access_user(user, user.id) is True
        assert resolver.can_access_user(user, other_user.id) is False


class TestLookupFailures:
    """A failing assignment store denies instead of raising"""

    def test_failed_lookup_denies(self, csm, user):
        store = Mock()
        store.csm_accounts_for.side_effect = ConnectionError("assignment db down")
        store.user_accounts_for.side_effect = ConnectionError("assignment db down")
        resolver = AccessScopeResolver(store)

        assert resolver.can_access_account(csm, "acct-A") is False
        assert resolver.can_access_account(user, "acct-A") is False
        assert resolver.can_access_user(csm, user.id) is False


class TestAssignmentStore:

    def test_concurrent_assignments(self):
        from core.directory import InMemoryAssignmentStore

        store = InMemoryAssignmentStore()

        def assign(n):
            for i in range(100):
                store.assign_csm("csm-1", [f"acct-{n}-{i}"])

        threads = [threading.Thread(target=assign, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(store.csm_accounts_for("csm-1")) == 400
