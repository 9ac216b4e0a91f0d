"""
Role hierarchy tests
Ordering, manage rules, the full impersonation matrix and role parsing
"""
from itertools import product

import pytest

from core import roles
from schemas.principal import Principal, Role

ALL_ROLES = list(Role)

IMPERSONATION_ALLOWED = {
    (Role.SUPERADMIN, Role.ADMIN),
    (Role.SUPERADMIN, Role.CSM),
    (Role.SUPERADMIN, Role.USER),
    (Role.ADMIN, Role.CSM),
    (Role.ADMIN, Role.USER),
}


class TestRanking:
    """Total order superadmin > admin > csm > user"""

    def test_ranks(self):
        assert roles.rank(Role.SUPERADMIN) == 3
        assert roles.rank(Role.ADMIN) == 2
        assert roles.rank(Role.CSM) == 1
        assert roles.rank(Role.USER) == 0

    def test_transitivity(self):
        for a, b, c in product(ALL_ROLES, repeat=3):
            if roles.rank(a) > roles.rank(b) > roles.rank(c):
                assert roles.rank(a) > roles.rank(c)

    def test_has_minimum_role(self):
        assert roles.has_minimum_role(Role.ADMIN, Role.CSM)
        assert roles.has_minimum_role(Role.CSM, Role.CSM)
        assert not roles.has_minimum_role(Role.USER, Role.CSM)


class TestCanManage:

    def test_concrete_cases(self):
        assert roles.can_manage(Role.SUPERADMIN, Role.ADMIN) is True
        assert roles.can_manage(Role.ADMIN, Role.CSM) is True
        assert roles.can_manage(Role.CSM, Role.USER) is False

    def test_superadmin_manages_everyone(self):
        for target in ALL_ROLES:
            assert roles.can_manage(Role.SUPERADMIN, target) is True

    def test_admin_never_manages_peers_or_superiors(self):
        assert roles.can_manage(Role.ADMIN, Role.ADMIN) is False
        assert roles.can_manage(Role.ADMIN, Role.SUPERADMIN) is False
        assert roles.can_manage(Role.ADMIN, Role.USER) is True

    @pytest.mark.parametrize("actor", [Role.CSM, Role.USER])
    def test_csm_and_user_manage_no_one(self, actor):
        for target in ALL_ROLES:
            assert roles.can_manage(actor, target) is False


class TestImpersonationMatrix:
    """Exhaustive over the 4x4 role grid"""

    @pytest.mark.parametrize("actor,target", list(product(ALL_ROLES, repeat=2)))
    def test_matrix(self, actor, target):
        expected = (actor, target) in IMPERSONATION_ALLOWED
        assert roles.can_impersonate(actor, target) is expected

    @pytest.mark.parametrize("role", ALL_ROLES)
    def test_self_impersonation_denied_by_id(self, role):
        me = Principal(id="same-id", email="me@framtt.com", role=role)
        decision = roles.check_impersonation(me, me)
        assert decision.allowed is False
        assert decision.reason == "self_impersonation"

    def test_principal_level_denial_reason(self, csm, user):
        decision = roles.check_impersonation(csm, user)
        assert not decision
        assert decision.reason == "role_not_permitted"

    def test_principal_level_allow(self, admin, csm):
        decision = roles.check_impersonation(admin, csm)
        assert decision
        assert decision.reason == ""


class TestVisibleRoles:

    def test_privileged_roles_see_all(self):
        assert roles.visible_roles(Role.SUPERADMIN) == frozenset(ALL_ROLES)
        assert roles.visible_roles(Role.ADMIN) == frozenset(ALL_ROLES)

    def test_scoped_roles_see_none(self):
        assert roles.visible_roles(Role.CSM) == frozenset()
        assert roles.visible_roles(Role.USER) == frozenset()


class TestParseRole:
    """Free-form role strings never reach a hierarchy check"""

    def test_valid(self):
        assert roles.parse_role("superadmin") is Role.SUPERADMIN
        assert roles.parse_role("csm") is Role.CSM

    @pytest.mark.parametrize("bad", ["super_admin", "admn", "Admin", ""])
    def test_invalid(self, bad):
        with pytest.raises(ValueError) as exc_info:
            roles.parse_role(bad)
        assert "invalid role" in str(exc_info.value).lower()
