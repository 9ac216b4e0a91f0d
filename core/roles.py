"""
Role hierarchy evaluator

Pure functions over the closed Role enum. One ordering table drives
every comparison; nothing here raises on denial.

Hierarchy: superadmin (3) > admin (2) > csm (1) > user (0)
"""
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet

from prometheus_client import Counter

from schemas.principal import Principal, Role

logger = logging.getLogger(__name__)

invalid_role_attempts_total = Counter(
    'auth_invalid_role_attempts_total',
    'Role strings rejected at the boundary',
    ['attempted_role']
)

ROLE_RANK: Dict[Role, int] = {
    Role.SUPERADMIN: 3,
    Role.ADMIN: 2,
    Role.CSM: 1,
    Role.USER: 0,
}

# Roles each role may impersonate. superadmin never impersonates a peer.
_IMPERSONATABLE: Dict[Role, FrozenSet[Role]] = {
    Role.SUPERADMIN: frozenset({Role.ADMIN, Role.CSM, Role.USER}),
    Role.ADMIN: frozenset({Role.CSM, Role.USER}),
    Role.CSM: frozenset(),
    Role.USER: frozenset(),
}

_VISIBLE: Dict[Role, FrozenSet[Role]] = {
    Role.SUPERADMIN: frozenset(Role),
    Role.ADMIN: frozenset(Role),
    Role.CSM: frozenset(),
    Role.USER: frozenset(),
}


@dataclass(frozen=True)
class ImpersonationDecision:
    """Outcome of an impersonation check; reason is set on denial"""
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


def parse_role(role_str: str) -> Role:
    """
    Validate a role string against the closed enum

    Raises:
        ValueError: unknown role (e.g. 'super_admin', 'admn')
    """
    try:
        return Role(role_str)
    except ValueError:
        invalid_role_attempts_total.labels(attempted_role=str(role_str)[:32]).inc()
        logger.warning(f"Invalid role attempted: {role_str!r}")
        raise ValueError(f"Invalid role: {role_str}")


def rank(role: Role) -> int:
    return ROLE_RANK[role]


def outranks(a: Role, b: Role) -> bool:
    return ROLE_RANK[a] > ROLE_RANK[b]


def has_minimum_role(role: Role, minimum: Role) -> bool:
    return ROLE_RANK[role] >= ROLE_RANK[minimum]


def can_manage(actor: Role, target: Role) -> bool:
    """
    superadmin manages every role (other superadmins included),
    admin manages csm and user, csm and user manage no one.
    """
    if actor is Role.SUPERADMIN:
        return True
    if actor is Role.ADMIN:
        return target in (Role.CSM, Role.USER)
    return False


def can_impersonate(actor: Role, target: Role) -> bool:
    """Role-level rule only; self-impersonation is checked by principal id"""
    return target in _IMPERSONATABLE[actor]


def check_impersonation(actor: Principal, target: Principal) -> ImpersonationDecision:
    """Principal-level impersonation check with a distinct denial reason"""
    if actor.id == target.id:
        return ImpersonationDecision(False, "self_impersonation")
    if not can_impersonate(actor.role, target.role):
        return ImpersonationDecision(False, "role_not_permitted")
    return ImpersonationDecision(True)


def visible_roles(actor: Role) -> FrozenSet[Role]:
    """Roles whose users the actor may list or view"""
    return _VISIBLE[actor]
