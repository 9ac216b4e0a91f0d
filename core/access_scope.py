"""
Access scope resolution

Decides which accounts and users a principal may see. superadmin and
admin see everything; csm and user visibility comes from assignment
records supplied by the AssignmentStore.

Decision functions never raise: a failed lookup is logged and denied.
"""
import logging
from typing import Optional, Set

from prometheus_client import Counter

from core.directory import AssignmentStore
from schemas.principal import Principal, Role

logger = logging.getLogger(__name__)

UNRESTRICTED_ROLES = frozenset({Role.SUPERADMIN, Role.ADMIN})

scope_lookup_failures_total = Counter(
    'auth_scope_lookup_failures_total',
    'Assignment lookups that failed and were treated as denial',
    ['lookup']
)


class AccessScopeResolver:
    """Account/user visibility from CSM and user assignments"""

    def __init__(self, assignments: AssignmentStore):
        self.assignments = assignments

    def _csm_accounts(self, csm_id: str) -> Optional[Set[str]]:
        try:
            return set(self.assignments.csm_accounts_for(csm_id))
        except Exception as e:
            scope_lookup_failures_total.labels(lookup="csm_accounts").inc()
            logger.error(f"CSM assignment lookup failed for {csm_id}: {e}")
            return None

    def _user_accounts(self, user_id: str) -> Optional[Set[str]]:
        try:
            return set(self.assignments.user_accounts_for(user_id))
        except Exception as e:
            scope_lookup_failures_total.labels(lookup="user_accounts").inc()
            logger.error(f"User assignment lookup failed for {user_id}: {e}")
            return None

    def can_access_account(self, principal: Principal, account_id: str) -> bool:
        if principal.role in UNRESTRICTED_ROLES:
            return True
        if principal.role is Role.CSM:
            accounts = self._csm_accounts(principal.id)
        else:
            accounts = self._user_accounts(principal.id)
        return accounts is not None and account_id in accounts

    def can_access_user(self, principal: Principal, target_user_id: str) -> bool:
        """
        csm: the target shares at least one assigned account with the csm.
        user: only themselves.
        """
        if principal.role in UNRESTRICTED_ROLES:
            return True
        if principal.role is Role.USER:
            return principal.id == target_user_id
        csm_accounts = self._csm_accounts(principal.id)
        if not csm_accounts:
            return False
        target_accounts = self._user_accounts(target_user_id)
        if not target_accounts:
            return False
        return not csm_accounts.isdisjoint(target_accounts)

    def accessible_account_ids(self, principal: Principal) -> Optional[Set[str]]:
        """Account ids the principal may see; None means every account"""
        if principal.role in UNRESTRICTED_ROLES:
            return None
        if principal.role is Role.CSM:
            accounts = self._csm_accounts(principal.id)
        else:
            accounts = self._user_accounts(principal.id)
        return accounts or set()
