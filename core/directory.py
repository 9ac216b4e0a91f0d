"""
Collaborator interfaces consumed by the engine, with in-memory implementations

The user directory and assignment store are owned by the surrounding
platform; the in-memory versions back the default wiring and the tests.
"""
import threading
from typing import Dict, Iterable, Optional, Protocol, Set, Tuple

from schemas.principal import Principal


class UserDirectory(Protocol):
    def find_by_id(self, user_id: str) -> Optional[Principal]:
        ...

    def find_by_email(self, email: str) -> Optional[Tuple[Principal, str]]:
        """Principal and its password hash"""
        ...


class AssignmentStore(Protocol):
    def csm_accounts_for(self, csm_id: str) -> Set[str]:
        ...

    def user_accounts_for(self, user_id: str) -> Set[str]:
        ...


class InMemoryUserDirectory:
    """Dict-backed directory; emails are matched case-insensitively"""

    def __init__(self):
        self._by_id: Dict[str, Principal] = {}
        self._hashes: Dict[str, str] = {}
        self._email_index: Dict[str, str] = {}
        self._lock = threading.Lock()

    def add(self, principal: Principal, password_hash: str = ""):
        with self._lock:
            self._by_id[principal.id] = principal
            self._hashes[principal.id] = password_hash
            self._email_index[principal.email.lower()] = principal.id

    def replace(self, principal: Principal):
        """Update a principal (e.g. status change) keeping its password hash"""
        with self._lock:
            if principal.id not in self._by_id:
                raise KeyError(principal.id)
            self._by_id[principal.id] = principal

    def find_by_id(self, user_id: str) -> Optional[Principal]:
        return self._by_id.get(user_id)

    def find_by_email(self, email: str) -> Optional[Tuple[Principal, str]]:
        user_id = self._email_index.get(email.strip().lower())
        if user_id is None:
            return None
        return self._by_id[user_id], self._hashes[user_id]


class InMemoryAssignmentStore:
    """CSM -> accounts and user -> accounts assignments"""

    def __init__(self):
        self._csm_accounts: Dict[str, Set[str]] = {}
        self._user_accounts: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def assign_csm(self, csm_id: str, account_ids: Iterable[str]):
        with self._lock:
            self._csm_accounts.setdefault(csm_id, set()).update(account_ids)

    def assign_user(self, user_id: str, account_ids: Iterable[str]):
        with self._lock:
            self._user_accounts.setdefault(user_id, set()).update(account_ids)

    def csm_accounts_for(self, csm_id: str) -> Set[str]:
        with self._lock:
            return set(self._csm_accounts.get(csm_id, ()))

    def user_accounts_for(self, user_id: str) -> Set[str]:
        with self._lock:
            return set(self._user_accounts.get(user_id, ()))
