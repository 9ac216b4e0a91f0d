"""
Token revocation list

Maps a token's jti to its expiry. An entry only needs to live as long as
the token itself could still verify, so expired entries are purged.
"""
import logging
import threading
from datetime import datetime
from typing import Dict

from core.clock import Clock, utcnow

logger = logging.getLogger(__name__)


class RevocationList:
    """Thread-safe jti -> exp map"""

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._entries: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def revoke(self, jti: str, expires_at: datetime):
        with self._lock:
            # keep the later expiry if revoked twice
            existing = self._entries.get(jti)
            if existing is None or existing < expires_at:
                self._entries[jti] = expires_at
        logger.debug(f"Token revoked: jti={jti}")

    def is_revoked(self, jti: str) -> bool:
        return jti in self._entries

    def cleanup(self) -> int:
        """Purge entries whose token has expired; returns how many were removed"""
        now = self._clock()
        with self._lock:
            expired = [jti for jti, exp in self._entries.items() if exp <= now]
            for jti in expired:
                del self._entries[jti]
        if expired:
            logger.info(f"Revocation list cleanup: removed {len(expired)} expired entries")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
