"""
Signing secret store with dual-valid rotation window

Holds the current signing secret and at most one previous secret:
- Rotation swaps an immutable snapshot under a write lock
- Readers take a single attribute read, no lock on the hot path
- The previous secret stays valid until every token it signed has expired
- A secret is never reused (fingerprints of retired secrets are kept)
"""
import hashlib
import hmac
import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Set, Tuple

from prometheus_client import Counter, Gauge

from core.clock import Clock, utcnow
from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 32
# 64 random bytes, url-safe encoded (512 bits of entropy)
GENERATED_SECRET_BYTES = 64

secret_rotations_total = Counter(
    'auth_secret_rotations_total',
    'Signing secret rotations',
    ['trigger']
)

secret_age_seconds = Gauge(
    'auth_secret_age_seconds',
    'Age of the current signing secret at last rotation check'
)


def fingerprint(secret: str) -> str:
    """Short non-reversible identifier, safe to log and audit"""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()[:16]


def generate_secret() -> str:
    return secrets.token_urlsafe(GENERATED_SECRET_BYTES)


@dataclass(frozen=True)
class SecretVersion:
    """One signing secret and when it became current"""
    secret: str
    created_at: datetime
    retired_at: Optional[datetime] = None

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.secret)

    def __repr__(self) -> str:
        return f"SecretVersion(fingerprint={self.fingerprint}, created_at={self.created_at.isoformat()})"


@dataclass(frozen=True)
class SecretSet:
    """Immutable snapshot read by verifiers"""
    current: SecretVersion
    previous: Optional[SecretVersion] = None


class SecretStore:
    """
    Current + previous signing secret with rotation metadata

    Example:
        store = SecretStore(initial_secret=settings.JWT_SECRET,
                            max_token_lifetime=timedelta(hours=2))
        for version in store.verification_keys():
            ...
        store.rotate()
    """

    def __init__(
        self,
        initial_secret: Optional[str] = None,
        max_token_lifetime: timedelta = timedelta(hours=2),
        rotation_interval: timedelta = timedelta(days=30),
        previous_secret: Optional[str] = None,
        last_rotation: Optional[datetime] = None,
        clock: Clock = utcnow,
    ):
        self._clock = clock
        self.max_token_lifetime = max_token_lifetime
        self.rotation_interval = rotation_interval
        self._write_lock = threading.Lock()
        self._used_fingerprints: Set[str] = set()

        now = clock()
        created_at = last_rotation or now
        secret = initial_secret if initial_secret is not None else generate_secret()
        self._check_strength(secret)
        current = SecretVersion(secret=secret, created_at=created_at)
        self._used_fingerprints.add(current.fingerprint)

        previous = None
        if previous_secret is not None:
            self._check_strength(previous_secret)
            if hmac.compare_digest(previous_secret, secret):
                raise ConfigurationError("Previous signing secret must differ from the current one")
            # Treat the configured previous secret as retired at the last rotation
            previous = SecretVersion(
                secret=previous_secret,
                created_at=created_at - rotation_interval,
                retired_at=created_at,
            )
            self._used_fingerprints.add(previous.fingerprint)

        self._snapshot = SecretSet(current=current, previous=previous)
        logger.info(
            f"SecretStore initialized: current={current.fingerprint}, "
            f"previous={'yes' if previous else 'no'}"
        )

    @classmethod
    def from_settings(cls, settings, clock: Clock = utcnow) -> "SecretStore":
        """Build the store from JWT_SECRET / JWT_PREVIOUS_SECRET / JWT_SECRET_LAST_ROTATION"""
        last_rotation = None
        if settings.JWT_SECRET_LAST_ROTATION:
            try:
                last_rotation = datetime.fromisoformat(settings.JWT_SECRET_LAST_ROTATION)
            except ValueError as e:
                raise ConfigurationError(f"JWT_SECRET_LAST_ROTATION is not ISO-8601: {e}") from e
            if last_rotation.tzinfo is None:
                raise ConfigurationError("JWT_SECRET_LAST_ROTATION must carry a timezone")

        if settings.JWT_SECRET is None:
            if settings.is_production:
                raise ConfigurationError("JWT_SECRET is required in production")
            logger.warning("JWT_SECRET not configured; generated an ephemeral signing secret")

        return cls(
            initial_secret=settings.JWT_SECRET,
            previous_secret=settings.JWT_PREVIOUS_SECRET,
            last_rotation=last_rotation,
            max_token_lifetime=timedelta(minutes=settings.max_token_ttl_minutes),
            rotation_interval=timedelta(days=settings.SECRET_ROTATION_INTERVAL_DAYS),
            clock=clock,
        )

    @staticmethod
    def _check_strength(secret: str):
        if len(secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"Signing secret must be at least {MIN_SECRET_LENGTH} characters"
            )

    # ------------------------------------------------------------------
    # Read path (lock-free)
    # ------------------------------------------------------------------

    @property
    def current(self) -> SecretVersion:
        return self._snapshot.current

    @property
    def previous(self) -> Optional[SecretVersion]:
        return self._valid_previous(self._snapshot)

    def snapshot(self) -> SecretSet:
        return self._snapshot

    def verification_keys(self) -> List[Tuple[str, SecretVersion]]:
        """
        Keys to try, in order: current first, then previous while its
        grace window is open. Labels are 'current' / 'previous'.
        """
        snapshot = self._snapshot
        keys = [("current", snapshot.current)]
        previous = self._valid_previous(snapshot)
        if previous is not None:
            keys.append(("previous", previous))
        return keys

    def _valid_previous(self, snapshot: SecretSet) -> Optional[SecretVersion]:
        previous = snapshot.previous
        if previous is None:
            return None
        if self._clock() >= previous.retired_at + self.max_token_lifetime:
            return None
        return previous

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def rotate(self, new_secret: Optional[str] = None, trigger: str = "manual") -> SecretSet:
        """
        Promote a fresh secret to current and demote current to previous

        Any older previous secret is discarded, so a token signed two
        rotations ago no longer verifies.

        Raises:
            ConfigurationError: if new_secret is weak or was used before
        """
        with self._write_lock:
            now = self._clock()
            if new_secret is None:
                new_secret = generate_secret()
            self._check_strength(new_secret)
            new_fp = fingerprint(new_secret)
            if new_fp in self._used_fingerprints:
                raise ConfigurationError("Signing secrets must not be reused")

            old = self._snapshot
            demoted = SecretVersion(
                secret=old.current.secret,
                created_at=old.current.created_at,
                retired_at=now,
            )
            snapshot = SecretSet(
                current=SecretVersion(secret=new_secret, created_at=now),
                previous=demoted,
            )
            self._used_fingerprints.add(new_fp)
            self._snapshot = snapshot

        secret_rotations_total.labels(trigger=trigger).inc()
        logger.info(
            f"Signing secret rotated ({trigger}): current={snapshot.current.fingerprint}, "
            f"previous={demoted.fingerprint}, discarded={old.previous.fingerprint if old.previous else None}"
        )
        return snapshot

    def secret_age(self) -> timedelta:
        return self._clock() - self._snapshot.current.created_at

    def should_rotate(self) -> bool:
        age = self.secret_age()
        secret_age_seconds.set(age.total_seconds())
        return age >= self.rotation_interval

    def discard_expired_previous(self) -> bool:
        """Drop the previous secret once its grace window has closed"""
        with self._write_lock:
            snapshot = self._snapshot
            if snapshot.previous is None or self._valid_previous(snapshot) is not None:
                return False
            self._snapshot = SecretSet(current=snapshot.current, previous=None)
        logger.info(f"Discarded previous signing secret {snapshot.previous.fingerprint}")
        return True
