"""
Token Service
Issues and verifies HS256 bearer tokens for access and impersonation

Verification order: current secret first, then the previous secret while
its grace window is open. Failures are classified for logging and metrics
(expired / invalid / malformed / revoked) but all surface as 401.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from uuid import uuid4

import jwt
from pydantic import ValidationError
from prometheus_client import Counter

from core.clock import Clock, utcnow
from core.exceptions import (
    ImpersonationNotAllowed,
    ImpersonationTTLExceeded,
    SelfImpersonation,
    TokenExpired,
    TokenInvalid,
    TokenMalformed,
    TokenRevoked,
)
from core.revocation import RevocationList
from core.secrets import SecretSet, SecretStore
from schemas.jwt_claims import (
    AccessTokenClaims,
    ImpersonationTokenClaims,
    TokenType,
    parse_claims,
)
from schemas.principal import Principal, Role

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ["sub", "role", "email", "iat", "exp", "jti"]
IMPERSONATOR_ROLES = frozenset({Role.ADMIN, Role.SUPERADMIN})

tokens_issued_total = Counter(
    'auth_tokens_issued_total',
    'Tokens issued',
    ['type']
)

token_verification_failures_total = Counter(
    'auth_token_verification_failures_total',
    'Token verification failures',
    ['reason']
)

previous_secret_verifications_total = Counter(
    'auth_previous_secret_verifications_total',
    'Tokens accepted through the previous signing secret'
)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    claims: AccessTokenClaims

    @property
    def expires_at(self) -> datetime:
        return self.claims.exp


class TokenService:
    """
    Issue and verify bearer tokens

    Example:
        service = TokenService(store, access_ttl=timedelta(hours=2),
                               max_impersonation_ttl=timedelta(hours=1))
        issued = service.issue(principal)
        principal = service.verify(issued.token)
    """

    def __init__(
        self,
        secret_store: SecretStore,
        access_ttl: timedelta = timedelta(minutes=120),
        max_impersonation_ttl: timedelta = timedelta(minutes=60),
        revocations: Optional[RevocationList] = None,
        issuer: str = "framtt-admin",
        audience: str = "framtt-users",
        algorithm: str = "HS256",
        clock: Clock = utcnow,
    ):
        if max_impersonation_ttl >= access_ttl:
            raise ValueError("max_impersonation_ttl must be shorter than access_ttl")
        self.secret_store = secret_store
        self.access_ttl = access_ttl
        self.max_impersonation_ttl = max_impersonation_ttl
        self.revocations = revocations if revocations is not None else RevocationList(clock=clock)
        self.issuer = issuer
        self.audience = audience
        self.algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, secret_store: SecretStore,
                      revocations: Optional[RevocationList] = None,
                      clock: Clock = utcnow) -> "TokenService":
        return cls(
            secret_store=secret_store,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_TTL_MINUTES),
            max_impersonation_ttl=timedelta(minutes=settings.IMPERSONATION_MAX_TTL_MINUTES),
            revocations=revocations,
            issuer=settings.JWT_ISSUER,
            audience=settings.JWT_AUDIENCE,
            algorithm=settings.JWT_ALGORITHM,
            clock=clock,
        )

    def _now(self) -> datetime:
        # NumericDate has one-second resolution
        return self._clock().replace(microsecond=0)

    def _sign(self, claims: AccessTokenClaims) -> str:
        payload = claims.to_payload()
        payload["iss"] = self.issuer
        payload["aud"] = self.audience
        return jwt.encode(payload, self.secret_store.current.secret, algorithm=self.algorithm)

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue(self, principal: Principal, ttl: Optional[timedelta] = None) -> IssuedToken:
        """
        Sign an access token for an active principal

        Raises:
            ValueError: if the principal is not active or ttl is not positive
        """
        if not principal.is_active:
            raise ValueError(f"Cannot issue a token for inactive principal {principal.id}")
        if ttl is None:
            ttl = self.access_ttl
        if ttl <= timedelta(0):
            raise ValueError("Token lifetime must be positive")
        now = self._now()
        claims = AccessTokenClaims(
            sub=principal.id,
            role=principal.role,
            email=principal.email,
            iat=now,
            exp=now + ttl,
            jti=str(uuid4()),
        )
        token = self._sign(claims)
        tokens_issued_total.labels(type=TokenType.ACCESS.value).inc()
        logger.info(f"Access token issued: sub={principal.id}, role={principal.role.value}, jti={claims.jti}")
        return IssuedToken(token=token, claims=claims)

    def issue_impersonation(
        self,
        target: Principal,
        impersonator_id: str,
        session_id: str,
        ttl: Optional[timedelta] = None,
        *,
        impersonator_role: Role,
    ) -> IssuedToken:
        """
        Sign an impersonation token whose subject is the target user

        Raises:
            ImpersonationTTLExceeded: ttl above the configured maximum
            ImpersonationNotAllowed: impersonator is not admin/superadmin
            SelfImpersonation: impersonator and target are the same user
        """
        if ttl is None:
            ttl = self.max_impersonation_ttl
        if ttl <= timedelta(0):
            raise ImpersonationTTLExceeded("Impersonation lifetime must be positive")
        if ttl > self.max_impersonation_ttl:
            raise ImpersonationTTLExceeded(details={
                "requested_seconds": int(ttl.total_seconds()),
                "max_seconds": int(self.max_impersonation_ttl.total_seconds()),
            })
        if impersonator_role not in IMPERSONATOR_ROLES:
            raise ImpersonationNotAllowed()
        if impersonator_id == target.id:
            raise SelfImpersonation()

        now = self._now()
        claims = ImpersonationTokenClaims(
            sub=target.id,
            role=target.role,
            email=target.email,
            iat=now,
            exp=now + ttl,
            jti=str(uuid4()),
            impersonator_id=impersonator_id,
            impersonated_user_id=target.id,
            session_id=session_id,
        )
        token = self._sign(claims)
        tokens_issued_total.labels(type=TokenType.IMPERSONATION.value).inc()
        logger.info(
            f"Impersonation token issued: impersonator={impersonator_id}, "
            f"target={target.id}, session={session_id}, jti={claims.jti}"
        )
        return IssuedToken(token=token, claims=claims)

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def _decode(self, token: str) -> Dict[str, Any]:
        options = {
            "verify_exp": False,  # checked against the injected clock below
            "verify_iat": False,
            "require": REQUIRED_CLAIMS,
        }
        for label, version in self.secret_store.verification_keys():
            try:
                payload = jwt.decode(
                    token,
                    version.secret,
                    algorithms=[self.algorithm],
                    audience=self.audience,
                    issuer=self.issuer,
                    options=options,
                )
            except jwt.InvalidSignatureError:
                continue
            except jwt.MissingRequiredClaimError as e:
                raise TokenMalformed(details={"claim": e.claim}) from e
            except jwt.InvalidTokenError as e:
                # bad format, audience or issuer
                raise TokenInvalid(str(e)) from e
            if label == "previous":
                previous_secret_verifications_total.inc()
                logger.info(f"Token verified with previous signing secret {version.fingerprint}")
            return payload
        raise TokenInvalid("Signature verification failed")

    def verify_claims(self, token: str, check_revocation: bool = True) -> AccessTokenClaims:
        """
        Verify signature, claims, expiry and revocation; return the claims

        check_revocation=False leaves the revocation check to the caller
        (see ensure_not_revoked), so a stopped impersonation session can be
        reported as such rather than as a revoked token.

        Raises:
            TokenInvalid, TokenMalformed, TokenExpired, TokenRevoked
        """
        try:
            payload = self._decode(token)
            try:
                claims = parse_claims(payload)
            except ValidationError as e:
                raise TokenMalformed(details={"errors": e.error_count()}) from e
            if self._clock() >= claims.exp:
                raise TokenExpired()
            if check_revocation and self.revocations.is_revoked(claims.jti):
                raise TokenRevoked()
        except (TokenInvalid, TokenMalformed, TokenExpired, TokenRevoked) as e:
            token_verification_failures_total.labels(reason=e.reason).inc()
            logger.warning(f"Token verification failed: {e.reason} ({e.message})")
            raise
        return claims

    def ensure_not_revoked(self, claims: AccessTokenClaims):
        if self.revocations.is_revoked(claims.jti):
            token_verification_failures_total.labels(reason=TokenRevoked.reason).inc()
            logger.warning(f"Token verification failed: revoked (jti={claims.jti})")
            raise TokenRevoked()

    def verify(self, token: str) -> Principal:
        """Verify a token and return the principal it authenticates"""
        return self.verify_claims(token).to_principal()

    def revoke(self, claims: AccessTokenClaims):
        self.revocations.revoke(claims.jti, claims.exp)

    def rotate_secret(self, new_secret: Optional[str] = None, trigger: str = "manual") -> SecretSet:
        """Swap in a new signing secret; tokens signed with the old one stay valid for the grace window"""
        return self.secret_store.rotate(new_secret=new_secret, trigger=trigger)
