"""
Login / logout

Password hashing uses argon2. An unknown email is verified against a
dummy hash so the response time does not reveal whether the account
exists; unknown email, wrong password and inactive account all raise
the same InvalidCredentials.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from prometheus_client import Counter

from core.audit import AuditLogger
from core.directory import UserDirectory
from core.exceptions import InvalidCredentials
from core.impersonation import ClientInfo, ImpersonationSessionManager
from core.tokens import IssuedToken, TokenService
from schemas.audit import AuditAction, ResourceType
from schemas.impersonation import EndReason
from schemas.jwt_claims import AccessTokenClaims, ImpersonationTokenClaims
from schemas.principal import Principal

logger = logging.getLogger(__name__)

login_attempts_total = Counter(
    'auth_login_attempts_total',
    'Login attempts',
    ['outcome']
)


@dataclass(frozen=True)
class LoginResult:
    principal: Principal
    issued: IssuedToken


class Authenticator:
    """
    Credential check and access token issuance

    Example:
        auth = Authenticator(directory, token_service, audit)
        result = auth.login("ops@example.com", "s3cret", ClientInfo(ip_address=ip))
    """

    def __init__(
        self,
        directory: UserDirectory,
        token_service: TokenService,
        audit: AuditLogger,
        hasher: Optional[PasswordHasher] = None,
        sessions: Optional[ImpersonationSessionManager] = None,
    ):
        self.directory = directory
        self.token_service = token_service
        self.audit = audit
        self.sessions = sessions
        self.hasher = hasher or PasswordHasher()
        # Pre-computed hash verified when the email is unknown
        self._dummy_hash = self.hasher.hash("dummy-password-for-timing-attack-prevention")

    def hash_password(self, password: str) -> str:
        return self.hasher.hash(password)

    def verify_password(self, password: str, stored_hash: str) -> bool:
        """False on mismatch or an unreadable hash"""
        try:
            return self.hasher.verify(stored_hash, password)
        except (VerificationError, InvalidHashError):
            return False

    def _fail(self, email: str, reason: str, client: ClientInfo, actor_id: Optional[str] = None):
        login_attempts_total.labels(outcome="failed").inc()
        logger.warning(f"Login failed: reason={reason} ip={client.ip_address}")
        self.audit.record(
            AuditAction.LOGIN_FAILED,
            ResourceType.AUTH,
            actor_id=actor_id,
            new_values={"email": email, "reason": reason},
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        raise InvalidCredentials()

    def login(self, email: str, password: str, client: Optional[ClientInfo] = None) -> LoginResult:
        """
        Raises:
            InvalidCredentials: unknown email, wrong password or inactive account
        """
        client = client or ClientInfo()
        email = email.strip().lower()
        found = self.directory.find_by_email(email)
        if found is None:
            self.verify_password(password, self._dummy_hash)
            self._fail(email, "unknown_email", client)
        principal, password_hash = found
        if not self.verify_password(password, password_hash):
            self._fail(email, "wrong_password", client, actor_id=principal.id)
        if not principal.is_active:
            self._fail(email, f"status_{principal.status.value}", client, actor_id=principal.id)

        issued = self.token_service.issue(principal)
        login_attempts_total.labels(outcome="success").inc()
        self.audit.record(
            AuditAction.LOGIN_SUCCESS,
            ResourceType.AUTH,
            actor_id=principal.id,
            resource_id=principal.id,
            new_values={"role": principal.role.value, "jti": issued.claims.jti},
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        logger.info(f"Login succeeded: user={principal.id} role={principal.role.value}")
        return LoginResult(principal=principal, issued=issued)

    def logout(self, claims: AccessTokenClaims, client: Optional[ClientInfo] = None):
        """
        Revoke the presenting token

        Logging out with an impersonation token also ends its session.

        Raises:
            AuditUnavailable: the session end could not be audited; nothing is revoked
        """
        client = client or ClientInfo()
        impersonator_id = None
        if isinstance(claims, ImpersonationTokenClaims):
            impersonator_id = claims.impersonator_id
            if self.sessions is not None:
                self.sessions.terminate(claims.session_id, EndReason.LOGOUT,
                                        ended_by=impersonator_id, client=client)
        self.token_service.revoke(claims)
        self.audit.record(
            AuditAction.LOGOUT,
            ResourceType.AUTH,
            actor_id=claims.sub,
            impersonator_id=impersonator_id,
            resource_id=claims.sub,
            new_values={"jti": claims.jti},
            ip_address=client.ip_address,
            user_agent=client.user_agent,
        )
        logger.info(f"Logout: user={claims.sub} jti={claims.jti}")
