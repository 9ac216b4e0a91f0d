"""
Token service tests
Round trip, expiry boundary, failure classification, impersonation caps
"""
from datetime import timedelta

import jwt
import pytest

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
from core.secrets import SecretStore
from core.tokens import TokenService
from schemas.jwt_claims import ImpersonationTokenClaims, TokenType
from schemas.principal import Role

SECRET = "unit-test-secret-abcdefghijklmnopqrstuvwxyz-0123456789"


@pytest.fixture
def store(clock):
    return SecretStore(initial_secret=SECRET, max_token_lifetime=timedelta(minutes=120), clock=clock)


@pytest.fixture
def service(store, clock):
    return TokenService(
        store,
        access_ttl=timedelta(minutes=120),
        max_impersonation_ttl=timedelta(minutes=60),
        revocations=RevocationList(clock=clock),
        clock=clock,
    )


def _raw_token(store, **payload):
    base = {"iss": "framtt-admin", "aud": "framtt-users"}
    base.update(payload)
    return jwt.encode(base, store.current.secret, algorithm="HS256")


class TestIssueAndVerify:

    def test_round_trip(self, service, admin):
        issued = service.issue(admin)
        assert service.verify(issued.token) == admin

    def test_claims_content(self, service, csm, clock):
        issued = service.issue(csm)
        claims = service.verify_claims(issued.token)
        assert claims.sub == csm.id
        assert claims.role is Role.CSM
        assert claims.email == csm.email
        assert claims.type is TokenType.ACCESS
        assert claims.iat == clock()
        assert claims.exp - claims.iat == timedelta(minutes=120)

    def test_every_token_gets_unique_id(self, service, user):
        assert service.issue(user).claims.jti != service.issue(user).claims.jti

    def test_inactive_principal_not_issued(self, service, suspended_user):
        with pytest.raises(ValueError):
            service.issue(suspended_user)

    def test_zero_ttl_not_treated_as_default(self, service, user):
        with pytest.raises(ValueError):
            service.issue(user, ttl=timedelta(0))

    def test_impersonation_ttl_must_be_shorter(self, store):
        with pytest.raises(ValueError):
            TokenService(store, access_ttl=timedelta(minutes=60), max_impersonation_ttl=timedelta(minutes=60))


class TestExpiryBoundary:

    def test_valid_one_second_before_expiry(self, service, user, clock):
        issued = service.issue(user, ttl=timedelta(seconds=10))
        clock.advance(seconds=9)
        assert service.verify(issued.token) == user

    def test_expired_one_second_after_expiry(self, service, user, clock):
        issued = service.issue(user, ttl=timedelta(seconds=10))
        clock.advance(seconds=11)
        with pytest.raises(TokenExpired):
            service.verify(issued.token)

    def test_expired_exactly_at_expiry(self, service, user, clock):
        issued = service.issue(user, ttl=timedelta(seconds=10))
        clock.advance(seconds=10)
        with pytest.raises(TokenExpired):
            service.verify(issued.token)


class TestFailureClassification:
    """Each failure kind is distinct internally; all are 401"""

    def test_garbage_is_invalid(self, service):
        with pytest.raises(TokenInvalid):
            service.verify("not.a.token")

    def test_foreign_signature_is_invalid(self, service, user, clock):
        other = TokenService(
            SecretStore(initial_secret="another-secret-" + "z" * 40, clock=clock),
            clock=clock,
        )
        with pytest.raises(TokenInvalid):
            service.verify(other.issue(user).token)

    def test_tampered_payload_is_invalid(self, service, user):
        header, payload, signature = service.issue(user).token.split(".")
        tampered = ".".join([header, payload[:-2] + ("A" if payload[-2] != "A" else "B") + payload[-1], signature])
        with pytest.raises(TokenInvalid):
            service.verify(tampered)

    def test_wrong_audience_is_invalid(self, service, store, clock):
        now = int(clock().timestamp())
        token = _raw_token(store, aud="someone-else", sub="u", role="user", email="u@x.io",
                           iat=now, exp=now + 60, jti="j-1")
        with pytest.raises(TokenInvalid):
            service.verify(token)

    def test_missing_claim_is_malformed(self, service, store, clock):
        now = int(clock().timestamp())
        token = _raw_token(store, sub="u", email="u@x.io", iat=now, exp=now + 60, jti="j-2")
        with pytest.raises(TokenMalformed):
            service.verify(token)

    def test_unknown_role_is_malformed(self, service, store, clock):
        now = int(clock().timestamp())
        token = _raw_token(store, sub="u", role="super_admin", email="u@x.io",
                           iat=now, exp=now + 60, jti="j-3")
        with pytest.raises(TokenMalformed):
            service.verify(token)

    def test_impersonation_without_impersonator_is_malformed(self, service, store, clock):
        now = int(clock().timestamp())
        token = _raw_token(store, type="impersonation", sub="u", role="user", email="u@x.io",
                           iat=now, exp=now + 60, jti="j-4", session_id="s-1")
        with pytest.raises(TokenMalformed):
            service.verify(token)

    def test_revoked(self, service, user):
        issued = service.issue(user)
        service.revoke(issued.claims)
        with pytest.raises(TokenRevoked):
            service.verify(issued.token)


class TestImpersonationTokens:

    def test_claims(self, service, admin, csm):
        issued = service.issue_impersonation(csm, admin.id, "sess-1", impersonator_role=admin.role)
        claims = service.verify_claims(issued.token)
        assert isinstance(claims, ImpersonationTokenClaims)
        assert claims.type is TokenType.IMPERSONATION
        assert claims.is_impersonation is True
        assert claims.impersonator_id == admin.id
        assert claims.impersonated_user_id == csm.id
        assert claims.sub == csm.id
        assert claims.session_id == "sess-1"

    def test_ttl_above_cap_rejected(self, service, admin, csm):
        with pytest.raises(ImpersonationTTLExceeded):
            service.issue_impersonation(csm, admin.id, "s", ttl=timedelta(minutes=61),
                                        impersonator_role=admin.role)

    def test_ttl_at_cap_accepted(self, service, admin, csm):
        issued = service.issue_impersonation(csm, admin.id, "s", ttl=timedelta(minutes=60),
                                             impersonator_role=admin.role)
        assert issued.claims.exp - issued.claims.iat <= timedelta(minutes=60)

    def test_zero_ttl_rejected(self, service, admin, csm):
        with pytest.raises(ImpersonationTTLExceeded):
            service.issue_impersonation(csm, admin.id, "s", ttl=timedelta(0),
                                        impersonator_role=admin.role)

    def test_default_ttl_is_cap(self, service, admin, user):
        issued = service.issue_impersonation(user, admin.id, "s", impersonator_role=admin.role)
        assert issued.claims.lifetime_seconds == 3600

    def test_non_privileged_impersonator_rejected(self, service, csm, user):
        with pytest.raises(ImpersonationNotAllowed):
            service.issue_impersonation(user, csm.id, "s", impersonator_role=Role.CSM)

    def test_self_impersonation_rejected(self, service, admin):
        with pytest.raises(SelfImpersonation):
            service.issue_impersonation(admin, admin.id, "s", impersonator_role=Role.ADMIN)
