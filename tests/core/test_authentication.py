"""
Login / logout tests
Generic failures, audit trail, logout revocation
"""
from unittest.mock import patch

import pytest

from core.exceptions import AuditUnavailable, InvalidCredentials, TokenRevoked
from core.impersonation import ClientInfo
from schemas.audit import AuditAction
from schemas.impersonation import EndReason

CLIENT = ClientInfo(ip_address="192.0.2.10", user_agent="pytest")


class TestLogin:

    def test_successful_login(self, engine, admin, password, audit_sink):
        result = engine.authenticator.login("Admin@Framtt.com ", password, CLIENT)
        assert result.principal == admin
        assert engine.tokens.verify(result.issued.token) == admin

        entry = audit_sink.entries[-1]
        assert entry.action is AuditAction.LOGIN_SUCCESS
        assert entry.actor_id == admin.id
        assert entry.ip_address == "192.0.2.10"
        assert entry.new_values["jti"] == result.issued.claims.jti

    @pytest.mark.parametrize("email,supplied,reason", [
        ("admin@framtt.com", "wrong-password", "wrong_password"),
        ("nobody@framtt.com", "correct-horse-battery-staple", "unknown_email"),
        ("gone@acme-rentals.com", "correct-horse-battery-staple", "status_suspended"),
    ])
    def test_failures_look_identical(self, engine, audit_sink, email, supplied, reason):
        with pytest.raises(InvalidCredentials) as exc_info:
            engine.authenticator.login(email, supplied, CLIENT)
        assert exc_info.value.public_message == InvalidCredentials().public_message
        assert exc_info.value.status_code == 401

        entry = audit_sink.entries[-1]
        assert entry.action is AuditAction.LOGIN_FAILED
        assert entry.new_values["reason"] == reason

    def test_password_hashing(self, engine, password):
        stored = engine.authenticator.hash_password(password)
        assert stored != password
        assert engine.authenticator.verify_password(password, stored) is True
        assert engine.authenticator.verify_password("nope", stored) is False
        assert engine.authenticator.verify_password(password, "not-an-argon2-hash") is False


class TestLogout:

    def test_logout_revokes_token(self, engine, user, password, audit_sink):
        result = engine.authenticator.login(user.email, password, CLIENT)
        engine.authenticator.logout(result.issued.claims, CLIENT)

        with pytest.raises(TokenRevoked):
            engine.tokens.verify(result.issued.token)
        assert audit_sink.entries[-1].action is AuditAction.LOGOUT
        assert audit_sink.entries[-1].actor_id == user.id

    def test_logout_with_impersonation_token_ends_session(self, engine, admin, csm, audit_sink):
        grant = engine.sessions.start(admin, csm, "support")
        session_id = grant.session.session_id

        engine.authenticator.logout(grant.claims, CLIENT)

        assert engine.sessions.is_active(session_id) is False
        assert engine.sessions.active_sessions() == []
        assert engine.sessions.get(session_id).end_reason is EndReason.LOGOUT
        assert engine.sessions.get(session_id).ended_by == admin.id
        actions = [e.action for e in audit_sink.entries]
        assert actions[-2:] == [AuditAction.IMPERSONATION_ENDED, AuditAction.LOGOUT]
        assert audit_sink.entries[-1].impersonator_id == admin.id
        with pytest.raises(TokenRevoked):
            engine.tokens.verify(grant.token)

    def test_logout_of_impersonation_fails_closed(self, engine, admin, csm, audit_sink):
        grant = engine.sessions.start(admin, csm)
        with patch.object(audit_sink, "append", side_effect=ConnectionError("audit db down")):
            with pytest.raises(AuditUnavailable):
                engine.authenticator.logout(grant.claims, CLIENT)
        assert engine.sessions.is_active(grant.session.session_id) is True
        assert engine.tokens.verify(grant.token).id == csm.id
