"""
Settings tests
"""
import pytest
from pydantic import ValidationError

from core.config import Settings
from schemas.audit import AuditAction


class TestDefaults:

    def test_lifetimes(self, settings):
        assert settings.ACCESS_TOKEN_TTL_MINUTES == 120
        assert settings.IMPERSONATION_MAX_TTL_MINUTES == 60
        assert settings.max_token_ttl_minutes == 120
        assert settings.SECRET_ROTATION_INTERVAL_DAYS == 30

    def test_issuer_and_audience(self, settings):
        assert settings.JWT_ISSUER == "framtt-admin"
        assert settings.JWT_AUDIENCE == "framtt-users"

    def test_impersonation_audit_fails_closed_by_default(self, settings):
        assert settings.AUDIT_FAIL_CLOSED_ACTIONS == [
            AuditAction.IMPERSONATION_STARTED,
            AuditAction.IMPERSONATION_ENDED,
        ]


class TestValidation:

    def test_impersonation_ttl_must_be_shorter(self, make_settings):
        with pytest.raises(ValidationError):
            make_settings(IMPERSONATION_MAX_TTL_MINUTES=120)

    def test_short_secret_rejected(self, make_settings):
        with pytest.raises(ValidationError):
            make_settings(JWT_SECRET="short")

    def test_previous_must_differ(self, make_settings, settings):
        with pytest.raises(ValidationError):
            make_settings(JWT_PREVIOUS_SECRET=settings.JWT_SECRET)

    def test_production_requires_secret(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, ENV="production", JWT_SECRET=None)

    def test_asymmetric_algorithm_rejected(self, make_settings):
        with pytest.raises(ValidationError):
            make_settings(JWT_ALGORITHM="RS256")

    def test_unknown_rate_limit_backend(self, make_settings):
        with pytest.raises(ValidationError):
            make_settings(RATE_LIMIT_BACKEND="memcached")


class TestParsing:

    def test_csv_values(self, make_settings):
        settings = make_settings(
            CORS_ORIGINS="https://admin.framtt.com, https://ops.framtt.com",
            AUDIT_FAIL_CLOSED_ACTIONS="impersonation_started, jwt_secret_rotated",
        )
        assert settings.CORS_ORIGINS == ["https://admin.framtt.com", "https://ops.framtt.com"]
        assert settings.AUDIT_FAIL_CLOSED_ACTIONS == [
            AuditAction.IMPERSONATION_STARTED,
            AuditAction.JWT_SECRET_ROTATED,
        ]

    def test_csv_from_environment(self, monkeypatch, make_settings):
        monkeypatch.setenv("CORS_ORIGINS", "https://a.example,https://b.example")
        settings = make_settings()
        assert settings.CORS_ORIGINS == ["https://a.example", "https://b.example"]
