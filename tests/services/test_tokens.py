from datetime import datetime, timedelta, timezone

import jwt
import pytest

from formdesk.services.security_service import SecurityService
from formdesk.utils.exceptions import ConfigurationError, ValidationError
from formdesk.utils.security import DEFAULT_JWT_SECRET


class TestTokens:
    """JWT issuance and verification"""

    @pytest.fixture
    def service(self):
        return SecurityService(session_factory=None, jwt_secret="test-secret")

    @pytest.mark.parametrize(
        "claims",
        [
            {"userId": "test-user", "permissions": ["forms:read"]},
            {"sub": "key_1", "nested": {"a": [1, 2, {"b": None}]}, "flag": True},
            {},
            {"sub": 42, "aud": "someone-else", "ratio": 0.5},
        ],
    )
    def test_round_trip_returns_original_claims(self, service, claims):
        token = service.issue_token(claims)

        assert isinstance(token, str)
        assert service.verify_token(token) == claims

    def test_token_carries_expiry(self, service):
        token = service.issue_token({"sub": "k"}, expires_in="30m")

        raw = jwt.decode(token, "test-secret", algorithms=["HS256"])
        issued = datetime.fromtimestamp(raw["iat"], tz=timezone.utc)
        expires = datetime.fromtimestamp(raw["exp"], tz=timezone.utc)
        assert expires - issued == timedelta(minutes=30)

    def test_default_expiry_is_one_hour(self, service):
        token = service.issue_token({"sub": "k"})

        raw = jwt.decode(token, "test-secret", algorithms=["HS256"])
        assert raw["exp"] - raw["iat"] == 3600

    @pytest.mark.parametrize(
        "expires_in,seconds",
        [("45s", 45), ("1h", 3600), ("7d", 604800), (120, 120), (timedelta(minutes=2), 120)],
    )
    def test_expiry_formats(self, service, expires_in, seconds):
        token = service.issue_token({}, expires_in=expires_in)

        raw = jwt.decode(token, "test-secret", algorithms=["HS256"])
        assert raw["exp"] - raw["iat"] == seconds

    @pytest.mark.parametrize("expires_in", ["1x", "soon", "", 0, -10, "0h"])
    def test_invalid_expiry_rejected(self, service, expires_in):
        with pytest.raises(ValidationError):
            service.issue_token({"sub": "k"}, expires_in=expires_in)

    def test_claims_must_be_mapping(self, service):
        with pytest.raises(ValidationError):
            service.issue_token(["not", "a", "mapping"])

    def test_expired_token_returns_none(self, service, caplog):
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {"sub": "k", "iat": past, "exp": past + timedelta(hours=1)},
            "test-secret",
            algorithm="HS256",
        )

        with caplog.at_level("WARNING"):
            assert service.verify_token(token) is None

        assert "JWT verification failed" in caplog.text

    def test_wrong_signature_returns_none(self, service):
        other = SecurityService(session_factory=None, jwt_secret="another-secret")
        token = other.issue_token({"sub": "k"})

        assert service.verify_token(token) is None

    @pytest.mark.parametrize("token", ["invalid.jwt.token", "garbage", "", None])
    def test_malformed_token_returns_none(self, service, token):
        assert service.verify_token(token) is None

    def test_token_without_expiry_rejected(self, service):
        token = jwt.encode({"sub": "k"}, "test-secret", algorithm="HS256")

        assert service.verify_token(token) is None


class TestSigningSecret:
    """Signing secret resolution and production fail-fast"""

    def test_explicit_secret_wins(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "from-env")

        service = SecurityService(session_factory=None, jwt_secret="explicit")

        assert service.jwt_secret == "explicit"

    def test_env_secret_used(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "from-env")

        assert SecurityService(session_factory=None).jwt_secret == "from-env"

    def test_development_default_is_flagged(self, monkeypatch, caplog):
        monkeypatch.delenv("JWT_SECRET", raising=False)
        monkeypatch.setenv("APP_ENV", "development")

        with caplog.at_level("WARNING"):
            service = SecurityService(session_factory=None)

        assert service.jwt_secret == DEFAULT_JWT_SECRET
        assert "insecure" in caplog.text

    def test_production_refuses_missing_secret(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET", raising=False)
        monkeypatch.setenv("APP_ENV", "production")

        with pytest.raises(ConfigurationError):
            SecurityService(session_factory=None)

    def test_production_refuses_default_secret(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")

        with pytest.raises(ConfigurationError):
            SecurityService(session_factory=None, jwt_secret=DEFAULT_JWT_SECRET)

    def test_production_accepts_real_secret(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")

        service = SecurityService(session_factory=None, jwt_secret="s3cr3t-value")

        assert service.jwt_secret == "s3cr3t-value"
