"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from querygenie.config import Environment, Settings


def _make_settings(**overrides) -> Settings:
    """Build a Settings instance with test defaults + overrides."""
    defaults = {
        "DATABASE_URL": "postgresql+psycopg://localhost/test",
        "QUERYGENIE_ENV": "test",
    }
    defaults.update(overrides)
    return Settings(**defaults)


AUTH = {
    "AUTH_JWKS_URL": "https://auth.example.com/.well-known/jwks.json",
    "AUTH_ISSUER": "https://auth.example.com/",
    "AUTH_AUDIENCES": "querygenie, querygenie-web ,",
}


class TestEnvironmentRules:
    def test_test_env_needs_no_auth(self):
        s = _make_settings()
        assert s.querygenie_env == Environment.TEST
        assert s.requires_internal_header is False

    def test_local_requires_auth_settings(self):
        with pytest.raises(ValidationError, match="AUTH_JWKS_URL"):
            _make_settings(QUERYGENIE_ENV="local")

    def test_prod_requires_internal_secret(self):
        with pytest.raises(ValidationError, match="QUERYGENIE_INTERNAL_SECRET"):
            _make_settings(QUERYGENIE_ENV="prod", **AUTH)

    def test_prod_requires_vault_key(self):
        with pytest.raises(ValidationError, match="QUERYGENIE_KEY_ENCRYPTION_KEY"):
            _make_settings(QUERYGENIE_ENV="prod", QUERYGENIE_INTERNAL_SECRET="s", **AUTH)

    @pytest.mark.parametrize("env", ["staging", "prod"])
    def test_deployed_envs_require_resend_key(self, env):
        with pytest.raises(ValidationError, match="RESEND_API_KEY"):
            _make_settings(
                QUERYGENIE_ENV=env,
                QUERYGENIE_INTERNAL_SECRET="s",
                QUERYGENIE_KEY_ENCRYPTION_KEY="a2V5",
                **AUTH,
            )

    def test_local_runs_without_resend_key(self):
        assert _make_settings(QUERYGENIE_ENV="local", **AUTH).resend_api_key is None

    def test_prod_fully_configured(self):
        s = _make_settings(
            QUERYGENIE_ENV="prod",
            QUERYGENIE_INTERNAL_SECRET="s",
            QUERYGENIE_KEY_ENCRYPTION_KEY="a2V5",
            RESEND_API_KEY="re_live",
            **AUTH,
        )
        assert s.requires_internal_header is True


class TestDerivedValues:
    def test_audiences_split_and_trimmed(self):
        s = _make_settings(**AUTH)
        assert s.audience_list == ["querygenie", "querygenie-web"]

    def test_issuer_trailing_slash_stripped(self):
        s = _make_settings(**AUTH)
        assert s.normalized_issuer == "https://auth.example.com"

    def test_invitation_defaults(self):
        s = _make_settings(APP_BASE_URL="https://app.querygenie.dev/")
        assert s.invitation_ttl_days == 7
        assert s.invitation_base_url == "https://app.querygenie.dev"

    @pytest.mark.parametrize("ttl", [0, 91])
    def test_invitation_ttl_bounds(self, ttl):
        with pytest.raises(ValidationError):
            _make_settings(INVITATION_TTL_DAYS=ttl)
