"""Unit tests for settings validation."""

import pytest
from pydantic import ValidationError

from adaptive_mfa.core.config import Settings, clear_settings_cache, get_settings


class TestSettings:
    """Tests for the pydantic-settings configuration."""

    def test_defaults_are_valid(self):
        """Test that default settings load and are calibrated."""
        settings = Settings()

        assert settings.storage_backend == "memory"
        assert settings.challenge_ttl_seconds == 300
        assert settings.challenge_max_attempts == 3
        assert settings.backup_code_count == 10
        assert settings.is_development
        assert not settings.is_production

    def test_environment_override(self, monkeypatch):
        """Test values come from ADAPTIVE_MFA_ prefixed variables."""
        monkeypatch.setenv("ADAPTIVE_MFA_CHALLENGE_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("ADAPTIVE_MFA_STORAGE_BACKEND", "postgres")

        settings = Settings()

        assert settings.challenge_max_attempts == 5
        assert settings.storage_backend == "postgres"

    def test_settings_are_frozen(self):
        """Test settings cannot be mutated after load."""
        settings = Settings()

        with pytest.raises(ValidationError):
            settings.challenge_ttl_seconds = 10  # type: ignore[misc]

    def test_weights_must_sum_to_one(self):
        """Test risk weights are validated as a distribution."""
        with pytest.raises(ValidationError, match="sum to 1.0"):
            Settings(risk_weight_device=0.5)

    def test_thresholds_must_ascend(self):
        """Test risk thresholds are strictly ascending."""
        with pytest.raises(ValidationError, match="ascending"):
            Settings(risk_threshold_medium=70.0, risk_threshold_high=60.0)

    def test_pool_max_below_min_rejected(self):
        """Test pool bounds are consistent."""
        with pytest.raises(ValidationError):
            Settings(database_pool_min=10, database_pool_max=5)

    def test_test_secret_rejected_in_production(self):
        """Test the bundled test secret cannot reach production."""
        with pytest.raises(ValidationError, match="Test secret key"):
            Settings(api_env="production")

        settings = Settings(api_env="production", secret_key="p" * 40)
        assert settings.is_production

    def test_unknown_default_factor_rejected(self):
        """Test only second-factor types may be allowed by default."""
        with pytest.raises(ValidationError, match="Unknown factor types"):
            Settings(default_allowed_factors=["totp", "password"])

    def test_high_risk_countries_normalized(self):
        """Test country codes are upper-cased."""
        settings = Settings(risk_high_risk_countries=["ru", " kp "])

        assert settings.risk_high_risk_countries == ["RU", "KP"]

    def test_asyncpg_url_strips_driver(self):
        """Test SQLAlchemy driver suffixes are removed for asyncpg."""
        settings = Settings(database_url="postgresql+asyncpg://app@db:5432/mfa")

        assert settings.asyncpg_url == "postgresql://app@db:5432/mfa"

    def test_get_settings_is_cached(self):
        """Test settings load once until the cache is cleared."""
        first = get_settings()
        assert get_settings() is first

        clear_settings_cache()
        assert get_settings() is not first
