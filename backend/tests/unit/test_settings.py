"""
Unit tests for Pydantic Settings configuration.

Tests settings loading and validation.
"""

import pytest

from app.config.settings import Settings


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestSettings:
    """Tests for Settings configuration."""

    def test_settings_has_defaults(self, monkeypatch):
        """Settings should have sensible defaults."""
        monkeypatch.delenv("ENVIRONMENT", raising=False)
        monkeypatch.delenv("MAX_RETRIES", raising=False)
        settings = make_settings()

        assert settings.environment == "development"
        assert settings.max_retries == 3
        assert settings.local_cache_url.startswith("sqlite+aiosqlite://")
        assert settings.default_page_size <= settings.max_page_size

    def test_is_production_property(self):
        """is_production should return True for production environment."""
        settings = make_settings(environment="Production")

        assert settings.is_production is True
        assert settings.is_development is False

    def test_allowed_origins_includes_localhost(self):
        """allowed_origins should include localhost for development."""
        settings = make_settings()

        assert "http://localhost:5173" in settings.allowed_origins
        assert "http://localhost:3000" in settings.allowed_origins

    def test_env_vars_override_defaults(self, monkeypatch):
        monkeypatch.setenv("MAX_RETRIES", "5")
        monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_from_env")

        settings = make_settings()

        assert settings.max_retries == 5
        assert settings.stripe_webhook_secret == "whsec_from_env"


class TestDatabaseUrl:
    """DATABASE_URL is normalized to the asyncpg driver."""

    @pytest.mark.parametrize("raw", [
        "postgresql://user:pw@db.example.co:5432/postgres",
        "postgres://user:pw@db.example.co:5432/postgres",
    ])
    def test_postgres_urls_use_asyncpg(self, raw):
        settings = make_settings(database_url=raw)

        assert settings.database_url == "postgresql+asyncpg://user:pw@db.example.co:5432/postgres"

    def test_other_drivers_untouched(self):
        settings = make_settings(database_url="sqlite+aiosqlite:///./remote.db")

        assert settings.database_url == "sqlite+aiosqlite:///./remote.db"


class TestValidation:

    def test_max_retries_must_be_positive(self):
        with pytest.raises(ValueError):
            make_settings(max_retries=0)

    def test_default_page_size_cannot_exceed_max(self):
        with pytest.raises(ValueError):
            make_settings(default_page_size=200, max_page_size=100)


class TestStripePriceTiers:

    def test_only_configured_prices_are_mapped(self):
        settings = make_settings(
            stripe_price_id_sleep_focused="price_sleep",
            stripe_price_id_elite_performance="price_elite",
        )

        assert settings.stripe_price_tiers == {
            "price_sleep": "sleep-focused",
            "price_elite": "elite-performance",
        }

    def test_no_prices_configured(self, monkeypatch):
        for name in (
            "STRIPE_PRICE_ID_SLEEP_FOCUSED",
            "STRIPE_PRICE_ID_FULL_TRANSFORMATION",
            "STRIPE_PRICE_ID_ELITE_PERFORMANCE",
        ):
            monkeypatch.delenv(name, raising=False)

        assert make_settings().stripe_price_tiers == {}
