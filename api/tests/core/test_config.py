"""Unit tests for core.config module.

Tests cover:
- Settings model_validator checks
- is_sqlite, is_deployed and docs_enabled properties
- allowed_origins computed property with deduplication
- get_settings / clear_settings_cache lru_cache behavior
"""

import pytest
from pydantic import ValidationError

from core.config import Settings, clear_settings_cache, get_settings

PG_URL = "postgresql+asyncpg://localhost/test"


@pytest.fixture(autouse=True)
def _clear_settings():
    """Clear lru_cache between tests."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# ---------------------------------------------------------------------------
# Settings validation
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestSettingsValidation:
    def test_requires_database_config(self):
        with pytest.raises(ValidationError, match="DATABASE_URL is required"):
            Settings(database_url="")

    def test_rejects_zero_max_attempts(self):
        with pytest.raises(ValidationError, match="OUTBOX_MAX_ATTEMPTS"):
            Settings(database_url=PG_URL, outbox_max_attempts=0)

    def test_defaults(self):
        s = Settings(database_url=PG_URL)
        assert s.debug is False
        assert s.enable_docs is False
        assert s.recurrence_max_occurrences == 100
        assert s.outbox_batch_size == 100
        assert s.environment == "development"
        assert s.slow_request_threshold_ms == 1000.0

    def test_rejects_unknown_environment(self):
        with pytest.raises(ValidationError):
            Settings(database_url=PG_URL, environment="qa")

    @pytest.mark.parametrize(
        "field", ["outbox_batch_size", "recurrence_max_occurrences"]
    )
    def test_rejects_non_positive_limits(self, field):
        with pytest.raises(ValidationError, match=field.upper()):
            Settings(database_url=PG_URL, **{field: 0})


@pytest.mark.unit
class TestIsSqlite:
    def test_sqlite_url(self):
        assert Settings(database_url="sqlite+aiosqlite:///:memory:").is_sqlite

    def test_postgres_url(self):
        assert not Settings(database_url=PG_URL).is_sqlite


@pytest.mark.unit
class TestEnvironmentFlags:
    @pytest.mark.parametrize(
        ("environment", "deployed"),
        [
            ("development", False),
            ("test", False),
            ("staging", True),
            ("production", True),
        ],
    )
    def test_is_deployed(self, environment, deployed):
        s = Settings(database_url=PG_URL, environment=environment)
        assert s.is_deployed is deployed

    def test_debug_enables_docs(self):
        assert Settings(database_url=PG_URL, debug=True).docs_enabled
        assert not Settings(database_url=PG_URL).docs_enabled


# ---------------------------------------------------------------------------
# allowed_origins
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestAllowedOrigins:
    def test_debug_includes_localhost(self):
        s = Settings(debug=True, database_url=PG_URL)
        assert "http://localhost:3000" in s.allowed_origins
        assert "http://localhost:5173" in s.allowed_origins

    def test_prod_excludes_vite_localhost(self):
        s = Settings(debug=False, database_url=PG_URL, frontend_url="")
        assert "http://localhost:5173" not in s.allowed_origins

    def test_frontend_url_included(self):
        s = Settings(database_url=PG_URL, frontend_url="https://app.example.com")
        assert "https://app.example.com" in s.allowed_origins

    def test_cors_allowed_origins_csv_parsed(self):
        s = Settings(
            database_url=PG_URL,
            cors_allowed_origins="https://a.com, https://b.com",
        )
        assert "https://a.com" in s.allowed_origins
        assert "https://b.com" in s.allowed_origins

    def test_deduplication(self):
        s = Settings(
            debug=True,
            database_url=PG_URL,
            frontend_url="http://localhost:3000",
            cors_allowed_origins="http://localhost:3000",
        )
        assert s.allowed_origins.count("http://localhost:3000") == 1


# ---------------------------------------------------------------------------
# get_settings / clear_settings_cache
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestGetSettings:
    def test_returns_same_instance(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", PG_URL)
        s1 = get_settings()
        s2 = get_settings()
        assert s1 is s2

    def test_clear_cache_resets(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", PG_URL)
        s1 = get_settings()
        clear_settings_cache()
        s2 = get_settings()
        assert s1 is not s2

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", PG_URL)
        monkeypatch.setenv("RECURRENCE_MAX_OCCURRENCES", "12")
        assert get_settings().recurrence_max_occurrences == 12
