"""Tests for environment configuration."""

import pytest

from shapekeeper.config import Settings
from shapekeeper.core.exceptions import ConfigurationError
from shapekeeper.core.retention import RetentionStrategy

pytestmark = [pytest.mark.tier(0), pytest.mark.core]


class TestSettings:
    """Tests for Settings.from_env."""

    def test_defaults(self) -> None:
        """An empty environment yields the documented defaults."""
        settings = Settings.from_env({})

        assert settings == Settings()
        assert settings.max_samples_per_fingerprint == 50
        assert settings.retention_strategy is RetentionStrategy.DROP_NEW
        assert settings.fingerprint_budget_ms == 2.0
        assert settings.queue_max_size == 1000

    def test_reads_prefixed_variables(self) -> None:
        """SHAPEKEEPER_* variables override the defaults."""
        settings = Settings.from_env(
            {
                "SHAPEKEEPER_DATABASE_PATH": "/tmp/x.db",
                "SHAPEKEEPER_MAX_SAMPLES_PER_FINGERPRINT": "5",
                "SHAPEKEEPER_RETENTION_STRATEGY": "Evict-Oldest",
                "SHAPEKEEPER_FINGERPRINT_BUDGET_MS": "0.5",
                "SHAPEKEEPER_PROCESS_TIMEOUT_SECONDS": "1",
            }
        )

        assert settings.database_path == "/tmp/x.db"
        assert settings.max_samples_per_fingerprint == 5
        assert settings.retention_strategy is RetentionStrategy.EVICT_OLDEST
        assert settings.fingerprint_budget_ms == 0.5
        assert settings.process_timeout_seconds == 1.0

    def test_reads_process_environment(self, monkeypatch) -> None:
        """Without an explicit mapping, os.environ is used."""
        monkeypatch.setenv("SHAPEKEEPER_QUEUE_MAX_SIZE", "10")

        settings = Settings.from_env(dotenv=False)

        assert settings.queue_max_size == 10

    @pytest.mark.parametrize(
        ("name", "value"),
        [
            ("MAX_SAMPLES_PER_FINGERPRINT", "0"),
            ("MAX_SAMPLES_PER_FINGERPRINT", "many"),
            ("QUEUE_MAX_SIZE", "-1"),
            ("FINGERPRINT_BUDGET_MS", "0"),
            ("DB_TIMEOUT_SECONDS", "nan"),
            ("RETENTION_STRATEGY", "keep-all"),
        ],
    )
    def test_invalid_values_raise(self, name: str, value: str) -> None:
        """Unparseable or out-of-range values raise ConfigurationError."""
        with pytest.raises(ConfigurationError, match=f"SHAPEKEEPER_{name}"):
            Settings.from_env({f"SHAPEKEEPER_{name}": value})

    def test_as_dict_uses_strategy_value(self) -> None:
        """as_dict renders the strategy as its configuration string."""
        values = Settings().as_dict()

        assert values["retention_strategy"] == "drop-new"
        assert values["max_body_bytes"] == 1024 * 1024
