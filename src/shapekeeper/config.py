"""Environment variable configuration."""

import os
from dataclasses import asdict, dataclass
from typing import Any

from dotenv import load_dotenv

from shapekeeper.core.exceptions import ConfigurationError
from shapekeeper.core.retention import RetentionStrategy

ENV_PREFIX = "SHAPEKEEPER_"


def _read(environ: dict[str, str], name: str, default: str) -> str:
    return environ.get(f"{ENV_PREFIX}{name}", default)


def _read_int(environ: dict[str, str], name: str, default: int, minimum: int) -> int:
    raw = _read(environ, name, str(default))
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{ENV_PREFIX}{name} must be an integer, got {raw!r}"
        ) from exc
    if value < minimum:
        raise ConfigurationError(
            f"{ENV_PREFIX}{name} must be >= {minimum}, got {value}"
        )
    return value


def _read_float(environ: dict[str, str], name: str, default: float) -> float:
    raw = _read(environ, name, str(default))
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{ENV_PREFIX}{name} must be a number, got {raw!r}"
        ) from exc
    # also rejects NaN
    if not value > 0:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be positive, got {raw!r}")
    return value


def _read_strategy(
    environ: dict[str, str], default: RetentionStrategy
) -> RetentionStrategy:
    raw = _read(environ, "RETENTION_STRATEGY", default.value)
    try:
        return RetentionStrategy(raw.strip().lower())
    except ValueError as exc:
        choices = ", ".join(s.value for s in RetentionStrategy)
        raise ConfigurationError(
            f"{ENV_PREFIX}RETENTION_STRATEGY must be one of {choices}, got {raw!r}"
        ) from exc


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, passed explicitly to the components that need it."""

    database_path: str = "shapekeeper.db"
    max_samples_per_fingerprint: int = 50
    retention_strategy: RetentionStrategy = RetentionStrategy.DROP_NEW
    fingerprint_budget_ms: float = 2.0
    queue_max_size: int = 1000
    process_timeout_seconds: float = 5.0
    db_timeout_seconds: float = 5.0
    max_body_bytes: int = 1024 * 1024

    @classmethod
    def from_env(
        cls, environ: dict[str, str] | None = None, dotenv: bool = True
    ) -> "Settings":
        """Build settings from SHAPEKEEPER_* environment variables.

        Args:
            environ: Mapping to read instead of os.environ.
            dotenv: Load a .env file into os.environ first.

        Raises:
            ConfigurationError: If a value cannot be parsed or is out of range.
        """
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = dict(os.environ)

        defaults = cls()
        return cls(
            database_path=_read(environ, "DATABASE_PATH", defaults.database_path),
            max_samples_per_fingerprint=_read_int(
                environ,
                "MAX_SAMPLES_PER_FINGERPRINT",
                defaults.max_samples_per_fingerprint,
                minimum=1,
            ),
            retention_strategy=_read_strategy(environ, defaults.retention_strategy),
            fingerprint_budget_ms=_read_float(
                environ, "FINGERPRINT_BUDGET_MS", defaults.fingerprint_budget_ms
            ),
            queue_max_size=_read_int(
                environ, "QUEUE_MAX_SIZE", defaults.queue_max_size, minimum=1
            ),
            process_timeout_seconds=_read_float(
                environ, "PROCESS_TIMEOUT_SECONDS", defaults.process_timeout_seconds
            ),
            db_timeout_seconds=_read_float(
                environ, "DB_TIMEOUT_SECONDS", defaults.db_timeout_seconds
            ),
            max_body_bytes=_read_int(
                environ, "MAX_BODY_BYTES", defaults.max_body_bytes, minimum=1
            ),
        )

    def as_dict(self) -> dict[str, Any]:
        """Return the settings as a plain dictionary."""
        values = asdict(self)
        values["retention_strategy"] = self.retention_strategy.value
        return values
