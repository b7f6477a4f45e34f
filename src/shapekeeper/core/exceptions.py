"""Exception hierarchy for shapekeeper."""


class ShapekeeperError(Exception):
    """Base class for all shapekeeper errors."""


class ConfigurationError(ShapekeeperError):
    """Raised when a configuration value is missing or invalid."""


class RepositoryError(ShapekeeperError):
    """Raised when a storage operation fails.

    Storage adapters wrap driver errors in this exception so callers can
    abandon the observation without knowing the backend.
    """


class UnknownFingerprintError(RepositoryError):
    """Raised when an operation addresses a fingerprint id that does not exist."""

    def __init__(self, fingerprint_id: int) -> None:
        super().__init__(f"Unknown fingerprint id: {fingerprint_id}")
        self.fingerprint_id = fingerprint_id
