"""Errors raised by mirror sinks."""

from __future__ import annotations


class MirrorSyncError(RuntimeError):
    """Raised when a mirror write fails.

    Mirror failures never roll back the authoritative store.
    """

    def __init__(
        self, operation: str, key: str, reason: str, *, status_code: int | None = None
    ) -> None:
        """Initialise with the operation, record key and failure reason."""
        self.operation = operation
        self.key = key
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Mirror {operation} failed for {key}: {reason}")


class AirtableConfigError(RuntimeError):
    """Raised when Airtable configuration is incomplete or invalid."""

    @classmethod
    def missing_setting(cls, name: str) -> AirtableConfigError:
        """Return an error for a required setting that is not set."""
        return cls(f"{name} is required when Airtable mirroring is enabled")

    @classmethod
    def invalid_setting(cls, name: str, value: object) -> AirtableConfigError:
        """Return an error for a setting with an unusable value."""
        return cls(f"{name} has invalid value: {value!r}")
