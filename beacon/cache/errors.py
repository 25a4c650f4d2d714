"""Errors raised by the project activity cache."""

from __future__ import annotations


class ActivityLookupError(Exception):
    """Raised when the activity cache cannot be read.

    Attributes
    ----------
    project_id
        Project whose flag was being read.

    """

    def __init__(self, project_id: str, detail: str) -> None:
        """Initialise with the project id and the underlying failure."""
        self.project_id = project_id
        super().__init__(f"activity lookup failed for {project_id!r}: {detail}")


class CacheConfigError(Exception):
    """Raised when cache configuration is missing or invalid."""

    @classmethod
    def missing_url(cls) -> CacheConfigError:
        """Create error when BEACON_VALKEY_URL is not set."""
        return cls("BEACON_VALKEY_URL environment variable is required")

    @classmethod
    def invalid_fail_safe(
        cls, value: str, valid: tuple[str, ...]
    ) -> CacheConfigError:
        """Create error for an unknown fail-safe policy name."""
        options = ", ".join(f"'{name}'" for name in valid)
        return cls(
            f"Invalid BEACON_ACTIVITY_FAIL_SAFE '{value}'. Valid options are: {options}"
        )
