"""Configuration for the delivery worker.

Usage
-----
>>> policy = RetryPolicy()
>>> [policy.backoff_ms(n) for n in range(5)]
[1000, 2000, 4000, 8000, 16000]
>>> policy.exhausted(5)
True

"""

from __future__ import annotations

import dataclasses as dc
import math
import os

_DEFAULT_MAX_RETRIES = 5
_DEFAULT_INITIAL_BACKOFF_MS = 1000
_DEFAULT_BACKOFF_MULTIPLIER = 2.0
_DEFAULT_SINK_WRITE_TIMEOUT_S = 5.0
_DEFAULT_REDELIVERY_PAUSE_S = 5.0


class DeliveryConfigError(Exception):
    """Raised when delivery worker configuration is invalid."""

    @classmethod
    def invalid_parameter(
        cls, env_var: str, value: str, constraint: str
    ) -> DeliveryConfigError:
        """Create error for an environment value that fails validation."""
        return cls(f"Invalid {env_var} '{value}'. {constraint}")


@dc.dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff for failed sink writes.

    Attributes
    ----------
    max_retries
        Retry count at which a failing message is dead-lettered instead of
        rescheduled. With the default of 5 a message is attempted six times.
    initial_backoff_ms
        Delay before the first retry.
    multiplier
        Growth factor applied per retry.

    """

    max_retries: int = _DEFAULT_MAX_RETRIES
    initial_backoff_ms: int = _DEFAULT_INITIAL_BACKOFF_MS
    multiplier: float = _DEFAULT_BACKOFF_MULTIPLIER

    def backoff_ms(self, retry_count: int) -> int:
        """Return the delay before retry number ``retry_count + 1``."""
        return round(self.initial_backoff_ms * self.multiplier**retry_count)

    def exhausted(self, retry_count: int) -> bool:
        """Return True when a message at *retry_count* must be dead-lettered."""
        return retry_count >= self.max_retries


def _read(env_var: str) -> str | None:
    raw = os.environ.get(env_var, "")
    return raw.strip() or None


def _parse_int(env_var: str, default: int, *, minimum: int) -> int:
    raw = _read(env_var)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise DeliveryConfigError.invalid_parameter(
            env_var, raw, f"Must be an integer >= {minimum}"
        ) from exc
    if value < minimum:
        raise DeliveryConfigError.invalid_parameter(
            env_var, raw, f"Must be an integer >= {minimum}"
        )
    return value


def _parse_positive_float(env_var: str, default: float) -> float:
    raw = _read(env_var)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise DeliveryConfigError.invalid_parameter(
            env_var, raw, "Must be a positive number"
        ) from exc
    if not math.isfinite(value) or value <= 0:
        raise DeliveryConfigError.invalid_parameter(
            env_var, raw, "Must be a positive number"
        )
    return value


@dc.dataclass(frozen=True, slots=True)
class DeliveryConfig:
    """Worker settings beyond the Kafka connection.

    Attributes
    ----------
    retry_policy
        Backoff and dead-letter thresholds.
    sink_write_timeout_s
        Upper bound on one sink write attempt.
    redelivery_pause_s
        Pause after a message had to be left uncommitted because it could
        not be dead-lettered.

    """

    retry_policy: RetryPolicy = dc.field(default_factory=RetryPolicy)
    sink_write_timeout_s: float = _DEFAULT_SINK_WRITE_TIMEOUT_S
    redelivery_pause_s: float = _DEFAULT_REDELIVERY_PAUSE_S

    @classmethod
    def from_env(cls) -> DeliveryConfig:
        """Build configuration from environment variables.

        Reads ``BEACON_MAX_RETRIES``, ``BEACON_INITIAL_BACKOFF_MS``,
        ``BEACON_BACKOFF_MULTIPLIER``, ``BEACON_SINK_WRITE_TIMEOUT_S`` and
        ``BEACON_REDELIVERY_PAUSE_S``.

        Raises
        ------
        DeliveryConfigError
            If any value is malformed or out of range.

        """
        multiplier = _parse_positive_float(
            "BEACON_BACKOFF_MULTIPLIER", _DEFAULT_BACKOFF_MULTIPLIER
        )
        if multiplier < 1:
            raise DeliveryConfigError.invalid_parameter(
                "BEACON_BACKOFF_MULTIPLIER", str(multiplier), "Must be >= 1"
            )
        policy = RetryPolicy(
            max_retries=_parse_int(
                "BEACON_MAX_RETRIES", _DEFAULT_MAX_RETRIES, minimum=0
            ),
            initial_backoff_ms=_parse_int(
                "BEACON_INITIAL_BACKOFF_MS", _DEFAULT_INITIAL_BACKOFF_MS, minimum=1
            ),
            multiplier=multiplier,
        )
        return cls(
            retry_policy=policy,
            sink_write_timeout_s=_parse_positive_float(
                "BEACON_SINK_WRITE_TIMEOUT_S", _DEFAULT_SINK_WRITE_TIMEOUT_S
            ),
            redelivery_pause_s=_parse_positive_float(
                "BEACON_REDELIVERY_PAUSE_S", _DEFAULT_REDELIVERY_PAUSE_S
            ),
        )


__all__ = ["DeliveryConfig", "DeliveryConfigError", "RetryPolicy"]
