"""Configuration for the ingestion gateway.

Usage
-----
>>> config = GatewayConfig()
>>> config.max_body_bytes
5242880

"""

from __future__ import annotations

import dataclasses as dc
import math
import os

_DEFAULT_MAX_BODY_BYTES = 5 * 1024 * 1024
_DEFAULT_RATE_LIMIT_MAX = 600
_DEFAULT_RATE_LIMIT_WINDOW_S = 60.0
_DEFAULT_REQUEST_TIMEOUT_S = 10.0


class GatewayConfigError(Exception):
    """Raised when gateway configuration is invalid."""

    @classmethod
    def invalid_parameter(
        cls, env_var: str, value: str, constraint: str
    ) -> GatewayConfigError:
        """Create error for an environment value that fails validation."""
        return cls(f"Invalid {env_var} '{value}'. {constraint}")


@dc.dataclass(frozen=True, slots=True)
class GatewayConfig:
    """Limits applied by the ingestion gateway.

    Attributes
    ----------
    max_body_bytes
        Largest accepted request body; larger bodies get ``413``.
    rate_limit_max
        Requests allowed per client IP per window; more get ``429``.
    rate_limit_window_s
        Length of the fixed rate-limit window.
    request_timeout_s
        Deadline for gating and publishing one batch; exceeding it answers
        ``503``.

    """

    max_body_bytes: int = _DEFAULT_MAX_BODY_BYTES
    rate_limit_max: int = _DEFAULT_RATE_LIMIT_MAX
    rate_limit_window_s: float = _DEFAULT_RATE_LIMIT_WINDOW_S
    request_timeout_s: float = _DEFAULT_REQUEST_TIMEOUT_S

    @staticmethod
    def _parse_positive_int(env_var: str, default: int) -> int:
        """Read a positive integer env var, falling back to a default."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError as exc:
            raise GatewayConfigError.invalid_parameter(
                env_var, raw, "Must be a positive integer"
            ) from exc
        if value < 1:
            raise GatewayConfigError.invalid_parameter(
                env_var, raw, "Must be a positive integer"
            )
        return value

    @staticmethod
    def _parse_positive_float(env_var: str, default: float) -> float:
        """Read a positive number env var, falling back to a default."""
        raw = os.environ.get(env_var, "")
        if not raw.strip():
            return default
        try:
            value = float(raw)
        except ValueError as exc:
            raise GatewayConfigError.invalid_parameter(
                env_var, raw, "Must be a positive number"
            ) from exc
        if not math.isfinite(value) or value <= 0:
            raise GatewayConfigError.invalid_parameter(
                env_var, raw, "Must be a positive number"
            )
        return value

    @classmethod
    def from_env(cls) -> GatewayConfig:
        """Create configuration from environment variables.

        Reads ``BEACON_MAX_BODY_BYTES``, ``BEACON_RATE_LIMIT_MAX``,
        ``BEACON_RATE_LIMIT_WINDOW_S`` and ``BEACON_REQUEST_TIMEOUT_S``.

        Raises
        ------
        GatewayConfigError
            If any value is not a positive number.

        """
        return cls(
            max_body_bytes=cls._parse_positive_int(
                "BEACON_MAX_BODY_BYTES", _DEFAULT_MAX_BODY_BYTES
            ),
            rate_limit_max=cls._parse_positive_int(
                "BEACON_RATE_LIMIT_MAX", _DEFAULT_RATE_LIMIT_MAX
            ),
            rate_limit_window_s=cls._parse_positive_float(
                "BEACON_RATE_LIMIT_WINDOW_S", _DEFAULT_RATE_LIMIT_WINDOW_S
            ),
            request_timeout_s=cls._parse_positive_float(
                "BEACON_REQUEST_TIMEOUT_S", _DEFAULT_REQUEST_TIMEOUT_S
            ),
        )


__all__ = ["GatewayConfig", "GatewayConfigError"]
