"""Configuration for the project activity cache."""

from __future__ import annotations

import dataclasses as dc
import os

from beacon.cache.errors import CacheConfigError
from beacon.cache.gate import ACTIVITY_FAIL_SAFE, FailSafePolicy


@dc.dataclass(frozen=True, slots=True)
class CacheConfig:
    """Connection and policy settings for the activity cache.

    Attributes
    ----------
    url
        Valkey connection URL (``redis://`` or ``rediss://``).
    fail_safe
        Policy for misses, unparseable values and lookup errors.

    """

    url: str
    fail_safe: FailSafePolicy = ACTIVITY_FAIL_SAFE

    @classmethod
    def from_env(cls) -> CacheConfig:
        """Build configuration from ``BEACON_VALKEY_URL`` and friends.

        Raises
        ------
        CacheConfigError
            If the URL is missing or the fail-safe name is unknown.

        """
        url = os.environ.get("BEACON_VALKEY_URL", "").strip()
        if not url:
            raise CacheConfigError.missing_url()

        raw_policy = os.environ.get("BEACON_ACTIVITY_FAIL_SAFE", "").strip().lower()
        if not raw_policy:
            return cls(url=url)
        try:
            fail_safe = FailSafePolicy(raw_policy)
        except ValueError as exc:
            valid = tuple(policy.value for policy in FailSafePolicy)
            raise CacheConfigError.invalid_fail_safe(raw_policy, valid) from exc
        return cls(url=url, fail_safe=fail_safe)


__all__ = ["CacheConfig"]
