"""Project activity cache and the gateway's activity gate."""

from __future__ import annotations

from .activity import ActivityFlagSource, ValkeyActivityCache, activity_key, parse_flag
from .config import CacheConfig
from .errors import ActivityLookupError, CacheConfigError
from .gate import ACTIVITY_FAIL_SAFE, ActivityGate, FailSafePolicy, GateResult

__all__ = [
    "ACTIVITY_FAIL_SAFE",
    "ActivityFlagSource",
    "ActivityGate",
    "ActivityLookupError",
    "CacheConfig",
    "CacheConfigError",
    "FailSafePolicy",
    "GateResult",
    "ValkeyActivityCache",
    "activity_key",
    "parse_flag",
]
