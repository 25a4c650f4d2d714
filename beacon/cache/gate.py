"""Per-project gating of canonical events on the activity flag."""

from __future__ import annotations

import asyncio
import dataclasses as dc
import enum
import typing as typ

from beacon.cache.errors import ActivityLookupError
from beacon.logging import get_logger, log_event

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from beacon.cache.activity import ActivityFlagSource
    from beacon.events.models import CanonicalEvent

logger = get_logger(__name__)


class FailSafePolicy(enum.StrEnum):
    """Outcome applied when a project's flag cannot be determined."""

    ALLOW = "allow"
    DENY = "deny"


# Applied uniformly to cache misses, unparseable values, and lookup errors.
ACTIVITY_FAIL_SAFE = FailSafePolicy.ALLOW


@dc.dataclass(frozen=True, slots=True)
class GateResult:
    """A batch split by project activity.

    Attributes
    ----------
    kept
        Events of active projects, in batch order.
    dropped
        Events of inactive projects, in batch order.
    inactive_projects
        Distinct project ids whose events were dropped.

    """

    kept: list[CanonicalEvent]
    dropped: list[CanonicalEvent]
    inactive_projects: frozenset[str] = frozenset()


class ActivityGate:
    """Resolve project activity flags through one fail-safe policy."""

    def __init__(
        self,
        source: ActivityFlagSource,
        *,
        fail_safe: FailSafePolicy = ACTIVITY_FAIL_SAFE,
    ) -> None:
        """Bind the gate to a flag source and a fail-safe policy."""
        self._source = source
        self._fail_safe = fail_safe

    @property
    def fail_safe(self) -> FailSafePolicy:
        """Policy applied when the flag is unknown."""
        return self._fail_safe

    async def is_active(self, project_id: str) -> bool:
        """Return whether events of *project_id* should be published.

        An explicit ``false`` flag is the only way a project is gated out
        under the ``allow`` policy; under ``deny`` only an explicit ``true``
        lets events through.
        """
        try:
            flag = await self._source.get_flag(project_id)
        except ActivityLookupError as exc:
            log_event(
                logger,
                "WARNING",
                "activity.lookup.failed",
                project_id=project_id,
                fail_safe=self._fail_safe,
                error=str(exc),
            )
            flag = None
        if flag is None:
            return self._fail_safe is FailSafePolicy.ALLOW
        return flag

    async def partition(self, events: cabc.Sequence[CanonicalEvent]) -> GateResult:
        """Split *events* into kept and dropped by project activity.

        Each distinct project id is looked up once per batch.
        """
        project_ids = list(dict.fromkeys(event.project_id for event in events))
        flags = await asyncio.gather(*(self.is_active(pid) for pid in project_ids))
        active = dict(zip(project_ids, flags, strict=True))

        kept = [event for event in events if active[event.project_id]]
        dropped = [event for event in events if not active[event.project_id]]
        inactive = frozenset(pid for pid, is_on in active.items() if not is_on)
        return GateResult(kept=kept, dropped=dropped, inactive_projects=inactive)


__all__ = ["ACTIVITY_FAIL_SAFE", "ActivityGate", "FailSafePolicy", "GateResult"]
