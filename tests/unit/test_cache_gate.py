"""Unit tests for activity flags and the activity gate."""

from __future__ import annotations

from unittest import mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from beacon.cache.activity import ValkeyActivityCache, activity_key, parse_flag
from beacon.cache.config import CacheConfig
from beacon.cache.errors import ActivityLookupError, CacheConfigError
from beacon.cache.gate import ActivityGate, FailSafePolicy
from tests.helpers.event_builders import canonical_event
from tests.helpers.fakes import FakeFlagSource


class TestParseFlag:
    """Tests for interpreting stored flag values."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("true", True),
            ("TRUE", True),
            ('"true"', True),
            ("1", True),
            (b"false", False),
            ("0", False),
            (" False ", False),
            ("maybe", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse_flag(
        self,
        raw: str | bytes | None,
        expected: bool | None,  # noqa: FBT001
    ) -> None:
        """Only true/false and 1/0 are understood."""
        assert parse_flag(raw) is expected, f"unexpected flag for {raw!r}"


class TestValkeyActivityCache:
    """Tests for the Valkey-backed flag store using a mocked client."""

    @pytest.mark.asyncio
    async def test_get_flag_reads_prefixed_key(self) -> None:
        """Flags are read from is_active:{project_id}."""
        client = mock.AsyncMock()
        client.get.return_value = "false"
        cache = ValkeyActivityCache(client)

        assert await cache.get_flag("proj-1") is False
        client.get.assert_awaited_once_with(activity_key("proj-1"))
        assert activity_key("proj-1") == "is_active:proj-1"

    @pytest.mark.asyncio
    async def test_redis_error_becomes_lookup_error(self) -> None:
        """Connection failures surface as ActivityLookupError."""
        client = mock.AsyncMock()
        client.get.side_effect = RedisConnectionError("refused")
        cache = ValkeyActivityCache(client)

        with pytest.raises(ActivityLookupError) as exc_info:
            await cache.get_flag("proj-1")

        assert exc_info.value.project_id == "proj-1"

    @pytest.mark.asyncio
    async def test_set_and_clear_flag(self) -> None:
        """Lifecycle writes store true/false and delete on removal."""
        client = mock.AsyncMock()
        cache = ValkeyActivityCache(client)

        await cache.set_flag("proj-1", active=False)
        await cache.clear_flag("proj-1")
        await cache.close()

        client.set.assert_awaited_once_with("is_active:proj-1", "false")
        client.delete.assert_awaited_once_with("is_active:proj-1")
        client.aclose.assert_awaited_once()


class TestActivityGate:
    """Tests for the fail-safe policy and batch partitioning."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("policy", "expected"),
        [(FailSafePolicy.ALLOW, True), (FailSafePolicy.DENY, False)],
    )
    async def test_missing_flag_uses_policy(
        self,
        policy: FailSafePolicy,
        expected: bool,  # noqa: FBT001
    ) -> None:
        """A cache miss resolves through the fail-safe policy."""
        gate = ActivityGate(FakeFlagSource(), fail_safe=policy)

        assert await gate.is_active("proj-1") is expected

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("policy", "expected"),
        [(FailSafePolicy.ALLOW, True), (FailSafePolicy.DENY, False)],
    )
    async def test_lookup_error_uses_same_policy(
        self,
        policy: FailSafePolicy,
        expected: bool,  # noqa: FBT001
    ) -> None:
        """Lookup errors are treated exactly like misses."""
        gate = ActivityGate(FakeFlagSource(failing={"proj-1"}), fail_safe=policy)

        assert await gate.is_active("proj-1") is expected

    @pytest.mark.asyncio
    async def test_explicit_flags_override_policy(self) -> None:
        """Explicit flags win over the fail-safe policy."""
        source = FakeFlagSource({"on": True, "off": False})

        assert await ActivityGate(source, fail_safe=FailSafePolicy.DENY).is_active(
            "on"
        )
        assert not await ActivityGate(
            source, fail_safe=FailSafePolicy.ALLOW
        ).is_active("off")

    @pytest.mark.asyncio
    async def test_partition_preserves_order_and_looks_up_once(self) -> None:
        """Each project is looked up once; order is preserved."""
        source = FakeFlagSource({"active": True, "inactive": False})
        events = [
            canonical_event(event_id="a", project_id="active"),
            canonical_event(event_id="b", project_id="inactive"),
            canonical_event(event_id="c", project_id="active"),
        ]

        result = await ActivityGate(source).partition(events)

        assert [event.event_id for event in result.kept] == ["a", "c"]
        assert [event.event_id for event in result.dropped] == ["b"]
        assert result.inactive_projects == frozenset({"inactive"})
        assert sorted(source.lookups) == ["active", "inactive"], (
            "expected one lookup per distinct project"
        )


class TestCacheConfig:
    """Tests for CacheConfig.from_env."""

    def test_requires_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A missing BEACON_VALKEY_URL is a configuration error."""
        monkeypatch.delenv("BEACON_VALKEY_URL", raising=False)

        with pytest.raises(CacheConfigError, match="BEACON_VALKEY_URL"):
            CacheConfig.from_env()

    def test_defaults_to_allow(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without an override the fail-safe policy is allow."""
        monkeypatch.setenv("BEACON_VALKEY_URL", "redis://localhost:6379/0")
        monkeypatch.delenv("BEACON_ACTIVITY_FAIL_SAFE", raising=False)

        assert CacheConfig.from_env().fail_safe is FailSafePolicy.ALLOW

    def test_reads_policy_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """BEACON_ACTIVITY_FAIL_SAFE selects the policy."""
        monkeypatch.setenv("BEACON_VALKEY_URL", "redis://localhost:6379/0")
        monkeypatch.setenv("BEACON_ACTIVITY_FAIL_SAFE", "DENY")

        assert CacheConfig.from_env().fail_safe is FailSafePolicy.DENY

    def test_rejects_unknown_policy(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Unknown policy names are refused with the valid options."""
        monkeypatch.setenv("BEACON_VALKEY_URL", "redis://localhost:6379/0")
        monkeypatch.setenv("BEACON_ACTIVITY_FAIL_SAFE", "sometimes")

        with pytest.raises(CacheConfigError, match="'allow', 'deny'"):
            CacheConfig.from_env()
