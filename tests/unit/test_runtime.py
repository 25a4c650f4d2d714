"""Unit tests for the beacon.runtime gateway entrypoint."""

from __future__ import annotations

import falcon.asgi
import pytest

from beacon.broker.errors import BrokerConfigError
from beacon.cache.errors import CacheConfigError
from beacon.runtime import _parse_port, create_app


@pytest.fixture
def gateway_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Provide the minimum environment for building the gateway."""
    monkeypatch.setenv("BEACON_KAFKA_BROKERS", "localhost:9092")
    monkeypatch.setenv("BEACON_KAFKA_SECURITY_PROTOCOL", "plaintext")
    monkeypatch.setenv("BEACON_VALKEY_URL", "redis://localhost:6379/0")


class TestParsePort:
    """Tests for BEACON_PORT validation."""

    def test_valid_port(self) -> None:
        """In-range ports are returned as integers."""
        assert _parse_port("3001") == 3001

    @pytest.mark.parametrize("raw", ["0", "65536", "http", ""])
    def test_invalid_port_exits(self, raw: str) -> None:
        """Invalid ports terminate with exit status 1."""
        with pytest.raises(SystemExit) as excinfo:
            _parse_port(raw)

        assert excinfo.value.code == 1


class TestCreateApp:
    """Tests for the environment-driven app factory."""

    @pytest.mark.usefixtures("gateway_env")
    def test_returns_falcon_app(self) -> None:
        """create_app builds the gateway without connecting to services."""
        assert isinstance(create_app(), falcon.asgi.App)

    def test_missing_brokers_fail_fast(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Broker configuration is required."""
        monkeypatch.setenv("BEACON_VALKEY_URL", "redis://localhost:6379/0")
        monkeypatch.delenv("BEACON_KAFKA_BROKERS", raising=False)

        with pytest.raises(BrokerConfigError, match="BEACON_KAFKA_BROKERS"):
            create_app()

    def test_missing_cache_url_fails_fast(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """The activity cache URL is required."""
        monkeypatch.delenv("BEACON_VALKEY_URL", raising=False)

        with pytest.raises(CacheConfigError):
            create_app()
