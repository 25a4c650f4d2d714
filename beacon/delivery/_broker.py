"""Dramatiq broker selection for the delayed retry queue.

Production processes use a ``RedisBroker`` on ``BEACON_VALKEY_URL``. Test
runs, and local runs with ``BEACON_ALLOW_STUB_BROKER`` set, use an
in-memory ``StubBroker`` so no Valkey is needed.
"""

from __future__ import annotations

import os
import sys
import threading

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker

_TRUTHY = frozenset({"1", "true", "yes"})
_PYTEST_ENV_VARS = ("PYTEST_CURRENT_TEST", "PYTEST_XDIST_WORKER", "PYTEST_ADDOPTS")

_configure_lock = threading.Lock()
_configured = False


def _under_pytest() -> bool:
    if "pytest" in sys.modules:
        return True
    return any(name in os.environ for name in _PYTEST_ENV_VARS)


def _stub_requested() -> bool:
    flag = os.environ.get("BEACON_ALLOW_STUB_BROKER", "").strip().lower()
    return flag in _TRUTHY or _under_pytest()


def _build_broker() -> dramatiq.Broker:
    if _stub_requested():
        return StubBroker()
    valkey_url = os.environ.get("BEACON_VALKEY_URL", "").strip()
    if not valkey_url:
        msg = (
            "BEACON_VALKEY_URL is required for the retry queue "
            "(or set BEACON_ALLOW_STUB_BROKER=1 for local runs)"
        )
        raise RuntimeError(msg)
    return RedisBroker(url=valkey_url)


def ensure_broker_configured() -> dramatiq.Broker:
    """Install the retry-queue broker as Dramatiq's global broker.

    Safe to call from several modules and threads; only the first call
    builds a broker. It has to run before ``@dramatiq.actor`` decorators
    execute, because actors bind to the global broker when declared.

    Raises
    ------
    RuntimeError
        If no Valkey URL is configured and a stub broker was not requested.

    """
    global _configured

    with _configure_lock:
        if not _configured:
            dramatiq.set_broker(_build_broker())
            _configured = True
    return dramatiq.get_broker()
