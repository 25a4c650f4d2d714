"""Behavioural coverage for the ingestion gateway."""

from __future__ import annotations

import typing as typ

import falcon.testing
import msgspec
import pytest
from pytest_bdd import given, parsers, scenario, then, when

from beacon.cache.gate import ActivityGate
from beacon.common.time import ServerClock
from beacon.gateway.app import GatewayDependencies, create_app
from tests.helpers.event_builders import NOW_MS, tracker_event
from tests.helpers.fakes import FakeFlagSource, FakePublisher, FixedClock

if typ.TYPE_CHECKING:
    from falcon.testing.client import Result


class IngestionContext(typ.TypedDict, total=False):
    """Shared mutable scenario state."""

    publisher: FakePublisher
    flags: FakeFlagSource
    client: falcon.testing.TestClient
    response: Result


@scenario(
    "../ingestion.feature",
    "NDJSON batch with a malformed line is partly accepted",
)
def test_ndjson_batch_partly_accepted() -> None:
    """Wrap the pytest-bdd scenario for mixed NDJSON bodies."""


@scenario("../ingestion.feature", "Events of a disabled project are dropped")
def test_disabled_project_dropped() -> None:
    """Wrap the pytest-bdd scenario for disabled projects."""


@scenario("../ingestion.feature", "Broker outage is reported to the tracker")
def test_broker_outage_reported() -> None:
    """Wrap the pytest-bdd scenario for broker outages."""


@pytest.fixture
def ingestion_context() -> IngestionContext:
    """Provision empty scenario state."""
    return {"flags": FakeFlagSource()}


def _build_client(context: IngestionContext, publisher: FakePublisher) -> None:
    context["publisher"] = publisher
    deps = GatewayDependencies(
        publisher=publisher,
        gate=ActivityGate(context["flags"]),
        clock=ServerClock(FixedClock(NOW_MS)),
    )
    context["client"] = falcon.testing.TestClient(create_app(deps))


@given("a running collector")
def given_running_collector(ingestion_context: IngestionContext) -> None:
    """Build the gateway around a healthy broker."""
    _build_client(ingestion_context, FakePublisher())


@given("a running collector whose broker is unavailable")
def given_collector_without_broker(ingestion_context: IngestionContext) -> None:
    """Build the gateway around a broker that refuses every publish."""
    _build_client(ingestion_context, FakePublisher(fail_events=True))


@given(parsers.parse('project "{project_id}" is active'))
def given_project_active(ingestion_context: IngestionContext, project_id: str) -> None:
    """Store an explicit true activity flag."""
    ingestion_context["flags"].flags[project_id] = True


@given(parsers.parse('project "{project_id}" is disabled'))
def given_project_disabled(
    ingestion_context: IngestionContext, project_id: str
) -> None:
    """Store an explicit false activity flag."""
    ingestion_context["flags"].flags[project_id] = False


@when(
    parsers.parse(
        "the tracker posts an NDJSON body with {valid:d} valid events "
        "and {malformed:d} malformed line"
    )
)
def when_post_ndjson(
    ingestion_context: IngestionContext, valid: int, malformed: int
) -> None:
    """Post valid lines followed by lines that are not JSON."""
    lines = [msgspec.json.encode(tracker_event()).decode() for _ in range(valid)]
    lines.extend("{not json" for _ in range(malformed))
    ingestion_context["response"] = ingestion_context["client"].simulate_post(
        "/e", body="\n".join(lines), content_type="application/x-ndjson"
    )


@when(
    parsers.parse(
        'the tracker posts a JSON batch of {count:d} valid events for "{project_id}"'
    )
)
def when_post_json_batch(
    ingestion_context: IngestionContext, count: int, project_id: str
) -> None:
    """Post a JSON array of valid events."""
    batch = [tracker_event(project_id=project_id) for _ in range(count)]
    ingestion_context["response"] = ingestion_context["client"].simulate_post(
        "/e", body=msgspec.json.encode(batch), content_type="application/json"
    )


@then(parsers.parse("the response status is {status:d}"))
def then_response_status(ingestion_context: IngestionContext, status: int) -> None:
    """Assert the HTTP response status code."""
    response = ingestion_context["response"]
    assert response.status_code == status, (
        f"expected status {status}, got {response.status_code}"
    )


@then(
    parsers.parse(
        "the response reports {accepted:d} accepted, {rejected:d} rejected "
        "and {parse_errors:d} parse errors"
    )
)
def then_response_counts(
    ingestion_context: IngestionContext,
    accepted: int,
    rejected: int,
    parse_errors: int,
) -> None:
    """Assert the batch counts in the response body."""
    assert ingestion_context["response"].json == {
        "ok": True,
        "accepted": accepted,
        "rejected": rejected,
        "parseErrors": parse_errors,
    }


@then("the response reports every event dropped as project_disabled")
def then_all_dropped(ingestion_context: IngestionContext) -> None:
    """Assert the all-dropped response shape."""
    body = ingestion_context["response"].json
    assert body["ok"] is True
    assert body["accepted"] == 0
    assert body["dropped"] == 2
    assert body["reason"] == "project_disabled"


@then(parsers.parse('the response error is "{code}"'))
def then_response_error(ingestion_context: IngestionContext, code: str) -> None:
    """Assert the error response body."""
    assert ingestion_context["response"].json == {"ok": False, "error": code}


@then(parsers.parse("{count:d} events reach the broker"))
def then_events_published(ingestion_context: IngestionContext, count: int) -> None:
    """Assert how many canonical events were published."""
    published = ingestion_context["publisher"].events
    assert len(published) == count, f"expected {count} events, got {len(published)}"
