"""Tests for event ingestion, dedup and the per-user queries."""

from datetime import UTC, datetime, timedelta

from app.core.errors import ProviderError
from app.core.models import EventInput, IngestStatus, ParseStatus
from app.services.container import Services

TEXT = "Rs.500 debited for Swiggy order. UPI Ref 123456789012"
POSTED_AT = datetime(2025, 1, 5, 10, 30, tzinfo=UTC)


def _event(event_id: str, text: str = TEXT, posted_at: datetime = POSTED_AT) -> EventInput:
    return EventInput(
        event_id=event_id,
        device_id="device-1",
        app_source="com.phonepe.app",
        posted_at=posted_at,
        text_redacted=text,
    )


def _statuses(results) -> list[IngestStatus]:
    return [result.status for result in results]


def test_duplicate_within_window(services: Services) -> None:
    results = services.events.ingest_events(
        "u1",
        [_event("e1"), _event("e2", text=TEXT.upper(), posted_at=POSTED_AT + timedelta(minutes=10))],
    )
    if _statuses(results) != [IngestStatus.ACCEPTED, IngestStatus.DUPLICATE]:
        msg = f"Expected accepted then duplicate, got {_statuses(results)}"
        raise AssertionError(msg)
    if services.events.get_event("u1", "e2") is not None:
        msg = "The duplicate must not be stored"
        raise AssertionError(msg)


def test_same_text_outside_window_is_accepted(services: Services) -> None:
    results = services.events.ingest_events(
        "u1", [_event("e1"), _event("e2", posted_at=POSTED_AT + timedelta(hours=2))]
    )
    if _statuses(results) != [IngestStatus.ACCEPTED, IngestStatus.ACCEPTED]:
        msg = f"Expected both accepted, got {_statuses(results)}"
        raise AssertionError(msg)


def test_dedup_is_per_user(services: Services) -> None:
    services.events.ingest_events("u1", [_event("e1")])
    results = services.events.ingest_events("u2", [_event("e2")])
    if _statuses(results) != [IngestStatus.ACCEPTED]:
        msg = f"Another user's identical text must be accepted, got {_statuses(results)}"
        raise AssertionError(msg)


def test_repeated_event_id_is_duplicate(services: Services) -> None:
    services.events.ingest_events("u1", [_event("e1")])
    results = services.events.ingest_events("u1", [_event("e1", text="Rs.10 paid to Uber")])
    if _statuses(results) != [IngestStatus.DUPLICATE]:
        msg = f"Expected a duplicate for a repeated id, got {_statuses(results)}"
        raise AssertionError(msg)


def test_get_event_is_user_scoped(services: Services) -> None:
    services.events.ingest_events("u1", [_event("e1")])
    status = services.events.get_event("u1", "e1")
    if status is None or status.parse_status is not ParseStatus.PENDING:
        msg = f"Expected a PENDING event, got {status}"
        raise AssertionError(msg)
    if status.posted_at != "2025-01-05T10:30:00.000Z":
        msg = f"Unexpected postedAt {status.posted_at}"
        raise AssertionError(msg)
    if services.events.get_event("u2", "e1") is not None:
        msg = "Another user must not see the event"
        raise AssertionError(msg)


def test_retry_failed_events(make_services, scripted_provider) -> None:
    services = make_services(scripted_provider)
    scripted_provider.parse_results.append(ProviderError("bad output", "mock"))
    services.events.ingest_events("u1", [_event("e1", text="Refund of Rs.349 credited for your Myntra order")])
    services.orchestrator.parse_event("e1")

    retried = services.events.retry_failed_events("u1")
    status = services.events.get_event("u1", "e1")
    if retried != 1 or status.parse_status is not ParseStatus.PENDING or status.parse_error is not None:
        msg = f"Expected the failed event reset, got retried={retried} {status}"
        raise AssertionError(msg)
    if services.events.retry_failed_events("u1") != 0:
        msg = "Expected nothing left to retry"
        raise AssertionError(msg)


def test_recent_transactions_and_pending_users(services: Services) -> None:
    services.events.ingest_events(
        "u1",
        [
            _event("e1"),
            _event("e2", text="Rs.120 paid to Uber. UPI Ref 998877665544", posted_at=POSTED_AT + timedelta(hours=1)),
        ],
    )
    services.events.ingest_events("u2", [_event("e3")])
    if services.events.users_with_pending_events() != ["u1", "u2"]:
        msg = f"Expected u1 before u2, got {services.events.users_with_pending_events()}"
        raise AssertionError(msg)

    services.orchestrator.parse_pending_events("u1")
    transactions = services.events.get_recent_transactions("u1")
    if [tx.merchant for tx in transactions] != ["Uber", "Swiggy"]:
        msg = f"Expected newest first, got {[tx.merchant for tx in transactions]}"
        raise AssertionError(msg)
    if transactions[0].app_source != "com.phonepe.app":
        msg = f"Expected the event's app source, got {transactions[0].app_source}"
        raise AssertionError(msg)
    paged = services.events.get_recent_transactions("u1", limit=1, offset=1)
    if [tx.merchant for tx in paged] != ["Swiggy"]:
        msg = f"Unexpected page {paged}"
        raise AssertionError(msg)


def test_erase_user(services: Services) -> None:
    services.events.ingest_events("u1", [_event("e1"), _event("e2", text="Your OTP is 123456")])
    services.events.ingest_events("u2", [_event("e3")])
    services.orchestrator.parse_pending_events("u1")

    removed = services.events.erase_user("u1")
    if removed != (2, 1):
        msg = f"Expected (2 events, 1 transaction), got {removed}"
        raise AssertionError(msg)
    if services.events.get_event("u2", "e3") is None:
        msg = "Other users' data must survive"
        raise AssertionError(msg)
