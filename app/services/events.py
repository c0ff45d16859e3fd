"""Event ingestion gateway: dedup and persist inbound notification events.

Each item of a batch is stored in its own session, so one bad item is reported
as an ``error`` detail without aborting the rest of the batch.
"""

from datetime import timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.core.db import EventORM, TransactionORM
from app.core.errors import PersistenceError
from app.core.models import (
    EventInput,
    EventStatus,
    IngestResult,
    IngestStatus,
    ParseStatus,
    TransactionOut,
)
from app.core.utils import fingerprint, get_logger, isoformat_utc, to_utc_naive

logger = get_logger("spend-parser.events")

DEFAULT_DEDUP_WINDOW = timedelta(hours=1)


class EventService:
    """Stores inbound events and exposes per-user event and transaction queries."""

    def __init__(self, session_factory: sessionmaker, dedup_window: timedelta = DEFAULT_DEDUP_WINDOW) -> None:
        """Initialize with a session factory and the duplicate detection window."""
        self.session_factory = session_factory
        self.dedup_window = dedup_window

    def ingest_events(self, user_id: str, events: list[EventInput]) -> list[IngestResult]:
        """Store each event unless it duplicates one already stored for the user."""
        results = []
        for event in events:
            try:
                status = self._ingest_one(user_id, event)
                results.append(IngestResult(event_id=event.event_id, status=status))
            except PersistenceError as exc:
                logger.error(f"Failed to store event {event.event_id} for user {user_id}: {exc.message}")
                results.append(IngestResult(event_id=event.event_id, status=IngestStatus.ERROR, error=exc.message))

        accepted = sum(1 for result in results if result.status is IngestStatus.ACCEPTED)
        logger.info(f"Ingested {len(events)} events for user {user_id}: {accepted} accepted")
        return results

    def _ingest_one(self, user_id: str, event: EventInput) -> IngestStatus:
        text_hash = fingerprint(event.text_redacted)
        posted_at = to_utc_naive(event.posted_at)
        try:
            with self.session_factory() as session:
                if session.get(EventORM, event.event_id) is not None:
                    return IngestStatus.DUPLICATE
                existing = session.scalar(
                    select(EventORM.id)
                    .where(
                        EventORM.user_id == user_id,
                        EventORM.text_hash == text_hash,
                        EventORM.posted_at >= posted_at - self.dedup_window,
                        EventORM.posted_at <= posted_at + self.dedup_window,
                    )
                    .limit(1)
                )
                if existing is not None:
                    return IngestStatus.DUPLICATE
                session.add(
                    EventORM(
                        id=event.event_id,
                        user_id=user_id,
                        device_id=event.device_id,
                        app_source=event.app_source,
                        posted_at=posted_at,
                        text_redacted=event.text_redacted,
                        text_raw=event.text_raw,
                        text_hash=text_hash,
                        locale=event.locale,
                        timezone=event.timezone,
                        parse_status=ParseStatus.PENDING.value,
                    )
                )
                session.commit()
        except SQLAlchemyError as exc:
            msg = f"Could not store event: {exc.__class__.__name__}"
            raise PersistenceError(msg) from exc
        return IngestStatus.ACCEPTED

    def retry_failed_events(self, user_id: str) -> int:
        """Reset the user's FAILED events to PENDING and clear their error."""
        with self.session_factory() as session:
            result = session.execute(
                update(EventORM)
                .where(EventORM.user_id == user_id, EventORM.parse_status == ParseStatus.FAILED)
                .values(parse_status=ParseStatus.PENDING.value, parse_error=None)
            )
            session.commit()
            retried = result.rowcount or 0
        logger.info(f"Reset {retried} failed events to pending for user {user_id}")
        return retried

    def get_event(self, user_id: str, event_id: str) -> EventStatus | None:
        with self.session_factory() as session:
            event = session.get(EventORM, event_id)
            if event is None or event.user_id != user_id:
                return None
            return EventStatus(
                event_id=event.id,
                app_source=event.app_source,
                posted_at=isoformat_utc(event.posted_at),
                parse_status=ParseStatus(event.parse_status),
                parse_confidence=event.parse_confidence,
                parse_error=event.parse_error,
            )

    def users_with_pending_events(self, limit: int = 50) -> list[str]:
        """Users that have PENDING events, most backlogged first."""
        with self.session_factory() as session:
            rows = session.execute(
                select(EventORM.user_id, func.count(EventORM.id).label("pending"))
                .where(EventORM.parse_status == ParseStatus.PENDING)
                .group_by(EventORM.user_id)
                .order_by(func.count(EventORM.id).desc())
                .limit(limit)
            ).all()
        return [row.user_id for row in rows]

    def get_recent_transactions(self, user_id: str, limit: int = 20, offset: int = 0) -> list[TransactionOut]:
        """Newest transactions first."""
        with self.session_factory() as session:
            rows = session.execute(
                select(TransactionORM, EventORM.app_source)
                .join(EventORM, TransactionORM.event_id == EventORM.id)
                .where(TransactionORM.user_id == user_id)
                .order_by(TransactionORM.occurred_at.desc())
                .limit(limit)
                .offset(offset)
            ).all()
        return [
            TransactionOut(
                id=tx.id,
                occurred_at=isoformat_utc(tx.occurred_at),
                amount=tx.amount,
                currency=tx.currency,
                direction=tx.direction,
                instrument=tx.instrument,
                merchant=tx.merchant,
                payee=tx.payee,
                category=tx.category,
                category_source=tx.category_source,
                confidence=tx.confidence,
                app_source=app_source,
            )
            for tx, app_source in rows
        ]

    def erase_user(self, user_id: str) -> tuple[int, int]:
        """Delete all of a user's transactions and events; returns ``(events, transactions)`` removed."""
        with self.session_factory() as session:
            transactions = session.execute(delete(TransactionORM).where(TransactionORM.user_id == user_id))
            events = session.execute(delete(EventORM).where(EventORM.user_id == user_id))
            session.commit()
            removed = (events.rowcount or 0, transactions.rowcount or 0)
        logger.info(f"Erased user {user_id}: {removed[0]} events, {removed[1]} transactions")
        return removed
