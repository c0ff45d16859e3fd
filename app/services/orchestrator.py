"""Parsing orchestrator: cache, then heuristics, then a guarded provider call.

Also owns the per-event state machine ``PENDING -> SKIPPED | PARSED | FAILED``.
Budget and circuit-breaker errors are re-raised to the caller after the event
is marked, so sweeps can back off instead of busy-looping.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from app.core.db import EventORM, TransactionORM
from app.core.errors import ConcurrentParseError, GuardError, PipelineError, ProviderError
from app.core.models import CategoryResult, Direction, ParsedTransaction, ParseSource, ParseStatus
from app.core.settings import Settings
from app.core.utils import fingerprint, get_logger, isoformat_utc, to_utc_naive
from app.providers.base import BaseProvider, LlmUsage, ParseContext
from app.providers.registry import ProviderKind, ProviderSet
from app.services import heuristics
from app.services.cache import ParseCache
from app.services.categorization import CategoryRuleEngine
from app.services.cost_guard import CostGuard

logger = get_logger("spend-parser.orchestrator")

HEURISTIC_PROVENANCE = "heuristic"

T = TypeVar("T")


@dataclass(frozen=True)
class ParseOutcome:
    """A parsed transaction with where it came from."""

    transaction: ParsedTransaction
    source: ParseSource
    provider: str
    usage: LlmUsage | None = None
    cached: bool = False


@dataclass(frozen=True)
class ParseEventResult:
    event_id: str
    status: ParseStatus
    attempted: bool = True
    source: ParseSource | None = None
    transaction_id: str | None = None
    confidence: float | None = None
    error: str | None = None


@dataclass
class PendingRunResult:
    """Counts of one pending-events run; ``halted`` holds the guard error that stopped it."""

    processed: int = 0
    failed: int = 0
    halted: GuardError | None = None


def _occurred_at(value: str | None, fallback: datetime) -> datetime:
    if value:
        try:
            return to_utc_naive(datetime.fromisoformat(value))
        except ValueError:
            logger.warning(f"Unparseable occurredAt {value!r}, using the posted time")
    return fallback


class ParsingOrchestrator:
    """Runs the parse pipeline for free text and for stored events."""

    def __init__(
        self,
        cache: ParseCache,
        cost_guard: CostGuard,
        providers: ProviderSet,
        session_factory: sessionmaker,
        settings: Settings,
    ) -> None:
        """Initialize with the pipeline collaborators and tuning settings."""
        self.cache = cache
        self.cost_guard = cost_guard
        self.providers = providers
        self.session_factory = session_factory
        self.high_confidence = settings.heuristic_high_confidence
        self.salary_threshold = settings.salary_credit_threshold

    def _provider(self, provider: ProviderKind | str | None) -> BaseProvider:
        if provider is None:
            return self.providers.primary
        return self.providers.get(provider)

    def _call_provider(self, backend: BaseProvider, call: Callable[..., T], *args: object) -> T:
        """Run one provider call and report any failure to the breaker.

        Exceptions other than ``ProviderError`` are re-raised as a
        non-retryable ``ProviderError`` so callers see one failure kind.
        """
        try:
            return call(*args)
        except ProviderError:
            self.cost_guard.record_failure(backend.name)
            raise
        except Exception as exc:
            self.cost_guard.record_failure(backend.name)
            msg = f"{backend.name} call failed unexpectedly: {exc!r}"
            logger.exception(msg)
            raise ProviderError(msg, backend.name) from exc

    def parse_text(
        self,
        user_id: str,
        text: str,
        context: ParseContext,
        provider: ProviderKind | str | None = None,
        guard: Callable[[], bool] | None = None,
    ) -> ParseOutcome:
        """Parse one text.

        ``guard`` runs immediately before the provider call; returning False
        abandons the attempt with ``ConcurrentParseError``. Errors from the
        provider stage carry the heuristic confidence.
        """
        text_hash = fingerprint(text)
        cached = self.cache.get(text_hash)
        if cached is not None:
            logger.debug(f"Cache hit for {text_hash[:12]} ({cached.provider})")
            return ParseOutcome(cached.transaction, ParseSource.CACHE, cached.provider, cached=True)

        heuristic = heuristics.extract(text, context.app_source, context.posted_at)
        if heuristic.transaction is not None and heuristic.confidence >= self.high_confidence:
            self.cache.set(text_hash, heuristic.transaction, HEURISTIC_PROVENANCE)
            return ParseOutcome(heuristic.transaction, ParseSource.HEURISTIC, HEURISTIC_PROVENANCE)

        backend = self._provider(provider)
        try:
            if guard is not None and not guard():
                msg = "Event is no longer pending"
                raise ConcurrentParseError(msg)
            self.cost_guard.check_budget(user_id, backend.name).raise_for_failure()
            transaction, usage = self._call_provider(backend, backend.parse_transaction, text, context)
        except PipelineError as exc:
            exc.heuristic_confidence = heuristic.confidence
            raise

        self.cost_guard.record_usage(
            user_id, backend.name, usage.model, "parse", usage.input_tokens, usage.output_tokens
        )
        self.cache.set(text_hash, transaction, backend.name)
        return ParseOutcome(transaction, ParseSource.LLM, backend.name, usage=usage)

    def categorize(
        self,
        user_id: str,
        merchant: str | None,
        payee: str | None,
        amount: float,
        direction: Direction,
        provider: ProviderKind | str | None = None,
    ) -> CategoryResult:
        """Rule engine first, a guarded provider call as the fallback. Never raises."""
        backend = self._provider(provider)

        def fallback(merchant: str | None, payee: str | None, amount: float, direction: Direction) -> CategoryResult:
            self.cost_guard.check_budget(user_id, backend.name).raise_for_failure()
            result, usage = self._call_provider(backend, backend.categorize, merchant, payee, amount, direction)
            self.cost_guard.record_usage(
                user_id, backend.name, usage.model, "categorize", usage.input_tokens, usage.output_tokens
            )
            return result

        engine = CategoryRuleEngine(self.salary_threshold, fallback=fallback)
        return engine.categorize(merchant, payee, amount, direction)

    # --- event state machine ---

    def _is_pending(self, event_id: str) -> bool:
        with self.session_factory() as session:
            status = session.scalar(select(EventORM.parse_status).where(EventORM.id == event_id))
        return status == ParseStatus.PENDING

    def _mark(
        self,
        event_id: str,
        status: ParseStatus,
        confidence: float | None = None,
        error: str | None = None,
    ) -> bool:
        """Move a PENDING event to ``status``; False if it had already left PENDING."""
        with self.session_factory() as session:
            result = session.execute(
                update(EventORM)
                .where(EventORM.id == event_id, EventORM.parse_status == ParseStatus.PENDING)
                .values(parse_status=status.value, parse_confidence=confidence, parse_error=error)
            )
            session.commit()
            return bool(result.rowcount)

    def parse_event(self, event_id: str, provider: ProviderKind | str | None = None) -> ParseEventResult:
        """Parse one stored event and move it out of PENDING.

        Raises KeyError for unknown events and re-raises guard errors after
        marking the event FAILED.
        """
        with self.session_factory() as session:
            event = session.get(EventORM, event_id)
            if event is None:
                msg = f"Event {event_id} not found"
                raise KeyError(msg)
            if event.parse_status != ParseStatus.PENDING:
                return ParseEventResult(event_id, ParseStatus(event.parse_status), attempted=False)
            user_id = event.user_id
            posted_at = event.posted_at
            text = event.text_raw or event.text_redacted
            context = ParseContext(
                app_source=event.app_source,
                locale=event.locale,
                timezone=event.timezone,
                posted_at=isoformat_utc(posted_at),
            )

        try:
            outcome = self.parse_text(user_id, text, context, provider, guard=lambda: self._is_pending(event_id))
        except ConcurrentParseError:
            logger.info(f"Event {event_id} left PENDING during parsing, leaving it alone")
            return ParseEventResult(event_id, ParseStatus.PENDING, attempted=False)
        except GuardError as exc:
            self._mark(event_id, ParseStatus.FAILED, exc.heuristic_confidence, exc.message)
            logger.warning(f"Event {event_id} blocked by cost guard: {exc.message}")
            raise
        except PipelineError as exc:
            self._mark(event_id, ParseStatus.FAILED, exc.heuristic_confidence, exc.message)
            logger.error(f"Event {event_id} failed to parse: {exc.message}")
            return ParseEventResult(event_id, ParseStatus.FAILED, confidence=exc.heuristic_confidence, error=exc.message)

        transaction = outcome.transaction
        if not transaction.is_transaction:
            self._mark(event_id, ParseStatus.SKIPPED, transaction.confidence, transaction.reason)
            return ParseEventResult(
                event_id, ParseStatus.SKIPPED, source=outcome.source, confidence=transaction.confidence
            )

        if transaction.direction is None:
            msg = f"{outcome.provider} returned a transaction without a direction"
            self._mark(event_id, ParseStatus.FAILED, transaction.confidence, msg)
            return ParseEventResult(event_id, ParseStatus.FAILED, confidence=transaction.confidence, error=msg)

        amount = transaction.amount or 0.0
        category = self.categorize(
            user_id, transaction.merchant, transaction.payee, amount, transaction.direction, provider
        )
        transaction_id = self._store_transaction(event_id, user_id, posted_at, transaction, amount, category)
        if transaction_id is None:
            return ParseEventResult(event_id, ParseStatus.PENDING, attempted=False)

        logger.info(
            f"Event {event_id} parsed via {outcome.source}: {transaction.direction} {amount} "
            f"{transaction.merchant or transaction.payee or ''} -> {category.category}"
        )
        return ParseEventResult(
            event_id,
            ParseStatus.PARSED,
            source=outcome.source,
            transaction_id=transaction_id,
            confidence=transaction.confidence,
        )

    def _store_transaction(
        self,
        event_id: str,
        user_id: str,
        posted_at: datetime,
        transaction: ParsedTransaction,
        amount: float,
        category: CategoryResult,
    ) -> str | None:
        """Insert the transaction row and mark the event PARSED in one unit of work."""
        with self.session_factory() as session:
            event = session.get(EventORM, event_id)
            if event is None or event.parse_status != ParseStatus.PENDING:
                return None
            row = TransactionORM(
                user_id=user_id,
                event_id=event_id,
                occurred_at=_occurred_at(transaction.occurred_at, posted_at),
                amount=amount,
                currency=transaction.currency,
                direction=transaction.direction.value,
                instrument=transaction.instrument.value if transaction.instrument else None,
                merchant=transaction.merchant,
                payee=transaction.payee,
                bank_hint=transaction.bank_hint,
                ref_id=transaction.reference_id,
                category=category.category.value,
                category_source=category.source.value,
                confidence=transaction.confidence,
            )
            session.add(row)
            event.parse_status = ParseStatus.PARSED.value
            event.parse_confidence = transaction.confidence
            event.parse_error = None
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info(f"Transaction for event {event_id} already stored by another worker")
                return None
            return row.id

    def parse_pending_events(
        self, user_id: str, limit: int = 50, provider: ProviderKind | str | None = None
    ) -> PendingRunResult:
        """Parse a user's pending events, oldest first; stops at the first guard error."""
        with self.session_factory() as session:
            event_ids = session.scalars(
                select(EventORM.id)
                .where(EventORM.user_id == user_id, EventORM.parse_status == ParseStatus.PENDING)
                .order_by(EventORM.posted_at.asc())
                .limit(limit)
            ).all()

        result = PendingRunResult()
        for event_id in event_ids:
            try:
                outcome = self.parse_event(event_id, provider)
            except GuardError as exc:
                result.failed += 1
                result.halted = exc
                break
            if not outcome.attempted:
                continue
            if outcome.status is ParseStatus.FAILED:
                result.failed += 1
            else:
                result.processed += 1
        logger.info(
            f"Pending run for user {user_id}: processed={result.processed} failed={result.failed} "
            f"halted={type(result.halted).__name__ if result.halted else None}"
        )
        return result
