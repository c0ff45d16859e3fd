"""Background parsing: fire-and-forget submissions and the periodic scheduler.

Ingestion never waits on parsing. Submissions go to a bounded thread pool and
report failures through a done-callback that logs them; scheduled sweeps pick
up whatever is still PENDING and back off when the cost guard says so.
"""

import concurrent.futures
import math
import threading
import time
from collections.abc import Callable

from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import BudgetExceededError
from app.core.utils import get_logger
from app.services.cache import ParseCache
from app.services.events import EventService
from app.services.orchestrator import ParsingOrchestrator, PendingRunResult
from app.services.store import EphemeralStore
from app.services.summary import SummaryService

logger = get_logger("spend-parser.worker")

DEFAULT_MAX_WORKERS = 6


class BackgroundParseRunner:
    """Runs pending-event parsing off the request path with its own error channel."""

    def __init__(self, orchestrator: ParsingOrchestrator, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        """Initialize the runner with the orchestrator and the pool size."""
        self.orchestrator = orchestrator
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="parse-worker"
        )
        self._pending: set[concurrent.futures.Future] = set()
        self._lock = threading.Lock()

    def submit(self, user_id: str, limit: int) -> concurrent.futures.Future:
        """Queue parsing of up to ``limit`` pending events for the user."""
        future = self._executor.submit(self.orchestrator.parse_pending_events, user_id, limit)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(lambda done: self._on_done(user_id, done))
        logger.info(f"Queued background parse for user {user_id} (limit {limit})")
        return future

    def _on_done(self, user_id: str, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._pending.discard(future)
        if future.cancelled():
            logger.warning(f"Background parse for user {user_id} was cancelled")
            return
        exc = future.exception()
        if exc is not None:
            logger.error(f"Background parse failed for user {user_id}: {exc!r}", exc_info=exc)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for the submitted work to finish; False if the timeout expired first."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = concurrent.futures.wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)


class Scheduler:
    """Daemon thread running the pending-event sweep, the cache janitor and weekly summaries."""

    def __init__(
        self,
        orchestrator: ParsingOrchestrator,
        events: EventService,
        cache: ParseCache,
        store: EphemeralStore,
        *,
        sweep_interval_seconds: float = 3600,
        cleanup_interval_seconds: float = 86400,
        user_limit: int = 50,
        events_per_user: int = 20,
        cache_max_age_days: int = 30,
        summaries: SummaryService | None = None,
        summary_interval_seconds: float = 86400,
        summary_user_limit: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize with the components to drive and the task intervals."""
        self.orchestrator = orchestrator
        self.events = events
        self.cache = cache
        self.store = store
        self.sweep_interval_seconds = sweep_interval_seconds
        self.cleanup_interval_seconds = cleanup_interval_seconds
        self.user_limit = user_limit
        self.events_per_user = events_per_user
        self.cache_max_age_days = cache_max_age_days
        self.summaries = summaries
        self.summary_interval_seconds = summary_interval_seconds
        self.summary_user_limit = summary_user_limit
        self._clock = clock
        self._next_sweep = 0.0
        self._next_cleanup = 0.0
        self._next_summary = 0.0 if summaries is not None else math.inf
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep_pending(self) -> dict[str, int]:
        """Parse pending events of the most backlogged users.

        A per-user budget stop skips to the next user; a global budget stop or
        an open circuit ends the sweep.
        """
        totals = {"users": 0, "processed": 0, "failed": 0}
        for user_id in self.events.users_with_pending_events(self.user_limit):
            result: PendingRunResult = self.orchestrator.parse_pending_events(user_id, self.events_per_user)
            totals["users"] += 1
            totals["processed"] += result.processed
            totals["failed"] += result.failed
            if result.halted is None:
                continue
            if isinstance(result.halted, BudgetExceededError) and result.halted.scope == "user":
                logger.info(f"User {user_id} is over budget, skipping")
                continue
            logger.warning(f"Sweep stopped early: {result.halted.message}")
            break
        logger.info(
            f"Sweep done: users={totals['users']} processed={totals['processed']} failed={totals['failed']}"
        )
        return totals

    def run_cleanup(self) -> int:
        removed = self.cache.cleanup(self.cache_max_age_days)
        purged = self.store.purge_expired()
        logger.info(f"Janitor removed {removed} cache entries and {purged} expired keys")
        return removed

    def run_summaries(self) -> int:
        """Recompute the current week's summary of every user with transactions this week."""
        if self.summaries is None:
            return 0
        week_start, week_end = self.summaries.current_week_range()
        computed = 0
        for user_id in self.summaries.users_with_transactions(week_start, week_end, self.summary_user_limit):
            try:
                self.summaries.compute_weekly_summary(user_id, week_start, week_end)
            except SQLAlchemyError:
                logger.exception(f"Weekly summary failed for user {user_id}")
                continue
            computed += 1
        logger.info(f"Computed {computed} weekly summaries")
        return computed

    def run_due(self) -> None:
        """Run whichever tasks are due; failures are logged and retried next interval."""
        now = self._clock()
        if now >= self._next_sweep:
            self._next_sweep = now + self.sweep_interval_seconds
            try:
                self.sweep_pending()
            except Exception:
                logger.exception("Scheduled sweep failed")
        if now >= self._next_cleanup:
            self._next_cleanup = now + self.cleanup_interval_seconds
            try:
                self.run_cleanup()
            except Exception:
                logger.exception("Scheduled cache cleanup failed")
        if now >= self._next_summary:
            self._next_summary = now + self.summary_interval_seconds
            try:
                self.run_summaries()
            except Exception:
                logger.exception("Scheduled weekly summaries failed")

    def _run(self) -> None:
        logger.info("Scheduler started")
        while not self._stop.is_set():
            self.run_due()
            wait = min(self._next_sweep, self._next_cleanup, self._next_summary) - self._clock()
            self._stop.wait(max(1.0, wait))
        logger.info("Scheduler stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="scheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
