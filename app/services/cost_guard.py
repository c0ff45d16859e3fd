"""Cost guard: per-provider circuit breaker plus global and per-user daily budgets.

Spend counters are day-keyed floats in the ephemeral store, incremented
atomically. A race between concurrent spenders can overshoot a budget by the
cost of the calls already in flight, never corrupt a counter. Every billed call
is also appended to the ``token_usage`` audit table.
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from sqlalchemy.orm import sessionmaker

from app.core.db import TokenUsageORM
from app.core.errors import BudgetExceededError, CircuitOpenError
from app.core.settings import Settings
from app.core.utils import get_logger, utc_from_timestamp
from app.services.store import EphemeralStore

logger = get_logger("spend-parser.cost-guard")

# Token to USD cost estimates (approximate, small hosted models)
COST_PER_1K_INPUT_TOKENS = 0.00015
COST_PER_1K_OUTPUT_TOKENS = 0.0006

COUNTER_TTL_SECONDS = 2 * 24 * 60 * 60


def calculate_cost(input_tokens: int, output_tokens: int) -> float:
    """USD cost of one call at the fixed per-1000-token rates."""
    return (input_tokens / 1000) * COST_PER_1K_INPUT_TOKENS + (output_tokens / 1000) * COST_PER_1K_OUTPUT_TOKENS


class GuardFailure(StrEnum):
    CIRCUIT_OPEN = "circuit_open"
    GLOBAL_BUDGET = "global_budget"
    USER_BUDGET = "user_budget"


@dataclass(frozen=True)
class GuardDecision:
    """Result of a budget check: allowed, or one of a closed set of failure kinds."""

    provider: str
    failure: GuardFailure | None = None
    retry_after: float | None = None

    @property
    def allowed(self) -> bool:
        return self.failure is None

    def raise_for_failure(self) -> None:
        """Raise the error matching the failure kind; no-op when allowed."""
        if self.failure is GuardFailure.CIRCUIT_OPEN:
            raise CircuitOpenError(self.provider, self.retry_after)
        if self.failure is GuardFailure.GLOBAL_BUDGET:
            raise BudgetExceededError(self.provider, "global")
        if self.failure is GuardFailure.USER_BUDGET:
            raise BudgetExceededError(self.provider, "user")


@dataclass
class BreakerState:
    failures: int = 0
    last_failure: float = 0.0
    open: bool = False
    trial_in_flight: bool = False


class CircuitBreaker:
    """Per-provider consecutive-failure breaker with a single half-open trial call."""

    def __init__(self, threshold: int, timeout_seconds: float, clock: Callable[[], float] = time.time) -> None:
        """Initialize with the failure threshold and the open timeout in seconds."""
        self.threshold = threshold
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._states: dict[str, BreakerState] = {}
        self._lock = threading.Lock()

    def allow(self, provider: str) -> tuple[bool, bool, float | None]:
        """Return ``(allowed, is_trial, retry_after)`` for one call attempt."""
        with self._lock:
            state = self._states.get(provider)
            if state is None:
                return True, False, None
            if state.trial_in_flight:
                return False, False, self.timeout_seconds
            if not state.open:
                return True, False, None
            elapsed = self._clock() - state.last_failure
            if elapsed > self.timeout_seconds:
                state.open = False
                state.trial_in_flight = True
                logger.info(f"Circuit breaker half-open for {provider}")
                return True, True, None
            return False, False, self.timeout_seconds - elapsed

    def release_trial(self, provider: str) -> None:
        """Give back a half-open trial call that never reached the provider."""
        with self._lock:
            state = self._states.get(provider)
            if state is not None and state.trial_in_flight:
                state.trial_in_flight = False
                state.open = True

    def record_failure(self, provider: str) -> None:
        """Count a failed call; opens the breaker at the threshold or when the trial call fails."""
        with self._lock:
            state = self._states.setdefault(provider, BreakerState())
            state.failures += 1
            state.last_failure = self._clock()
            if state.trial_in_flight or state.failures >= self.threshold:
                if not state.open:
                    logger.warning(f"Circuit breaker opened for {provider} after {state.failures} failures")
                state.trial_in_flight = False
                state.open = True

    def record_success(self, provider: str) -> None:
        """Close the breaker and forget the failure count."""
        with self._lock:
            if self._states.pop(provider, None) is not None:
                logger.info(f"Circuit breaker closed for {provider}")

    def state(self, provider: str) -> BreakerState | None:
        """Copy of the provider's state, None when closed with no failures."""
        with self._lock:
            state = self._states.get(provider)
            return BreakerState(**vars(state)) if state else None


class CostGuard:
    """Budget and circuit-breaker gate in front of every provider call."""

    def __init__(
        self,
        store: EphemeralStore,
        session_factory: sessionmaker | None,
        settings: Settings,
        breaker: CircuitBreaker | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize with the counter store, an audit session factory and budget settings."""
        self.store = store
        self.session_factory = session_factory
        self.daily_budget_usd = settings.llm_daily_budget_usd
        self.per_user_daily_budget_usd = settings.llm_per_user_daily_budget_usd
        self._clock = clock
        self.breaker = breaker or CircuitBreaker(
            settings.llm_circuit_breaker_threshold,
            settings.llm_circuit_breaker_timeout_seconds,
            clock,
        )

    def _today_key(self) -> str:
        return utc_from_timestamp(self._clock()).date().isoformat()

    def _global_key(self) -> str:
        return f"llm:budget:global:{self._today_key()}"

    def _user_key(self, user_id: str) -> str:
        return f"llm:budget:user:{user_id}:{self._today_key()}"

    def check_budget(self, user_id: str, provider: str) -> GuardDecision:
        """Consult the breaker, then the per-user and global spend for today.

        The per-user cap is checked first so a user over their own budget is
        told so even when the global budget is also exhausted.
        """
        allowed, is_trial, retry_after = self.breaker.allow(provider)
        if not allowed:
            return GuardDecision(provider, GuardFailure.CIRCUIT_OPEN, retry_after)

        failure = None
        if self.store.get_float(self._user_key(user_id)) >= self.per_user_daily_budget_usd:
            failure = GuardFailure.USER_BUDGET
        elif self.store.get_float(self._global_key()) >= self.daily_budget_usd:
            failure = GuardFailure.GLOBAL_BUDGET

        if failure is not None:
            if is_trial:
                self.breaker.release_trial(provider)
            logger.warning(f"Blocked {provider} call for user {user_id}: {failure.value}")
            return GuardDecision(provider, failure)
        return GuardDecision(provider)

    def record_usage(
        self,
        user_id: str | None,
        provider: str,
        model: str,
        operation: str,
        input_tokens: int,
        output_tokens: int,
    ) -> float:
        """Close the provider's breaker, add the call's cost to both counters and audit it.

        The breaker closes first: the provider answered, so a failing audit
        write must not leave a half-open trial call outstanding.
        """
        self.breaker.record_success(provider)
        cost = calculate_cost(input_tokens, output_tokens)
        self.store.incr_float(self._global_key(), cost, COUNTER_TTL_SECONDS)
        if user_id is not None:
            self.store.incr_float(self._user_key(user_id), cost, COUNTER_TTL_SECONDS)

        if self.session_factory is not None:
            with self.session_factory() as session:
                session.add(
                    TokenUsageORM(
                        user_id=user_id,
                        provider=provider,
                        model=model,
                        operation=operation,
                        input_tokens=input_tokens,
                        output_tokens=output_tokens,
                        cost_usd=cost,
                    )
                )
                session.commit()
        return cost

    def record_failure(self, provider: str) -> None:
        """Report a failed provider call to the breaker."""
        self.breaker.record_failure(provider)

    def get_daily_stats(self) -> dict[str, float]:
        """Today's global spend, budget and remaining headroom."""
        spend = self.store.get_float(self._global_key())
        return {
            "global_spend": spend,
            "global_budget": self.daily_budget_usd,
            "remaining": max(0.0, self.daily_budget_usd - spend),
        }

    def get_user_daily_stats(self, user_id: str) -> dict[str, float]:
        """Today's spend, budget and remaining headroom for one user."""
        spend = self.store.get_float(self._user_key(user_id))
        return {
            "user_spend": spend,
            "user_budget": self.per_user_daily_budget_usd,
            "remaining": max(0.0, self.per_user_daily_budget_usd - spend),
        }
