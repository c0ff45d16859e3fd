"""Tests for the circuit breaker and daily budgets."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from app.core.db import TokenUsageORM
from app.core.errors import BudgetExceededError, CircuitOpenError
from app.services.container import Services
from app.services.cost_guard import CircuitBreaker, CostGuard, GuardFailure, calculate_cost

PROVIDER = "mock"


def test_calculate_cost() -> None:
    cost = calculate_cost(1000, 1000)
    if cost != pytest.approx(0.00075):
        msg = f"Expected 0.00075 USD, got {cost}"
        raise AssertionError(msg)


def test_fresh_guard_allows(services: Services) -> None:
    decision = services.cost_guard.check_budget("u1", PROVIDER)
    if not decision.allowed:
        msg = f"Expected an allowed decision, got {decision}"
        raise AssertionError(msg)
    decision.raise_for_failure()


def test_user_budget_enforced_regardless_of_global(services: Services) -> None:
    guard = services.cost_guard
    # 1M input + 1M output tokens cost 0.75 USD, past the 0.5 USD per-user cap.
    guard.record_usage("u1", PROVIDER, "m", "parse", 1_000_000, 1_000_000)
    decision = guard.check_budget("u1", PROVIDER)
    if decision.failure is not GuardFailure.USER_BUDGET:
        msg = f"Expected a per-user budget failure, got {decision}"
        raise AssertionError(msg)
    with pytest.raises(BudgetExceededError) as info:
        decision.raise_for_failure()
    if info.value.scope != "user":
        msg = f"Expected user scope, got {info.value.scope}"
        raise AssertionError(msg)
    if not guard.check_budget("u2", PROVIDER).allowed:
        msg = "Another user must not be blocked by u1's spend"
        raise AssertionError(msg)


def test_global_budget_enforced(make_services) -> None:
    services = make_services(llm_daily_budget_usd=0.001, llm_per_user_daily_budget_usd=100.0)
    services.cost_guard.record_usage("u1", PROVIDER, "m", "parse", 1000, 2000)
    decision = services.cost_guard.check_budget("u2", PROVIDER)
    if decision.failure is not GuardFailure.GLOBAL_BUDGET:
        msg = f"Expected a global budget failure, got {decision}"
        raise AssertionError(msg)


def test_budget_resets_on_new_day(services: Services, clock) -> None:
    services.cost_guard.record_usage("u1", PROVIDER, "m", "parse", 1_000_000, 1_000_000)
    clock.advance(24 * 60 * 60)
    if not services.cost_guard.check_budget("u1", PROVIDER).allowed:
        msg = "Expected the per-user budget to reset the next day"
        raise AssertionError(msg)


def test_record_usage_writes_audit_row(services: Services) -> None:
    cost = services.cost_guard.record_usage("u1", PROVIDER, "mock", "categorize", 20, 20)
    with services.session_factory() as session:
        rows = session.scalars(select(TokenUsageORM)).all()
    if len(rows) != 1 or rows[0].operation != "categorize" or rows[0].cost_usd != pytest.approx(cost):
        msg = f"Expected one categorize audit row, got {rows}"
        raise AssertionError(msg)
    stats = services.cost_guard.get_user_daily_stats("u1")
    if stats["user_spend"] != pytest.approx(cost):
        msg = f"Expected spend {cost}, got {stats}"
        raise AssertionError(msg)


def test_daily_stats(services: Services) -> None:
    stats = services.cost_guard.get_daily_stats()
    if stats != {"global_spend": 0.0, "global_budget": 10.0, "remaining": 10.0}:
        msg = f"Unexpected stats {stats}"
        raise AssertionError(msg)


def test_circuit_breaker_lifecycle(services: Services, clock) -> None:
    """N failures open the breaker; after the timeout exactly one trial call passes; success closes it."""
    guard = services.cost_guard
    for _ in range(5):
        guard.record_failure(PROVIDER)

    blocked = guard.check_budget("u1", PROVIDER)
    if blocked.failure is not GuardFailure.CIRCUIT_OPEN:
        msg = f"Expected an open circuit, got {blocked}"
        raise AssertionError(msg)
    with pytest.raises(CircuitOpenError):
        blocked.raise_for_failure()

    clock.advance(61)
    trial = guard.check_budget("u1", PROVIDER)
    if not trial.allowed:
        msg = f"Expected the half-open trial call to pass, got {trial}"
        raise AssertionError(msg)
    second = guard.check_budget("u1", PROVIDER)
    if second.failure is not GuardFailure.CIRCUIT_OPEN:
        msg = f"Expected only one trial call while half-open, got {second}"
        raise AssertionError(msg)

    guard.record_usage("u1", PROVIDER, "m", "parse", 10, 10)
    if guard.breaker.state(PROVIDER) is not None or not guard.check_budget("u1", PROVIDER).allowed:
        msg = "Expected a success to close the breaker"
        raise AssertionError(msg)


def test_failed_trial_reopens(clock) -> None:
    breaker = CircuitBreaker(threshold=2, timeout_seconds=30, clock=clock)
    breaker.record_failure("groq")
    breaker.record_failure("groq")
    clock.advance(31)
    allowed, is_trial, _ = breaker.allow("groq")
    if not (allowed and is_trial):
        msg = "Expected a half-open trial call"
        raise AssertionError(msg)
    breaker.record_failure("groq")
    allowed, _, retry_after = breaker.allow("groq")
    if allowed or retry_after != pytest.approx(30):
        msg = f"Expected the breaker to reopen for a full timeout, got allowed={allowed} retry_after={retry_after}"
        raise AssertionError(msg)


def test_breaker_below_threshold_stays_closed(clock) -> None:
    breaker = CircuitBreaker(threshold=3, timeout_seconds=30, clock=clock)
    breaker.record_failure("groq")
    breaker.record_failure("groq")
    allowed, _, _ = breaker.allow("groq")
    if not allowed:
        msg = "Expected the breaker to stay closed below the threshold"
        raise AssertionError(msg)
    breaker.record_success("groq")
    breaker.record_failure("groq")
    breaker.record_failure("groq")
    if not breaker.allow("groq")[0]:
        msg = "Expected a success to reset the consecutive failure count"
        raise AssertionError(msg)


def test_budget_block_returns_trial(make_services, clock) -> None:
    services = make_services(llm_per_user_daily_budget_usd=0.0001)
    guard = services.cost_guard
    guard.record_usage("u1", PROVIDER, "m", "parse", 1000, 1000)
    for _ in range(5):
        guard.record_failure(PROVIDER)
    clock.advance(61)
    if guard.check_budget("u1", PROVIDER).failure is not GuardFailure.USER_BUDGET:
        msg = "Expected the budget to block the trial call"
        raise AssertionError(msg)
    if not guard.check_budget("u2", PROVIDER).allowed:
        msg = "Expected the unused trial call to be available to the next caller"
        raise AssertionError(msg)


def test_token_usage_has_no_rows_without_usage(services: Services) -> None:
    with services.session_factory() as session:
        count = session.scalar(select(func.count(TokenUsageORM.id)))
    if count != 0:
        msg = f"Expected no audit rows, got {count}"
        raise AssertionError(msg)


def test_user_budget_reported_when_both_exceeded(make_services) -> None:
    services = make_services(llm_daily_budget_usd=0.0001, llm_per_user_daily_budget_usd=0.0001)
    services.cost_guard.record_usage("u1", PROVIDER, "m", "parse", 1000, 1000)
    with pytest.raises(BudgetExceededError) as info:
        services.cost_guard.check_budget("u1", PROVIDER).raise_for_failure()
    if info.value.scope != "user":
        msg = f"Expected the user's own cap reported first, got scope {info.value.scope}"
        raise AssertionError(msg)
    if services.cost_guard.check_budget("u2", PROVIDER).failure is not GuardFailure.GLOBAL_BUDGET:
        msg = "Expected a user under their own cap to see the global budget failure"
        raise AssertionError(msg)


def test_failed_audit_write_still_closes_breaker(settings, store, clock) -> None:
    def broken_session() -> None:
        raise OperationalError("INSERT INTO token_usage", {}, Exception("disk I/O error"))

    guard = CostGuard(store, broken_session, settings, clock=clock)
    for _ in range(5):
        guard.record_failure(PROVIDER)
    clock.advance(61)
    if not guard.check_budget("u1", PROVIDER).allowed:
        msg = "Expected the half-open trial call to pass"
        raise AssertionError(msg)

    with pytest.raises(OperationalError):
        guard.record_usage("u1", PROVIDER, "m", "parse", 10, 10)
    if guard.breaker.state(PROVIDER) is not None:
        msg = f"Expected the breaker closed despite the audit failure, got {guard.breaker.state(PROVIDER)}"
        raise AssertionError(msg)
    if not guard.check_budget("u2", PROVIDER).allowed:
        msg = "Expected calls to flow again after the successful trial call"
        raise AssertionError(msg)
