"""Pytest configuration and shared fixtures."""

import os
import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

# Keep the app from starting the scheduler or writing logs into the working tree on import.
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["LOG_FILE"] = str(Path(tempfile.gettempdir()) / "spend-parser-tests" / "pipeline.log")

from fastapi.testclient import TestClient  # noqa: E402

from app.api.dependencies import get_runner, get_services  # noqa: E402
from app.core.models import CategoryResult, Direction, ParsedTransaction  # noqa: E402
from app.core.settings import Settings  # noqa: E402
from app.providers.base import BaseProvider, LlmUsage, ParseContext  # noqa: E402
from app.providers.mock_provider import MockProvider  # noqa: E402
from app.providers.registry import ProviderKind, ProviderSet  # noqa: E402
from app.services.container import Services, build_services  # noqa: E402
from app.services.store import MemoryStore  # noqa: E402
from app.workers.job_runner import BackgroundParseRunner  # noqa: E402

START_TIME = 1_736_072_400.0  # 2025-01-05T10:20:00Z


class FakeClock:
    """Manually advanced clock returning POSIX seconds."""

    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedProvider(BaseProvider):
    """Provider returning queued results or raising queued errors, recording every call."""

    model = "scripted-1"

    def __init__(self, name: str = "mock") -> None:
        self.name = name
        self.parse_results: list[ParsedTransaction | Exception] = []
        self.category_results: list[CategoryResult | Exception] = []
        self.parse_calls: list[str] = []
        self.categorize_calls: list[tuple] = []
        self.usage = LlmUsage(input_tokens=1000, output_tokens=1000, model=self.model)
        self.healthy = True

    def parse_transaction(self, text: str, context: ParseContext) -> tuple[ParsedTransaction, LlmUsage]:
        self.parse_calls.append(text)
        result = self.parse_results.pop(0) if self.parse_results else ParsedTransaction(
            is_transaction=False, confidence=0.9, reason="Not a financial transaction"
        )
        if isinstance(result, Exception):
            raise result
        return result, self.usage

    def categorize(
        self, merchant: str | None, payee: str | None, amount: float, direction: Direction
    ) -> tuple[CategoryResult, LlmUsage]:
        self.categorize_calls.append((merchant, payee, amount, direction))
        result = self.category_results.pop(0) if self.category_results else CategoryResult(confidence=0.5)
        if isinstance(result, Exception):
            raise result
        return result, self.usage

    def health_check(self) -> bool:
        return self.healthy


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Isolated settings: temp-file database, mock primary, no scheduler."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        environment="test",
        groq_api_key=None,
        anthropic_api_key=None,
        llm_primary_provider="mock",
        mock_latency_ms=0,
        scheduler_enabled=False,
        llm_daily_budget_usd=10.0,
        llm_per_user_daily_budget_usd=0.5,
        llm_circuit_breaker_threshold=5,
        llm_circuit_breaker_timeout_seconds=60.0,
    )


@pytest.fixture
def store(clock: FakeClock) -> MemoryStore:
    return MemoryStore(clock)


@pytest.fixture
def scripted_provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def make_services(settings: Settings, store: MemoryStore, clock: FakeClock) -> Iterator[Callable[..., Services]]:
    """Factory building an isolated services bundle around the given provider."""
    built: list[Services] = []

    def factory(provider: BaseProvider | None = None, **overrides: object) -> Services:
        bundle_settings = settings.model_copy(update=overrides) if overrides else settings
        provider = provider or MockProvider(latency_ms=0)
        providers = ProviderSet({ProviderKind.MOCK: provider}, ProviderKind.MOCK)
        services = build_services(bundle_settings, store=store, providers=providers, clock=clock)
        built.append(services)
        return services

    yield factory
    for services in built:
        services.engine.dispose()


@pytest.fixture
def services(make_services: Callable[..., Services]) -> Services:
    return make_services()


@pytest.fixture
def runner(services: Services) -> Iterator[BackgroundParseRunner]:
    runner = BackgroundParseRunner(services.orchestrator, max_workers=2)
    yield runner
    runner.shutdown()


@pytest.fixture
def client(services: Services, runner: BackgroundParseRunner) -> Iterator[TestClient]:
    """Test client wired to the isolated services bundle."""
    from main import app

    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_runner] = lambda: runner
    yield TestClient(app)
    app.dependency_overrides.clear()
