"""Provider registry: the closed set of backends, resolved once at startup.

Backends are keyed by ``ProviderKind`` rather than free-form strings. A real
backend is enabled only when its API key is configured; the mock is always
available so callers (evaluation runs, tests) can select it explicitly.
"""

from collections.abc import Callable
from enum import StrEnum

from app.core.settings import Settings
from app.core.utils import get_logger
from app.providers.base import BaseProvider

logger = get_logger("spend-parser.providers.registry")


class ProviderKind(StrEnum):
    MOCK = "mock"
    GROQ = "groq"
    ANTHROPIC = "anthropic"


# Preference order when no primary is configured.
REAL_BACKENDS = (ProviderKind.GROQ, ProviderKind.ANTHROPIC)


class ProviderSet:
    """Enabled providers plus the primary one used when no override is given."""

    def __init__(self, providers: dict[ProviderKind, BaseProvider], primary: ProviderKind) -> None:
        """Initialize with the enabled providers; ``primary`` must be one of them."""
        if primary not in providers:
            msg = f"Primary provider {primary} is not enabled"
            raise ValueError(msg)
        self._providers = dict(providers)
        self.primary_kind = primary

    @property
    def primary(self) -> BaseProvider:
        return self._providers[self.primary_kind]

    def get(self, kind: ProviderKind | str) -> BaseProvider:
        """Return an enabled provider; raises KeyError for unknown or disabled kinds."""
        try:
            kind = ProviderKind(kind)
        except ValueError as exc:
            msg = f"Unknown provider {kind!r}"
            raise KeyError(msg) from exc
        if kind not in self._providers:
            msg = f"Provider {kind} is not enabled"
            raise KeyError(msg)
        return self._providers[kind]

    def available(self) -> list[ProviderKind]:
        """List all enabled provider kinds."""
        return list(self._providers)

    def health(self) -> dict[str, bool]:
        return {kind.value: provider.health_check() for kind, provider in self._providers.items()}


def _factories(settings: Settings) -> dict[ProviderKind, Callable[[], BaseProvider]]:
    from app.providers.anthropic_provider import AnthropicProvider
    from app.providers.groq_provider import GroqProvider
    from app.providers.mock_provider import MockProvider

    factories: dict[ProviderKind, Callable[[], BaseProvider]] = {
        ProviderKind.MOCK: lambda: MockProvider(settings.mock_latency_ms),
    }
    if settings.groq_api_key:
        factories[ProviderKind.GROQ] = lambda: GroqProvider(settings)
    if settings.anthropic_api_key:
        factories[ProviderKind.ANTHROPIC] = lambda: AnthropicProvider(settings)
    return factories


def resolve_primary(settings: Settings, enabled: list[ProviderKind]) -> ProviderKind:
    """Configured primary if enabled, else the first enabled real backend, else the mock."""
    if settings.llm_primary_provider:
        configured = ProviderKind(settings.llm_primary_provider)
        if configured in enabled:
            return configured
        logger.warning(f"Configured primary provider '{configured}' is not enabled (missing API key?)")
    for kind in REAL_BACKENDS:
        if kind in enabled:
            return kind
    logger.warning("No language-model backend configured, falling back to the mock provider")
    return ProviderKind.MOCK


def build_providers(settings: Settings) -> ProviderSet:
    """Instantiate every enabled backend and pick the primary."""
    providers = {kind: factory() for kind, factory in _factories(settings).items()}
    primary = resolve_primary(settings, list(providers))
    logger.info(f"Providers enabled: {', '.join(providers)}; primary: {primary}")
    return ProviderSet(providers, primary)
