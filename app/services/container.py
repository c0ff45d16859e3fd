"""Wiring of the pipeline components into one explicitly scoped bundle.

Nothing here is a module-level singleton: the API builds one bundle at startup
and tests build an isolated bundle per test case.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from app.core.db import create_session_factory, get_engine, init_db
from app.core.settings import Settings
from app.providers.registry import ProviderSet, build_providers
from app.services.cache import ParseCache
from app.services.cost_guard import CostGuard
from app.services.events import EventService
from app.services.orchestrator import ParsingOrchestrator
from app.services.store import EphemeralStore, MemoryStore
from app.services.summary import SummaryService


@dataclass
class Services:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    store: EphemeralStore
    cache: ParseCache
    cost_guard: CostGuard
    providers: ProviderSet
    orchestrator: ParsingOrchestrator
    events: EventService
    summaries: SummaryService


def build_services(
    settings: Settings,
    *,
    engine: Engine | None = None,
    store: EphemeralStore | None = None,
    providers: ProviderSet | None = None,
    clock: Callable[[], float] = time.time,
) -> Services:
    """Build every component from settings; any collaborator can be supplied instead."""
    engine = engine or get_engine(settings.database_url)
    init_db(engine)
    session_factory = create_session_factory(engine)
    store = store or MemoryStore(clock)
    cache = ParseCache(store, session_factory, settings.cache_ttl_seconds)
    cost_guard = CostGuard(store, session_factory, settings, clock=clock)
    providers = providers or build_providers(settings)
    orchestrator = ParsingOrchestrator(cache, cost_guard, providers, session_factory, settings)
    events = EventService(session_factory, timedelta(minutes=settings.dedup_window_minutes))
    summaries = SummaryService(session_factory, settings.summary_utc_offset_minutes, clock)
    return Services(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        store=store,
        cache=cache,
        cost_guard=cost_guard,
        providers=providers,
        orchestrator=orchestrator,
        events=events,
        summaries=summaries,
    )
