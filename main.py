"""Main entrypoint and application factory for the Spend Parser API.

This module initializes the FastAPI application, configures logging, creates the database tables and starts
the background scheduler on startup, and exposes the Scalar API reference endpoint for interactive OpenAPI
documentation. It also includes the main entrypoint for running the app with Uvicorn.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from scalar_fastapi import get_scalar_api_reference

from app.api.dependencies import get_runner, get_services
from app.api.routes import router
from app.core.settings import get_settings
from app.core.utils import get_logger
from app.workers.job_runner import Scheduler


# --- Logging Setup ---
def setup_logging() -> None:
    """Configure the project logger level and its persistent (not colorized) log file."""
    settings = get_settings()
    log_path = Path(settings.log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logger = get_logger("spend-parser")
    logger.setLevel(settings.log_level.upper())
    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(settings.log_level.upper())
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(file_handler)
    logger.propagate = False


setup_logging()
logger = get_logger("spend-parser.main")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Lifespan event handler: build services (creating tables), run the scheduler, stop workers on exit."""
    _ = app  # Silence unused argument warning
    services = get_services()
    settings = services.settings
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = Scheduler(
            services.orchestrator,
            services.events,
            services.cache,
            services.store,
            sweep_interval_seconds=settings.sweep_interval_seconds,
            cleanup_interval_seconds=settings.cleanup_interval_seconds,
            user_limit=settings.sweep_user_limit,
            events_per_user=settings.sweep_events_per_user,
            cache_max_age_days=settings.cache_max_age_days,
            summaries=services.summaries,
            summary_interval_seconds=settings.summary_interval_seconds,
            summary_user_limit=settings.summary_user_limit,
        )
        scheduler.start()
    logger.info(f"Spend Parser started ({settings.environment}), primary provider: {services.providers.primary_kind}")
    yield
    if scheduler is not None:
        scheduler.stop()
    get_runner().shutdown(wait=False)


app = FastAPI(
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    title="Spend Parser API",
    description="""
    The Spend Parser API turns captured payment notifications into structured, categorized transactions.

    **Endpoints:**
    - `POST /events/ingest`: Ingest a batch of notification events; parsing runs in the background.
    - `POST /events/retry-failed`: Reset the caller's failed events to pending.
    - `GET /events/{{event_id}}`: Parse status of an event.
    - `GET /transactions/recent`: Recent transactions with pagination.
    - `GET /llm/health`: Provider health.
    - `GET /llm/budget`: Daily spend against budgets.
    - `GET /cache/stats`: Parse cache statistics.
    - `GET /summary/latest`: Most recently computed weekly summary.
    - `POST /summary/compute`: Compute and store the current week's summary.
    - `GET /health`: Health check endpoint.
    - `GET /scalar`: Interactive Scalar OpenAPI documentation.
    """,
    version="1.0.0",
)
app.include_router(router)


@app.get("/scalar", include_in_schema=False)
async def scalar_docs() -> JSONResponse:
    """Return Scalar API reference."""
    return get_scalar_api_reference(openapi_url=app.openapi_url, title=app.title)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("main:app", host=settings.server_host, port=settings.server_port, reload=True)
