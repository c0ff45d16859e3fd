"""FastAPI dependencies for DI (services bundle, background runner, caller identity).

The services bundle and the runner are built once per process; tests replace
them through ``app.dependency_overrides``.
"""

from functools import lru_cache

from fastapi import Header, HTTPException

from app.core.settings import get_settings
from app.services.container import Services, build_services
from app.workers.job_runner import BackgroundParseRunner


@lru_cache(maxsize=1)
def get_services() -> Services:
    """Provide the process-wide services bundle."""
    return build_services(get_settings())


@lru_cache(maxsize=1)
def get_runner() -> BackgroundParseRunner:
    """Provide the background parse runner bound to the services bundle."""
    services = get_services()
    return BackgroundParseRunner(services.orchestrator, services.settings.parse_workers)


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity, set by the upstream authentication layer."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id
