"""FastAPI endpoints for the Spend Parser API.

This module defines the API routes for ingesting notification events, retrying failed parses, reading
event status, recent transactions and weekly summaries, and inspecting provider health, budgets and cache
statistics. It wires together the services bundle and the background parse runner.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.dependencies import get_runner, get_services, get_user_id
from app.core.models import (
    EventStatus,
    IngestRequest,
    IngestResponse,
    IngestStatus,
    Pagination,
    RecentTransactionsResponse,
    RetryResponse,
    WeeklySummary,
)
from app.core.utils import get_logger
from app.services.container import Services
from app.workers.job_runner import BackgroundParseRunner

router = APIRouter()
logger = get_logger("spend-parser.api")


@router.post(
    "/events/ingest",
    response_model=IngestResponse,
    response_model_by_alias=True,
    summary="Ingest a batch of captured notification events",
    description=(
        "Store up to 100 notification events for the calling user. "
        "Events repeating the same text within an hour of an already stored event are reported as duplicates. "
        "Parsing of the user's pending events starts in the background; the response never waits for it.\n\n"
        "**Request:**\n"
        "- Header: `X-User-Id`\n"
        "- Body: `{ 'events': [{ 'eventId', 'deviceId', 'appSource', 'postedAt', 'textRedacted', "
        "'textRaw'?, 'locale'?, 'timezone'? }] }`\n\n"
        "**Response:**\n"
        "- 200 OK: counts per outcome plus one detail per event.\n"
        "- 401 Unauthorized: missing `X-User-Id`.\n"
        "- 422 Unprocessable Entity: invalid body."
    ),
    response_description="Per-event ingestion outcome.",
    responses={
        200: {
            "description": "Batch processed.",
            "content": {
                "application/json": {
                    "example": {
                        "success": True,
                        "accepted": 1,
                        "duplicates": 1,
                        "errors": 0,
                        "details": [
                            {"eventId": "evt-1", "status": "accepted", "error": None},
                            {"eventId": "evt-2", "status": "duplicate", "error": None},
                        ],
                    }
                }
            },
        },
        401: {"description": "Missing caller identity."},
    },
)
def ingest_events(
    body: IngestRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
    runner: BackgroundParseRunner = Depends(get_runner),
) -> IngestResponse:
    """Store a batch of events and trigger background parsing."""
    logger.info(f"Received {len(body.events)} events from user {user_id}")
    details = services.events.ingest_events(user_id, body.events)
    runner.submit(user_id, services.settings.ingest_parse_limit)
    return IngestResponse(
        accepted=sum(1 for item in details if item.status is IngestStatus.ACCEPTED),
        duplicates=sum(1 for item in details if item.status is IngestStatus.DUPLICATE),
        errors=sum(1 for item in details if item.status is IngestStatus.ERROR),
        details=details,
    )


@router.post(
    "/events/retry-failed",
    response_model=RetryResponse,
    summary="Retry failed events",
    description=(
        "Reset every FAILED event of the calling user to PENDING and clear its error message. "
        "The events are parsed again by the next background run."
    ),
    response_description="Number of events reset.",
    responses={200: {"content": {"application/json": {"example": {"retried": 3}}}}},
)
def retry_failed(
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
    runner: BackgroundParseRunner = Depends(get_runner),
) -> RetryResponse:
    """Reset failed events to pending."""
    retried = services.events.retry_failed_events(user_id)
    if retried:
        runner.submit(user_id, services.settings.ingest_parse_limit)
    return RetryResponse(retried=retried)


@router.get(
    "/events/{event_id}",
    response_model=EventStatus,
    response_model_by_alias=True,
    summary="Get event parse status",
    description=(
        "Return the parse status of one of the caller's events.\n\n"
        "**Path parameter:**\n"
        "- `event_id`: the device-assigned event identifier.\n\n"
        "**Response:**\n"
        "- 200 OK: status, confidence and error, if any.\n"
        "- 404 Not Found: unknown event or an event of another user."
    ),
    responses={
        200: {
            "content": {
                "application/json": {
                    "example": {
                        "eventId": "evt-1",
                        "appSource": "com.google.android.apps.nbu.paisa.user",
                        "postedAt": "2025-01-05T10:30:00.000Z",
                        "parseStatus": "PARSED",
                        "parseConfidence": 1.0,
                        "parseError": None,
                    }
                }
            }
        },
        404: {
            "description": "Event not found.",
            "content": {"application/json": {"example": {"detail": "Event not found"}}},
        },
    },
)
def get_event(
    event_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> EventStatus:
    """Get the status of an event."""
    event = services.events.get_event(user_id, event_id)
    if event is None:
        raise HTTPException(404, "Event not found")
    return event


@router.get(
    "/transactions/recent",
    response_model=RecentTransactionsResponse,
    response_model_by_alias=True,
    summary="List recent transactions",
    description="Newest transactions of the calling user first, with limit/offset pagination.",
)
def recent_transactions(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> RecentTransactionsResponse:
    """List the caller's recent transactions."""
    transactions = services.events.get_recent_transactions(user_id, limit, offset)
    return RecentTransactionsResponse(
        transactions=transactions,
        pagination=Pagination(limit=limit, offset=offset, has_more=len(transactions) == limit),
    )


@router.get(
    "/llm/health",
    summary="Provider health",
    description="Health of every enabled language-model provider and the name of the primary one.",
    responses={
        200: {
            "content": {
                "application/json": {"example": {"primary": "groq", "providers": {"mock": True, "groq": True}}}
            }
        }
    },
)
def llm_health(services: Services = Depends(get_services)) -> dict:
    """Provider health map."""
    return {"primary": services.providers.primary_kind.value, "providers": services.providers.health()}


@router.get(
    "/llm/budget",
    summary="Daily language-model spend",
    description="Global and caller daily spend against their budgets, in USD.",
)
def llm_budget(user_id: str = Depends(get_user_id), services: Services = Depends(get_services)) -> dict:
    """Daily budget stats."""
    return {
        "global": services.cost_guard.get_daily_stats(),
        "user": services.cost_guard.get_user_daily_stats(user_id),
    }


@router.get(
    "/cache/stats",
    summary="Parse cache statistics",
    description="Entry count and hit statistics of the durable parse cache.",
    responses={
        200: {
            "content": {
                "application/json": {"example": {"total_entries": 42, "total_hits": 128, "avg_hits_per_entry": 3.05}}
            }
        }
    },
)
def cache_stats(services: Services = Depends(get_services)) -> dict:
    """Cache statistics."""
    return services.cache.get_stats()


SUMMARY_EXAMPLE = {
    "weekStart": "2024-12-29T18:30:00.000Z",
    "weekEnd": "2025-01-05T18:30:00.000Z",
    "totals": {"totalSpent": 1519.5, "totalReceived": 50000.0, "netFlow": 48480.5, "transactionCount": 5},
    "topMerchants": [{"merchant": "swiggy", "total": 750.5, "count": 2}],
    "categories": [{"category": "FOOD_DINING", "total": 750.5, "count": 2}],
    "subscriptions": [{"merchant": "swiggy", "total": 750.5, "count": 2}],
    "transactionCount": 5,
}


@router.get(
    "/summary/latest",
    response_model=WeeklySummary,
    response_model_by_alias=True,
    summary="Get the latest weekly summary",
    description=(
        "Return the caller's most recently computed weekly summary. Weeks run Monday to Monday in IST; "
        "`weekEnd` is exclusive.\n\n"
        "**Response:**\n"
        "- 200 OK: totals, top merchants, category breakdown and recurring payments.\n"
        "- 404 Not Found: no summary has been computed for the caller yet."
    ),
    responses={
        200: {"content": {"application/json": {"example": SUMMARY_EXAMPLE}}},
        404: {
            "description": "No summary yet.",
            "content": {
                "application/json": {"example": {"detail": "No summary available. Process some transactions first."}}
            },
        },
    },
)
def latest_summary(
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> WeeklySummary:
    """Latest stored weekly summary."""
    summary = services.summaries.get_latest_summary(user_id)
    if summary is None:
        raise HTTPException(404, "No summary available. Process some transactions first.")
    return summary


@router.post(
    "/summary/compute",
    response_model=WeeklySummary,
    response_model_by_alias=True,
    summary="Compute the current week's summary",
    description=(
        "Aggregate the caller's transactions of the current week, store the result and return it. "
        "Recomputing the same week replaces the stored summary."
    ),
    responses={200: {"content": {"application/json": {"example": SUMMARY_EXAMPLE}}}},
)
def compute_summary(
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
) -> WeeklySummary:
    """Compute and store the current week's summary."""
    logger.info(f"Computing weekly summary for user {user_id}")
    return services.summaries.compute_weekly_summary(user_id)


@router.get(
    "/health",
    summary="Health check",
    description="Simple health check endpoint. Returns status ok.",
    response_description="Status ok.",
    responses={200: {"description": "API is healthy.", "content": {"application/json": {"example": {"status": "ok"}}}}},
)
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}
