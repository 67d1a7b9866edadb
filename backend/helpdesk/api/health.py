"""Health check and metrics endpoints."""

import redis as redis_lib
from fastapi import APIRouter, Response
from prometheus_client import Counter, generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text

from helpdesk.config import settings
from helpdesk.database import async_session
from helpdesk.schemas.common import HealthResponse

router = APIRouter(tags=["health"])

# Prometheus metrics
WEBHOOK_DELIVERIES = Counter("webhook_deliveries_total", "Outbound webhook delivery attempts", ["format", "outcome"])
NOTIFICATIONS_SENT = Counter("notifications_sent_total", "Notification sends per channel", ["channel", "outcome"])
INBOUND_WEBHOOKS = Counter("inbound_webhooks_total", "Inbound provider webhooks", ["provider", "outcome"])
ERRORS = Counter("errors_total", "Total errors", ["type"])


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    db_status = "ok"
    redis_status = "ok"

    # Check DB
    try:
        async with async_session() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        db_status = "error"

    # Check Redis
    try:
        r = redis_lib.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
    except Exception:
        redis_status = "error"

    overall = "healthy" if db_status == "ok" and redis_status == "ok" else "degraded"

    return HealthResponse(status=overall, db=db_status, redis=redis_status)


@router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
