"""Inbound Meta (Instagram / Facebook Messenger) webhook endpoints."""

import json

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.health import ERRORS, INBOUND_WEBHOOKS
from helpdesk.database import get_db
from helpdesk.models.notification import MessagingChannel
from helpdesk.models.organization import OrganizationIntegration
from helpdesk.services.queue import JobQueue
from helpdesk.services.signatures import verify_token, verify_webhook_signature

logger = structlog.get_logger()
router = APIRouter(prefix="/webhooks", tags=["messaging"])

META = "meta"


def get_job_queue() -> JobQueue:
    return JobQueue()


def hub_param(request: Request, name: str) -> str | None:
    """Meta sends `hub.mode`; some proxies and PHP-style frontends rewrite it to `hub_mode`."""
    params = request.query_params
    return params.get(f"hub.{name}") or params.get(f"hub_{name}")


def page_ids(payload) -> list[str]:
    if not isinstance(payload, dict):
        return []
    return [str(entry["id"]) for entry in payload.get("entry") or [] if isinstance(entry, dict) and entry.get("id")]


async def _meta_integration(db: AsyncSession, organization_id) -> OrganizationIntegration | None:
    result = await db.execute(
        select(OrganizationIntegration).where(
            OrganizationIntegration.organization_id == organization_id,
            OrganizationIntegration.integration == META,
            OrganizationIntegration.is_active == True,  # noqa: E712
        )
    )
    return result.scalars().first()


@router.get("/meta", response_class=PlainTextResponse)
async def verify_meta_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    """Subscription handshake: echo the challenge when the token matches an active integration."""
    hub_mode = hub_param(request, "mode")
    hub_verify_token = hub_param(request, "verify_token")
    hub_challenge = hub_param(request, "challenge")
    if hub_mode != "subscribe":
        raise HTTPException(status_code=403, detail="Invalid mode")
    if not hub_verify_token or not hub_challenge:
        raise HTTPException(status_code=400, detail="Missing verify token or challenge")

    result = await db.execute(
        select(OrganizationIntegration).where(
            OrganizationIntegration.integration == META,
            OrganizationIntegration.is_active == True,  # noqa: E712
        )
    )
    for integration in result.scalars().all():
        if verify_token(integration.credentials.get("webhook_verify_token"), hub_verify_token):
            INBOUND_WEBHOOKS.labels(provider=META, outcome="verified").inc()
            logger.info("meta_webhook_verified", organization_id=str(integration.organization_id))
            return PlainTextResponse(hub_challenge)

    INBOUND_WEBHOOKS.labels(provider=META, outcome="verify_failed").inc()
    logger.warning("meta_webhook_verify_failed")
    raise HTTPException(status_code=403, detail="Invalid verify token")


@router.post("/meta", response_class=PlainTextResponse)
async def receive_meta_webhook(
    request: Request,
    x_hub_signature_256: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
):
    """Signed message intake. Always answers 200 so Meta does not retry rejected payloads."""
    body = await request.body()
    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        payload = {}

    ids = page_ids(payload)
    if not ids:
        return PlainTextResponse("OK")

    result = await db.execute(
        select(MessagingChannel).where(
            MessagingChannel.external_id.in_(ids),
            MessagingChannel.is_active == True,  # noqa: E712
        )
    )
    channels = result.scalars().all()
    if not channels:
        INBOUND_WEBHOOKS.labels(provider=META, outcome="no_channel").inc()
        logger.info("meta_webhook_no_channel", page_ids=ids)
        return PlainTextResponse("OK")

    verified = []
    for channel in channels:
        integration = await _meta_integration(db, channel.organization_id)
        if verify_webhook_signature(body, x_hub_signature_256, integration):
            verified.append(channel)

    if not verified:
        INBOUND_WEBHOOKS.labels(provider=META, outcome="invalid_signature").inc()
        logger.warning("meta_webhook_invalid_signature", page_ids=ids)
        return PlainTextResponse("Invalid signature")

    for channel in verified:
        try:
            queue.messaging(str(channel.id), payload)
        except Exception as e:
            logger.error("failed_to_enqueue_messaging_webhook", channel_id=str(channel.id), error=str(e))
            ERRORS.labels(type="queue").inc()
            continue
        INBOUND_WEBHOOKS.labels(provider=META, outcome="accepted").inc()

    return PlainTextResponse("OK")
