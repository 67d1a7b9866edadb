"""Delivery log viewer and webhook test endpoints."""

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.api.health import ERRORS
from helpdesk.database import get_db
from helpdesk.middleware.auth import verify_admin_token
from helpdesk.models.email_channel import EmailChannelLog
from helpdesk.models.webhook import Webhook, WebhookDelivery
from helpdesk.schemas.common import EmailDeliveryLogResponse, WebhookDeliveryResponse, WebhookTestResponse
from helpdesk.services.webhooks import WebhookService

logger = structlog.get_logger()
router = APIRouter(tags=["deliveries"])


def get_webhook_service() -> WebhookService:
    return WebhookService()


@router.get("/delivery-logs/email", response_model=list[EmailDeliveryLogResponse])
async def list_email_logs(
    email_channel_id: UUID | None = None,
    ticket_id: UUID | None = None,
    status: str | None = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    admin: str = Depends(verify_admin_token),
    db: AsyncSession = Depends(get_db),
):
    """List email send logs, newest first."""
    query = select(EmailChannelLog).order_by(EmailChannelLog.created_at.desc())

    if email_channel_id:
        query = query.where(EmailChannelLog.email_channel_id == email_channel_id)
    if ticket_id:
        query = query.where(EmailChannelLog.ticket_id == ticket_id)
    if status:
        query = query.where(EmailChannelLog.status == status)

    query = query.offset((page - 1) * per_page).limit(per_page)

    result = await db.execute(query)
    return [EmailDeliveryLogResponse.model_validate(log) for log in result.scalars().all()]


@router.get("/delivery-logs/webhooks", response_model=list[WebhookDeliveryResponse])
async def list_webhook_deliveries(
    webhook_id: UUID | None = None,
    event_type: str | None = None,
    success: bool | None = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    admin: str = Depends(verify_admin_token),
    db: AsyncSession = Depends(get_db),
):
    """List webhook delivery attempts, newest first."""
    query = select(WebhookDelivery).order_by(WebhookDelivery.created_at.desc())

    if webhook_id:
        query = query.where(WebhookDelivery.webhook_id == webhook_id)
    if event_type:
        query = query.where(WebhookDelivery.event_type == event_type)
    if success is not None:
        query = query.where(WebhookDelivery.success == success)

    query = query.offset((page - 1) * per_page).limit(per_page)

    result = await db.execute(query)
    return [WebhookDeliveryResponse.model_validate(d) for d in result.scalars().all()]


@router.post("/webhooks/{webhook_id}/test", response_model=WebhookTestResponse)
async def test_webhook(
    webhook_id: UUID,
    admin: str = Depends(verify_admin_token),
    db: AsyncSession = Depends(get_db),
    service: WebhookService = Depends(get_webhook_service),
):
    """Send a sample ticket.created delivery to the webhook."""
    result = await db.execute(select(Webhook).where(Webhook.id == webhook_id))
    webhook = result.scalar_one_or_none()
    if not webhook:
        raise HTTPException(status_code=404, detail="Webhook not found")

    outcome = await service.send_test(webhook)
    if not outcome.success:
        ERRORS.labels(type="webhook_test").inc()
        logger.warning("webhook_test_failed", webhook_id=str(webhook_id), error=outcome.error)

    return WebhookTestResponse(
        success=outcome.success,
        status=outcome.status,
        duration_ms=outcome.duration_ms,
        error=outcome.error,
    )
