"""Webhook delivery job: one attempt per run, RQ handles the retries."""

import structlog
from rq import get_current_job

from helpdesk.api.health import WEBHOOK_DELIVERIES
from helpdesk.config import settings
from helpdesk.models.webhook import Webhook, WebhookDelivery
from helpdesk.services.delivery import run_delivery
from helpdesk.services.events import EventKind
from helpdesk.services.webhooks import WebhookService
from helpdesk.workers.base import get_sync_session, load, run_async

logger = structlog.get_logger()


class WebhookDeliveryFailed(Exception):
    """Raised so RQ schedules the next attempt."""


def _attempt_info() -> tuple[int, bool]:
    """(attempt number, whether another attempt remains) for the running job."""
    job = get_current_job()
    retries_left = getattr(job, "retries_left", None) if job is not None else None
    if retries_left is None:
        return 1, False
    return max(1, settings.webhook_max_attempts - retries_left), retries_left > 0


def deliver_webhook(webhook_id: str, event: str, payload: dict, service: WebhookService | None = None):
    session = get_sync_session()
    try:
        webhook = load(session, Webhook, webhook_id)
        if webhook is None or not webhook.is_active:
            logger.info("webhook_delivery_skipped", webhook_id=webhook_id, event=event,
                        reason="missing" if webhook is None else "inactive")
            return None

        try:
            kind = EventKind(event)
        except ValueError:
            logger.error("webhook_delivery_unknown_event", webhook_id=webhook_id, event=event)
            return None

        attempt, can_retry = _attempt_info()
        service = service or WebhookService()
        result = run_delivery(run_async, service.deliver(webhook, kind, payload))

        session.add(WebhookDelivery(
            webhook_id=webhook.id,
            event_type=kind.value,
            payload=payload,
            response_status=result.status,
            response_body=result.body,
            duration_ms=result.duration_ms,
            attempt=attempt,
            success=result.success,
            error=result.error,
        ))

        if result.success:
            webhook.reset_failure_count()
            webhook.mark_as_triggered()
            session.commit()
            WEBHOOK_DELIVERIES.labels(format=webhook.format, outcome="success").inc()
            logger.info("webhook_delivered", webhook_id=webhook_id, event=event,
                        status=result.status, duration_ms=result.duration_ms, attempt=attempt)
            return result

        webhook.increment_failure_count()
        session.commit()
        WEBHOOK_DELIVERIES.labels(format=webhook.format, outcome="failed").inc()
        logger.warning("webhook_delivery_failed", webhook_id=webhook_id, event=event, attempt=attempt,
                       status=result.status, error=result.error, failure_count=webhook.failure_count)

        if webhook.was_auto_disabled():
            logger.warning("webhook_auto_disabled", webhook_id=webhook_id, failure_count=webhook.failure_count)
            return result

        if result.retryable and can_retry:
            raise WebhookDeliveryFailed(result.error)

        logger.error("webhook_delivery_permanently_failed", webhook_id=webhook_id, event=event,
                     attempt=attempt, error=result.error)
        return result
    finally:
        session.close()
