"""Fan domain events out to subscribed webhooks, one delivery job each."""

import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from helpdesk.models.webhook import Webhook
from helpdesk.services.events import DomainEvent, EventKind
from helpdesk.services.payloads import MessagePayloadBuilder, TicketPayloadBuilder
from helpdesk.services.queue import JobQueue

logger = structlog.get_logger()


class WebhookDispatcher:
    """Builds the payload once and enqueues ``deliver_webhook`` per subscriber.

    Format transformation (Discord/Slack) happens at send time, so every
    subscriber gets an identical payload here. Dispatch never raises: a
    failure is logged and reported as zero jobs.
    """

    def __init__(self, session: Session, queue: JobQueue, tickets: TicketPayloadBuilder | None = None):
        self.session = session
        self.queue = queue
        self.tickets = tickets or TicketPayloadBuilder()
        self.messages = MessagePayloadBuilder(self.tickets)

    def ticket_created(self, ticket) -> int:
        return self._build_and_dispatch(
            EventKind.TICKET_CREATED, ticket.organization_id, self.tickets.for_created, ticket,
        )

    def ticket_status_changed(self, ticket, old_status, new_status) -> int:
        return self._build_and_dispatch(
            EventKind.TICKET_STATUS_CHANGED, ticket.organization_id,
            self.tickets.for_status_changed, ticket, old_status, new_status,
        )

    def ticket_priority_changed(self, ticket, old_priority, new_priority) -> int:
        return self._build_and_dispatch(
            EventKind.TICKET_PRIORITY_CHANGED, ticket.organization_id,
            self.tickets.for_priority_changed, ticket, old_priority, new_priority,
        )

    def ticket_assigned(self, ticket, old_assignee, new_assignee) -> int:
        return self._build_and_dispatch(
            EventKind.TICKET_ASSIGNED, ticket.organization_id,
            self.tickets.for_assigned, ticket, old_assignee, new_assignee,
        )

    def ticket_sla_changed(self, ticket, old_sla, new_sla) -> int:
        return self._build_and_dispatch(
            EventKind.TICKET_SLA_CHANGED, ticket.organization_id,
            self.tickets.for_sla_changed, ticket, old_sla, new_sla,
        )

    def message_created(self, message) -> int:
        return self._build_and_dispatch(
            EventKind.MESSAGE_CREATED, message.organization_id, self.messages.for_created, message,
        )

    def reply_received(self, message) -> int:
        return self._build_and_dispatch(
            EventKind.REPLY_RECEIVED, message.organization_id, self.messages.for_reply_received, message,
        )

    def _build_and_dispatch(self, kind: EventKind, organization_id: uuid.UUID, build, *args) -> int:
        try:
            payload = build(*args)
        except Exception as e:
            logger.error("webhook_payload_build_failed", event=kind.value,
                         organization_id=str(organization_id), error=str(e))
            return 0
        return self.dispatch(DomainEvent(kind, organization_id, payload))

    def subscribers(self, organization_id: uuid.UUID, kind: EventKind) -> list[Webhook]:
        # Internal fan-out: the organization id comes from the event, not a request scope
        webhooks = self.session.execute(
            select(Webhook).where(
                Webhook.organization_id == organization_id,
                Webhook.is_active == True,  # noqa: E712
            ).order_by(Webhook.created_at)
        ).scalars().all()
        return [w for w in webhooks if w.subscribes_to(kind)]

    def dispatch(self, event: DomainEvent) -> int:
        try:
            webhooks = self.subscribers(event.organization_id, event.kind)
        except Exception as e:
            logger.error("webhook_subscriber_lookup_failed", event=event.kind.value,
                         organization_id=str(event.organization_id), error=str(e))
            return 0

        payload = dict(event.payload)
        enqueued = 0
        for webhook in webhooks:
            try:
                self.queue.webhook(str(webhook.id), event.kind.value, payload)
                enqueued += 1
            except Exception as e:
                logger.error("failed_to_enqueue_webhook", webhook_id=str(webhook.id),
                             event=event.kind.value, error=str(e))

        if enqueued:
            logger.info("webhooks_dispatched", event=event.kind.value,
                        organization_id=str(event.organization_id), count=enqueued)
        return enqueued
