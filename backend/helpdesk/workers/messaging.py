"""Inbound Meta (Instagram / Facebook) messaging intake job.

The endpoint has already verified the signature; this job turns each text
message into a contact reply on the sender's open ticket, creating the
contact and ticket when needed. Adding the message goes through the
TicketService so notifications and webhooks fire as for any other reply.
"""

import structlog
from sqlalchemy import or_, select

from helpdesk.models.message import Message
from helpdesk.models.notification import MessagingChannel
from helpdesk.models.ticket import Status, Ticket
from helpdesk.models.user import Contact
from helpdesk.services.events import OperationContext
from helpdesk.services.queue import JobQueue
from helpdesk.services.tickets import TicketService
from helpdesk.workers.base import get_sync_session, load

logger = structlog.get_logger()

SUBJECT_LENGTH = 80


def parse_messaging_events(payload: dict, channel: MessagingChannel) -> list[dict]:
    """Text messages sent to the channel's page by someone other than the page itself."""
    events = []
    for entry in payload.get("entry") or []:
        if str(entry.get("id", "")) != channel.external_id:
            continue
        for event in entry.get("messaging") or []:
            message = event.get("message") or {}
            if message.get("is_echo") or not message.get("text"):
                continue
            sender_id = str((event.get("sender") or {}).get("id", ""))
            if not sender_id or sender_id == channel.external_id:
                continue
            events.append({
                "message_id": message.get("mid"),
                "sender_id": sender_id,
                "text": message["text"],
                "timestamp": event.get("timestamp"),
            })
    return events


def _find_or_create_contact(session, channel: MessagingChannel, sender_id: str) -> Contact:
    contact = session.execute(
        select(Contact).where(
            Contact.organization_id == channel.organization_id,
            Contact.external_id == sender_id,
        )
    ).scalars().first()
    if contact is None:
        contact = Contact(organization_id=channel.organization_id, external_id=sender_id)
        session.add(contact)
        session.flush()
        logger.info("messaging_contact_created", contact_id=str(contact.id), channel_id=str(channel.id))
    return contact


def _open_ticket(session, channel: MessagingChannel, contact: Contact) -> Ticket | None:
    return session.execute(
        select(Ticket)
        .outerjoin(Status, Status.id == Ticket.status_id)
        .where(
            Ticket.organization_id == channel.organization_id,
            Ticket.contact_id == contact.id,
            Ticket.messaging_channel_id == channel.id,
            or_(Ticket.status_id.is_(None), Status.is_closed == False),  # noqa: E712
        )
        .order_by(Ticket.created_at.desc())
    ).scalars().first()


def _already_imported(session, channel: MessagingChannel, message_id: str | None) -> bool:
    if not message_id:
        return False
    return session.execute(
        select(Message.id).where(
            Message.organization_id == channel.organization_id,
            Message.external_id == message_id,
        )
    ).first() is not None


def process_messaging_webhook(channel_id: str, payload: dict, queue: JobQueue | None = None) -> int:
    session = get_sync_session()
    try:
        channel = load(session, MessagingChannel, channel_id)
        if channel is None or not channel.is_active:
            logger.warning("messaging_channel_unavailable", channel_id=channel_id)
            return 0

        service = TicketService(session, queue or JobQueue())
        ctx = OperationContext(organization_id=channel.organization_id)
        imported = 0

        for event in parse_messaging_events(payload, channel):
            if _already_imported(session, channel, event["message_id"]):
                logger.debug("messaging_message_duplicate", message_id=event["message_id"])
                continue

            contact = _find_or_create_contact(session, channel, event["sender_id"])
            ticket = _open_ticket(session, channel, contact)
            if ticket is None:
                text = event["text"].strip()
                subject = text[:SUBJECT_LENGTH] + ("..." if len(text) > SUBJECT_LENGTH else "")
                ticket = service.create_ticket(
                    ctx, subject or f"{channel.provider.title()} message",
                    contact_id=contact.id, messaging_channel_id=channel.id,
                )

            service.add_message(
                ctx, ticket, event["text"],
                is_from_contact=True, contact_id=contact.id, external_id=event["message_id"],
            )
            imported += 1

        logger.info("messaging_webhook_processed", channel_id=channel_id, imported=imported)
        return imported
    finally:
        session.close()
