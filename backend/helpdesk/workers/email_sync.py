"""Mailbox sync job: imports new mail from Microsoft 365 and Gmail channels.

Each fetched message becomes a contact reply on the ticket it belongs to,
or a new ticket when it matches none. Matching tries, in order, the
X-Ticket-ID header we stamp on outgoing mail, the provider's thread id,
In-Reply-To and References against known Message-IDs, and finally a ticket
number in the subject. A message whose Message-ID is already stored is
not imported twice.

After import the channel's post-import action runs. Moving a message gives
it a new id in Microsoft Graph, so the id the provider returns is written
back to the message and the ticket.
"""

import re
from datetime import timedelta

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from helpdesk.adapters.factory import EmailProviderFactory
from helpdesk.config import settings
from helpdesk.database import utcnow
from helpdesk.models.email_channel import EmailChannel, EmailChannelLog, EmailProviderType, PostImportAction
from helpdesk.models.message import Message
from helpdesk.models.ticket import Ticket
from helpdesk.models.user import Contact
from helpdesk.services.delivery import ProviderConfigurationError, ProviderRequestError
from helpdesk.services.email_threading import base_subject, clean_message_id, extract_ticket_number
from helpdesk.services.events import OperationContext
from helpdesk.services.queue import JobQueue
from helpdesk.services.tickets import TicketService
from helpdesk.workers.base import get_sync_session, load, run_async

logger = structlog.get_logger()

SUBJECT_LENGTH = 255
OVERLAP = timedelta(hours=1)  # Re-read the last hour; duplicates are skipped

# Message-IDs of our own notifications: <ticket-{uuid}-notif-{token}@domain>
_NOTIFICATION_ID = re.compile(r"ticket-([0-9a-fA-F-]{36})-notif")
_TICKET_HEADERS = ("X-Ticket-ID", "X-Ticket-Reference")


def contact_name_from_email(address: str) -> str:
    local = address.split("@", 1)[0]
    return re.sub(r"[._-]+", " ", local).strip().title() or address


def _header(data: dict, name: str) -> str | None:
    headers = data.get("headers") or {}
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted and value:
            return str(value).strip()
    return None


def _imported_message(session: Session, channel: EmailChannel, internet_id: str, provider_id: str | None):
    conditions = []
    if internet_id:
        conditions.append(Message.email_message_id == internet_id)
    if provider_id:
        conditions.append(Message.email_provider_id == provider_id)
    if not conditions:
        return None
    return session.execute(
        select(Message).where(Message.organization_id == channel.organization_id, or_(*conditions))
    ).scalars().first()


def _find_or_create_contact(session: Session, channel: EmailChannel, address: str, name: str | None) -> Contact:
    address = address.strip().lower()
    contact = session.execute(
        select(Contact).where(
            Contact.organization_id == channel.organization_id,
            func.lower(Contact.email) == address,
        )
    ).scalars().first()
    if contact is None:
        contact = Contact(organization_id=channel.organization_id, email=address,
                          name=name or contact_name_from_email(address))
        session.add(contact)
        session.flush()
        logger.info("email_contact_created", contact_id=str(contact.id), channel_id=str(channel.id))
    return contact


def _ticket_by_message_ids(session: Session, channel: EmailChannel, message_ids: list[str]) -> Ticket | None:
    for message_id in message_ids:
        match = _NOTIFICATION_ID.search(message_id)
        if match:
            ticket = load(session, Ticket, match.group(1))
            if ticket is not None and ticket.organization_id == channel.organization_id:
                return ticket

    if not message_ids:
        return None
    ticket = session.execute(
        select(Ticket).where(
            Ticket.organization_id == channel.organization_id,
            Ticket.email_original_message_id.in_(message_ids),
        )
    ).scalars().first()
    if ticket is not None:
        return ticket
    return session.execute(
        select(Ticket).join(Message, Message.ticket_id == Ticket.id).where(
            Ticket.organization_id == channel.organization_id,
            Message.email_message_id.in_(message_ids),
        )
    ).scalars().first()


def find_ticket(session: Session, channel: EmailChannel, data: dict) -> Ticket | None:
    """The ticket an incoming message replies to, if any."""
    org_id = channel.organization_id

    for name in _TICKET_HEADERS:
        reference = _header(data, name)
        if not reference:
            continue
        ticket = session.execute(
            select(Ticket).where(Ticket.organization_id == org_id, Ticket.ticket_number == reference)
        ).scalars().first()
        if ticket is None:
            ticket = load(session, Ticket, reference)
            if ticket is not None and ticket.organization_id != org_id:
                ticket = None
        if ticket is not None:
            return ticket

    thread_id = data.get("conversation_id") or data.get("thread_id")
    if thread_id:
        ticket = session.execute(
            select(Ticket).where(
                Ticket.organization_id == org_id,
                Ticket.email_channel_id == channel.id,
                Ticket.email_thread_id == thread_id,
            ).order_by(Ticket.created_at.desc())
        ).scalars().first()
        if ticket is not None:
            return ticket

    in_reply_to = clean_message_id(data.get("in_reply_to"))
    if in_reply_to:
        ticket = _ticket_by_message_ids(session, channel, [in_reply_to])
        if ticket is not None:
            return ticket

    references = [clean_message_id(r) for r in data.get("references") or []]
    ticket = _ticket_by_message_ids(session, channel, [r for r in reversed(references) if r])
    if ticket is not None:
        return ticket

    number = extract_ticket_number(data.get("subject"))
    if number:
        return session.execute(
            select(Ticket).where(Ticket.organization_id == org_id, func.upper(Ticket.ticket_number) == number)
        ).scalars().first()
    return None


def import_message(session: Session, service: TicketService, channel: EmailChannel, data: dict) -> Message:
    """Add a fetched message to its ticket, opening a new ticket when it belongs to none."""
    ctx = OperationContext(organization_id=channel.organization_id)
    internet_id = clean_message_id(data.get("internet_message_id")) or None
    contact = _find_or_create_contact(session, channel, data["from_email"], data.get("from_name"))
    body = data.get("body_text") or re.sub(r"<[^>]+>", "", data.get("body_html") or "").strip()
    thread_id = data.get("conversation_id") or data.get("thread_id")

    ticket = find_ticket(session, channel, data)
    if ticket is None:
        subject = base_subject(data.get("subject"))[:SUBJECT_LENGTH] or "(no subject)"
        ticket = service.create_ticket(
            ctx, subject,
            contact_id=contact.id,
            email_channel_id=channel.id,
            email_thread_id=thread_id,
            email_thread_index=data.get("thread_index"),
            email_original_message_id=internet_id,
            email_provider_message_id=data["id"],
        )
    else:
        if not ticket.email_thread_id and thread_id:
            ticket.email_thread_id = thread_id
        if not ticket.email_thread_index and data.get("thread_index"):
            ticket.email_thread_index = data["thread_index"]

    return service.add_message(
        ctx, ticket, body,
        is_from_contact=True,
        contact_id=contact.id,
        body_html=data.get("body_html"),
        email_message_id=internet_id,
        email_provider_id=data["id"],
    )


def apply_post_import_action(provider, channel: EmailChannel, provider_id: str) -> str | None:
    """Run the channel's post-import action. Returns the message's new mailbox id when it changed."""
    action = channel.post_import_action or PostImportAction.NOTHING.value
    if action == PostImportAction.ARCHIVE.value:
        return run_async(provider.archive_message(channel, provider_id))
    if action == PostImportAction.MOVE_TO_FOLDER.value:
        if not channel.post_import_folder:
            logger.warning("email_post_import_folder_missing", channel_id=str(channel.id))
            return None
        return run_async(provider.move_message(channel, provider_id, channel.post_import_folder))
    if action == PostImportAction.DELETE.value:
        run_async(provider.delete_message(channel, provider_id))
    return None


def _store_new_provider_id(session: Session, message: Message, old_id: str, new_id: str | None) -> None:
    if not new_id or new_id == old_id:
        return
    message.email_provider_id = new_id
    ticket = message.ticket
    if ticket is not None and ticket.email_provider_message_id == old_id:
        ticket.email_provider_message_id = new_id
    session.commit()
    logger.debug("email_provider_id_updated", message_id=str(message.id), provider_id=new_id)


def sync_email_channel(channel_id: str, queue: JobQueue | None = None,
                       provider_factory: EmailProviderFactory | None = None) -> dict:
    session = get_sync_session()
    try:
        channel = load(session, EmailChannel, channel_id)
        if channel is None or not channel.is_active:
            logger.warning("email_channel_unavailable", channel_id=channel_id)
            return {"skipped": True}
        if channel.provider == EmailProviderType.SMTP.value or not channel.oauth_token:
            logger.warning("email_channel_not_syncable", channel_id=channel_id, provider=channel.provider)
            return {"skipped": True}

        started = utcnow()
        try:
            provider = (provider_factory or EmailProviderFactory()).make(session, channel)
            since = (channel.last_sync_at - OVERLAP if channel.last_sync_at
                     else started - timedelta(hours=settings.email_sync_lookback_hours))
            fetched = run_async(provider.fetch_messages(channel, since))
        except (ProviderConfigurationError, ProviderRequestError) as e:
            session.rollback()
            channel.last_sync_error = str(e)
            session.add(EmailChannelLog(email_channel_id=channel.id, type="sync", status="failed", error=str(e)))
            session.commit()
            logger.error("email_sync_failed", channel_id=channel_id, error=str(e))
            raise

        service = TicketService(session, queue or JobQueue())
        own_address = channel.email_address.lower()
        counts = {"fetched": len(fetched), "imported": 0, "duplicates": 0, "skipped": 0, "failed": 0}

        for data in fetched:
            provider_id = data.get("id")
            if not provider_id or not data.get("from_email"):
                counts["skipped"] += 1
                continue
            if data["from_email"].lower() == own_address:
                logger.debug("email_own_message_skipped", channel_id=channel_id, provider_id=provider_id)
                counts["skipped"] += 1
                continue

            internet_id = clean_message_id(data.get("internet_message_id"))
            try:
                message = _imported_message(session, channel, internet_id, provider_id)
                if message is not None:
                    logger.debug("email_message_duplicate", channel_id=channel_id, message_id=internet_id)
                    counts["duplicates"] += 1
                else:
                    message = import_message(session, service, channel, data)
                    counts["imported"] += 1
                    logger.info("email_message_imported", channel_id=channel_id, message_id=str(message.id),
                                ticket_id=str(message.ticket_id))
            except Exception as e:
                session.rollback()
                counts["failed"] += 1
                logger.error("email_message_import_failed", channel_id=channel_id, provider_id=provider_id,
                             error=str(e))
                continue

            old_id = message.email_provider_id or provider_id
            try:
                new_id = apply_post_import_action(provider, channel, old_id)
            except (ProviderConfigurationError, ProviderRequestError) as e:
                logger.warning("email_post_import_action_failed", channel_id=channel_id, provider_id=old_id,
                               action=channel.post_import_action, error=str(e))
                continue
            _store_new_provider_id(session, message, old_id, new_id)

        channel.last_sync_at = started
        channel.last_sync_error = None
        session.add(EmailChannelLog(email_channel_id=channel.id, type="sync", status="success"))
        session.commit()
        logger.info("email_sync_completed", channel_id=channel_id, **counts)
        return counts
    finally:
        session.close()


def sync_email_channels(queue: JobQueue | None = None) -> int:
    """Cron entry: one sync job per active mailbox channel."""
    queue = queue or JobQueue()
    session = get_sync_session()
    try:
        channels = session.execute(
            select(EmailChannel.id).where(
                EmailChannel.is_active == True,  # noqa: E712
                EmailChannel.provider != EmailProviderType.SMTP.value,
            )
        ).scalars().all()
    finally:
        session.close()

    enqueued = 0
    for channel_id in channels:
        try:
            queue.email_sync(str(channel_id))
            enqueued += 1
        except Exception as e:
            logger.error("email_sync_enqueue_failed", channel_id=str(channel_id), error=str(e))
    logger.info("email_sync_scheduled", channels=enqueued)
    return enqueued
