"""Notification channels and the notifier that routes to them.

``TicketEmailChannel`` sends through the ticket's connected mailbox so
replies land back in the helpdesk. Every attempt that gets past the
eligibility checks writes exactly one ``EmailChannelLog`` row.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from helpdesk.adapters.factory import EmailProviderFactory
from helpdesk.adapters.providers import OutgoingNotification
from helpdesk.api.health import NOTIFICATIONS_SENT
from helpdesk.config import settings
from helpdesk.models.email_channel import EmailChannel, EmailChannelLog
from helpdesk.models.notification import InAppNotification
from helpdesk.models.ticket import Ticket
from helpdesk.models.user import User
from helpdesk.notifications.base import IN_APP, MAIL, ResolvesTicketContext
from helpdesk.notifications.templates import render
from helpdesk.services.delivery import DeliveryResult, run_delivery
from helpdesk.services.email_threading import EmailThreadingService, ThreadHeaders, ensure_ticket_number
from helpdesk.workers.base import run_async

logger = structlog.get_logger()


class TicketEmailChannel:
    def __init__(
        self,
        session: Session,
        provider_factory: EmailProviderFactory | None = None,
        threading: EmailThreadingService | None = None,
    ):
        self.session = session
        self.provider_factory = provider_factory or EmailProviderFactory()
        self.threading = threading or EmailThreadingService()

    @classmethod
    def create(cls, session, provider_factory=None, threading=None) -> "TicketEmailChannel":
        return cls(session, provider_factory, threading)

    def resolve_channel(self, ticket: Ticket) -> EmailChannel | None:
        """The ticket's own channel if active, else the default, else any active channel."""
        if ticket.email_channel_id and ticket.email_channel and ticket.email_channel.is_active:
            return ticket.email_channel
        return self.session.execute(
            select(EmailChannel)
            .where(EmailChannel.organization_id == ticket.organization_id, EmailChannel.is_active == True)  # noqa: E712
            .order_by(EmailChannel.is_default.desc(), EmailChannel.created_at)
        ).scalars().first()

    @staticmethod
    def recipient_address(recipient, to_email: str | None) -> str | None:
        if to_email:
            return to_email
        route = getattr(recipient, "route_notification_for_mail", None)
        if callable(route):
            address = route()
            if address:
                return address
        return getattr(recipient, "email", None)

    def send(self, recipient, notification) -> DeliveryResult | None:
        if not isinstance(notification, ResolvesTicketContext) or notification.ticket_context() is None:
            logger.warning("ticket_email_no_ticket", notification=notification.__class__.__name__,
                           recipient_id=str(getattr(recipient, "id", None)))
            return None
        ticket = notification.ticket_context()

        email = notification.to_ticket_email(recipient)
        if email is None:
            return None

        org_settings = ticket.organization.settings
        if org_settings is not None and org_settings.system_emails_enabled is False:
            logger.info("ticket_email_system_emails_disabled", ticket_id=str(ticket.id),
                        organization_id=str(ticket.organization_id))
            return None

        channel = self.resolve_channel(ticket)
        if channel is None:
            logger.warning("ticket_email_no_channel", notification=notification.__class__.__name__,
                           ticket_id=str(ticket.id), organization_id=str(ticket.organization_id),
                           ticket_email_channel_id=str(ticket.email_channel_id) if ticket.email_channel_id else None)
            return None

        to_email = self.recipient_address(recipient, email.to_email)
        if not to_email:
            logger.warning("ticket_email_no_recipient", notification=notification.__class__.__name__,
                           ticket_id=str(ticket.id), recipient_id=str(getattr(recipient, "id", None)))
            return None

        subject = ensure_ticket_number(email.subject, ticket.ticket_number)
        result = run_delivery(self._deliver, ticket, channel, recipient, email, to_email, subject)

        self.session.add(EmailChannelLog(
            email_channel_id=channel.id,
            type="send",
            status="success" if result.success else "failed",
            subject=subject,
            recipient=to_email,
            ticket_id=ticket.id,
            error=result.error,
        ))
        self.session.commit()

        NOTIFICATIONS_SENT.labels(channel=MAIL, outcome="success" if result.success else "failed").inc()
        if result.success:
            logger.info("ticket_email_sent", ticket_id=str(ticket.id), recipient=to_email,
                        notification=notification.__class__.__name__)
        else:
            logger.error("ticket_email_failed", ticket_id=str(ticket.id), recipient=to_email,
                         notification=notification.__class__.__name__, error=result.error)
        return result

    def _deliver(self, ticket: Ticket, channel: EmailChannel, recipient, email, to_email: str, subject: str):
        org_settings = ticket.organization.settings
        html = render(email.view, {
            **email.data,
            "ticket": ticket,
            "organization": ticket.organization,
            "recipient": recipient,
            "primary_color": (org_settings.primary_color if org_settings else None) or settings.default_primary_color,
            "email_logo_path": org_settings.email_logo_path if org_settings else None,
        })

        headers = self.threading.notification_headers(ticket, channel) if email.should_thread else ThreadHeaders.empty()
        outgoing = OutgoingNotification(
            to_email=to_email,
            to_name=email.to_name or getattr(recipient, "name", None),
            subject=subject,
            html=html,
            cc=list(email.cc),
            reply_to=channel.email_address,
            original_message_id=ticket.email_provider_message_id if email.should_thread else None,
            thread_id=ticket.email_thread_id if email.should_thread else None,
            message_id=headers.message_id,
            in_reply_to=headers.in_reply_to,
            references=headers.references,
            thread_topic=headers.thread_topic,
            thread_index=headers.thread_index,
            headers={"ticket_number": ticket.ticket_number},
        )

        provider = self.provider_factory.make(self.session, channel)
        return run_async(provider.send_notification(channel, outgoing))


class InAppChannel:
    def __init__(self, session: Session):
        self.session = session

    @classmethod
    def create(cls, session, provider_factory=None, threading=None) -> "InAppChannel":
        return cls(session)

    def send(self, recipient, notification) -> DeliveryResult | None:
        if not isinstance(recipient, User):
            return None
        self.session.add(InAppNotification(
            user_id=recipient.id,
            type=notification.type,
            data=notification.to_in_app(recipient),
        ))
        self.session.commit()
        NOTIFICATIONS_SENT.labels(channel=IN_APP, outcome="success").inc()
        return DeliveryResult.ok()


CHANNELS = {
    MAIL: TicketEmailChannel,
    IN_APP: InAppChannel,
}


class Notifier:
    """Routes a notification to each channel it asks for. Channels fail independently."""

    def __init__(
        self,
        session: Session,
        provider_factory: EmailProviderFactory | None = None,
        threading: EmailThreadingService | None = None,
        channels: dict | None = None,
    ):
        self.session = session
        self.channels = channels or {
            name: channel_cls.create(session, provider_factory, threading)
            for name, channel_cls in CHANNELS.items()
        }

    def send(self, recipient, notification) -> dict[str, DeliveryResult | None]:
        results: dict[str, DeliveryResult | None] = {}
        for name in notification.via(recipient):
            channel = self.channels.get(name)
            if channel is None:
                logger.warning("notification_channel_unknown", channel=name)
                continue
            try:
                results[name] = channel.send(recipient, notification)
            except Exception as e:
                self.session.rollback()
                NOTIFICATIONS_SENT.labels(channel=name, outcome="error").inc()
                logger.error("notification_channel_failed", channel=name,
                             notification=notification.__class__.__name__,
                             recipient_id=str(getattr(recipient, "id", None)), error=str(e))
                results[name] = DeliveryResult.from_exception(e)
        return results
