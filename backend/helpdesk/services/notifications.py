"""Notification service - decides who hears about what on a ticket."""

from typing import Callable, Iterable

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from helpdesk.models.message import Message, MessageType
from helpdesk.models.ticket import Ticket
from helpdesk.models.user import User
from helpdesk.notifications.channels import Notifier
from helpdesk.notifications.tickets import (
    InternalNoteNotification,
    MentionNotification,
    NewAgentReplyNotification,
    NewContactReplyNotification,
    NewTicketNotification,
    SlaBreachWarningNotification,
    TicketAssignedNotification,
    TicketReceivedNotification,
)

logger = structlog.get_logger()


def system_emails_disabled(ticket: Ticket) -> bool:
    org_settings = ticket.organization.settings if ticket.organization else None
    return org_settings is not None and org_settings.system_emails_enabled is False


class NotificationService:
    """Selects recipients and hands each notification to the notifier.

    Every recipient is sent to on its own, so one failing address never
    blocks the rest of the organization.
    """

    def __init__(self, session: Session, notifier: Notifier):
        self.session = session
        self.notifier = notifier

    def members(self, ticket: Ticket) -> list[User]:
        return list(self.session.execute(
            select(User).where(
                User.organization_id == ticket.organization_id,
                User.is_active == True,  # noqa: E712
            ).order_by(User.created_at)
        ).scalars().all())

    def _send(self, recipient, notification) -> None:
        try:
            self.notifier.send(recipient, notification)
        except Exception as e:
            logger.error("notification_send_failed", notification=notification.__class__.__name__,
                         ticket_id=str(notification.ticket.id), recipient_id=str(recipient.id), error=str(e))

    def _notify_members(self, ticket: Ticket, preference: str, build: Callable[[User], object],
                        exclude: Iterable = ()) -> int:
        excluded = set(exclude)
        sent = 0
        for user in self.members(ticket):
            if user.id in excluded or not user.wants(preference):
                continue
            self._send(user, build(user))
            sent += 1
        return sent

    def notify_ticket_created(self, ticket: Ticket) -> None:
        if system_emails_disabled(ticket):
            logger.debug("ticket_created_notification_skipped", reason="system_emails_disabled",
                         ticket_id=str(ticket.id))
            return

        self._notify_members(ticket, "notify_new_ticket", lambda user: NewTicketNotification(ticket))

        # Tickets imported from email already have the customer's own message in their mailbox
        if ticket.contact and not ticket.email_original_message_id:
            self._send(ticket.contact, TicketReceivedNotification(ticket))

    def notify_new_message(self, message: Message) -> None:
        # Agent replies imported from email were sent by us; nothing to announce
        if message.email_message_id and not message.is_from_contact:
            return

        ticket = message.ticket
        if ticket is None:
            logger.warning("message_notification_no_ticket", message_id=str(message.id))
            return

        if system_emails_disabled(ticket):
            logger.debug("message_notification_skipped", reason="system_emails_disabled",
                         message_id=str(message.id), ticket_id=str(ticket.id))
            return

        # The ticket-created notifications already covered the opening message
        if self.is_first_message(message):
            return

        if message.type == MessageType.REPLY.value:
            if message.is_from_contact:
                self._notify_members(ticket, "notify_contact_reply",
                                     lambda user: NewContactReplyNotification(ticket, message))
            elif ticket.contact:
                self._send(ticket.contact, NewAgentReplyNotification(ticket, message))
        elif message.type == MessageType.NOTE.value:
            self._notify_members(ticket, "notify_internal_note",
                                 lambda user: InternalNoteNotification(ticket, message),
                                 exclude=[message.user_id])

    def is_first_message(self, message: Message) -> bool:
        first_id = self.session.execute(
            select(Message.id).where(Message.ticket_id == message.ticket_id)
            .order_by(Message.created_at, Message.id).limit(1)
        ).scalar_one_or_none()
        return first_id == message.id

    def notify_mentions(self, message: Message, users: Iterable[User]) -> None:
        ticket = message.ticket
        if ticket is None or system_emails_disabled(ticket):
            return

        mentioned_by = message.user
        if mentioned_by is None:
            return

        seen = set()
        for user in users:
            if user.id in seen:
                continue
            seen.add(user.id)
            if user.id == mentioned_by.id:
                logger.debug("mention_notification_skipped", reason="self_mention",
                             user_id=str(user.id), message_id=str(message.id))
                continue
            if not user.wants("notify_when_mentioned"):
                logger.debug("mention_notification_skipped", reason="preference_disabled",
                             user_id=str(user.id), message_id=str(message.id))
                continue
            logger.info("mention_notification_sending", user_id=str(user.id),
                        message_id=str(message.id), ticket_id=str(ticket.id))
            self._send(user, MentionNotification(ticket, message, mentioned_by))

    def notify_ticket_assigned(self, ticket: Ticket, assigned_by: User | None = None) -> None:
        if system_emails_disabled(ticket):
            return

        assignee = ticket.assignee
        if assignee is None:
            return

        if assigned_by is not None and assignee.id == assigned_by.id:
            logger.debug("assignment_notification_skipped", reason="self_assignment",
                         user_id=str(assignee.id), ticket_id=str(ticket.id))
            return

        if not assignee.wants("notify_ticket_assigned"):
            logger.debug("assignment_notification_skipped", reason="preference_disabled",
                         user_id=str(assignee.id), ticket_id=str(ticket.id))
            return

        logger.info("assignment_notification_sending", assignee_id=str(assignee.id), ticket_id=str(ticket.id),
                    assigned_by=assigned_by.name if assigned_by else "system")
        self._send(assignee, TicketAssignedNotification(ticket, assigned_by))

    def notify_sla_breach_warning(self, ticket: Ticket, sla_type: str, minutes_remaining: int) -> None:
        if system_emails_disabled(ticket):
            return

        def build(user):
            return SlaBreachWarningNotification(ticket, sla_type, minutes_remaining)

        assignee = ticket.assignee
        if assignee is not None:
            if assignee.wants("notify_sla_breach_warning"):
                self._send(assignee, build(assignee))
            return

        self._notify_members(ticket, "notify_sla_breach_warning", build)
