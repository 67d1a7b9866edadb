"""Ticket notifications: who receives what, and whether it threads."""

from helpdesk.models.message import Message
from helpdesk.models.ticket import Ticket
from helpdesk.models.user import User
from helpdesk.notifications.base import (
    IN_APP, MAIL, TicketEmail, TicketNotification, message_preview, ticket_url,
)


class NewTicketNotification(TicketNotification):
    """Internal heads-up to agents. Starts a new email thread."""

    type = "new_ticket"

    def to_ticket_email(self, recipient) -> TicketEmail | None:
        if not self.is_user(recipient):
            return None
        first = self.ticket.messages[0] if self.ticket.messages else None
        return TicketEmail(
            view="new-ticket-internal",
            subject=self.ticket.subject,
            data={
                "user": recipient,
                "contact": self.ticket.contact,
                "preview": message_preview(first.body if first else ""),
                "action_url": ticket_url(self.ticket),
            },
        )


class TicketReceivedNotification(TicketNotification):
    """Confirmation to the contact, threaded under their original email."""

    type = "ticket_received"

    def to_ticket_email(self, recipient) -> TicketEmail | None:
        if not self.is_contact(recipient):
            return None
        return TicketEmail(
            view="ticket-received",
            subject=f"Ticket received: {self.ticket.subject}",
            data={"contact": recipient},
            should_thread=True,
        )


class _MessageNotification(TicketNotification):
    def __init__(self, ticket: Ticket | None, message: Message):
        super().__init__(ticket)
        self.message = message

    def ticket_context(self) -> Ticket | None:
        return self.ticket or self.message.ticket

    def to_in_app(self, recipient) -> dict:
        return {
            **super().to_in_app(recipient),
            "message_id": str(self.message.id),
            "message_preview": message_preview(self.message.body or self.message.body_html, 100),
        }


class NewContactReplyNotification(_MessageNotification):
    type = "contact_reply"

    def to_ticket_email(self, recipient) -> TicketEmail | None:
        if not self.is_user(recipient):
            return None
        ticket = self.ticket_context()
        return TicketEmail(
            view="contact-reply-internal",
            subject=f"New reply: {ticket.subject}",
            data={
                "user": recipient,
                "message": self.message,
                "preview": message_preview(self.message.body),
                "action_url": ticket_url(ticket),
            },
        )


class NewAgentReplyNotification(_MessageNotification):
    type = "agent_reply"

    def to_ticket_email(self, recipient) -> TicketEmail | None:
        if not self.is_contact(recipient):
            return None
        ticket = self.ticket_context()
        return TicketEmail(
            view="agent-reply",
            subject=f"Re: {ticket.subject}",
            data={"contact": recipient, "message": self.message},
            should_thread=True,
            cc=[
                {"email": cc.get("email"), "name": cc.get("name")}
                for cc in (ticket.cc_recipients or []) if cc.get("email")
            ],
        )


class InternalNoteNotification(_MessageNotification):
    type = "internal_note"

    def to_ticket_email(self, recipient) -> TicketEmail | None:
        if not self.is_user(recipient) or recipient.id == self.message.user_id:
            return None
        ticket = self.ticket_context()
        return TicketEmail(
            view="internal-note",
            subject=f"Internal note: {ticket.subject}",
            data={
                "user": recipient,
                "message": self.message,
                "author": self.message.user,
                "action_url": ticket_url(ticket),
            },
        )


class TicketAssignedNotification(TicketNotification):
    type = "assignment"
    channels = (IN_APP, MAIL)

    def __init__(self, ticket: Ticket, assigned_by: User | None = None):
        super().__init__(ticket)
        self.assigned_by = assigned_by

    def to_in_app(self, recipient) -> dict:
        return {
            **super().to_in_app(recipient),
            "assigned_by_id": str(self.assigned_by.id) if self.assigned_by else None,
            "assigned_by_name": self.assigned_by.name if self.assigned_by else None,
        }

    def to_ticket_email(self, recipient) -> TicketEmail | None:
        if not self.is_user(recipient):
            return None
        return TicketEmail(
            view="assigned",
            subject=f"Ticket assigned to you: {self.ticket.subject}",
            data={"user": recipient, "assigned_by": self.assigned_by, "action_url": ticket_url(self.ticket)},
        )


class MentionNotification(_MessageNotification):
    type = "mention"
    channels = (IN_APP, MAIL)

    def __init__(self, ticket: Ticket | None, message: Message, mentioned_by: User | None = None):
        super().__init__(ticket, message)
        self.mentioned_by = mentioned_by

    def to_in_app(self, recipient) -> dict:
        return {
            **super().to_in_app(recipient),
            "mentioned_by_id": str(self.mentioned_by.id) if self.mentioned_by else None,
            "mentioned_by_name": self.mentioned_by.name if self.mentioned_by else None,
        }

    def to_ticket_email(self, recipient) -> TicketEmail | None:
        if not self.is_user(recipient):
            return None
        ticket = self.ticket_context()
        return TicketEmail(
            view="mention",
            subject=f"You were mentioned: {ticket.subject}",
            data={
                "user": recipient,
                "message": self.message,
                "mentioned_by": self.mentioned_by,
                "action_url": ticket_url(ticket),
            },
        )


SLA_LABELS = {"first_response": "first response", "resolution": "resolution"}


def format_minutes(minutes: int) -> str:
    if minutes < 60:
        return "1 minute" if minutes == 1 else f"{minutes} minutes"
    hours, rest = divmod(minutes, 60)
    hour_text = "1 hour" if hours == 1 else f"{hours} hours"
    if not rest:
        return hour_text
    return f"{hour_text} and {rest} minute{'s' if rest != 1 else ''}"


class SlaBreachWarningNotification(TicketNotification):
    type = "sla_breach_warning"
    channels = (IN_APP, MAIL)

    def __init__(self, ticket: Ticket, sla_type: str, minutes_remaining: int):
        super().__init__(ticket)
        self.sla_type = sla_type
        self.minutes_remaining = minutes_remaining

    @property
    def label(self) -> str:
        return SLA_LABELS.get(self.sla_type, self.sla_type)

    @property
    def deadline(self):
        if self.sla_type == "first_response":
            return self.ticket.sla_first_response_due_at
        return self.ticket.sla_resolution_due_at

    def to_in_app(self, recipient) -> dict:
        return {
            **super().to_in_app(recipient),
            "sla_type": self.sla_type,
            "minutes_remaining": self.minutes_remaining,
            "deadline": self.deadline.isoformat() if self.deadline else None,
        }

    def to_ticket_email(self, recipient) -> TicketEmail | None:
        if not self.is_user(recipient):
            return None
        return TicketEmail(
            view="sla-breach-warning",
            subject=f"SLA warning: {self.label} due for {self.ticket.subject}",
            data={
                "user": recipient,
                "label": self.label,
                "deadline": self.deadline,
                "time_remaining": format_minutes(self.minutes_remaining),
                "action_url": ticket_url(self.ticket),
            },
        )
