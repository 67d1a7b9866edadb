"""Notification building blocks shared by every ticket notification."""

import re
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from helpdesk.config import settings
from helpdesk.models.ticket import Ticket
from helpdesk.models.user import Contact, User

MAIL = "mail"
IN_APP = "in_app"


@runtime_checkable
class ResolvesTicketContext(Protocol):
    def ticket_context(self) -> Ticket | None:
        ...


@dataclass
class TicketEmail:
    """What a notification wants sent through the ticket's email channel."""

    view: str
    subject: str
    data: dict = field(default_factory=dict)
    should_thread: bool = False
    cc: list[dict] = field(default_factory=list)
    to_email: str | None = None
    to_name: str | None = None


def message_preview(body: str | None, length: int = 200) -> str:
    text = re.sub(r"<[^>]+>", "", body or "").strip()
    return text[:length] + "..." if len(text) > length else text


def ticket_url(ticket: Ticket) -> str:
    return f"{settings.app_url.rstrip('/')}/inbox/{ticket.id}"


class TicketNotification:
    """Base class. Subclasses say who they apply to and what the email looks like."""

    channels: tuple[str, ...] = (MAIL,)
    type = "ticket"

    def __init__(self, ticket: Ticket):
        self.ticket = ticket

    def ticket_context(self) -> Ticket | None:
        return self.ticket

    def via(self, recipient) -> list[str]:
        return list(self.channels)

    def to_ticket_email(self, recipient) -> TicketEmail | None:
        raise NotImplementedError

    def to_in_app(self, recipient) -> dict:
        ticket = self.ticket_context()
        return {
            "type": self.type,
            "ticket_id": str(ticket.id),
            "ticket_number": ticket.ticket_number,
            "ticket_subject": ticket.subject,
        }

    @staticmethod
    def is_user(recipient) -> bool:
        return isinstance(recipient, User)

    @staticmethod
    def is_contact(recipient) -> bool:
        return isinstance(recipient, Contact)
