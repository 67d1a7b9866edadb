"""Webhook payload builders.

Pure projections of tickets and messages into plain, JSON-ready dicts.
Ids are strings, datetimes ISO 8601, and a missing reference is None.
Output only depends on the input rows, so building twice yields the
same serialized bytes.
"""

from helpdesk.config import settings


def _ref(obj, *attrs) -> dict | None:
    if obj is None:
        return None
    data = {"id": str(obj.id)}
    for attr in attrs:
        data[attr] = getattr(obj, attr)
    return data


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _change(old, new, *attrs) -> dict:
    return {"from": _ref(old, *attrs), "to": _ref(new, *attrs)}


class TicketPayloadBuilder:
    def __init__(self, app_url: str | None = None):
        self.app_url = (app_url or settings.app_url).rstrip("/")

    def ticket_url(self, ticket) -> str:
        return f"{self.app_url}/inbox/{ticket.id}"

    def ticket_data(self, ticket) -> dict:
        return {
            "id": str(ticket.id),
            "ticket_number": ticket.ticket_number,
            "subject": ticket.subject,
            "url": self.ticket_url(ticket),
            "status": _ref(ticket.status, "name"),
            "priority": _ref(ticket.priority, "name"),
            "assigned_to": _ref(ticket.assignee, "name", "email"),
            "sla": _ref(ticket.sla, "name"),
            "department": _ref(ticket.department, "name"),
            "created_at": _iso(ticket.created_at),
            "updated_at": _iso(ticket.updated_at),
        }

    def for_created(self, ticket) -> dict:
        return {
            "ticket": self.ticket_data(ticket),
            "contact": _ref(ticket.contact, "name", "email"),
        }

    def for_status_changed(self, ticket, old_status, new_status) -> dict:
        return {
            "ticket": self.ticket_data(ticket),
            "changes": {"status": _change(old_status, new_status, "name")},
        }

    def for_priority_changed(self, ticket, old_priority, new_priority) -> dict:
        return {
            "ticket": self.ticket_data(ticket),
            "changes": {"priority": _change(old_priority, new_priority, "name")},
        }

    def for_assigned(self, ticket, old_assignee, new_assignee) -> dict:
        return {
            "ticket": self.ticket_data(ticket),
            "changes": {"assigned_to": _change(old_assignee, new_assignee, "name", "email")},
        }

    def for_sla_changed(self, ticket, old_sla, new_sla) -> dict:
        return {
            "ticket": self.ticket_data(ticket),
            "changes": {"sla": _change(old_sla, new_sla, "name")},
        }


class MessagePayloadBuilder:
    def __init__(self, tickets: TicketPayloadBuilder | None = None):
        self.tickets = tickets or TicketPayloadBuilder()

    def message_data(self, message) -> dict:
        if message.is_from_contact:
            author = _ref(message.contact, "name", "email")
            kind = "contact"
        else:
            author = _ref(message.user, "name", "email")
            kind = "user"
        if author is not None:
            author = {"type": kind, **author}

        return {
            "id": str(message.id),
            "type": message.type,
            "is_from_contact": bool(message.is_from_contact),
            "author": author,
            "has_attachments": message.has_attachments,
            "created_at": _iso(message.created_at),
        }

    def for_created(self, message) -> dict:
        return {
            "message": self.message_data(message),
            "ticket": self.tickets.ticket_data(message.ticket),
        }

    def for_reply_received(self, message) -> dict:
        return {
            **self.for_created(message),
            "contact": _ref(message.contact, "name", "email"),
        }
