"""Discord adapter - turns webhook event payloads into embeds."""

from datetime import datetime

from helpdesk.config import settings
from helpdesk.services.events import EventKind

TITLES = {
    EventKind.TICKET_CREATED: "🎫 New ticket",
    EventKind.TICKET_STATUS_CHANGED: "🔄 Status changed",
    EventKind.TICKET_PRIORITY_CHANGED: "⚡ Priority changed",
    EventKind.TICKET_ASSIGNED: "👤 Ticket assigned",
    EventKind.TICKET_SLA_CHANGED: "⏱️ SLA changed",
    EventKind.MESSAGE_CREATED: "💬 New message",
    EventKind.REPLY_RECEIVED: "📩 Customer reply received",
}

COLORS = {
    EventKind.TICKET_CREATED: 0x22C55E,  # green
    EventKind.TICKET_STATUS_CHANGED: 0x3B82F6,  # blue
    EventKind.TICKET_PRIORITY_CHANGED: 0xF59E0B,  # amber
    EventKind.TICKET_ASSIGNED: 0x8B5CF6,  # violet
    EventKind.TICKET_SLA_CHANGED: 0x06B6D4,  # cyan
    EventKind.MESSAGE_CREATED: 0x6366F1,  # indigo
    EventKind.REPLY_RECEIVED: 0xEC4899,  # pink
}


def _name(ref: dict | None, default: str = "?") -> str:
    return (ref or {}).get("name") or default


def event_description(kind: EventKind, data: dict) -> str:
    """Markdown summary shared by the Discord and Slack formats."""
    ticket = data.get("ticket") or {}
    contact = data.get("contact") or {}
    changes = data.get("changes") or {}
    subject = ticket.get("subject") or "Unknown"

    def change(field: str) -> str:
        entry = changes.get(field) or {}
        return f"{_name(entry.get('from'))} → {_name(entry.get('to'))}"

    if kind is EventKind.TICKET_CREATED:
        by = f" by {contact['name']}" if contact.get("name") else ""
        detail = f"New ticket created{by}"
    elif kind is EventKind.TICKET_STATUS_CHANGED:
        detail = f"Status: {change('status')}"
    elif kind is EventKind.TICKET_PRIORITY_CHANGED:
        detail = f"Priority: {change('priority')}"
    elif kind is EventKind.TICKET_ASSIGNED:
        detail = f"Assigned to: {_name((changes.get('assigned_to') or {}).get('to'), 'Nobody')}"
    elif kind is EventKind.TICKET_SLA_CHANGED:
        detail = f"SLA: {change('sla')}"
    elif kind is EventKind.MESSAGE_CREATED:
        detail = "New message added"
    else:
        who = f" ({contact['name']})" if contact.get("name") else ""
        detail = f"New reply from customer{who}"

    return f"**{subject}**\n\n{detail}"


def to_discord(kind: EventKind, data: dict, now: datetime) -> dict:
    ticket = data.get("ticket") or {}
    contact = data.get("contact") or {}

    fields = []
    if ticket.get("ticket_number"):
        fields.append({"name": "Ticket", "value": ticket["ticket_number"], "inline": True})
    if (ticket.get("status") or {}).get("name"):
        fields.append({"name": "Status", "value": ticket["status"]["name"], "inline": True})
    if (ticket.get("priority") or {}).get("name"):
        fields.append({"name": "Priority", "value": ticket["priority"]["name"], "inline": True})
    if contact.get("name"):
        email = f" ({contact['email']})" if contact.get("email") else ""
        fields.append({"name": "Contact", "value": f"{contact['name']}{email}", "inline": False})

    return {
        "embeds": [
            {
                "title": TITLES[kind],
                "description": event_description(kind, data),
                "color": COLORS[kind],
                "url": ticket.get("url"),
                "fields": fields,
                "timestamp": now.isoformat(),
                "footer": {"text": settings.brand_name},
            }
        ]
    }
