"""Slack adapter - turns webhook event payloads into Block Kit messages."""

from datetime import datetime

from helpdesk.adapters.discord import TITLES, event_description
from helpdesk.config import settings
from helpdesk.services.events import EventKind


def to_slack(kind: EventKind, data: dict, now: datetime) -> dict:
    ticket = data.get("ticket") or {}

    fields = []
    if ticket.get("ticket_number"):
        fields.append({"type": "mrkdwn", "text": f"*Ticket:* {ticket['ticket_number']}"})
    if (ticket.get("status") or {}).get("name"):
        fields.append({"type": "mrkdwn", "text": f"*Status:* {ticket['status']['name']}"})
    if (ticket.get("priority") or {}).get("name"):
        fields.append({"type": "mrkdwn", "text": f"*Priority:* {ticket['priority']['name']}"})

    blocks: list[dict] = [
        {"type": "header", "text": {"type": "plain_text", "text": TITLES[kind], "emoji": True}},
        {"type": "section", "text": {"type": "mrkdwn", "text": event_description(kind, data)}},
    ]
    if fields:
        blocks.append({"type": "section", "fields": fields})
    if ticket.get("url"):
        blocks.append({
            "type": "actions",
            "elements": [
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "View ticket", "emoji": True},
                    "url": ticket["url"],
                }
            ],
        })
    blocks.append({
        "type": "context",
        "elements": [{"type": "mrkdwn", "text": f"Via {settings.brand_name} | {now.strftime('%d-%m-%Y %H:%M')}"}],
    })

    return {"blocks": blocks}
