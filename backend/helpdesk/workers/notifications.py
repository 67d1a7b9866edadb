"""Notification jobs. Each reloads its rows by id and runs the NotificationService.

Sends inside a job never raise: every channel records its own outcome, so
a job only fails (and is retried by RQ) on infrastructure errors such as
a lost database connection.
"""

import structlog
from sqlalchemy import select

from helpdesk.models.message import Message
from helpdesk.models.ticket import Ticket
from helpdesk.models.user import User
from helpdesk.notifications.channels import Notifier
from helpdesk.services.notifications import NotificationService
from helpdesk.workers.base import get_sync_session, load, parse_id

logger = structlog.get_logger()


def _service(session) -> NotificationService:
    return NotificationService(session, Notifier(session))


def send_ticket_created_notifications(ticket_id: str):
    session = get_sync_session()
    try:
        ticket = load(session, Ticket, ticket_id)
        if ticket is None:
            logger.warning("notification_job_ticket_missing", job="ticket_created", ticket_id=ticket_id)
            return
        _service(session).notify_ticket_created(ticket)
    finally:
        session.close()


def send_message_notifications(message_id: str):
    session = get_sync_session()
    try:
        message = load(session, Message, message_id)
        if message is None:
            logger.warning("notification_job_message_missing", job="message", message_id=message_id)
            return
        _service(session).notify_new_message(message)
    finally:
        session.close()


def send_mention_notifications(message_id: str, user_ids: list[str]):
    session = get_sync_session()
    try:
        message = load(session, Message, message_id)
        if message is None:
            logger.warning("notification_job_message_missing", job="mention", message_id=message_id)
            return
        ids = [parsed for parsed in (parse_id(u) for u in user_ids or []) if parsed]
        if not ids:
            return
        users = session.execute(
            select(User).where(User.id.in_(ids), User.organization_id == message.organization_id)
        ).scalars().all()
        _service(session).notify_mentions(message, users)
    finally:
        session.close()


def send_assignment_notification(ticket_id: str, assigned_by_id: str | None = None):
    session = get_sync_session()
    try:
        ticket = load(session, Ticket, ticket_id)
        if ticket is None:
            logger.warning("notification_job_ticket_missing", job="assignment", ticket_id=ticket_id)
            return
        assigned_by = load(session, User, assigned_by_id) if assigned_by_id else None
        _service(session).notify_ticket_assigned(ticket, assigned_by)
    finally:
        session.close()


def send_sla_breach_warning(ticket_id: str, sla_type: str, minutes_remaining: int):
    session = get_sync_session()
    try:
        ticket = load(session, Ticket, ticket_id)
        if ticket is None:
            logger.warning("notification_job_ticket_missing", job="sla_breach_warning", ticket_id=ticket_id)
            return
        _service(session).notify_sla_breach_warning(ticket, sla_type, int(minutes_remaining))
    finally:
        session.close()
