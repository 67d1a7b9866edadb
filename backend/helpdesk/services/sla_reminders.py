"""SLA breach reminders - warn before first-response and resolution deadlines pass."""

from datetime import datetime, timedelta

import structlog
from sqlalchemy import and_, exists, select
from sqlalchemy.orm import Session

from helpdesk.models.organization import OrganizationSettings
from helpdesk.models.ticket import SlaReminderSent, Status, Ticket
from helpdesk.services.queue import JobQueue

logger = structlog.get_logger()

DEADLINES = {
    "first_response": (Ticket.sla_first_response_due_at, Ticket.first_response_at),
    "resolution": (Ticket.sla_resolution_due_at, Ticket.resolved_at),
}


class SlaBreachReminderService:
    def __init__(self, session: Session, queue: JobQueue):
        self.session = session
        self.queue = queue

    def check_and_send(self, now: datetime) -> int:
        """Enqueue a warning per ticket, deadline type and interval not yet reminded. Returns the count."""
        sent = 0
        org_settings = self.session.execute(
            select(OrganizationSettings).where(OrganizationSettings.sla_reminder_intervals.is_not(None))
        ).scalars().all()

        for settings_row in org_settings:
            for minutes in settings_row.sorted_reminder_intervals():
                for sla_type in DEADLINES:
                    for ticket in self.tickets_needing_reminder(settings_row.organization_id, sla_type, minutes, now):
                        if self.send_reminder(ticket, sla_type, minutes, now):
                            sent += 1
        return sent

    def tickets_needing_reminder(self, organization_id, sla_type: str, minutes_before: int, now: datetime) -> list[Ticket]:
        deadline, completed = DEADLINES[sla_type]
        already_sent = exists().where(
            SlaReminderSent.ticket_id == Ticket.id,
            SlaReminderSent.type == sla_type,
            SlaReminderSent.minutes_before == minutes_before,
        )
        return list(self.session.execute(
            select(Ticket)
            .join(Status, Status.id == Ticket.status_id)
            .where(
                Ticket.organization_id == organization_id,
                completed.is_(None),
                and_(deadline >= now, deadline <= now + timedelta(minutes=minutes_before)),
                Status.is_closed == False,  # noqa: E712
                ~already_sent,
            )
        ).scalars().all())

    def send_reminder(self, ticket: Ticket, sla_type: str, minutes_before: int, now: datetime) -> bool:
        deadline = ticket.sla_first_response_due_at if sla_type == "first_response" else ticket.sla_resolution_due_at
        if deadline is None:
            return False

        minutes_remaining = max(0, int((deadline - now).total_seconds() // 60))
        try:
            self.queue.notification("send_sla_breach_warning", str(ticket.id), sla_type, minutes_remaining)
        except Exception as e:
            logger.error("sla_reminder_enqueue_failed", ticket_id=str(ticket.id), type=sla_type,
                         minutes_before=minutes_before, error=str(e))
            return False

        self.session.add(SlaReminderSent(ticket_id=ticket.id, type=sla_type, minutes_before=minutes_before, sent_at=now))
        self.session.commit()
        logger.info("sla_reminder_enqueued", ticket_id=str(ticket.id), type=sla_type,
                    minutes_before=minutes_before, minutes_remaining=minutes_remaining)
        return True
