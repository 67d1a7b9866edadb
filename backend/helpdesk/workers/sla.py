"""Periodic SLA reminder sweep. Schedule with rq-scheduler or cron (every minute)."""

import structlog

from helpdesk.database import utcnow
from helpdesk.services.queue import JobQueue
from helpdesk.services.sla_reminders import SlaBreachReminderService
from helpdesk.workers.base import get_sync_session

logger = structlog.get_logger()


def check_sla_reminders(queue: JobQueue | None = None) -> int:
    session = get_sync_session()
    try:
        sent = SlaBreachReminderService(session, queue or JobQueue()).check_and_send(utcnow())
        logger.info("sla_reminders_checked", enqueued=sent)
        return sent
    finally:
        session.close()
