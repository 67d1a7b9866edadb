"""Tests for the SLA breach reminder sweep."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select

from helpdesk.models import SlaReminderSent, Ticket
from helpdesk.services.sla_reminders import SlaBreachReminderService

NOW = datetime(2024, 3, 1, 12, 0)


class TestSlaBreachReminderService:
    @pytest.fixture(autouse=True)
    def setup(self, session, org, queue):
        self.session = session
        self.org = org
        self.queue = queue
        org.settings.sla_reminder_intervals = [15, 60, 60]
        session.commit()
        self.service = SlaBreachReminderService(session, queue)

    def _ticket(self, **kwargs):
        defaults = dict(organization_id=self.org.org.id, subject="Waiting", status_id=self.org.open.id)
        defaults.update(kwargs)
        ticket = Ticket(**defaults)
        self.session.add(ticket)
        self.session.commit()
        return ticket

    def _reminders(self):
        return self.session.execute(select(SlaReminderSent)).scalars().all()

    def test_sorted_intervals(self):
        assert self.org.settings.sorted_reminder_intervals() == [60, 15]

    def test_first_response_reminder(self):
        ticket = self._ticket(sla_first_response_due_at=NOW + timedelta(minutes=45))

        assert self.service.check_and_send(NOW) == 1

        jobs = self.queue.named("send_sla_breach_warning")
        assert [job.args for job in jobs] == [(str(ticket.id), "first_response", 45)]
        reminder = self._reminders()[0]
        assert (reminder.type, reminder.minutes_before, reminder.sent_at) == ("first_response", 60, NOW)

    def test_within_both_windows_sends_one_per_interval(self):
        self._ticket(sla_resolution_due_at=NOW + timedelta(minutes=10))

        assert self.service.check_and_send(NOW) == 2
        assert sorted(r.minutes_before for r in self._reminders()) == [15, 60]

    def test_reminders_are_not_repeated(self):
        self._ticket(sla_resolution_due_at=NOW + timedelta(minutes=50))

        assert self.service.check_and_send(NOW) == 1
        assert self.service.check_and_send(NOW + timedelta(minutes=1)) == 0
        # The 15 minute window opens later
        assert self.service.check_and_send(NOW + timedelta(minutes=36)) == 1

    def test_completed_deadlines_are_skipped(self):
        self._ticket(sla_first_response_due_at=NOW + timedelta(minutes=5), first_response_at=NOW)
        self._ticket(sla_resolution_due_at=NOW + timedelta(minutes=5), resolved_at=NOW)

        assert self.service.check_and_send(NOW) == 0

    def test_closed_and_overdue_tickets_are_skipped(self):
        self._ticket(sla_resolution_due_at=NOW + timedelta(minutes=5), status_id=self.org.closed.id)
        self._ticket(sla_resolution_due_at=NOW - timedelta(minutes=1))
        self._ticket(sla_resolution_due_at=NOW + timedelta(hours=3))

        assert self.service.check_and_send(NOW) == 0
        assert self.queue.jobs == []

    def test_organization_without_intervals(self):
        self.org.settings.sla_reminder_intervals = None
        self.session.commit()
        self._ticket(sla_resolution_due_at=NOW + timedelta(minutes=5))

        assert self.service.check_and_send(NOW) == 0

    def test_enqueue_failure_is_not_recorded(self):
        self.queue.notification = MagicMock(side_effect=ConnectionError("redis down"))
        self._ticket(sla_resolution_due_at=NOW + timedelta(minutes=5))

        assert self.service.check_and_send(NOW) == 0
        assert self._reminders() == []

    def test_minutes_remaining_rounds_down(self):
        ticket = self._ticket(sla_resolution_due_at=NOW + timedelta(minutes=14, seconds=59))

        assert self.service.send_reminder(ticket, "resolution", 15, NOW)
        assert self.queue.jobs[0].args[2] == 14
