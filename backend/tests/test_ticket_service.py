"""Tests for the ticket service: persistence, activities and effect application."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select

from factories import add_webhook
from helpdesk.models import Contact, MessageMention, Organization, Ticket, TicketActivity
from helpdesk.services.events import EventKind, OperationContext
from helpdesk.services.tickets import TicketService, format_ticket_number


class TestFormatTicketNumber:
    NOW = datetime(2024, 7, 5, 12, 0)

    def test_default_format(self):
        assert format_ticket_number("{prefix}-{number}", "TKT", 42, self.NOW) == "TKT-00042"

    def test_date_tokens(self):
        result = format_ticket_number("{prefix}/{yyyy}{mm}{dd}/{yy}-{number}", "HD", 7, self.NOW)
        assert result == "HD/20240705/24-00007"

    def test_large_numbers_are_not_truncated(self):
        assert format_ticket_number("{number}", "X", 1234567, self.NOW) == "1234567"

    def test_empty_format_falls_back(self):
        assert format_ticket_number("", "TKT", 1, self.NOW) == "TKT-00001"


class TestTicketService:
    @pytest.fixture(autouse=True)
    def setup(self, session, org, queue):
        self.session = session
        self.org = org
        self.queue = queue
        self.service = TicketService(session, queue)
        self.ctx = OperationContext(org.org.id, actor_user_id=org.bob.id)

    def _activities(self, ticket):
        return self.session.execute(
            select(TicketActivity).where(TicketActivity.ticket_id == ticket.id).order_by(TicketActivity.created_at)
        ).scalars().all()

    # Creation

    def test_create_applies_defaults(self):
        ticket = self.service.create_ticket(self.ctx, "Printer on fire", contact_id=self.org.contact.id)

        assert ticket.ticket_number == "TKT-00001"
        assert ticket.status_id == self.org.open.id
        assert ticket.priority_id == self.org.normal.id
        assert ticket.sla_id == self.org.standard.id
        assert ticket.sla_resolution_due_at == ticket.created_at + timedelta(hours=24)
        assert self.org.settings.next_ticket_number == 2

    def test_numbers_increase(self):
        first = self.service.create_ticket(self.ctx, "One")
        second = self.service.create_ticket(self.ctx, "Two")
        assert (first.ticket_number, second.ticket_number) == ("TKT-00001", "TKT-00002")

    def test_custom_number_format(self):
        self.org.settings.ticket_number_format = "{prefix}-{yyyy}-{number}"
        self.org.settings.ticket_prefix = "HD"
        self.session.commit()

        ticket = self.service.create_ticket(self.ctx, "One")

        assert ticket.ticket_number.startswith("HD-20")
        assert ticket.ticket_number.endswith("-00001")

    def test_settings_row_created_when_missing(self):
        bare = Organization(name="Bare", slug="bare")
        self.session.add(bare)
        self.session.commit()

        ticket = self.service.create_ticket(OperationContext(bare.id), "First")

        assert ticket.ticket_number == "TKT-00001"
        assert ticket.status_id is None

    def test_contact_sla_overrides_default(self):
        vip = Contact(organization_id=self.org.org.id, name="Vip", email="vip@customer.test",
                      sla_id=self.org.premium.id)
        self.session.add(vip)
        self.session.commit()

        ticket = self.service.create_ticket(self.ctx, "Urgent", contact_id=vip.id)

        assert ticket.sla_id == self.org.premium.id

    def test_create_logs_activity_and_enqueues(self):
        webhook = add_webhook(self.session, self.org.org, [EventKind.TICKET_CREATED])

        ticket = self.service.create_ticket(self.ctx, "Printer on fire", contact_id=self.org.contact.id)

        activities = self._activities(ticket)
        assert [a.type for a in activities] == ["created"]
        assert activities[0].user_id == self.org.bob.id
        assert [job.args for job in self.queue.named("send_ticket_created_notifications")] == [(str(ticket.id),)]
        deliveries = self.queue.named("deliver_webhook")
        assert len(deliveries) == 1
        assert deliveries[0].args[0] == str(webhook.id)
        assert deliveries[0].args[2]["ticket"]["ticket_number"] == "TKT-00001"
        assert deliveries[0].args[2]["contact"]["name"] == "Carol Customer"

    def test_effect_failure_keeps_ticket(self):
        add_webhook(self.session, self.org.org, [EventKind.TICKET_CREATED])
        self.queue.notification = MagicMock(side_effect=ConnectionError("redis down"))

        ticket = self.service.create_ticket(self.ctx, "Still saved")

        self.session.expire_all()
        assert self.session.get(Ticket, ticket.id) is not None
        assert len(self.queue.named("deliver_webhook")) == 1

    # Updates

    def test_closing_resolves_and_files_ticket(self):
        add_webhook(self.session, self.org.org, [EventKind.TICKET_STATUS_CHANGED])
        ticket = self.service.create_ticket(self.ctx, "Done soon")

        self.service.update_ticket(self.ctx, ticket, status_id=self.org.closed.id)

        assert ticket.resolved_at is not None
        assert ticket.folder_id == self.org.solved.id
        changed = [a for a in self._activities(ticket) if a.type == "status_changed"]
        assert changed[0].properties == {"old": "Open", "new": "Closed"}
        job = self.queue.named("deliver_webhook")[0]
        assert job.args[1] == "ticket.status_changed"
        assert job.args[2]["changes"]["status"]["from"]["name"] == "Open"
        assert job.args[2]["changes"]["status"]["to"]["name"] == "Closed"

    def test_assignment_enqueues_notification_and_webhook(self):
        add_webhook(self.session, self.org.org, [EventKind.TICKET_ASSIGNED])
        ticket = self.service.create_ticket(self.ctx, "Needs an owner")

        self.service.update_ticket(self.ctx, ticket, assigned_to_id=self.org.alice.id)

        jobs = self.queue.named("send_assignment_notification")
        assert [job.args for job in jobs] == [(str(ticket.id), str(self.org.bob.id))]
        delivery = self.queue.named("deliver_webhook")[0]
        assert delivery.args[2]["changes"]["assigned_to"]["from"] is None
        assert delivery.args[2]["changes"]["assigned_to"]["to"]["email"] == "alice@acme.test"

    def test_unchanged_update_has_no_effects(self):
        ticket = self.service.create_ticket(self.ctx, "Quiet")
        self.queue.jobs.clear()

        self.service.update_ticket(self.ctx, ticket, status_id=self.org.open.id, subject="Renamed")

        assert ticket.subject == "Renamed"
        assert self.queue.jobs == []
        assert [a.type for a in self._activities(ticket)] == ["created"]

    def test_unknown_field_is_rejected(self):
        ticket = self.service.create_ticket(self.ctx, "Strict")

        with pytest.raises(ValueError, match="organization_id"):
            self.service.update_ticket(self.ctx, ticket, organization_id=None)

    # Messages

    def test_agent_reply_sets_first_response(self):
        ticket = self.service.create_ticket(self.ctx, "Help")

        message = self.service.add_message(self.ctx, ticket, "On it")

        assert message.user_id == self.org.bob.id
        assert ticket.first_response_at is not None
        assert [job.args for job in self.queue.named("send_message_notifications")] == [(str(message.id),)]
        added = [a for a in self._activities(ticket) if a.type == "message_added"]
        assert added[0].properties["type"] == "agent_reply"

    def test_contact_reply_reopens_closed_ticket(self):
        add_webhook(self.session, self.org.org, [EventKind.REPLY_RECEIVED])
        ticket = self.service.create_ticket(self.ctx, "Help", contact_id=self.org.contact.id)
        self.service.update_ticket(self.ctx, ticket, status_id=self.org.closed.id)

        message = self.service.add_message(self.ctx, ticket, "Broken again", is_from_contact=True)

        assert message.contact_id == self.org.contact.id
        assert message.user_id is None
        assert ticket.status_id == self.org.open.id
        assert ticket.resolved_at is None
        assert ticket.folder_id is None
        assert ticket.first_response_at is None
        delivery = self.queue.named("deliver_webhook")[0]
        assert delivery.args[1] == "message.reply_received"
        assert delivery.args[2]["contact"]["id"] == str(self.org.contact.id)

    def test_note_mentions_enqueue_resolved_users(self):
        ticket = self.service.create_ticket(self.ctx, "Help")

        message = self.service.add_message(self.ctx, ticket, "@Alice can you check? cc @nobody", type="note")

        jobs = self.queue.named("send_mention_notifications")
        assert [job.args for job in jobs] == [(str(message.id), [str(self.org.alice.id)])]
        assert ticket.first_response_at is None

    def test_unresolved_mentions_enqueue_nothing(self):
        ticket = self.service.create_ticket(self.ctx, "Help")

        self.service.add_message(self.ctx, ticket, "@nobody look", type="note")

        assert self.queue.named("send_mention_notifications") == []

    def test_mentions_are_recorded(self):
        ticket = self.service.create_ticket(self.ctx, "Help")

        message = self.service.add_message(self.ctx, ticket, "@Alice can you check? @alice too", type="note")

        mentions = self.session.execute(
            select(MessageMention).where(MessageMention.message_id == message.id)
        ).scalars().all()
        assert [m.user_id for m in mentions] == [self.org.alice.id]

    def test_unresolved_mentions_record_nothing(self):
        ticket = self.service.create_ticket(self.ctx, "Help")

        self.service.add_message(self.ctx, ticket, "@nobody look", type="note")

        assert self.session.execute(select(MessageMention)).scalars().all() == []

    def test_contact_reply_activity_has_no_user(self):
        ticket = self.service.create_ticket(self.ctx, "Help", contact_id=self.org.contact.id)

        self.service.add_message(self.ctx, ticket, "Still broken", is_from_contact=True)

        [added] = [a for a in self._activities(ticket) if a.type == "message_added"]
        assert added.user_id is None
        assert added.properties["type"] == "customer_reply"

    def test_agent_reply_activity_has_author(self):
        ticket = self.service.create_ticket(self.ctx, "Help")

        self.service.add_message(self.ctx, ticket, "On it")

        [added] = [a for a in self._activities(ticket) if a.type == "message_added"]
        assert added.user_id == self.org.bob.id
