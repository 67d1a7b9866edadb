"""Tests for notification threading headers and subject handling."""

import base64
import uuid

from helpdesk.models import EmailChannel, Message, Ticket
from helpdesk.services.email_threading import (
    EmailThreadingService,
    base_subject,
    clean_message_id,
    ensure_ticket_number,
    extract_ticket_number,
    format_message_id,
    reply_subject,
)


def _ticket(**kwargs):
    defaults = dict(id=uuid.uuid4(), ticket_number="TKT-00007", subject="Re: Invoice missing")
    defaults.update(kwargs)
    ticket = Ticket(**defaults)
    return ticket


class TestSubjects:
    def test_base_subject_strips_prefixes(self):
        assert base_subject("Re: Fwd: RE: Invoice") == "Invoice"
        assert base_subject("AW: SV: Hello") == "Hello"
        assert base_subject(None) == ""

    def test_ensure_ticket_number(self):
        assert ensure_ticket_number("Invoice", "TKT-00007") == "[TKT-00007] Invoice"
        assert ensure_ticket_number("[TKT-00007] Invoice", "TKT-00007") == "[TKT-00007] Invoice"
        assert ensure_ticket_number("Invoice", None) == "Invoice"

    def test_reply_subject(self):
        assert reply_subject(_ticket()) == "Re: [TKT-00007] Invoice missing"

    def test_extract_ticket_number(self):
        assert extract_ticket_number("Re: [tkt-00007] Invoice") == "TKT-00007"
        assert extract_ticket_number("No number here") is None


class TestMessageIds:
    def test_clean_and_format(self):
        assert clean_message_id(" <abc@mail.test> ") == "abc@mail.test"
        assert format_message_id("abc@mail.test") == "<abc@mail.test>"
        assert format_message_id("<abc@mail.test>") == "<abc@mail.test>"
        assert format_message_id("") is None
        assert format_message_id(None) is None


class TestNotificationHeaders:
    def setup_method(self):
        self.service = EmailThreadingService()
        self.channel = EmailChannel(email_address="support@acme.test", provider="smtp")

    def test_threads_under_original_and_imported_messages(self):
        ticket = _ticket(email_original_message_id="orig@customer.test")
        ticket.messages = [
            Message(email_message_id="orig@customer.test", body=""),
            Message(email_message_id="<reply@customer.test>", body=""),
            Message(email_message_id=None, body=""),
        ]

        headers = self.service.notification_headers(ticket, self.channel)

        assert headers.in_reply_to == "<orig@customer.test>"
        assert headers.references == "<orig@customer.test> <reply@customer.test>"
        assert headers.thread_topic == "Invoice missing"
        assert headers.message_id.startswith(f"<ticket-{ticket.id}-notif-")
        assert headers.message_id.endswith("@acme.test>")

    def test_without_original_message(self):
        ticket = _ticket()
        ticket.messages = []

        headers = self.service.notification_headers(ticket, self.channel)

        assert headers.in_reply_to is None
        assert headers.references is None
        assert headers.thread_index

    def test_message_ids_are_unique(self):
        ticket = _ticket()
        first = self.service.notification_message_id(ticket, self.channel)
        second = self.service.notification_message_id(ticket, self.channel)
        assert first != second

    def test_thread_index_prefers_customer_value(self):
        ticket = _ticket(email_thread_index="AQHZ1234")
        assert self.service.thread_index(ticket) == "AQHZ1234"

    def test_thread_index_is_stable_and_22_bytes(self):
        ticket = _ticket(email_original_message_id="orig@customer.test", email_thread_id="conv-1")
        first = self.service.thread_index(ticket)
        second = self.service.thread_index(ticket)

        assert first == second
        assert len(base64.b64decode(first)) == 22

    def test_thread_index_differs_per_conversation(self):
        one = self.service.thread_index(_ticket())
        two = self.service.thread_index(_ticket())
        assert one != two
