"""Tests for the mailbox sync job."""

from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from factories import FakeProviderFactory, RecordingQueue, make_engine, seed_organization
from helpdesk.models import Contact, EmailChannel, EmailChannelLog, Ticket
from helpdesk.services.delivery import ProviderConfigurationError, ProviderRequestError
from helpdesk.workers.email_sync import contact_name_from_email, sync_email_channel, sync_email_channels


class FakeMailbox:
    """Serves fixed messages and records post-import moves."""

    def __init__(self, messages=None, fetch_error=None, move_error=None, moved_prefix="moved-"):
        self.messages = messages or []
        self.fetch_error = fetch_error
        self.move_error = move_error
        self.moved_prefix = moved_prefix
        self.since = None
        self.moves = []
        self.archived = []
        self.deleted = []

    async def fetch_messages(self, channel, since=None):
        if self.fetch_error is not None:
            raise self.fetch_error
        self.since = since
        return list(self.messages)

    async def move_message(self, channel, message_id, folder_id):
        if self.move_error is not None:
            raise self.move_error
        self.moves.append((message_id, folder_id))
        return f"{self.moved_prefix}{message_id}"

    async def archive_message(self, channel, message_id):
        self.archived.append(message_id)
        return f"archived-{message_id}"

    async def delete_message(self, channel, message_id):
        self.deleted.append(message_id)


def _mail(provider_id, internet_id, subject="Printer on fire", from_email="dave.miller@customer.test", **extra):
    data = {
        "id": provider_id,
        "internet_message_id": f"<{internet_id}>",
        "conversation_id": None,
        "thread_id": None,
        "thread_index": None,
        "from_email": from_email,
        "from_name": None,
        "subject": subject,
        "body_text": "It is still smoking.",
        "body_html": "<p>It is still smoking.</p>",
        "in_reply_to": None,
        "references": [],
        "headers": {},
    }
    data.update(extra)
    return data


class TestContactName:
    def test_derived_from_local_part(self):
        assert contact_name_from_email("dave.miller@customer.test") == "Dave Miller"
        assert contact_name_from_email("jane_doe-smith@customer.test") == "Jane Doe Smith"


class TestSyncEmailChannel:
    @pytest.fixture(autouse=True)
    def database(self, tmp_path):
        engine = make_engine(f"sqlite:///{tmp_path / 'sync.db'}")
        self.Session = sessionmaker(bind=engine)
        self.session = self.Session()
        self.org = seed_organization(self.session)
        self.channel = EmailChannel(organization_id=self.org.org.id, name="Helpdesk", provider="microsoft365",
                                    email_address="help@acme.test", post_import_action="move_to_folder",
                                    post_import_folder="processed-folder")
        self.channel.store_tokens("access-1", "refresh-1", 3600)
        self.session.add(self.channel)
        self.session.commit()
        self.queue = RecordingQueue()
        with patch("helpdesk.workers.email_sync.get_sync_session", self.Session):
            yield
        self.session.close()
        engine.dispose()

    def _sync(self, mailbox, channel=None):
        return sync_email_channel(str((channel or self.channel).id), self.queue, FakeProviderFactory(mailbox))

    def _tickets(self):
        self.session.expire_all()
        return self.session.execute(
            select(Ticket).where(Ticket.organization_id == self.org.org.id).order_by(Ticket.created_at)
        ).scalars().all()

    def _sync_logs(self):
        return self.session.execute(
            select(EmailChannelLog).where(EmailChannelLog.type == "sync")
        ).scalars().all()

    def test_new_message_opens_ticket_and_stores_moved_id(self):
        mailbox = FakeMailbox([_mail("graph-1", "abc@customer.test", subject="RE: Printer on fire")])

        counts = self._sync(mailbox)

        assert counts["imported"] == 1
        [ticket] = self._tickets()
        assert ticket.subject == "Printer on fire"
        assert ticket.email_channel_id == self.channel.id
        assert ticket.email_original_message_id == "abc@customer.test"
        assert ticket.email_provider_message_id == "moved-graph-1"
        [message] = ticket.messages
        assert message.is_from_contact
        assert message.email_message_id == "abc@customer.test"
        assert message.email_provider_id == "moved-graph-1"
        assert message.body == "It is still smoking."
        contact = self.session.get(Contact, ticket.contact_id)
        assert (contact.email, contact.name) == ("dave.miller@customer.test", "Dave Miller")
        assert mailbox.moves == [("graph-1", "processed-folder")]
        assert len(self.queue.named("send_ticket_created_notifications")) == 1

    def test_sync_is_recorded_on_channel(self):
        self._sync(FakeMailbox())

        self.session.expire_all()
        channel = self.session.get(EmailChannel, self.channel.id)
        assert channel.last_sync_at is not None
        assert channel.last_sync_error is None
        [log] = self._sync_logs()
        assert log.status == "success"

    def test_known_contact_is_reused(self):
        self._sync(FakeMailbox([_mail("graph-1", "abc@customer.test", from_email="Carol@Customer.test")]))

        [ticket] = self._tickets()
        assert ticket.contact_id == self.org.contact.id

    def test_reply_joins_ticket_by_in_reply_to(self):
        self._sync(FakeMailbox([_mail("graph-1", "abc@customer.test")]))
        reply = _mail("graph-2", "def@customer.test", subject="Re: Printer on fire",
                      in_reply_to="<abc@customer.test>", references=["<abc@customer.test>"])

        self._sync(FakeMailbox([reply]))

        [ticket] = self._tickets()
        assert [m.email_message_id for m in ticket.messages] == ["abc@customer.test", "def@customer.test"]
        assert ticket.messages[1].email_provider_id == "moved-graph-2"
        assert ticket.email_provider_message_id == "moved-graph-1"

    def test_reply_to_notification_joins_its_ticket(self):
        self._sync(FakeMailbox([_mail("graph-1", "abc@customer.test")]))
        [ticket] = self._tickets()
        notification_id = f"<ticket-{ticket.id}-notif-1700000000abcd@acme.test>"

        self._sync(FakeMailbox([_mail("graph-2", "def@customer.test", subject="Thanks",
                                      in_reply_to=notification_id)]))

        [ticket] = self._tickets()
        assert len(ticket.messages) == 2

    def test_ticket_number_in_subject_and_closed_ticket_reopens(self):
        self._sync(FakeMailbox([_mail("graph-1", "abc@customer.test")]))
        [ticket] = self._tickets()
        ticket.status_id = self.org.closed.id
        self.session.commit()

        self._sync(FakeMailbox([_mail("graph-2", "xyz@elsewhere.test", subject="Re: [tkt-00001] still broken")]))

        [ticket] = self._tickets()
        assert len(ticket.messages) == 2
        assert ticket.status_id == self.org.open.id

    def test_ticket_header_wins(self):
        self._sync(FakeMailbox([_mail("graph-1", "abc@customer.test")]))
        self._sync(FakeMailbox([_mail("graph-2", "def@customer.test", subject="Other")]))

        self._sync(FakeMailbox([_mail("graph-3", "ghi@customer.test", subject="Other",
                                      headers={"x-ticket-id": "TKT-00001"})]))

        first, second = self._tickets()
        assert len(first.messages) == 2
        assert len(second.messages) == 1

    def test_duplicates_are_not_imported_again(self):
        message = _mail("graph-1", "abc@customer.test")
        self._sync(FakeMailbox([message]))

        counts = self._sync(FakeMailbox([dict(message, id="graph-1-copy")]))

        assert counts["duplicates"] == 1
        assert counts["imported"] == 0
        [ticket] = self._tickets()
        assert len(ticket.messages) == 1

    def test_own_address_is_skipped(self):
        counts = self._sync(FakeMailbox([_mail("graph-1", "abc@acme.test", from_email="Help@acme.test")]))

        assert counts["skipped"] == 1
        assert self._tickets() == []

    def test_failed_move_keeps_old_id(self):
        mailbox = FakeMailbox([_mail("graph-1", "abc@customer.test")],
                              move_error=ProviderRequestError("Graph 503", status=503))

        counts = self._sync(mailbox)

        assert counts["imported"] == 1
        [ticket] = self._tickets()
        assert ticket.messages[0].email_provider_id == "graph-1"
        assert ticket.email_provider_message_id == "graph-1"

    def test_archive_stores_new_id(self):
        self.channel.post_import_action = "archive"
        self.session.commit()
        mailbox = FakeMailbox([_mail("graph-1", "abc@customer.test")])

        self._sync(mailbox)

        [ticket] = self._tickets()
        assert mailbox.archived == ["graph-1"]
        assert ticket.messages[0].email_provider_id == "archived-graph-1"

    def test_nothing_action_leaves_mailbox_alone(self):
        self.channel.post_import_action = "nothing"
        self.session.commit()
        mailbox = FakeMailbox([_mail("graph-1", "abc@customer.test")])

        self._sync(mailbox)

        [ticket] = self._tickets()
        assert mailbox.moves == [] and mailbox.archived == [] and mailbox.deleted == []
        assert ticket.messages[0].email_provider_id == "graph-1"

    def test_fetch_failure_is_logged_and_raised(self):
        with pytest.raises(ProviderRequestError):
            self._sync(FakeMailbox(fetch_error=ProviderRequestError("Graph 401", status=401)))

        self.session.expire_all()
        channel = self.session.get(EmailChannel, self.channel.id)
        assert channel.last_sync_error == "Graph 401"
        assert channel.last_sync_at is None
        [log] = self._sync_logs()
        assert log.status == "failed"
        assert log.error == "Graph 401"

    def test_missing_integration_is_logged_and_raised(self):
        factory = FakeProviderFactory(error=ProviderConfigurationError("Integration 'microsoft365' is not configured"))

        with pytest.raises(ProviderConfigurationError):
            sync_email_channel(str(self.channel.id), self.queue, factory)

        [log] = self._sync_logs()
        assert log.status == "failed"

    def test_smtp_and_inactive_channels_are_skipped(self):
        self.channel.is_active = False
        self.session.commit()
        mailbox = FakeMailbox([_mail("graph-1", "abc@customer.test")])

        assert self._sync(mailbox) == {"skipped": True}
        assert self._sync(mailbox, channel=self.org.channel) == {"skipped": True}
        assert self._tickets() == []

    def test_cron_enqueues_mailbox_channels_only(self):
        inactive = EmailChannel(organization_id=self.org.org.id, provider="google",
                                email_address="old@acme.test", is_active=False)
        self.session.add(inactive)
        self.session.commit()

        assert sync_email_channels(self.queue) == 1

        [job] = self.queue.named("sync_email_channel")
        assert job.args == (str(self.channel.id),)
        assert job.queue == "email"
