"""Shared test helpers: in-memory database, a seeded organization and a recording job queue."""

from dataclasses import dataclass, field
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import MagicMock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import helpdesk.models  # noqa: F401  registers every table on Base.metadata
from helpdesk.database import Base
from helpdesk.models import (
    Contact, Department, EmailChannel, Organization, OrganizationIntegration, OrganizationSettings,
    Priority, Sla, Status, TicketFolder, User, Webhook,
)
from helpdesk.services.queue import JobQueue


def make_engine(url: str = "sqlite://"):
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url == "sqlite://":
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    Base.metadata.create_all(engine)
    return engine


def make_session(engine=None):
    return sessionmaker(bind=engine or make_engine())()


@dataclass
class RecordedJob:
    queue: str
    func_path: str
    args: tuple
    options: dict = field(default_factory=dict)

    @property
    def func_name(self) -> str:
        return self.func_path.rsplit(".", 1)[-1]


class RecordingQueue(JobQueue):
    """JobQueue that records what would be enqueued instead of talking to Redis."""

    def __init__(self):
        super().__init__(connection=MagicMock())
        self.jobs: list[RecordedJob] = []

    def enqueue(self, queue_name, func_path, *args, **options):
        job = RecordedJob(queue_name, func_path, args, options)
        self.jobs.append(job)
        return job

    def named(self, func_name: str) -> list[RecordedJob]:
        return [job for job in self.jobs if job.func_name == func_name]


def seed_organization(session, slug: str = "acme", **settings_overrides) -> SimpleNamespace:
    """An organization with defaults, two agents, a contact and an SMTP mailbox."""
    org = Organization(name=slug.title(), slug=slug)
    session.add(org)
    session.flush()

    org_settings = OrganizationSettings(organization_id=org.id, ticket_prefix="TKT", **settings_overrides)
    open_status = Status(organization_id=org.id, name="Open", is_default=True, sort_order=0)
    pending = Status(organization_id=org.id, name="Pending", sort_order=1)
    closed = Status(organization_id=org.id, name="Closed", is_closed=True, sort_order=2)
    normal = Priority(organization_id=org.id, name="Normal", is_default=True)
    urgent = Priority(organization_id=org.id, name="Urgent")
    standard = Sla(organization_id=org.id, name="Standard", first_response_hours=4,
                   resolution_hours=24, is_default=True)
    premium = Sla(organization_id=org.id, name="Premium", first_response_hours=1, resolution_hours=8)
    solved = TicketFolder(organization_id=org.id, name="Solved", system_type="solved")
    billing = Department(organization_id=org.id, name="Billing")
    alice = User(organization_id=org.id, name="Alice Smith", email=f"alice@{slug}.test",
                 created_at=datetime(2024, 1, 1, 9, 0))
    bob = User(organization_id=org.id, name="Bob Jones", email=f"bob@{slug}.test",
               created_at=datetime(2024, 1, 1, 9, 1))
    contact = Contact(organization_id=org.id, name="Carol Customer", email="carol@customer.test")
    channel = EmailChannel(organization_id=org.id, name="Support", provider="smtp",
                           email_address=f"support@{slug}.test", is_default=True,
                           created_at=datetime(2024, 1, 1, 9, 0))
    integration = OrganizationIntegration(organization_id=org.id, integration="smtp")
    integration.credentials = {"host": "smtp.test", "port": 2525}

    session.add_all([
        org_settings, open_status, pending, closed, normal, urgent, standard, premium,
        solved, billing, alice, bob, contact, channel, integration,
    ])
    session.commit()

    return SimpleNamespace(
        org=org, settings=org_settings,
        open=open_status, pending=pending, closed=closed,
        normal=normal, urgent=urgent, standard=standard, premium=premium,
        solved=solved, billing=billing,
        alice=alice, bob=bob, contact=contact, channel=channel, integration=integration,
    )


def add_webhook(session, org, events, fmt: str = "standard", secret: str | None = "s3cret", **kwargs) -> Webhook:
    webhook = Webhook(
        organization_id=org.id, name="Receiver", url="https://hooks.test/receive",
        events=[e.value if hasattr(e, "value") else e for e in events], format=fmt, **kwargs,
    )
    webhook.secret = secret
    session.add(webhook)
    session.commit()
    return webhook


class FakeProvider:
    """Records notifications instead of sending them, or raises the given error."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.sent = []

    async def send_notification(self, channel, notification):
        if self.error is not None:
            raise self.error
        self.sent.append((channel, notification))
        return f"provider-{len(self.sent)}"


class FakeProviderFactory:
    def __init__(self, provider: FakeProvider | None = None, error: Exception | None = None):
        self.provider = provider or FakeProvider()
        self.error = error

    def make(self, session, channel):
        if self.error is not None:
            raise self.error
        return self.provider
