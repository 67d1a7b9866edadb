#!/usr/bin/env python3
"""Seed the database with a demo organization, its reference data and a webhook."""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from helpdesk.config import settings
from helpdesk.models import (
    Organization, OrganizationSettings, OrganizationIntegration, User,
    Status, Priority, Sla, TicketFolder, EmailChannel, Webhook,
)
from helpdesk.services.events import EventKind
from helpdesk.services.webhooks import WebhookService


def seed():
    engine = create_engine(settings.database_url_sync)
    Session = sessionmaker(bind=engine)
    session = Session()

    # Check if demo organization already exists
    existing = session.query(Organization).filter_by(slug="demo-company").first()
    if existing:
        print(f"Demo organization already exists: {existing.id}")
        session.close()
        return

    org = Organization(name="Demo Company", slug="demo-company", is_active=True)
    session.add(org)
    session.flush()

    session.add(OrganizationSettings(
        organization_id=org.id,
        ticket_prefix="DEMO",
        ticket_number_format="{prefix}-{yy}{mm}-{number}",
        sla_reminder_intervals=[60, 15],
    ))

    session.add_all([
        Status(organization_id=org.id, name="Open", is_default=True, sort_order=0),
        Status(organization_id=org.id, name="Pending", sort_order=1),
        Status(organization_id=org.id, name="Closed", is_closed=True, sort_order=2),
        Priority(organization_id=org.id, name="Normal", is_default=True),
        Priority(organization_id=org.id, name="Urgent"),
        Sla(organization_id=org.id, name="Standard", first_response_hours=4, resolution_hours=48, is_default=True),
        TicketFolder(organization_id=org.id, name="Solved", system_type="solved"),
        User(organization_id=org.id, name="Demo Agent", email=settings.admin_email),
    ])

    smtp = OrganizationIntegration(organization_id=org.id, integration="smtp")
    smtp.credentials = {"host": settings.smtp_host, "port": settings.smtp_port}
    session.add(smtp)
    session.add(EmailChannel(
        organization_id=org.id, name="Demo Support", provider="smtp",
        email_address="support@demo.com", is_default=True,
    ))

    webhook = Webhook(
        organization_id=org.id,
        name="Demo receiver",
        url="https://example.com/webhooks/helpdesk",
        events=EventKind.values(),
    )
    webhook.secret = WebhookService.generate_secret()
    session.add(webhook)

    session.commit()
    print(f"Created demo organization: {org.id} (slug: {org.slug})")
    session.close()


if __name__ == "__main__":
    seed()
