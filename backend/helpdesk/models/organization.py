"""Organization (tenant), its settings and third-party integrations."""

import uuid
from typing import Optional
from datetime import datetime

from sqlalchemy import String, Boolean, Integer, Text, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.database import Base, JSONType, utcnow
from helpdesk.services.crypto import decrypt_json, encrypt_json


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    settings: Mapped[Optional["OrganizationSettings"]] = relationship(back_populates="organization", uselist=False)
    users: Mapped[list["User"]] = relationship(back_populates="organization")
    integrations: Mapped[list["OrganizationIntegration"]] = relationship(back_populates="organization")

    def integration(self, name: str) -> "OrganizationIntegration | None":
        """Active integration by name (microsoft365, google, smtp, meta)."""
        for integration in self.integrations:
            if integration.integration == name and integration.is_active:
                return integration
        return None

    def __repr__(self) -> str:
        return f"<Organization {self.slug}>"


class OrganizationSettings(Base):
    __tablename__ = "organization_settings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id"), unique=True, nullable=False
    )

    # Kill switch for every outgoing system email (e.g. during a mailbox migration)
    system_emails_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    # Ticket numbering
    ticket_prefix: Mapped[str] = mapped_column(String(20), default="TKT")
    ticket_number_format: Mapped[str] = mapped_column(String(100), default="{prefix}-{number}")
    next_ticket_number: Mapped[int] = mapped_column(Integer, default=1)

    # Email branding
    primary_color: Mapped[str | None] = mapped_column(String(20), nullable=True)
    email_logo_path: Mapped[str | None] = mapped_column(Text, nullable=True)

    # SLA
    share_sla_times_with_contacts: Mapped[bool] = mapped_column(Boolean, default=False)
    sla_reminder_intervals: Mapped[list | None] = mapped_column(JSONType, nullable=True)  # minutes, e.g. [60, 15]

    organization: Mapped[Organization] = relationship(back_populates="settings")

    def sorted_reminder_intervals(self) -> list[int]:
        """Reminder intervals in minutes, largest first, without duplicates."""
        return sorted({int(m) for m in (self.sla_reminder_intervals or []) if int(m) > 0}, reverse=True)


class OrganizationIntegration(Base):
    __tablename__ = "organization_integrations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    integration: Mapped[str] = mapped_column(String(50), nullable=False)  # microsoft365, google, smtp, meta
    credentials_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    organization: Mapped[Organization] = relationship(back_populates="integrations")

    @property
    def credentials(self) -> dict:
        return decrypt_json(self.credentials_encrypted)

    @credentials.setter
    def credentials(self, value: dict) -> None:
        self.credentials_encrypted = encrypt_json(value or {})
