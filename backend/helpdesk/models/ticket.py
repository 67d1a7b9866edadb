"""Ticket model and the per-organization reference data it points at."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Boolean, Integer, Text, DateTime, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.database import Base, JSONType, utcnow


class Status(Base):
    __tablename__ = "statuses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    is_closed: Mapped[bool] = mapped_column(Boolean, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class Priority(Base):
    __tablename__ = "priorities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)


class Sla(Base):
    __tablename__ = "slas"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    first_response_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolution_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)


class TicketFolder(Base):
    __tablename__ = "ticket_folders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    system_type: Mapped[str | None] = mapped_column(String(30), nullable=True)  # solved, or None for user folders


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (UniqueConstraint("organization_id", "ticket_number"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    ticket_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    subject: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    contact_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("contacts.id"), nullable=True)
    status_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("statuses.id"), nullable=True)
    priority_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("priorities.id"), nullable=True)
    assigned_to_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    sla_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("slas.id"), nullable=True)
    department_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("departments.id"), nullable=True)
    folder_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("ticket_folders.id"), nullable=True)

    # SLA tracking
    first_response_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    sla_first_response_due_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    sla_resolution_due_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Email threading (set when the ticket was opened from an inbound email)
    email_channel_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("email_channels.id"), nullable=True)
    email_original_message_id: Mapped[str | None] = mapped_column(String(500), nullable=True)  # RFC 2822 Message-ID
    email_thread_id: Mapped[str | None] = mapped_column(String(255), nullable=True)  # Gmail threadId / Graph conversationId
    email_thread_index: Mapped[str | None] = mapped_column(String(255), nullable=True)  # Outlook Thread-Index
    email_provider_message_id: Mapped[str | None] = mapped_column(String(500), nullable=True)  # Provider's own id

    messaging_channel_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("messaging_channels.id"), nullable=True
    )
    cc_recipients: Mapped[list | None] = mapped_column(JSONType, nullable=True)  # [{email, name}]

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    organization: Mapped["Organization"] = relationship()
    contact: Mapped[Optional["Contact"]] = relationship()
    status: Mapped[Optional[Status]] = relationship()
    priority: Mapped[Optional[Priority]] = relationship()
    assignee: Mapped[Optional["User"]] = relationship()
    sla: Mapped[Optional[Sla]] = relationship()
    department: Mapped[Optional[Department]] = relationship()
    email_channel: Mapped[Optional["EmailChannel"]] = relationship()
    messages: Mapped[list["Message"]] = relationship(back_populates="ticket", order_by="Message.created_at")

    def __repr__(self) -> str:
        return f"<Ticket {self.ticket_number}>"


class SlaReminderSent(Base):
    __tablename__ = "sla_reminders_sent"
    __table_args__ = (UniqueConstraint("ticket_id", "type", "minutes_before"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(30), nullable=False)  # first_response, resolution
    minutes_before: Mapped[int] = mapped_column(Integer, nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class TicketActivity(Base):
    __tablename__ = "ticket_activities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)

    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    # created, status_changed, priority_changed, assigned, sla_changed, message_added
    properties: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
