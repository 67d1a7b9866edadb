"""Agents (organization members), contacts and per-user notification preferences."""

import uuid
from typing import Optional
from datetime import datetime

from sqlalchemy import String, Boolean, DateTime, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.database import Base, utcnow


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    organization: Mapped["Organization"] = relationship(back_populates="users")
    notification_preferences: Mapped[Optional["UserNotificationPreference"]] = relationship(
        back_populates="user", uselist=False
    )

    def route_notification_for_mail(self) -> str | None:
        return self.email

    def wants(self, preference: str) -> bool:
        """Whether a notification preference is on. No stored preferences means everything is on."""
        prefs = self.notification_preferences
        if prefs is None:
            return True
        value = getattr(prefs, preference, None)
        return True if value is None else bool(value)

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class UserNotificationPreference(Base):
    __tablename__ = "user_notification_preferences"
    __table_args__ = (UniqueConstraint("user_id", "organization_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False)

    notify_new_ticket: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_contact_reply: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_internal_note: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_ticket_assigned: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_when_mentioned: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_sla_breach_warning: Mapped[bool] = mapped_column(Boolean, default=True)

    user: Mapped[User] = relationship(back_populates="notification_preferences")


class Contact(Base):
    __tablename__ = "contacts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    sla_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("slas.id"), nullable=True)  # Overrides org default
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)  # Messaging sender id

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    def route_notification_for_mail(self) -> str | None:
        return self.email

    def __repr__(self) -> str:
        return f"<Contact {self.email or self.external_id}>"
