"""Outbound webhook subscriptions and their delivery records."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import String, Boolean, Integer, Text, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.config import settings
from helpdesk.database import Base, JSONType, utcnow
from helpdesk.services.crypto import decrypt_value, encrypt_value
from helpdesk.services.events import EventKind


class WebhookFormat(str, enum.Enum):
    STANDARD = "standard"
    DISCORD = "discord"
    SLACK = "slack"

    @property
    def uses_signature(self) -> bool:
        return self is WebhookFormat.STANDARD


class Webhook(Base):
    __tablename__ = "webhooks"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    url: Mapped[str] = mapped_column(Text, nullable=False)
    secret_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    events: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)  # ["ticket.created", ...]
    format: Mapped[str] = mapped_column(String(20), nullable=False, default=WebhookFormat.STANDARD.value)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    last_triggered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    failure_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    @property
    def secret(self) -> str | None:
        return decrypt_value(self.secret_encrypted) if self.secret_encrypted else None

    @secret.setter
    def secret(self, value: str | None) -> None:
        self.secret_encrypted = encrypt_value(value) if value else None

    @property
    def webhook_format(self) -> WebhookFormat:
        return WebhookFormat(self.format)

    def subscribes_to(self, event: EventKind | str) -> bool:
        value = event.value if isinstance(event, EventKind) else event
        return value in (self.events or [])

    def increment_failure_count(self) -> None:
        self.failure_count = (self.failure_count or 0) + 1
        if self.should_auto_disable():
            self.is_active = False

    def reset_failure_count(self) -> None:
        if self.failure_count:
            self.failure_count = 0

    def should_auto_disable(self) -> bool:
        return (self.failure_count or 0) >= settings.webhook_auto_disable_threshold

    def was_auto_disabled(self) -> bool:
        return not self.is_active and self.should_auto_disable()

    def mark_as_triggered(self) -> None:
        self.last_triggered_at = utcnow()


class WebhookDelivery(Base):
    __tablename__ = "webhook_deliveries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    webhook_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("webhooks.id"), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)  # Truncated to 2000 chars
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    attempt: Mapped[int] = mapped_column(Integer, default=1)
    success: Mapped[bool] = mapped_column(Boolean, default=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
