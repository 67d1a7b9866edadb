"""Message model - replies, internal notes and system messages on a ticket."""

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Boolean, Text, DateTime, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from helpdesk.database import Base, JSONType, utcnow


class MessageType(str, enum.Enum):
    REPLY = "reply"
    NOTE = "note"
    SYSTEM = "system"


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False, index=True)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)

    type: Mapped[str] = mapped_column(String(20), nullable=False, default=MessageType.REPLY.value)  # reply, note, system
    is_from_contact: Mapped[bool] = mapped_column(Boolean, default=False)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    contact_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("contacts.id"), nullable=True)

    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    body_html: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachments: Mapped[list | None] = mapped_column(JSONType, nullable=True)  # [{filename, size, content_type}]

    email_message_id: Mapped[str | None] = mapped_column(String(500), nullable=True, index=True)  # Set on email import
    email_provider_id: Mapped[str | None] = mapped_column(String(500), nullable=True)  # Mailbox id, changes on move
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)  # Messaging message id

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    ticket: Mapped["Ticket"] = relationship(back_populates="messages")
    user: Mapped[Optional["User"]] = relationship()
    contact: Mapped[Optional["Contact"]] = relationship()

    @property
    def message_type(self) -> MessageType:
        return MessageType(self.type)

    @property
    def is_reply(self) -> bool:
        return self.type == MessageType.REPLY.value

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)


class MessageMention(Base):
    """A user @mentioned in a message."""

    __tablename__ = "message_mentions"
    __table_args__ = (UniqueConstraint("message_id", "user_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    message_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("messages.id"), nullable=False, index=True)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
