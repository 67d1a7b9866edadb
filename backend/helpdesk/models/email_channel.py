"""Email channel (connected mailbox) and its append-only send log."""

import enum
import uuid
from datetime import datetime, timedelta

from sqlalchemy import String, Boolean, Text, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.database import Base, utcnow
from helpdesk.services.crypto import decrypt_value, encrypt_value


class EmailProviderType(str, enum.Enum):
    MICROSOFT365 = "microsoft365"
    GOOGLE = "google"
    SMTP = "smtp"


class PostImportAction(str, enum.Enum):
    NOTHING = "nothing"
    ARCHIVE = "archive"
    MOVE_TO_FOLDER = "move_to_folder"
    DELETE = "delete"


class EmailChannel(Base):
    __tablename__ = "email_channels"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    provider: Mapped[str] = mapped_column(String(30), nullable=False)  # microsoft365, google, smtp
    email_address: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    fetch_folder: Mapped[str] = mapped_column(String(255), default="inbox")

    # OAuth tokens (encrypted at rest)
    oauth_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    oauth_refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    oauth_token_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # What happens to a mailbox message once it is imported
    post_import_action: Mapped[str] = mapped_column(String(20), default=PostImportAction.NOTHING.value)
    post_import_folder: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    @property
    def provider_type(self) -> EmailProviderType:
        return EmailProviderType(self.provider)

    @property
    def domain(self) -> str:
        return self.email_address.rsplit("@", 1)[-1] if "@" in self.email_address else self.email_address

    @property
    def oauth_token(self) -> str | None:
        return decrypt_value(self.oauth_token_encrypted) if self.oauth_token_encrypted else None

    @property
    def oauth_refresh_token(self) -> str | None:
        return decrypt_value(self.oauth_refresh_token_encrypted) if self.oauth_refresh_token_encrypted else None

    def store_tokens(self, access_token: str, refresh_token: str | None, expires_in: int | None) -> None:
        self.oauth_token_encrypted = encrypt_value(access_token)
        if refresh_token:
            self.oauth_refresh_token_encrypted = encrypt_value(refresh_token)
        self.oauth_token_expires_at = utcnow() + timedelta(seconds=expires_in or 3600)

    def is_token_expired(self, leeway_seconds: int = 60) -> bool:
        if not self.oauth_token_expires_at:
            return True
        return self.oauth_token_expires_at <= utcnow() + timedelta(seconds=leeway_seconds)

    def __repr__(self) -> str:
        return f"<EmailChannel {self.email_address}>"


class EmailChannelLog(Base):
    __tablename__ = "email_channel_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email_channel_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("email_channels.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(20), default="send")
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # success, failed
    subject: Mapped[str | None] = mapped_column(String(500), nullable=True)
    recipient: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ticket_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=True, index=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
