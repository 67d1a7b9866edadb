"""Initial schema with all core tables.

Revision ID: 001
Revises: None
Create Date: 2025-01-01
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id():
    return sa.Column("id", UUID(as_uuid=True), primary_key=True)


def _org_fk():
    return sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.id"), nullable=False)


def upgrade() -> None:
    # Organizations
    op.create_table(
        "organizations",
        _id(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(100), unique=True, nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_organizations_slug", "organizations", ["slug"])

    op.create_table(
        "organization_settings",
        _id(),
        sa.Column("organization_id", UUID(as_uuid=True), sa.ForeignKey("organizations.id"), unique=True, nullable=False),
        sa.Column("system_emails_enabled", sa.Boolean, server_default="true"),
        sa.Column("ticket_prefix", sa.String(20), server_default="TKT"),
        sa.Column("ticket_number_format", sa.String(100), server_default="{prefix}-{number}"),
        sa.Column("next_ticket_number", sa.Integer, server_default="1"),
        sa.Column("primary_color", sa.String(20), nullable=True),
        sa.Column("email_logo_path", sa.Text, nullable=True),
        sa.Column("share_sla_times_with_contacts", sa.Boolean, server_default="false"),
        sa.Column("sla_reminder_intervals", JSONB, nullable=True),
    )

    op.create_table(
        "organization_integrations",
        _id(),
        _org_fk(),
        sa.Column("integration", sa.String(50), nullable=False),
        sa.Column("credentials_encrypted", sa.Text, nullable=True),
        sa.Column("is_active", sa.Boolean, server_default="true"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_organization_integrations_organization_id", "organization_integrations", ["organization_id"])

    # Reference data
    op.create_table(
        "slas",
        _id(),
        _org_fk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("first_response_hours", sa.Integer, nullable=True),
        sa.Column("resolution_hours", sa.Integer, nullable=True),
        sa.Column("is_default", sa.Boolean, server_default="false"),
    )
    op.create_table(
        "statuses",
        _id(),
        _org_fk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("color", sa.String(20), nullable=True),
        sa.Column("is_default", sa.Boolean, server_default="false"),
        sa.Column("is_closed", sa.Boolean, server_default="false"),
        sa.Column("sort_order", sa.Integer, server_default="0"),
    )
    op.create_table(
        "priorities",
        _id(),
        _org_fk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("color", sa.String(20), nullable=True),
        sa.Column("is_default", sa.Boolean, server_default="false"),
    )
    op.create_table(
        "departments",
        _id(),
        _org_fk(),
        sa.Column("name", sa.String(100), nullable=False),
    )
    op.create_table(
        "ticket_folders",
        _id(),
        _org_fk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("system_type", sa.String(30), nullable=True),
    )
    for table in ("slas", "statuses", "priorities", "departments", "ticket_folders"):
        op.create_index(f"ix_{table}_organization_id", table, ["organization_id"])

    # People
    op.create_table(
        "users",
        _id(),
        _org_fk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_users_organization_id", "users", ["organization_id"])

    op.create_table(
        "user_notification_preferences",
        _id(),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        _org_fk(),
        sa.Column("notify_new_ticket", sa.Boolean, server_default="true"),
        sa.Column("notify_contact_reply", sa.Boolean, server_default="true"),
        sa.Column("notify_internal_note", sa.Boolean, server_default="true"),
        sa.Column("notify_ticket_assigned", sa.Boolean, server_default="true"),
        sa.Column("notify_when_mentioned", sa.Boolean, server_default="true"),
        sa.Column("notify_sla_breach_warning", sa.Boolean, server_default="true"),
        sa.UniqueConstraint("user_id", "organization_id"),
    )

    op.create_table(
        "contacts",
        _id(),
        _org_fk(),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("sla_id", UUID(as_uuid=True), sa.ForeignKey("slas.id"), nullable=True),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_contacts_organization_id", "contacts", ["organization_id"])
    op.create_index("ix_contacts_email", "contacts", ["email"])
    op.create_index("ix_contacts_external_id", "contacts", ["external_id"])

    # Channels
    op.create_table(
        "email_channels",
        _id(),
        _org_fk(),
        sa.Column("name", sa.String(255), server_default=""),
        sa.Column("provider", sa.String(30), nullable=False),
        sa.Column("email_address", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean, server_default="true"),
        sa.Column("is_default", sa.Boolean, server_default="false"),
        sa.Column("fetch_folder", sa.String(255), server_default="inbox"),
        sa.Column("oauth_token_encrypted", sa.Text, nullable=True),
        sa.Column("oauth_refresh_token_encrypted", sa.Text, nullable=True),
        sa.Column("oauth_token_expires_at", sa.DateTime, nullable=True),
        sa.Column("last_sync_at", sa.DateTime, nullable=True),
        sa.Column("last_sync_error", sa.Text, nullable=True),
        sa.Column("post_import_action", sa.String(20), server_default="nothing"),
        sa.Column("post_import_folder", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_email_channels_organization_id", "email_channels", ["organization_id"])

    op.create_table(
        "messaging_channels",
        _id(),
        _org_fk(),
        sa.Column("provider", sa.String(30), server_default="instagram"),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), server_default=""),
        sa.Column("is_active", sa.Boolean, server_default="true"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_messaging_channels_organization_id", "messaging_channels", ["organization_id"])
    op.create_index("ix_messaging_channels_external_id", "messaging_channels", ["external_id"])

    # Tickets
    op.create_table(
        "tickets",
        _id(),
        _org_fk(),
        sa.Column("ticket_number", sa.String(50), nullable=True),
        sa.Column("subject", sa.String(500), server_default=""),
        sa.Column("contact_id", UUID(as_uuid=True), sa.ForeignKey("contacts.id"), nullable=True),
        sa.Column("status_id", UUID(as_uuid=True), sa.ForeignKey("statuses.id"), nullable=True),
        sa.Column("priority_id", UUID(as_uuid=True), sa.ForeignKey("priorities.id"), nullable=True),
        sa.Column("assigned_to_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("sla_id", UUID(as_uuid=True), sa.ForeignKey("slas.id"), nullable=True),
        sa.Column("department_id", UUID(as_uuid=True), sa.ForeignKey("departments.id"), nullable=True),
        sa.Column("folder_id", UUID(as_uuid=True), sa.ForeignKey("ticket_folders.id"), nullable=True),
        sa.Column("first_response_at", sa.DateTime, nullable=True),
        sa.Column("resolved_at", sa.DateTime, nullable=True),
        sa.Column("sla_first_response_due_at", sa.DateTime, nullable=True),
        sa.Column("sla_resolution_due_at", sa.DateTime, nullable=True),
        sa.Column("email_channel_id", UUID(as_uuid=True), sa.ForeignKey("email_channels.id"), nullable=True),
        sa.Column("email_original_message_id", sa.String(500), nullable=True),
        sa.Column("email_thread_id", sa.String(255), nullable=True),
        sa.Column("email_thread_index", sa.String(255), nullable=True),
        sa.Column("email_provider_message_id", sa.String(500), nullable=True),
        sa.Column("messaging_channel_id", UUID(as_uuid=True), sa.ForeignKey("messaging_channels.id"), nullable=True),
        sa.Column("cc_recipients", JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("organization_id", "ticket_number"),
    )
    op.create_index("ix_tickets_organization_id", "tickets", ["organization_id"])

    op.create_table(
        "messages",
        _id(),
        sa.Column("ticket_id", UUID(as_uuid=True), sa.ForeignKey("tickets.id"), nullable=False),
        _org_fk(),
        sa.Column("type", sa.String(20), nullable=False, server_default="reply"),
        sa.Column("is_from_contact", sa.Boolean, server_default="false"),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("contact_id", UUID(as_uuid=True), sa.ForeignKey("contacts.id"), nullable=True),
        sa.Column("body", sa.Text, server_default=""),
        sa.Column("body_html", sa.Text, nullable=True),
        sa.Column("attachments", JSONB, nullable=True),
        sa.Column("email_message_id", sa.String(500), nullable=True),
        sa.Column("email_provider_id", sa.String(500), nullable=True),
        sa.Column("external_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_messages_ticket_id", "messages", ["ticket_id"])
    op.create_index("ix_messages_organization_id", "messages", ["organization_id"])
    op.create_index("ix_messages_email_message_id", "messages", ["email_message_id"])
    op.create_index("ix_messages_external_id", "messages", ["external_id"])
    op.create_index("ix_messages_created_at", "messages", ["created_at"])

    op.create_table(
        "message_mentions",
        _id(),
        sa.Column("message_id", UUID(as_uuid=True), sa.ForeignKey("messages.id"), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("message_id", "user_id"),
    )
    op.create_index("ix_message_mentions_message_id", "message_mentions", ["message_id"])
    op.create_index("ix_message_mentions_user_id", "message_mentions", ["user_id"])

    op.create_table(
        "ticket_activities",
        _id(),
        sa.Column("ticket_id", UUID(as_uuid=True), sa.ForeignKey("tickets.id"), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("properties", JSONB, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_ticket_activities_ticket_id", "ticket_activities", ["ticket_id"])
    op.create_index("ix_ticket_activities_type", "ticket_activities", ["type"])

    op.create_table(
        "sla_reminders_sent",
        _id(),
        sa.Column("ticket_id", UUID(as_uuid=True), sa.ForeignKey("tickets.id"), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("minutes_before", sa.Integer, nullable=False),
        sa.Column("sent_at", sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint("ticket_id", "type", "minutes_before"),
    )
    op.create_index("ix_sla_reminders_sent_ticket_id", "sla_reminders_sent", ["ticket_id"])

    # Delivery logs
    op.create_table(
        "email_channel_logs",
        _id(),
        sa.Column("email_channel_id", UUID(as_uuid=True), sa.ForeignKey("email_channels.id"), nullable=False),
        sa.Column("type", sa.String(20), server_default="send"),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("subject", sa.String(500), nullable=True),
        sa.Column("recipient", sa.String(255), nullable=True),
        sa.Column("ticket_id", UUID(as_uuid=True), sa.ForeignKey("tickets.id"), nullable=True),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_email_channel_logs_email_channel_id", "email_channel_logs", ["email_channel_id"])
    op.create_index("ix_email_channel_logs_ticket_id", "email_channel_logs", ["ticket_id"])
    op.create_index("ix_email_channel_logs_created_at", "email_channel_logs", ["created_at"])

    op.create_table(
        "webhooks",
        _id(),
        _org_fk(),
        sa.Column("name", sa.String(255), server_default=""),
        sa.Column("url", sa.Text, nullable=False),
        sa.Column("secret_encrypted", sa.Text, nullable=True),
        sa.Column("events", JSONB, nullable=False, server_default="[]"),
        sa.Column("format", sa.String(20), nullable=False, server_default="standard"),
        sa.Column("is_active", sa.Boolean, server_default="true"),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("last_triggered_at", sa.DateTime, nullable=True),
        sa.Column("failure_count", sa.Integer, server_default="0"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_webhooks_organization_id", "webhooks", ["organization_id"])

    op.create_table(
        "webhook_deliveries",
        _id(),
        sa.Column("webhook_id", UUID(as_uuid=True), sa.ForeignKey("webhooks.id"), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("payload", JSONB, nullable=True),
        sa.Column("response_status", sa.Integer, nullable=True),
        sa.Column("response_body", sa.Text, nullable=True),
        sa.Column("duration_ms", sa.Integer, nullable=True),
        sa.Column("attempt", sa.Integer, server_default="1"),
        sa.Column("success", sa.Boolean, server_default="false"),
        sa.Column("error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_webhook_deliveries_webhook_id", "webhook_deliveries", ["webhook_id"])
    op.create_index("ix_webhook_deliveries_event_type", "webhook_deliveries", ["event_type"])
    op.create_index("ix_webhook_deliveries_created_at", "webhook_deliveries", ["created_at"])

    op.create_table(
        "in_app_notifications",
        _id(),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("data", JSONB, nullable=False, server_default="{}"),
        sa.Column("read_at", sa.DateTime, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now()),
    )
    op.create_index("ix_in_app_notifications_user_id", "in_app_notifications", ["user_id"])
    op.create_index("ix_in_app_notifications_created_at", "in_app_notifications", ["created_at"])


def downgrade() -> None:
    for table in (
        "in_app_notifications", "webhook_deliveries", "webhooks", "email_channel_logs",
        "sla_reminders_sent", "ticket_activities", "message_mentions", "messages", "tickets",
        "messaging_channels", "email_channels", "contacts", "user_notification_preferences", "users",
        "ticket_folders", "departments", "priorities", "statuses", "slas",
        "organization_integrations", "organization_settings", "organizations",
    ):
        op.drop_table(table)
