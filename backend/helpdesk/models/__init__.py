from helpdesk.models.organization import Organization, OrganizationSettings, OrganizationIntegration
from helpdesk.models.user import User, UserNotificationPreference, Contact
from helpdesk.models.ticket import (
    Status, Priority, Sla, Department, TicketFolder, Ticket, SlaReminderSent, TicketActivity,
)
from helpdesk.models.message import Message, MessageMention, MessageType
from helpdesk.models.email_channel import EmailChannel, EmailChannelLog, EmailProviderType
from helpdesk.models.webhook import Webhook, WebhookDelivery, WebhookFormat
from helpdesk.models.notification import InAppNotification, MessagingChannel

__all__ = [
    "Organization", "OrganizationSettings", "OrganizationIntegration",
    "User", "UserNotificationPreference", "Contact",
    "Status", "Priority", "Sla", "Department", "TicketFolder", "Ticket", "SlaReminderSent", "TicketActivity",
    "Message", "MessageMention", "MessageType",
    "EmailChannel", "EmailChannelLog", "EmailProviderType",
    "Webhook", "WebhookDelivery", "WebhookFormat",
    "InAppNotification", "MessagingChannel",
]
