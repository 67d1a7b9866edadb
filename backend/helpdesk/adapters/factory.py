"""Email provider factory - static registry keyed by channel provider."""

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from helpdesk.adapters.email import SmtpProvider
from helpdesk.adapters.google import GoogleProvider
from helpdesk.adapters.microsoft365 import Microsoft365Provider
from helpdesk.adapters.providers import EmailProvider
from helpdesk.models.email_channel import EmailChannel, EmailProviderType
from helpdesk.models.organization import OrganizationIntegration
from helpdesk.services.delivery import ProviderConfigurationError

PROVIDERS: dict[EmailProviderType, type[EmailProvider]] = {
    EmailProviderType.MICROSOFT365: Microsoft365Provider,
    EmailProviderType.GOOGLE: GoogleProvider,
    EmailProviderType.SMTP: SmtpProvider,
}


class EmailProviderFactory:
    def __init__(self, http_client: httpx.AsyncClient | None = None):
        self.http_client = http_client

    def make(self, session: Session, channel: EmailChannel) -> EmailProvider:
        """Provider for the channel, configured with the organization's integration credentials.

        Raises ProviderConfigurationError when the provider is unknown or its
        integration is missing or inactive.
        """
        try:
            provider_type = channel.provider_type
        except ValueError:
            raise ProviderConfigurationError(f"Unsupported email provider: {channel.provider}")

        integration = session.execute(
            select(OrganizationIntegration).where(
                OrganizationIntegration.organization_id == channel.organization_id,
                OrganizationIntegration.integration == provider_type.value,
                OrganizationIntegration.is_active == True,  # noqa: E712
            )
        ).scalars().first()
        provider_cls = PROVIDERS[provider_type]
        if integration is None:
            # SMTP falls back to the server-wide settings
            if not provider_cls.required_credentials:
                return provider_cls({}, http_client=self.http_client)
            raise ProviderConfigurationError(
                f"Integration '{provider_type.value}' is not configured or not active for this organization"
            )

        return provider_cls(integration.credentials, http_client=self.http_client)

    @staticmethod
    def is_supported(provider: str) -> bool:
        return provider in {p.value for p in PROVIDERS}
