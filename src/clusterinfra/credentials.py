"""Azure service principal credential resolution.

Each of the four credential fields is resolved independently: an inline
value from the cloud spec wins, otherwise the field is looked up in the
external secret store through the cloud spec's credentials reference.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from azure.identity import ClientSecretCredential

from .errors import ProviderError
from .models import AzureCloudSpec, CredentialsReference

logger = logging.getLogger(__name__)

# Keys of the credential fields inside a referenced secret
TENANT_ID_KEY = "tenantID"
SUBSCRIPTION_ID_KEY = "subscriptionID"
CLIENT_ID_KEY = "clientID"
CLIENT_SECRET_KEY = "clientSecret"


class CredentialsError(ProviderError):
    """Raised when credentials cannot be resolved from the cloud spec."""

    pass


class SecretLookup(Protocol):
    """Resolves one named field of a referenced secret."""

    def __call__(self, reference: CredentialsReference, key: str) -> str: ...


@dataclass(frozen=True)
class Credentials:
    """Resolved service principal credentials. Never persisted."""

    tenant_id: str
    subscription_id: str
    client_id: str
    client_secret: str = field(repr=False)

    def to_token_credential(self) -> ClientSecretCredential:
        """Build an Azure AD credential for management-plane clients."""
        return ClientSecretCredential(
            tenant_id=self.tenant_id,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )


def resolve_credentials(cloud: AzureCloudSpec, secret_lookup: SecretLookup) -> Credentials:
    """Resolve credentials for a cloud spec.

    Args:
        cloud: The cluster's Azure cloud spec.
        secret_lookup: Callable reading one field of a referenced secret.

    Returns:
        Fully populated Credentials.

    Raises:
        CredentialsError: If a field is empty and no credentials reference is set.
        Exception: Any error raised by ``secret_lookup`` propagates unchanged.
    """

    def resolve(inline: str, key: str) -> str:
        if inline:
            return inline
        if cloud.credentials_reference is None:
            raise CredentialsError("no credentials provided")
        logger.debug(
            "Resolving credential field from secret store",
            extra={"key": key, "reference": cloud.credentials_reference.path},
        )
        return secret_lookup(cloud.credentials_reference, key)

    return Credentials(
        tenant_id=resolve(cloud.tenant_id, TENANT_ID_KEY),
        subscription_id=resolve(cloud.subscription_id, SUBSCRIPTION_ID_KEY),
        client_id=resolve(cloud.client_id, CLIENT_ID_KEY),
        client_secret=resolve(cloud.client_secret, CLIENT_SECRET_KEY),
    )
