"""Secret stores backing credentials references.

A credentials reference names a secret (``namespace/name``) holding the
service principal fields of a cluster. Stores are callables matching the
``SecretLookup`` protocol, ``store(reference, key) -> str``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.keyvault.secrets import SecretClient

from .config import ProviderConfig
from .credentials import CredentialsError, SecretLookup
from .models import CredentialsReference
from .security import get_managed_identity_credential
from .spec_loader import SpecLoadError, read_yaml_mapping

logger = logging.getLogger(__name__)


class SecretStoreError(CredentialsError):
    """Raised when a secret store cannot be read."""

    pass


class SecretNotFoundError(SecretStoreError):
    """Raised when a referenced secret or one of its keys does not exist."""

    def __init__(self, reference: CredentialsReference, key: str | None = None) -> None:
        if key is None:
            message = f"secret '{reference.path}' not found"
        else:
            message = f"key '{key}' not found in secret '{reference.path}'"
        super().__init__(message)
        self.reference = reference
        self.key = key


def _field(data: dict[str, Any], reference: CredentialsReference, key: str) -> str:
    value = data.get(key)
    if not value:
        raise SecretNotFoundError(reference, key)
    return str(value)


class FileSecretStore:
    """Secrets read from a YAML file.

    Format::

        default/azure-credentials:
          tenantID: ...
          subscriptionID: ...
          clientID: ...
          clientSecret: ...

    The file is read on every lookup so rotated secrets are picked up
    without a restart.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def __call__(self, reference: CredentialsReference, key: str) -> str:
        try:
            secrets = read_yaml_mapping(self.path)
        except SpecLoadError as e:
            raise SecretStoreError(f"failed to read secrets file: {e}") from e

        data = secrets.get(reference.path)
        if not isinstance(data, dict):
            raise SecretNotFoundError(reference)
        return _field(data, reference, key)


class KeyVaultSecretStore:
    """Secrets read from Azure Key Vault.

    Each reference maps to one Key Vault secret named ``<namespace>-<name>``
    (Key Vault names allow only alphanumerics and hyphens) whose value is a
    JSON object with the credential fields.
    """

    def __init__(self, vault_url: str, credential: TokenCredential) -> None:
        self.vault_url = vault_url
        self._client = SecretClient(vault_url=vault_url, credential=credential)
        logger.info("Using Azure Key Vault secret store", extra={"vault_url": vault_url})

    @staticmethod
    def secret_name(reference: CredentialsReference) -> str:
        return reference.path.replace("/", "-").replace(".", "-").replace("_", "-")

    def __call__(self, reference: CredentialsReference, key: str) -> str:
        name = self.secret_name(reference)
        try:
            secret = self._client.get_secret(name)
        except ResourceNotFoundError:
            raise SecretNotFoundError(reference) from None
        except AzureError as e:
            raise SecretStoreError(f"failed to read secret '{name}' from Key Vault: {e}") from e

        try:
            data = json.loads(secret.value or "")
        except json.JSONDecodeError as e:
            raise SecretStoreError(f"secret '{name}' does not hold a JSON object") from e
        if not isinstance(data, dict):
            raise SecretStoreError(f"secret '{name}' does not hold a JSON object")
        return _field(data, reference, key)


class UnconfiguredSecretStore:
    """Lookup used when no secret store is configured; every lookup fails."""

    def __call__(self, reference: CredentialsReference, key: str) -> str:
        raise SecretStoreError(
            f"cluster references secret '{reference.path}' but no secret store is configured"
        )


def build_secret_lookup(config: ProviderConfig) -> SecretLookup:
    """Select the secret store named by the configuration.

    Raises:
        SecretlessViolationError: If Key Vault is configured and the
            operator's environment holds secret-based credentials.
    """
    if config.secrets_file is not None:
        return FileSecretStore(config.secrets_file)
    if config.key_vault_url:
        credential = get_managed_identity_credential(config.key_vault_client_id)
        return KeyVaultSecretStore(config.key_vault_url, credential)
    return UnconfiguredSecretStore()
