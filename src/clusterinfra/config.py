"""Configuration management with validation.

All settings come from environment variables and are validated when the
configuration is built, so a misconfigured operator fails at startup
rather than half way through provisioning a cluster.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


DEFAULT_RECONCILE_INTERVAL_SECONDS = 300
MIN_RECONCILE_INTERVAL_SECONDS = 60
MAX_RECONCILE_INTERVAL_SECONDS = 3600

DEFAULT_OPERATION_TIMEOUT_SECONDS = 1800
MIN_OPERATION_TIMEOUT_SECONDS = 30

DEFAULT_CLUSTER_STATE_FILE = "/var/lib/clusterinfra/cluster.yaml"

# Size limit for cluster and secrets YAML documents
MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024

VALID_LOCATION_PATTERN = r"^[a-z]{2,}[a-z0-9]*$"
VALID_KEY_VAULT_URL_PATTERN = r"^https://[a-z0-9-]{3,24}\.vault\.[a-z0-9.]+/?$"


@dataclass(frozen=True)
class ProviderConfig:
    """Operator configuration loaded from environment variables.

    Exactly one secret store may be configured: a local YAML file
    (``secrets_file``) or an Azure Key Vault (``key_vault_url``). With
    neither, every cluster must carry its credentials inline.
    """

    location: str

    cluster_state_file: Path = field(default_factory=lambda: Path(DEFAULT_CLUSTER_STATE_FILE))
    secrets_file: Path | None = None
    key_vault_url: str | None = None
    key_vault_client_id: str | None = None

    reconcile_interval_seconds: int = DEFAULT_RECONCILE_INTERVAL_SECONDS
    operation_timeout_seconds: int = DEFAULT_OPERATION_TIMEOUT_SECONDS

    enable_audit_logging: bool = True

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.location:
            errors.append("AZURE_LOCATION is required")
        elif not re.match(VALID_LOCATION_PATTERN, self.location):
            errors.append(f"AZURE_LOCATION must be a valid Azure region: {self.location}")

        if self.secrets_file is not None and self.key_vault_url:
            errors.append("SECRETS_FILE and KEY_VAULT_URL are mutually exclusive")

        if self.secrets_file is not None and not self.secrets_file.is_file():
            errors.append(f"Secrets file does not exist: {self.secrets_file}")

        if self.key_vault_url and not re.match(VALID_KEY_VAULT_URL_PATTERN, self.key_vault_url):
            errors.append(f"KEY_VAULT_URL must be a Key Vault URL: {self.key_vault_url}")

        if self.key_vault_client_id and not self.key_vault_url:
            errors.append("KEY_VAULT_CLIENT_ID requires KEY_VAULT_URL")

        if not (
            MIN_RECONCILE_INTERVAL_SECONDS
            <= self.reconcile_interval_seconds
            <= MAX_RECONCILE_INTERVAL_SECONDS
        ):
            errors.append(
                f"RECONCILE_INTERVAL must be between {MIN_RECONCILE_INTERVAL_SECONDS} "
                f"and {MAX_RECONCILE_INTERVAL_SECONDS} seconds"
            )

        if self.operation_timeout_seconds < MIN_OPERATION_TIMEOUT_SECONDS:
            errors.append(
                f"OPERATION_TIMEOUT must be at least {MIN_OPERATION_TIMEOUT_SECONDS} seconds"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> ProviderConfig:
        """Load configuration from environment variables.

        Environment Variables:
            AZURE_LOCATION: Datacenter location for created resources (required)
            CLUSTER_STATE_FILE: YAML cluster document
                (default: /var/lib/clusterinfra/cluster.yaml)
            SECRETS_FILE: YAML secret store for credentials references
            KEY_VAULT_URL: Key Vault secret store for credentials references
            KEY_VAULT_CLIENT_ID: User-assigned identity used for Key Vault
            RECONCILE_INTERVAL: Seconds between reconciliations (default: 300)
            OPERATION_TIMEOUT: Timeout for long-running Azure operations
                in seconds (default: 1800)
            ENABLE_AUDIT_LOGGING: Emit security audit events (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        secrets_file = os.environ.get("SECRETS_FILE")

        return cls(
            location=os.environ.get("AZURE_LOCATION", ""),
            cluster_state_file=Path(
                os.environ.get("CLUSTER_STATE_FILE", DEFAULT_CLUSTER_STATE_FILE)
            ),
            secrets_file=Path(secrets_file) if secrets_file else None,
            key_vault_url=os.environ.get("KEY_VAULT_URL") or None,
            key_vault_client_id=os.environ.get("KEY_VAULT_CLIENT_ID") or None,
            reconcile_interval_seconds=get_int(
                "RECONCILE_INTERVAL", DEFAULT_RECONCILE_INTERVAL_SECONDS
            ),
            operation_timeout_seconds=get_int(
                "OPERATION_TIMEOUT", DEFAULT_OPERATION_TIMEOUT_SECONDS
            ),
            enable_audit_logging=get_bool("ENABLE_AUDIT_LOGGING", True),
        )
