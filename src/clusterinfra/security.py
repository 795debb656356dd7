"""Operator identity and security audit logging.

Two identities are involved when the provider runs:

1. The operator's own identity, used only to read cluster credentials
   from Azure Key Vault. This is always a Managed Identity; the operator
   refuses to start when password or secret based credentials for itself
   are present in its environment.
2. Each cluster's service principal, resolved per cluster from its cloud
   spec or secret store and never read from the environment.

Security-relevant events (credential resolution, resource creation and
deletion) are logged through ``log_security_audit_event`` so they can be
filtered out of the JSON log stream.
"""

from __future__ import annotations

import logging
import os

from azure.identity import ManagedIdentityCredential

logger = logging.getLogger(__name__)

# Environment variables that would give the operator a secret-based identity
FORBIDDEN_CREDENTIAL_ENV_VARS: tuple[str, ...] = (
    "AZURE_CLIENT_SECRET",
    "AZURE_CLIENT_CERTIFICATE_PATH",
    "AZURE_CLIENT_CERTIFICATE_PASSWORD",
    "AZURE_USERNAME",
    "AZURE_PASSWORD",
)

SECRETLESS_VIOLATION_MESSAGE = (
    "Operator credential found in environment variable {env_var}. "
    "The operator authenticates to Key Vault with a Managed Identity only; "
    "remove the variable and assign a user-assigned identity to the workload. "
    "Cluster service principals belong in the cluster spec or secret store."
)


class SecretlessViolationError(Exception):
    """Raised when the operator's environment carries secret-based credentials.

    Fatal: the operator must not start.
    """

    pass


def mask_identifier(value: str, visible: int = 8) -> str:
    """Shorten an identifier for logging (``abcdef12...``)."""
    if len(value) <= visible:
        return value
    return value[:visible] + "..."


def enforce_secretless_architecture() -> None:
    """Fail if secret-based operator credentials are present in the environment.

    Raises:
        SecretlessViolationError: If any forbidden variable is set.
    """
    for env_var in FORBIDDEN_CREDENTIAL_ENV_VARS:
        if os.environ.get(env_var):
            logger.critical(
                "Secretless architecture violation",
                extra={
                    "security_event": "credential_detected",
                    "env_var": env_var,
                    "action": "startup_blocked",
                },
            )
            raise SecretlessViolationError(SECRETLESS_VIOLATION_MESSAGE.format(env_var=env_var))

    logger.info(
        "Secretless architecture verified",
        extra={
            "security_event": "secretless_verified",
            "credential_type": "ManagedIdentity",
        },
    )


def get_managed_identity_credential(
    client_id: str | None = None,
) -> ManagedIdentityCredential:
    """Return the operator's Managed Identity credential.

    Args:
        client_id: Client ID of a user-assigned identity. None selects the
            system-assigned identity.

    Raises:
        SecretlessViolationError: If secret-based credentials are present.
    """
    enforce_secretless_architecture()

    if client_id:
        logger.info(
            "Using user-assigned managed identity",
            extra={"client_id": mask_identifier(client_id)},
        )
        return ManagedIdentityCredential(client_id=client_id)

    logger.info("Using system-assigned managed identity")
    return ManagedIdentityCredential()


def log_security_audit_event(
    event_type: str,
    cluster_name: str,
    target_resource: str | None = None,
    action: str | None = None,
    result: str | None = None,
) -> None:
    """Log a security-relevant audit event with structured fields.

    Args:
        event_type: Kind of event (credentials, resource_created, ...).
        cluster_name: Cluster the event belongs to.
        target_resource: Azure resource concerned, if any.
        action: Action performed.
        result: Outcome (success, failure, not_found).
    """
    logger.info(
        f"Security audit: {event_type}",
        extra={
            "security_audit": True,
            "event_type": event_type,
            "cluster": cluster_name,
            "target_resource": target_resource,
            "action": action,
            "result": result,
        },
    )
