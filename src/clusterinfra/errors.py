"""Provider exception hierarchy.

Configuration errors (missing credentials, unknown region) are fatal and
raised immediately. Remote failures are wrapped with the resource kind and
name they concern. Orchestrator failures carry the last persisted cluster
snapshot so callers can resume from it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Cluster


class ProviderError(Exception):
    """Base class for all provider errors."""

    pass


class ResourceOperationError(ProviderError):
    """Raised when a single remote resource operation fails.

    Attributes:
        action: The attempted action ("create or update", "delete", "get").
        kind: Human-readable resource kind (e.g. "virtual network").
        resource_name: Name of the resource the action targeted.
        not_found: True if the remote API reported the resource as missing.
    """

    def __init__(
        self,
        action: str,
        kind: str,
        resource_name: str,
        cause: BaseException,
        *,
        not_found: bool = False,
    ) -> None:
        super().__init__(f"failed to {action} {kind} '{resource_name}': {cause}")
        self.action = action
        self.kind = kind
        self.resource_name = resource_name
        self.not_found = not_found


class ProvisioningError(ProviderError):
    """Raised when initialize or cleanup aborts part way.

    ``cluster`` is the last snapshot that was successfully persisted; it
    reflects every step completed before the failure.
    """

    def __init__(self, message: str, cluster: Cluster) -> None:
        super().__init__(message)
        self.cluster = cluster


class CloudSpecValidationError(ProviderError):
    """Raised when a referenced resource cannot be read with the resolved credentials."""

    pass
