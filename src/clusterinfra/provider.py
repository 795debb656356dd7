"""Azure cloud provider for cluster infrastructure.

The provider brings a cluster's Azure infrastructure into existence and
tears it down again. Both directions are forward-only and resumable:

- ``initialize`` walks six provisioning steps in a fixed order. A step runs
  only when its identifier in the cloud spec is still empty; it assigns the
  default name, ensures the resource and then persists the identifier
  together with the step's finalizer in a single update.
- ``cleanup`` walks the finalizers in teardown order, deletes the resource
  and removes the finalizer immediately after each successful delete.

Nothing is retried here. A failed step raises ``ProvisioningError``
carrying the last persisted snapshot, and the next invocation picks up
where the previous one stopped.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from . import resources
from .clients import (
    ALL_KINDS,
    AVAILABILITY_SET,
    RESOURCE_GROUP,
    ROUTE_TABLE,
    SECURITY_GROUP,
    SUBNET,
    VIRTUAL_NETWORK,
    ClientFactory,
    ResourceClients,
    ResourceKind,
    build_resource_clients,
)
from .config import DEFAULT_OPERATION_TIMEOUT_SECONDS
from .credentials import Credentials, SecretLookup, resolve_credentials
from .errors import CloudSpecValidationError, ProvisioningError, ResourceOperationError
from .models import AzureCloudSpec, Cluster, Finalizer
from .resources import ResourceContext
from .security import log_security_audit_event, mask_identifier

logger = logging.getLogger(__name__)

ClusterMutation = Callable[[Cluster], Cluster]


class ClusterUpdater(Protocol):
    """Persists a mutation of the named cluster and returns the stored result."""

    def __call__(self, name: str, mutate: ClusterMutation) -> Cluster: ...


@dataclass(frozen=True)
class ProvisioningStep:
    kind: ResourceKind
    field_name: str  # AzureCloudSpec attribute holding the identifier
    finalizer: Finalizer
    ensure: Callable[[ResourceContext], Awaitable[None]]


@dataclass(frozen=True)
class CleanupStep:
    kind: ResourceKind
    finalizer: Finalizer
    delete: Callable[[ResourceContext], Awaitable[None]]


PROVISIONING_STEPS: tuple[ProvisioningStep, ...] = (
    ProvisioningStep(
        RESOURCE_GROUP, "resource_group", Finalizer.RESOURCE_GROUP, resources.ensure_resource_group
    ),
    ProvisioningStep(VIRTUAL_NETWORK, "vnet_name", Finalizer.VNET, resources.ensure_vnet),
    ProvisioningStep(SUBNET, "subnet_name", Finalizer.SUBNET, resources.ensure_subnet),
    ProvisioningStep(
        ROUTE_TABLE, "route_table_name", Finalizer.ROUTE_TABLE, resources.ensure_route_table
    ),
    ProvisioningStep(
        SECURITY_GROUP, "security_group", Finalizer.SECURITY_GROUP, resources.ensure_security_group
    ),
    ProvisioningStep(
        AVAILABILITY_SET,
        "availability_set",
        Finalizer.AVAILABILITY_SET,
        resources.ensure_availability_set,
    ),
)

# The availability set is deleted after its resource group. Deleting the
# group normally removes the set with it, so that last step usually ends
# in not-found, which counts as success.
CLEANUP_STEPS: tuple[CleanupStep, ...] = (
    CleanupStep(SECURITY_GROUP, Finalizer.SECURITY_GROUP, resources.delete_security_group),
    CleanupStep(ROUTE_TABLE, Finalizer.ROUTE_TABLE, resources.delete_route_table),
    CleanupStep(SUBNET, Finalizer.SUBNET, resources.delete_subnet),
    CleanupStep(VIRTUAL_NETWORK, Finalizer.VNET, resources.delete_vnet),
    CleanupStep(RESOURCE_GROUP, Finalizer.RESOURCE_GROUP, resources.delete_resource_group),
    CleanupStep(AVAILABILITY_SET, Finalizer.AVAILABILITY_SET, resources.delete_availability_set),
)


def _assign_identifier(field_name: str, value: str, finalizer: Finalizer) -> ClusterMutation:
    def mutate(cluster: Cluster) -> Cluster:
        return cluster.with_cloud(**{field_name: value}).with_finalizer(finalizer)

    return mutate


def _remove_finalizer(finalizer: Finalizer) -> ClusterMutation:
    def mutate(cluster: Cluster) -> Cluster:
        return cluster.without_finalizer(finalizer)

    return mutate


class AzureProvider:
    """Provisions and tears down the Azure resources of clusters."""

    def __init__(
        self,
        location: str,
        secret_lookup: SecretLookup,
        *,
        client_factory: ClientFactory = build_resource_clients,
        operation_timeout_seconds: float = DEFAULT_OPERATION_TIMEOUT_SECONDS,
        audit_logging: bool = True,
    ) -> None:
        self.location = location
        self._secret_lookup = secret_lookup
        self._client_factory = client_factory
        self._operation_timeout_seconds = operation_timeout_seconds
        self._audit_logging = audit_logging

    # -------------------------------------------------------------------------
    # Provisioning
    # -------------------------------------------------------------------------

    async def initialize(self, cluster: Cluster, update: ClusterUpdater) -> Cluster:
        """Ensure every cluster resource exists.

        Args:
            cluster: Current cluster snapshot.
            update: Persists a mutation and returns the stored snapshot.

        Returns:
            The snapshot after the last persisted step.

        Raises:
            ProvisioningError: If credentials cannot be resolved, a resource
                cannot be ensured or a step cannot be persisted. Its
                ``cluster`` holds every step completed before the failure.
        """
        current = cluster
        pending = [
            step for step in PROVISIONING_STEPS if not getattr(cluster.cloud, step.field_name)
        ]
        if not pending:
            logger.debug(
                "All cluster resources already provisioned", extra={"cluster": cluster.name}
            )
            return cluster

        try:
            credentials, clients = self._connect(cluster)
        except Exception as e:
            raise ProvisioningError(
                f"failed to resolve credentials for cluster '{cluster.name}': {e}", current
            ) from e

        for step in pending:
            name = current.default_resource_name
            planned = current.with_cloud(**{step.field_name: name})
            mutate = _assign_identifier(step.field_name, name, step.finalizer)
            try:
                await step.ensure(self._context(planned, credentials, clients))
            except Exception as e:
                self._audit("resource_created", cluster.name, step.kind, name, "failure")
                raise ProvisioningError(
                    f"failed to ensure {step.kind} for cluster '{cluster.name}': {e}", current
                ) from e

            self._audit("resource_created", cluster.name, step.kind, name, "success")

            try:
                current = update(current.name, mutate)
            except Exception as e:
                raise ProvisioningError(
                    f"failed to persist {step.kind} for cluster '{cluster.name}': {e}", current
                ) from e

        logger.info(
            "Cluster infrastructure provisioned",
            extra={"cluster": cluster.name, "steps": len(pending)},
        )
        return current

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def cleanup(self, cluster: Cluster, update: ClusterUpdater) -> Cluster:
        """Delete every resource whose finalizer is still set.

        Resources that are already gone count as deleted.

        Raises:
            ProvisioningError: On any other failure. The finalizer of the
                failed step stays set.
        """
        pending = [step for step in CLEANUP_STEPS if cluster.has_finalizer(step.finalizer)]
        if not pending:
            return cluster

        current = cluster
        try:
            credentials, clients = self._connect(cluster)
        except Exception as e:
            raise ProvisioningError(
                f"failed to resolve credentials for cluster '{cluster.name}': {e}", current
            ) from e

        for step in pending:
            ctx = self._context(current, credentials, clients)
            name = resources.resource_name(step.kind, current.cloud)
            result = "success"
            try:
                await step.delete(ctx)
            except ResourceOperationError as e:
                if not e.not_found:
                    self._audit("resource_deleted", cluster.name, step.kind, name, "failure")
                    raise ProvisioningError(
                        f"failed to delete {step.kind} for cluster '{cluster.name}': {e}", current
                    ) from e
                logger.info(
                    "Resource already deleted",
                    extra={"cluster": cluster.name, "kind": step.kind.name, "resource": name},
                )
                result = "not_found"
            except Exception as e:
                raise ProvisioningError(
                    f"failed to delete {step.kind} for cluster '{cluster.name}': {e}", current
                ) from e

            try:
                current = update(current.name, _remove_finalizer(step.finalizer))
            except Exception as e:
                raise ProvisioningError(
                    f"failed to remove finalizer {step.finalizer.value} "
                    f"from cluster '{cluster.name}': {e}",
                    current,
                ) from e

            self._audit("resource_deleted", cluster.name, step.kind, name, result)

        logger.info("Cluster infrastructure deleted", extra={"cluster": cluster.name})
        return current

    # -------------------------------------------------------------------------
    # Drift reconciliation and validation
    # -------------------------------------------------------------------------

    async def add_icmp_rules_if_required(self, cluster: Cluster) -> list[str]:
        """Add missing baseline rules to the cluster's security group.

        Returns:
            Names of the added rules; empty when nothing was missing or the
            cluster has no security group yet.

        Raises:
            CredentialsError: If credentials cannot be resolved.
            ResourceOperationError: If the group cannot be read or updated.
        """
        if not cluster.cloud.security_group:
            return []

        credentials, clients = self._connect(cluster)
        added = await resources.add_missing_baseline_rules(
            self._context(cluster, credentials, clients)
        )
        if added:
            self._audit(
                "security_rules_added",
                cluster.name,
                SECURITY_GROUP,
                cluster.cloud.security_group,
                "success",
            )
        return added

    async def validate_cloud_spec(self, cloud: AzureCloudSpec) -> None:
        """Check that every referenced resource is readable.

        Only identifiers that are set are checked. Nothing is modified.

        Raises:
            CredentialsError: If credentials cannot be resolved.
            CloudSpecValidationError: If any referenced resource cannot be read.
        """
        credentials = resolve_credentials(cloud, self._secret_lookup)
        clients = self._client_factory(credentials)
        ctx = ResourceContext(
            cloud=cloud,
            cluster_name="",
            location=self.location,
            subscription_id=credentials.subscription_id,
            clients=clients,
            timeout_seconds=self._operation_timeout_seconds,
        )

        for kind in ALL_KINDS:
            name = resources.resource_name(kind, cloud)
            if not name:
                continue
            try:
                await resources.get_resource(ctx, kind)
            except ResourceOperationError as e:
                raise CloudSpecValidationError(f"failed to get {kind} '{name}': {e}") from e

        logger.debug("Cloud spec validated", extra={"location": self.location})

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _connect(self, cluster: Cluster) -> tuple[Credentials, ResourceClients]:
        credentials = resolve_credentials(cluster.cloud, self._secret_lookup)
        if self._audit_logging:
            log_security_audit_event(
                "credentials",
                cluster.name,
                target_resource=f"/subscriptions/{credentials.subscription_id}",
                action=f"resolve client {mask_identifier(credentials.client_id)}",
                result="success",
            )
        return credentials, self._client_factory(credentials)

    def _context(
        self, cluster: Cluster, credentials: Credentials, clients: ResourceClients
    ) -> ResourceContext:
        return ResourceContext(
            cloud=cluster.cloud,
            cluster_name=cluster.name,
            location=self.location,
            subscription_id=credentials.subscription_id,
            clients=clients,
            timeout_seconds=self._operation_timeout_seconds,
        )

    def _audit(
        self, event_type: str, cluster_name: str, kind: ResourceKind, name: str, result: str
    ) -> None:
        if self._audit_logging:
            log_security_audit_event(
                event_type,
                cluster_name,
                target_resource=f"{kind.name}/{name}",
                action=event_type.removeprefix("resource_"),
                result=result,
            )
