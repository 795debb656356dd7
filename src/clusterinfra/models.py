"""Pydantic models for the cluster record and its Azure cloud spec.

These models provide:
1. Type-safe YAML parsing of the persisted cluster document
2. Immutable snapshots (every change produces a new instance)
3. Finalizer bookkeeping as an enum set with idempotent add/remove
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, field_serializer

# Prefix for identifiers assigned by the provider ("kubernetes-<cluster>")
RESOURCE_NAME_PREFIX = "kubernetes-"

# Tag key binding every created resource to its owning cluster
CLUSTER_TAG_KEY = "cluster"


class Finalizer(str, Enum):
    """Cleanup markers, one per resource kind owned by the provider."""

    RESOURCE_GROUP = "azure.clusterinfra.io/cleanup-resource-group"
    VNET = "azure.clusterinfra.io/cleanup-vnet"
    SUBNET = "azure.clusterinfra.io/cleanup-subnet"
    ROUTE_TABLE = "azure.clusterinfra.io/cleanup-route-table"
    SECURITY_GROUP = "azure.clusterinfra.io/cleanup-security-group"
    AVAILABILITY_SET = "azure.clusterinfra.io/cleanup-availability-set"


class CredentialsReference(BaseModel):
    """Pointer to an external secret holding Azure service principal fields."""

    model_config = {"extra": "ignore", "frozen": True}

    name: Annotated[str, Field(min_length=1)]
    namespace: str = "default"

    @property
    def path(self) -> str:
        return f"{self.namespace}/{self.name}"


class AzureCloudSpec(BaseModel):
    """Azure part of a cluster's cloud spec.

    Resource identifiers start empty and are filled in by the provider as
    each resource is created. Users may pre-fill them to reference existing
    resources, in which case the provider neither creates nor deletes them.
    """

    model_config = {"extra": "ignore", "frozen": True, "populate_by_name": True}

    # Resource identifiers
    resource_group: str = Field("", alias="resourceGroup")
    vnet_name: str = Field("", alias="vnetName")
    vnet_resource_group: str = Field("", alias="vnetResourceGroup")
    subnet_name: str = Field("", alias="subnetName")
    route_table_name: str = Field("", alias="routeTableName")
    security_group: str = Field("", alias="securityGroup")
    availability_set: str = Field("", alias="availabilitySet")

    # Inline credentials (each may be empty and resolved from the secret store)
    tenant_id: str = Field("", alias="tenantID")
    subscription_id: str = Field("", alias="subscriptionID")
    client_id: str = Field("", alias="clientID")
    client_secret: str = Field("", alias="clientSecret", repr=False)

    credentials_reference: CredentialsReference | None = Field(
        None, alias="credentialsReference"
    )

    @property
    def network_resource_group(self) -> str:
        """Resource group holding the VNet and subnet."""
        return self.vnet_resource_group or self.resource_group


class Cluster(BaseModel):
    """Immutable snapshot of a cluster record.

    Mutation helpers return new snapshots; the cluster store applies them
    and bumps ``resource_version`` on every persisted change.
    """

    model_config = {"extra": "ignore", "frozen": True, "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=63, pattern=r"^[a-z0-9][a-z0-9-]*$")]
    cloud: AzureCloudSpec = Field(default_factory=AzureCloudSpec)
    finalizers: frozenset[Finalizer] = Field(default_factory=frozenset)
    resource_version: int = Field(0, alias="resourceVersion", ge=0)
    deletion_requested: bool = Field(False, alias="deletionRequested")

    @field_serializer("finalizers")
    def _serialize_finalizers(self, finalizers: frozenset[Finalizer]) -> list[str]:
        # Stable ordering keeps the YAML document diff-friendly
        return sorted(f.value for f in finalizers)

    @property
    def default_resource_name(self) -> str:
        return f"{RESOURCE_NAME_PREFIX}{self.name}"

    @property
    def tags(self) -> dict[str, str]:
        """Ownership tags applied to every resource created for this cluster."""
        return {CLUSTER_TAG_KEY: self.name}

    def has_finalizer(self, finalizer: Finalizer) -> bool:
        return finalizer in self.finalizers

    def with_finalizer(self, finalizer: Finalizer) -> Cluster:
        if finalizer in self.finalizers:
            return self
        return self.model_copy(update={"finalizers": self.finalizers | {finalizer}})

    def without_finalizer(self, finalizer: Finalizer) -> Cluster:
        if finalizer not in self.finalizers:
            return self
        return self.model_copy(update={"finalizers": self.finalizers - {finalizer}})

    def with_cloud(self, **changes: Any) -> Cluster:
        """Return a snapshot with the given cloud spec fields replaced."""
        return self.model_copy(update={"cloud": self.cloud.model_copy(update=changes)})

    def to_document(self) -> dict[str, Any]:
        """Render as a camelCase mapping suitable for YAML persistence."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
