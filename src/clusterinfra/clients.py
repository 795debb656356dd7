"""Azure resource clients, one per resource kind.

The six resource kinds differ only in which management client and
operations group they live on, and in which of their calls are long-running.
A ``ResourceKind`` descriptor captures those differences so a single
``AzureResourceClient`` can serve all of them.

Scope arguments are positional and follow the Azure SDK signatures:
    resource group:   (resource_group,)
    subnet:           (resource_group, vnet_name, subnet_name)
    everything else:  (resource_group, resource_name)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.resource.resources import ResourceManagementClient

from .credentials import Credentials

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404


@dataclass(frozen=True)
class ResourceKind:
    """Static description of one Azure resource kind."""

    name: str
    management_client: str  # "resource", "network" or "compute"
    operations: str  # attribute of the management client
    create_method: str
    delete_method: str
    long_running_create: bool
    long_running_delete: bool

    def __str__(self) -> str:
        return self.name


RESOURCE_GROUP = ResourceKind(
    name="resource group",
    management_client="resource",
    operations="resource_groups",
    create_method="create_or_update",
    delete_method="begin_delete",
    long_running_create=False,
    long_running_delete=True,
)
VIRTUAL_NETWORK = ResourceKind(
    name="virtual network",
    management_client="network",
    operations="virtual_networks",
    create_method="begin_create_or_update",
    delete_method="begin_delete",
    long_running_create=True,
    long_running_delete=True,
)
SUBNET = ResourceKind(
    name="subnet",
    management_client="network",
    operations="subnets",
    create_method="begin_create_or_update",
    delete_method="begin_delete",
    long_running_create=True,
    long_running_delete=True,
)
ROUTE_TABLE = ResourceKind(
    name="route table",
    management_client="network",
    operations="route_tables",
    create_method="begin_create_or_update",
    delete_method="begin_delete",
    long_running_create=True,
    long_running_delete=True,
)
SECURITY_GROUP = ResourceKind(
    name="security group",
    management_client="network",
    operations="network_security_groups",
    create_method="begin_create_or_update",
    delete_method="begin_delete",
    long_running_create=True,
    long_running_delete=True,
)
AVAILABILITY_SET = ResourceKind(
    name="availability set",
    management_client="compute",
    operations="availability_sets",
    create_method="create_or_update",
    delete_method="delete",
    long_running_create=False,
    long_running_delete=False,
)

ALL_KINDS: tuple[ResourceKind, ...] = (
    RESOURCE_GROUP,
    VIRTUAL_NETWORK,
    SUBNET,
    ROUTE_TABLE,
    SECURITY_GROUP,
    AVAILABILITY_SET,
)


class ResourceClient(Protocol):
    """Minimal get / create-or-update / delete surface for one resource kind.

    ``create_or_update`` and ``delete`` return an LROPoller when the kind's
    corresponding call is long-running, otherwise the resource (or None).
    """

    kind: ResourceKind

    def get(self, *scope: str) -> Any: ...

    def create_or_update(self, *scope: str, parameters: Any) -> Any: ...

    def delete(self, *scope: str) -> Any: ...


class AzureResourceClient:
    """ResourceClient backed by an Azure SDK operations group."""

    def __init__(self, kind: ResourceKind, operations: Any) -> None:
        self.kind = kind
        self._operations = operations

    def get(self, *scope: str) -> Any:
        return self._operations.get(*scope)

    def create_or_update(self, *scope: str, parameters: Any) -> Any:
        return getattr(self._operations, self.kind.create_method)(*scope, parameters)

    def delete(self, *scope: str) -> Any:
        return getattr(self._operations, self.kind.delete_method)(*scope)


class ResourceClients(Mapping[ResourceKind, ResourceClient]):
    """Read-only mapping of resource kind to its client."""

    def __init__(self, clients: Mapping[ResourceKind, ResourceClient]) -> None:
        missing = [kind.name for kind in ALL_KINDS if kind not in clients]
        if missing:
            raise ValueError(f"missing resource clients for: {', '.join(missing)}")
        self._clients = dict(clients)

    def __getitem__(self, kind: ResourceKind) -> ResourceClient:
        return self._clients[kind]

    def __iter__(self) -> Iterator[ResourceKind]:
        return iter(self._clients)

    def __len__(self) -> int:
        return len(self._clients)


ClientFactory = Callable[[Credentials], ResourceClients]


def build_resource_clients(credentials: Credentials) -> ResourceClients:
    """Build Azure SDK backed clients for every resource kind.

    Args:
        credentials: Resolved service principal credentials.

    Returns:
        ResourceClients sharing one token credential and subscription.
    """
    token_credential = credentials.to_token_credential()
    management_clients: dict[str, Any] = {
        "resource": ResourceManagementClient(token_credential, credentials.subscription_id),
        "network": NetworkManagementClient(token_credential, credentials.subscription_id),
        "compute": ComputeManagementClient(token_credential, credentials.subscription_id),
    }

    logger.debug(
        "Built Azure resource clients",
        extra={"subscription_id": credentials.subscription_id},
    )

    return ResourceClients(
        {
            kind: AzureResourceClient(
                kind, getattr(management_clients[kind.management_client], kind.operations)
            )
            for kind in ALL_KINDS
        }
    )


def is_not_found(error: BaseException) -> bool:
    """Check whether an Azure error means the resource does not exist."""
    if isinstance(error, ResourceNotFoundError):
        return True
    return isinstance(error, HttpResponseError) and error.status_code == HTTP_NOT_FOUND


async def run_operation(
    start: Callable[[], Any], timeout_seconds: float, *, long_running: bool = False
) -> Any:
    """Run a blocking SDK call off the event loop under one deadline.

    ``start`` is the client call itself. When ``long_running`` is set it
    returns an LROPoller, and the poller's result is awaited under the same
    deadline.

    Raises:
        TimeoutError: If the call and any polling do not finish in time.
        HttpResponseError: If the operation fails remotely.
    """
    loop = asyncio.get_event_loop()

    async def operation() -> Any:
        result = await loop.run_in_executor(None, start)
        if long_running:
            result = await loop.run_in_executor(None, result.result)
        return result

    return await asyncio.wait_for(operation(), timeout=timeout_seconds)
