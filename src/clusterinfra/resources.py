"""Ensure and delete operations for each Azure resource kind.

Every ensure operation is a desired-state upsert: it builds the complete
resource descriptor and submits create-or-update, so repeating it with the
same inputs converges on the same remote state. Every delete operation
surfaces "not found" through ``ResourceOperationError.not_found`` so the
teardown orchestrator can treat already-deleted resources as done.

Every SDK call runs in the default executor, and long-running operations
are awaited to completion, all within the context's operation timeout.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any

from azure.core.exceptions import AzureError
from azure.mgmt.compute.models import AvailabilitySet, Sku
from azure.mgmt.network.models import (
    AddressSpace,
    NetworkSecurityGroup,
    RouteTable,
    SecurityRule,
    SecurityRuleAccess,
    SecurityRuleDirection,
    SecurityRuleProtocol,
    Subnet,
    VirtualNetwork,
)
from azure.mgmt.resource.resources.models import ResourceGroup

from .clients import (
    AVAILABILITY_SET,
    RESOURCE_GROUP,
    ROUTE_TABLE,
    SECURITY_GROUP,
    SUBNET,
    VIRTUAL_NETWORK,
    ResourceClients,
    ResourceKind,
    is_not_found,
    run_operation,
)
from .errors import ResourceOperationError
from .models import CLUSTER_TAG_KEY, AzureCloudSpec
from .regions import UPDATE_DOMAIN_COUNT, fault_domain_count

logger = logging.getLogger(__name__)

VNET_ADDRESS_SPACE = "10.0.0.0/16"
SUBNET_ADDRESS_PREFIX = "10.0.0.0/16"
AVAILABILITY_SET_SKU = "Aligned"

# Baseline rule names. Presence is checked by name only.
DENY_ALL_TCP_RULE_NAME = "deny_all_tcp"
DENY_ALL_UDP_RULE_NAME = "deny_all_udp"
ALLOW_ALL_ICMP_RULE_NAME = "icmp_by_allow_all"


@dataclass(frozen=True)
class ResourceContext:
    """Everything an ensure or delete operation needs for one cluster."""

    cloud: AzureCloudSpec
    cluster_name: str
    location: str
    subscription_id: str
    clients: ResourceClients
    timeout_seconds: float

    @property
    def tags(self) -> dict[str, str]:
        return {CLUSTER_TAG_KEY: self.cluster_name}


def resource_name(kind: ResourceKind, cloud: AzureCloudSpec) -> str:
    """Return the identifier recorded in the cloud spec for a kind."""
    names = {
        RESOURCE_GROUP: cloud.resource_group,
        VIRTUAL_NETWORK: cloud.vnet_name,
        SUBNET: cloud.subnet_name,
        ROUTE_TABLE: cloud.route_table_name,
        SECURITY_GROUP: cloud.security_group,
        AVAILABILITY_SET: cloud.availability_set,
    }
    return names[kind]


def resource_scope(kind: ResourceKind, cloud: AzureCloudSpec) -> tuple[str, ...]:
    """Return the positional SDK arguments addressing a resource.

    The VNet and subnet live in the network resource group, which may differ
    from the cluster's primary resource group.
    """
    if kind is RESOURCE_GROUP:
        return (cloud.resource_group,)
    if kind is VIRTUAL_NETWORK:
        return (cloud.network_resource_group, cloud.vnet_name)
    if kind is SUBNET:
        return (cloud.network_resource_group, cloud.vnet_name, cloud.subnet_name)
    return (cloud.resource_group, resource_name(kind, cloud))


def subnet_id(subscription_id: str, cloud: AzureCloudSpec) -> str:
    """Assemble the ARM resource ID of the cluster subnet."""
    return (
        f"/subscriptions/{subscription_id}"
        f"/resourceGroups/{cloud.network_resource_group}"
        f"/providers/Microsoft.Network/virtualNetworks/{cloud.vnet_name}"
        f"/subnets/{cloud.subnet_name}"
    )


# =============================================================================
# Security rules
# =============================================================================


def _inbound_rule(
    name: str,
    protocol: str,
    access: str,
    priority: int,
    *,
    source: str = "*",
    destination: str = "*",
    destination_port: str = "*",
) -> SecurityRule:
    return SecurityRule(
        name=name,
        direction=SecurityRuleDirection.INBOUND,
        protocol=protocol,
        source_address_prefix=source,
        source_port_range="*",
        destination_address_prefix=destination,
        destination_port_range=destination_port,
        access=access,
        priority=priority,
    )


def tcp_deny_all_rule() -> SecurityRule:
    return _inbound_rule(
        DENY_ALL_TCP_RULE_NAME, SecurityRuleProtocol.TCP, SecurityRuleAccess.DENY, 800
    )


def udp_deny_all_rule() -> SecurityRule:
    return _inbound_rule(
        DENY_ALL_UDP_RULE_NAME, SecurityRuleProtocol.UDP, SecurityRuleAccess.DENY, 801
    )


def icmp_allow_all_rule() -> SecurityRule:
    """Allow ICMP by allowing everything not matched by the TCP/UDP deny rules.

    Network security groups cannot filter on ICMP directly, so inbound TCP
    and UDP are denied at 800/801 and this catch-all allow at 900 lets the
    remaining traffic (ICMP) through.
    """
    return _inbound_rule(
        ALLOW_ALL_ICMP_RULE_NAME, SecurityRuleProtocol.ASTERISK, SecurityRuleAccess.ALLOW, 900
    )


BASELINE_RULE_BUILDERS = {
    DENY_ALL_TCP_RULE_NAME: tcp_deny_all_rule,
    DENY_ALL_UDP_RULE_NAME: udp_deny_all_rule,
    ALLOW_ALL_ICMP_RULE_NAME: icmp_allow_all_rule,
}


def baseline_security_rules() -> list[SecurityRule]:
    return [build() for build in BASELINE_RULE_BUILDERS.values()]


def default_security_rules() -> list[SecurityRule]:
    """Rules of a freshly created cluster security group."""
    return [
        _inbound_rule(
            "ssh_ingress",
            SecurityRuleProtocol.TCP,
            SecurityRuleAccess.ALLOW,
            100,
            destination_port="22",
        ),
        _inbound_rule(
            "inter_node_comm",
            SecurityRuleProtocol.ASTERISK,
            SecurityRuleAccess.ALLOW,
            200,
            source="VirtualNetwork",
            destination="VirtualNetwork",
        ),
        _inbound_rule(
            "azure_load_balancer",
            SecurityRuleProtocol.ASTERISK,
            SecurityRuleAccess.ALLOW,
            300,
            source="AzureLoadBalancer",
        ),
        SecurityRule(
            name="outbound_allow_all",
            direction=SecurityRuleDirection.OUTBOUND,
            protocol=SecurityRuleProtocol.ASTERISK,
            source_address_prefix="*",
            source_port_range="*",
            destination_address_prefix="*",
            destination_port_range="*",
            access=SecurityRuleAccess.ALLOW,
            priority=100,
        ),
        *baseline_security_rules(),
    ]


def missing_baseline_rules(existing: list[SecurityRule] | None) -> list[SecurityRule]:
    """Return the baseline rules whose names are absent from ``existing``."""
    present = {rule.name for rule in existing or [] if rule.name}
    return [build() for name, build in BASELINE_RULE_BUILDERS.items() if name not in present]


# =============================================================================
# Remote call helpers
# =============================================================================


def _wrap(action: str, kind: ResourceKind, name: str, error: Exception) -> ResourceOperationError:
    return ResourceOperationError(
        action, kind.name, name, error, not_found=is_not_found(error)
    )


async def _create_or_update(
    ctx: ResourceContext, kind: ResourceKind, parameters: Any
) -> Any:
    name = resource_name(kind, ctx.cloud)
    client = ctx.clients[kind]
    scope = resource_scope(kind, ctx.cloud)
    try:
        return await run_operation(
            functools.partial(client.create_or_update, *scope, parameters=parameters),
            ctx.timeout_seconds,
            long_running=kind.long_running_create,
        )
    except (AzureError, TimeoutError) as e:
        raise _wrap("create or update", kind, name, e) from e


async def _delete(ctx: ResourceContext, kind: ResourceKind) -> None:
    name = resource_name(kind, ctx.cloud)
    client = ctx.clients[kind]
    scope = resource_scope(kind, ctx.cloud)
    try:
        await run_operation(
            functools.partial(client.delete, *scope),
            ctx.timeout_seconds,
            long_running=kind.long_running_delete,
        )
    except (AzureError, TimeoutError) as e:
        raise _wrap("delete", kind, name, e) from e


async def get_resource(ctx: ResourceContext, kind: ResourceKind) -> Any:
    """Read a resource, wrapping any Azure error (not-found included)."""
    name = resource_name(kind, ctx.cloud)
    client = ctx.clients[kind]
    scope = resource_scope(kind, ctx.cloud)
    try:
        return await run_operation(functools.partial(client.get, *scope), ctx.timeout_seconds)
    except (AzureError, TimeoutError) as e:
        raise _wrap("get", kind, name, e) from e


# =============================================================================
# Ensure operations
# =============================================================================


async def ensure_resource_group(ctx: ResourceContext) -> None:
    """Create or update the cluster resource group. Not long-running."""
    parameters = ResourceGroup(location=ctx.location, tags=ctx.tags)
    await _create_or_update(ctx, RESOURCE_GROUP, parameters)
    logger.info(
        "Resource group ensured",
        extra={"resource_group": ctx.cloud.resource_group, "location": ctx.location},
    )


async def ensure_vnet(ctx: ResourceContext) -> None:
    parameters = VirtualNetwork(
        location=ctx.location,
        tags=ctx.tags,
        address_space=AddressSpace(address_prefixes=[VNET_ADDRESS_SPACE]),
    )
    await _create_or_update(ctx, VIRTUAL_NETWORK, parameters)
    logger.info(
        "Virtual network ensured",
        extra={
            "vnet": ctx.cloud.vnet_name,
            "resource_group": ctx.cloud.network_resource_group,
        },
    )


async def ensure_subnet(ctx: ResourceContext) -> None:
    # Subnets are child resources of the VNet and carry no tags of their own
    parameters = Subnet(name=ctx.cloud.subnet_name, address_prefix=SUBNET_ADDRESS_PREFIX)
    await _create_or_update(ctx, SUBNET, parameters)
    logger.info(
        "Subnet ensured",
        extra={"subnet": ctx.cloud.subnet_name, "vnet": ctx.cloud.vnet_name},
    )


async def ensure_route_table(ctx: ResourceContext) -> None:
    parameters = RouteTable(
        location=ctx.location,
        tags=ctx.tags,
        subnets=[
            Subnet(name=ctx.cloud.subnet_name, id=subnet_id(ctx.subscription_id, ctx.cloud))
        ],
    )
    await _create_or_update(ctx, ROUTE_TABLE, parameters)
    logger.info("Route table ensured", extra={"route_table": ctx.cloud.route_table_name})


async def ensure_security_group(ctx: ResourceContext) -> None:
    parameters = NetworkSecurityGroup(
        location=ctx.location,
        tags=ctx.tags,
        subnets=[
            Subnet(name=ctx.cloud.subnet_name, id=subnet_id(ctx.subscription_id, ctx.cloud))
        ],
        security_rules=default_security_rules(),
    )
    await _create_or_update(ctx, SECURITY_GROUP, parameters)
    logger.info("Security group ensured", extra={"security_group": ctx.cloud.security_group})


async def ensure_availability_set(ctx: ResourceContext) -> None:
    """Create or update the availability set.

    Raises:
        UnknownRegionError: If the location has no known fault-domain count.
            Raised before any remote call.
    """
    fault_domains = fault_domain_count(ctx.location)
    parameters = AvailabilitySet(
        location=ctx.location,
        tags=ctx.tags,
        sku=Sku(name=AVAILABILITY_SET_SKU),
        platform_fault_domain_count=fault_domains,
        platform_update_domain_count=UPDATE_DOMAIN_COUNT,
    )
    await _create_or_update(ctx, AVAILABILITY_SET, parameters)
    logger.info(
        "Availability set ensured",
        extra={
            "availability_set": ctx.cloud.availability_set,
            "fault_domains": fault_domains,
        },
    )


# =============================================================================
# Delete operations
# =============================================================================


async def delete_resource_group(ctx: ResourceContext) -> None:
    """Delete the resource group and everything still in it.

    A get precedes the delete so a missing group surfaces as a plain
    not-found instead of a failed long-running operation.
    """
    await get_resource(ctx, RESOURCE_GROUP)
    await _delete(ctx, RESOURCE_GROUP)


async def delete_vnet(ctx: ResourceContext) -> None:
    await _delete(ctx, VIRTUAL_NETWORK)


async def delete_subnet(ctx: ResourceContext) -> None:
    await _delete(ctx, SUBNET)


async def delete_route_table(ctx: ResourceContext) -> None:
    await _delete(ctx, ROUTE_TABLE)


async def delete_security_group(ctx: ResourceContext) -> None:
    await _delete(ctx, SECURITY_GROUP)


async def delete_availability_set(ctx: ResourceContext) -> None:
    await _delete(ctx, AVAILABILITY_SET)


# =============================================================================
# Drift reconciliation
# =============================================================================


async def add_missing_baseline_rules(ctx: ResourceContext) -> list[str]:
    """Append any missing baseline rules to the live security group.

    Existing rules are kept as-is and in order; at most one update is
    submitted, and none when every baseline rule is already present.

    Returns:
        Names of the rules that were added.
    """
    group = await get_resource(ctx, SECURITY_GROUP)
    existing = list(group.security_rules or [])
    missing = missing_baseline_rules(existing)
    if not missing:
        return []

    for rule in missing:
        logger.info(
            "Adding missing security rule",
            extra={"cluster": ctx.cluster_name, "rule": rule.name},
        )

    group.security_rules = existing + missing
    await _create_or_update(ctx, SECURITY_GROUP, group)
    return [rule.name for rule in missing]
