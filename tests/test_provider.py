"""Tests for the provisioning and teardown orchestrators.

These tests use MockAzureContext so the full provider runs against an
in-memory Azure state.
"""

from __future__ import annotations

import asyncio
import threading
import time
from unittest import mock

import pytest
from azure.core.exceptions import ClientAuthenticationError, ResourceNotFoundError
from azure.mgmt.network.models import SecurityRule
from azure_mock import MockAzureContext, MockPoller, http_error
from conftest import TEST_LOCATION, TEST_SUBSCRIPTION_ID, failing_lookup, inline_cloud

from clusterinfra.clients import (
    AVAILABILITY_SET,
    RESOURCE_GROUP,
    ROUTE_TABLE,
    SECURITY_GROUP,
    SUBNET,
    VIRTUAL_NETWORK,
)
from clusterinfra.credentials import CredentialsError
from clusterinfra.errors import CloudSpecValidationError, ProvisioningError, ResourceOperationError
from clusterinfra.models import AzureCloudSpec, Cluster, CredentialsReference, Finalizer
from clusterinfra.provider import CLEANUP_STEPS, PROVISIONING_STEPS, AzureProvider
from clusterinfra.regions import UnknownRegionError
from clusterinfra.store import InMemoryClusterStore

ALL_FINALIZERS = frozenset(Finalizer)


class RecordingUpdater:
    """Wraps a store's update and records the finalizer diff of every call."""

    def __init__(self, store: InMemoryClusterStore) -> None:
        self._store = store
        self.added: list[Finalizer] = []
        self.removed: list[Finalizer] = []

    def __call__(self, name, mutate):
        before = self._store.get(name).finalizers
        after = self._store.update(name, mutate)
        self.added.extend(sorted(after.finalizers - before, key=list(Finalizer).index))
        self.removed.extend(sorted(before - after.finalizers, key=list(Finalizer).index))
        return after


class SlowPoller(MockPoller):
    """Poller whose operation outlasts short test timeouts."""

    def result(self, timeout: float | None = None) -> None:
        time.sleep(0.5)


class TestInitialize:
    """Tests for AzureProvider.initialize."""

    @pytest.mark.asyncio
    async def test_creates_all_resources_with_default_names(
        self,
        provider: AzureProvider,
        cluster: Cluster,
        store: InMemoryClusterStore,
        azure: MockAzureContext,
    ) -> None:
        result = await provider.initialize(cluster, store.update)

        assert result.cloud.resource_group == "kubernetes-demo"
        assert result.cloud.vnet_name == "kubernetes-demo"
        assert result.cloud.subnet_name == "kubernetes-demo"
        assert result.cloud.route_table_name == "kubernetes-demo"
        assert result.cloud.security_group == "kubernetes-demo"
        assert result.cloud.availability_set == "kubernetes-demo"
        assert result.finalizers == ALL_FINALIZERS
        assert store.get("demo") == result

        assert azure.state.exists(RESOURCE_GROUP, "kubernetes-demo")
        assert azure.state.exists(VIRTUAL_NETWORK, "kubernetes-demo", "kubernetes-demo")
        assert azure.state.exists(
            SUBNET, "kubernetes-demo", "kubernetes-demo", "kubernetes-demo"
        )
        assert azure.state.exists(AVAILABILITY_SET, "kubernetes-demo", "kubernetes-demo")

    @pytest.mark.asyncio
    async def test_every_descriptor_with_tags_is_tagged(
        self,
        provider: AzureProvider,
        cluster: Cluster,
        store: InMemoryClusterStore,
        azure: MockAzureContext,
    ) -> None:
        await provider.initialize(cluster, store.update)

        tagged_kinds = (
            RESOURCE_GROUP, VIRTUAL_NETWORK, ROUTE_TABLE, SECURITY_GROUP, AVAILABILITY_SET
        )
        for kind in tagged_kinds:
            resources = [r for (k, _), r in azure.state.resources.items() if k == kind.name]
            assert resources, kind
            assert all(r.tags == {"cluster": "demo"} for r in resources), kind

    @pytest.mark.asyncio
    async def test_resources_are_created_in_order(
        self,
        provider: AzureProvider,
        cluster: Cluster,
        store: InMemoryClusterStore,
        azure: MockAzureContext,
    ) -> None:
        await provider.initialize(cluster, store.update)

        created = [c.kind for c in azure.state.calls if c.method == "create_or_update"]
        assert created == [step.kind.name for step in PROVISIONING_STEPS]

    @pytest.mark.asyncio
    async def test_finalizers_added_in_order(
        self, provider: AzureProvider, cluster: Cluster, store: InMemoryClusterStore
    ) -> None:
        updater = RecordingUpdater(store)

        await provider.initialize(cluster, updater)

        assert updater.added == [
            Finalizer.RESOURCE_GROUP,
            Finalizer.VNET,
            Finalizer.SUBNET,
            Finalizer.ROUTE_TABLE,
            Finalizer.SECURITY_GROUP,
            Finalizer.AVAILABILITY_SET,
        ]

    @pytest.mark.asyncio
    async def test_second_run_makes_no_remote_calls(
        self,
        provider: AzureProvider,
        cluster: Cluster,
        store: InMemoryClusterStore,
        azure: MockAzureContext,
    ) -> None:
        first = await provider.initialize(cluster, store.update)
        calls_after_first = len(azure.state.calls)

        second = await provider.initialize(first, store.update)

        assert second == first
        assert len(azure.state.calls) == calls_after_first

    @pytest.mark.asyncio
    async def test_prefilled_identifiers_are_skipped(
        self, provider: AzureProvider, azure: MockAzureContext
    ) -> None:
        cluster = Cluster(
            name="demo", cloud=inline_cloud(vnet_name="shared-vnet", vnet_resource_group="net-rg")
        )
        store = InMemoryClusterStore([cluster])

        result = await provider.initialize(cluster, store.update)

        assert result.cloud.vnet_name == "shared-vnet"
        assert not result.has_finalizer(Finalizer.VNET)
        assert azure.state.calls_for(VIRTUAL_NETWORK) == []
        # The subnet is created inside the user's VNet and network resource group
        assert azure.state.exists(SUBNET, "net-rg", "shared-vnet", "kubernetes-demo")

    @pytest.mark.asyncio
    async def test_route_table_attached_to_subnet(
        self,
        provider: AzureProvider,
        cluster: Cluster,
        store: InMemoryClusterStore,
        azure: MockAzureContext,
    ) -> None:
        await provider.initialize(cluster, store.update)

        route_table = azure.state.get(ROUTE_TABLE, ("kubernetes-demo", "kubernetes-demo"))
        assert route_table.subnets[0].id == (
            f"/subscriptions/{TEST_SUBSCRIPTION_ID}/resourceGroups/kubernetes-demo"
            "/providers/Microsoft.Network/virtualNetworks/kubernetes-demo"
            "/subnets/kubernetes-demo"
        )

    @pytest.mark.asyncio
    async def test_partial_failure_is_resumable(
        self,
        provider: AzureProvider,
        cluster: Cluster,
        store: InMemoryClusterStore,
        azure: MockAzureContext,
    ) -> None:
        azure.state.fail(SUBNET, "create_or_update", http_error(500), times=1)

        with pytest.raises(ProvisioningError) as exc_info:
            await provider.initialize(cluster, store.update)

        failed = exc_info.value.cluster
        assert failed.finalizers == {Finalizer.RESOURCE_GROUP, Finalizer.VNET}
        assert failed.cloud.subnet_name == ""
        assert store.get("demo") == failed
        assert isinstance(exc_info.value.__cause__, ResourceOperationError)
        assert "subnet" in str(exc_info.value)

        created_before = len(azure.state.calls_for(RESOURCE_GROUP, "create_or_update"))
        result = await provider.initialize(failed, store.update)

        assert result.finalizers == ALL_FINALIZERS
        assert len(azure.state.calls_for(RESOURCE_GROUP, "create_or_update")) == created_before
        assert len(azure.state.calls_for(VIRTUAL_NETWORK, "create_or_update")) == 1
        assert len(azure.state.calls_for(SUBNET, "create_or_update")) == 2

    @pytest.mark.asyncio
    async def test_long_running_failure_aborts(
        self,
        provider: AzureProvider,
        cluster: Cluster,
        store: InMemoryClusterStore,
        azure: MockAzureContext,
    ) -> None:
        azure.state.fail_poller(SECURITY_GROUP, "create_or_update", http_error(409))

        with pytest.raises(ProvisioningError) as exc_info:
            await provider.initialize(cluster, store.update)

        assert exc_info.value.cluster.cloud.security_group == ""
        assert not exc_info.value.cluster.has_finalizer(Finalizer.SECURITY_GROUP)
        assert exc_info.value.cluster.has_finalizer(Finalizer.ROUTE_TABLE)

    @pytest.mark.asyncio
    async def test_unknown_region_fails_before_remote_call(
        self, azure: MockAzureContext, cluster: Cluster, store: InMemoryClusterStore
    ) -> None:
        provider = AzureProvider("marsnorth", failing_lookup, client_factory=azure.client_factory)

        with pytest.raises(ProvisioningError) as exc_info:
            await provider.initialize(cluster, store.update)

        assert isinstance(exc_info.value.__cause__, UnknownRegionError)
        assert azure.state.calls_for(AVAILABILITY_SET) == []
        assert exc_info.value.cluster.has_finalizer(Finalizer.SECURITY_GROUP)
        assert exc_info.value.cluster.cloud.availability_set == ""

    @pytest.mark.asyncio
    async def test_missing_credentials_fail_before_remote_call(
        self, provider: AzureProvider, azure: MockAzureContext
    ) -> None:
        cluster = Cluster(name="demo", cloud=AzureCloudSpec(tenant_id="tenant-1"))
        store = InMemoryClusterStore([cluster])

        with pytest.raises(ProvisioningError) as exc_info:
            await provider.initialize(cluster, store.update)

        assert isinstance(exc_info.value.__cause__, CredentialsError)
        assert "no credentials provided" in str(exc_info.value)
        assert azure.state.calls == []

    @pytest.mark.asyncio
    async def test_authentication_error_is_wrapped(
        self,
        provider: AzureProvider,
        cluster: Cluster,
        store: InMemoryClusterStore,
        azure: MockAzureContext,
    ) -> None:
        azure.state.fail(RESOURCE_GROUP, "create_or_update", ClientAuthenticationError("denied"))

        with pytest.raises(ProvisioningError) as exc_info:
            await provider.initialize(cluster, store.update)

        cause = exc_info.value.__cause__
        assert isinstance(cause, ResourceOperationError)
        assert cause.kind == "resource group"
        assert cause.resource_name == "kubernetes-demo"
        assert not cause.not_found
        assert exc_info.value.cluster.finalizers == frozenset()

    @pytest.mark.asyncio
    async def test_long_running_timeout_aborts(
        self, azure: MockAzureContext, cluster: Cluster, store: InMemoryClusterStore
    ) -> None:
        def slow_factory(credentials):
            clients = azure.client_factory(credentials)
            clients[VIRTUAL_NETWORK].create_or_update = lambda *scope, parameters: SlowPoller()
            return clients

        provider = AzureProvider(
            TEST_LOCATION,
            failing_lookup,
            client_factory=slow_factory,
            operation_timeout_seconds=0.05,
        )

        with pytest.raises(ProvisioningError) as exc_info:
            await provider.initialize(cluster, store.update)

        assert isinstance(exc_info.value.__cause__, ResourceOperationError)
        assert isinstance(exc_info.value.__cause__.__cause__, TimeoutError)
        assert exc_info.value.cluster.finalizers == {Finalizer.RESOURCE_GROUP}

    @pytest.mark.asyncio
    async def test_blocking_call_times_out_without_blocking_loop(
        self, azure: MockAzureContext, cluster: Cluster, store: InMemoryClusterStore
    ) -> None:
        def blocking_factory(credentials):
            clients = azure.client_factory(credentials)
            create = clients[RESOURCE_GROUP].create_or_update

            def slow_create(*scope, parameters):
                time.sleep(1.0)
                return create(*scope, parameters=parameters)

            clients[RESOURCE_GROUP].create_or_update = slow_create
            return clients

        provider = AzureProvider(
            TEST_LOCATION,
            failing_lookup,
            client_factory=blocking_factory,
            operation_timeout_seconds=0.1,
        )
        loop = asyncio.get_running_loop()
        max_stall = 0.0

        async def heartbeat() -> None:
            nonlocal max_stall
            while True:
                before = loop.time()
                await asyncio.sleep(0.05)
                max_stall = max(max_stall, loop.time() - before)

        task = asyncio.create_task(heartbeat())
        started = loop.time()
        try:
            with pytest.raises(ProvisioningError) as exc_info:
                await provider.initialize(cluster, store.update)
        finally:
            task.cancel()

        assert loop.time() - started < 0.8
        assert max_stall < 0.5
        assert isinstance(exc_info.value.__cause__.__cause__, TimeoutError)
        assert exc_info.value.cluster.finalizers == frozenset()

    @pytest.mark.asyncio
    async def test_persist_failure_after_ensure_is_reported(
        self, azure: MockAzureContext, provider: AzureProvider, cluster: Cluster
    ) -> None:
        def failing_update(name, mutate):
            raise OSError("disk full")

        with mock.patch("clusterinfra.provider.log_security_audit_event") as audit:
            with pytest.raises(
                ProvisioningError, match="failed to persist resource group"
            ) as exc_info:
                await provider.initialize(cluster, failing_update)

        assert isinstance(exc_info.value.__cause__, OSError)
        assert exc_info.value.cluster == cluster
        assert azure.state.exists(RESOURCE_GROUP, "kubernetes-demo")
        created = [c for c in audit.call_args_list if c.args[0] == "resource_created"]
        assert [c.kwargs["result"] for c in created] == ["success"]

    @pytest.mark.asyncio
    async def test_credentials_resolved_from_secret_store(
        self, azure: MockAzureContext
    ) -> None:
        secrets = {
            "tenantID": "tenant-from-store",
            "subscriptionID": "sub-from-store",
            "clientSecret": "secret-from-store",
        }
        lookups: list[str] = []

        def lookup(reference: CredentialsReference, key: str) -> str:
            lookups.append(key)
            return secrets[key]

        cloud = AzureCloudSpec(
            client_id="inline-client",
            credentials_reference=CredentialsReference(name="azure-creds"),
        )
        cluster = Cluster(name="demo", cloud=cloud)
        store = InMemoryClusterStore([cluster])
        provider = AzureProvider(TEST_LOCATION, lookup, client_factory=azure.client_factory)

        await provider.initialize(cluster, store.update)

        assert lookups == ["tenantID", "subscriptionID", "clientSecret"]
        credentials = azure.credentials_seen[0]
        assert credentials.client_id == "inline-client"
        assert credentials.subscription_id == "sub-from-store"


class TestCleanup:
    """Tests for AzureProvider.cleanup."""

    @pytest.mark.asyncio
    async def test_deletes_everything_and_removes_finalizers(
        self,
        provider: AzureProvider,
        cluster: Cluster,
        store: InMemoryClusterStore,
        azure: MockAzureContext,
    ) -> None:
        provisioned = await provider.initialize(cluster, store.update)

        result = await provider.cleanup(provisioned, store.update)

        assert result.finalizers == frozenset()
        assert azure.state.resources == {}

    @pytest.mark.asyncio
    async def test_finalizers_removed_in_teardown_order(
        self, provider: AzureProvider, cluster: Cluster, store: InMemoryClusterStore
    ) -> None:
        provisioned = await provider.initialize(cluster, store.update)
        updater = RecordingUpdater(store)

        await provider.cleanup(provisioned, updater)

        assert updater.removed == [step.finalizer for step in CLEANUP_STEPS]
        assert updater.removed == [
            Finalizer.SECURITY_GROUP,
            Finalizer.ROUTE_TABLE,
            Finalizer.SUBNET,
            Finalizer.VNET,
            Finalizer.RESOURCE_GROUP,
            Finalizer.AVAILABILITY_SET,
        ]

    @pytest.mark.asyncio
    async def test_resource_group_checked_before_delete(
        self,
        provider: AzureProvider,
        cluster: Cluster,
        store: InMemoryClusterStore,
        azure: MockAzureContext,
    ) -> None:
        provisioned = await provider.initialize(cluster, store.update)
        azure.state.calls.clear()

        await provider.cleanup(provisioned, store.update)

        group_calls = [c.method for c in azure.state.calls_for(RESOURCE_GROUP)]
        assert group_calls == ["get", "delete"]

    @pytest.mark.asyncio
    async def test_already_deleted_resources_count_as_success(
        self, provider: AzureProvider, azure: MockAzureContext
    ) -> None:
        cloud = inline_cloud(
            resource_group="rg",
            vnet_name="vnet",
            subnet_name="subnet",
            route_table_name="rt",
            security_group="sg",
            availability_set="as",
        )
        cluster = Cluster(name="demo", cloud=cloud, finalizers=ALL_FINALIZERS)
        store = InMemoryClusterStore([cluster])

        result = await provider.cleanup(cluster, store.update)

        assert result.finalizers == frozenset()
        assert store.get("demo").finalizers == frozenset()
        # The availability set goes with its resource group
        assert azure.state.delete_order() == [
            "security group",
            "route table",
            "subnet",
            "virtual network",
            "availability set",
        ]

    @pytest.mark.asyncio
    async def test_http_404_counts_as_not_found(
        self, provider: AzureProvider, azure: MockAzureContext
    ) -> None:
        cluster = Cluster(
            name="demo",
            cloud=inline_cloud(resource_group="rg", security_group="sg"),
            finalizers={Finalizer.SECURITY_GROUP},
        )
        store = InMemoryClusterStore([cluster])
        azure.state.put(SECURITY_GROUP, ("rg", "sg"), object())
        azure.state.fail(SECURITY_GROUP, "delete", http_error(404))

        result = await provider.cleanup(cluster, store.update)

        assert not result.has_finalizer(Finalizer.SECURITY_GROUP)

    @pytest.mark.asyncio
    async def test_already_deleted_log_is_structured(
        self, provider: AzureProvider, caplog: pytest.LogCaptureFixture
    ) -> None:
        cluster = Cluster(
            name="demo",
            cloud=inline_cloud(resource_group="rg", security_group="sg"),
            finalizers={Finalizer.SECURITY_GROUP},
        )
        store = InMemoryClusterStore([cluster])

        with caplog.at_level("INFO", logger="clusterinfra.provider"):
            await provider.cleanup(cluster, store.update)

        records = [r for r in caplog.records if r.getMessage() == "Resource already deleted"]
        assert len(records) == 1
        assert records[0].cluster == "demo"
        assert records[0].kind == SECURITY_GROUP.name
        assert records[0].resource == "sg"

    @pytest.mark.asyncio
    async def test_failure_keeps_finalizer_and_resumes(
        self,
        provider: AzureProvider,
        cluster: Cluster,
        store: InMemoryClusterStore,
        azure: MockAzureContext,
    ) -> None:
        provisioned = await provider.initialize(cluster, store.update)
        azure.state.fail(SUBNET, "delete", http_error(409, "subnet in use"), times=1)

        with pytest.raises(ProvisioningError) as exc_info:
            await provider.cleanup(provisioned, store.update)

        failed = exc_info.value.cluster
        assert failed.finalizers == {
            Finalizer.SUBNET,
            Finalizer.VNET,
            Finalizer.RESOURCE_GROUP,
            Finalizer.AVAILABILITY_SET,
        }
        assert store.get("demo") == failed
        assert "subnet in use" in str(exc_info.value)

        result = await provider.cleanup(failed, store.update)

        assert result.finalizers == frozenset()
        assert len(azure.state.calls_for(SECURITY_GROUP, "delete")) == 1

    @pytest.mark.asyncio
    async def test_no_finalizers_is_noop(
        self, provider: AzureProvider, cluster: Cluster, azure: MockAzureContext
    ) -> None:
        def update(name, mutate):
            raise AssertionError("update must not be called")

        result = await provider.cleanup(cluster, update)

        assert result == cluster
        assert azure.state.calls == []
        assert azure.credentials_seen == []

    @pytest.mark.asyncio
    async def test_cancellation_leaves_last_persisted_state(
        self, azure: MockAzureContext, cluster: Cluster, store: InMemoryClusterStore
    ) -> None:
        gate = threading.Event()

        class BlockingPoller(MockPoller):
            def result(self, timeout: float | None = None) -> None:
                gate.wait(5)

        def blocking_factory(credentials):
            clients = azure.client_factory(credentials)
            clients[ROUTE_TABLE].delete = lambda *scope: BlockingPoller()
            return clients

        provider = AzureProvider(
            TEST_LOCATION, failing_lookup, client_factory=blocking_factory
        )
        provisioned = await provider.initialize(cluster, store.update)

        task = asyncio.create_task(provider.cleanup(provisioned, store.update))
        for _ in range(200):
            if not store.get("demo").has_finalizer(Finalizer.SECURITY_GROUP):
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)
        task.cancel()
        try:
            with pytest.raises(asyncio.CancelledError):
                await task
        finally:
            gate.set()

        stored = store.get("demo")
        assert not stored.has_finalizer(Finalizer.SECURITY_GROUP)
        assert stored.has_finalizer(Finalizer.ROUTE_TABLE)


class TestAddIcmpRules:
    """Tests for AzureProvider.add_icmp_rules_if_required."""

    @pytest.mark.asyncio
    async def test_noop_without_security_group(
        self, provider: AzureProvider, cluster: Cluster, azure: MockAzureContext
    ) -> None:
        assert await provider.add_icmp_rules_if_required(cluster) == []
        assert azure.state.calls == []
        assert azure.credentials_seen == []

    @pytest.mark.asyncio
    async def test_adds_missing_rules_once(
        self, provider: AzureProvider, azure: MockAzureContext
    ) -> None:
        from azure.mgmt.network.models import NetworkSecurityGroup

        existing = [
            SecurityRule(name="custom_b", priority=300, direction="Inbound"),
            SecurityRule(name="custom_a", priority=200, direction="Inbound"),
        ]
        azure.state.put(
            SECURITY_GROUP,
            ("rg", "sg"),
            NetworkSecurityGroup(location=TEST_LOCATION, security_rules=existing),
        )
        cluster = Cluster(name="demo", cloud=inline_cloud(resource_group="rg", security_group="sg"))

        first = await provider.add_icmp_rules_if_required(cluster)
        second = await provider.add_icmp_rules_if_required(cluster)

        assert first == ["deny_all_tcp", "deny_all_udp", "icmp_by_allow_all"]
        assert second == []
        assert len(azure.state.calls_for(SECURITY_GROUP, "create_or_update")) == 1

        rules = azure.state.get(SECURITY_GROUP, ("rg", "sg")).security_rules
        assert [r.name for r in rules] == [
            "custom_b",
            "custom_a",
            "deny_all_tcp",
            "deny_all_udp",
            "icmp_by_allow_all",
        ]
        assert [r.priority for r in rules[2:]] == [800, 801, 900]

    @pytest.mark.asyncio
    async def test_adds_only_missing_rule(
        self,
        provider: AzureProvider,
        cluster: Cluster,
        store: InMemoryClusterStore,
        azure: MockAzureContext,
    ) -> None:
        provisioned = await provider.initialize(cluster, store.update)
        key = ("kubernetes-demo", "kubernetes-demo")
        group = azure.state.get(SECURITY_GROUP, key)
        group.security_rules = [r for r in group.security_rules if r.name != "deny_all_udp"]
        azure.state.put(SECURITY_GROUP, key, group)

        added = await provider.add_icmp_rules_if_required(provisioned)

        assert added == ["deny_all_udp"]
        names = [r.name for r in azure.state.get(SECURITY_GROUP, key).security_rules]
        assert names.count("deny_all_udp") == 1
        assert names[-1] == "deny_all_udp"

    @pytest.mark.asyncio
    async def test_missing_group_raises(
        self, provider: AzureProvider, azure: MockAzureContext
    ) -> None:
        cluster = Cluster(name="demo", cloud=inline_cloud(resource_group="rg", security_group="sg"))

        with pytest.raises(ResourceOperationError) as exc_info:
            await provider.add_icmp_rules_if_required(cluster)

        assert exc_info.value.not_found
        assert isinstance(exc_info.value.__cause__, ResourceNotFoundError)


class TestValidateCloudSpec:
    """Tests for AzureProvider.validate_cloud_spec."""

    @pytest.mark.asyncio
    async def test_existing_resources_validate(
        self,
        provider: AzureProvider,
        cluster: Cluster,
        store: InMemoryClusterStore,
        azure: MockAzureContext,
    ) -> None:
        provisioned = await provider.initialize(cluster, store.update)
        azure.state.calls.clear()

        await provider.validate_cloud_spec(provisioned.cloud)

        assert len(azure.state.calls) == 6
        assert azure.state.mutating_calls() == []

    @pytest.mark.asyncio
    async def test_only_set_identifiers_are_checked(
        self, provider: AzureProvider, azure: MockAzureContext
    ) -> None:
        azure.state.put(VIRTUAL_NETWORK, ("net-rg", "shared-vnet"), object())
        cloud = inline_cloud(vnet_name="shared-vnet", vnet_resource_group="net-rg")

        await provider.validate_cloud_spec(cloud)

        assert [c.kind for c in azure.state.calls] == ["virtual network"]

    @pytest.mark.asyncio
    async def test_missing_resource_fails(
        self, provider: AzureProvider, azure: MockAzureContext
    ) -> None:
        cloud = inline_cloud(resource_group="rg", security_group="missing-sg")
        azure.state.put(RESOURCE_GROUP, ("rg",), object())

        with pytest.raises(CloudSpecValidationError, match="security group 'missing-sg'"):
            await provider.validate_cloud_spec(cloud)

    @pytest.mark.asyncio
    async def test_missing_credentials_fail(self, provider: AzureProvider) -> None:
        with pytest.raises(CredentialsError, match="no credentials provided"):
            await provider.validate_cloud_spec(AzureCloudSpec(resource_group="rg"))
