"""Pytest configuration and fixtures."""

import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from azure_mock import MockAzureContext  # noqa: E402

from clusterinfra.models import AzureCloudSpec, Cluster  # noqa: E402
from clusterinfra.provider import AzureProvider  # noqa: E402
from clusterinfra.store import InMemoryClusterStore  # noqa: E402

TEST_LOCATION = "westeurope"
TEST_SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000001"


def inline_cloud(**overrides: str) -> AzureCloudSpec:
    """Cloud spec with all four credential fields set inline."""
    fields = {
        "tenant_id": "tenant-1",
        "subscription_id": TEST_SUBSCRIPTION_ID,
        "client_id": "client-1",
        "client_secret": "secret-1",
    }
    fields.update(overrides)
    return AzureCloudSpec(**fields)


def failing_lookup(reference: object, key: str) -> str:
    raise AssertionError(f"unexpected secret lookup of {key}")


@pytest.fixture
def azure() -> Generator[MockAzureContext, None, None]:
    with MockAzureContext() as ctx:
        yield ctx


@pytest.fixture
def cluster() -> Cluster:
    return Cluster(name="demo", cloud=inline_cloud())


@pytest.fixture
def store(cluster: Cluster) -> InMemoryClusterStore:
    return InMemoryClusterStore([cluster])


@pytest.fixture
def provider(azure: MockAzureContext) -> AzureProvider:
    return AzureProvider(
        TEST_LOCATION,
        failing_lookup,
        client_factory=azure.client_factory,
        operation_timeout_seconds=5,
    )
