"""Cluster infrastructure CLI (clusterinfra).

One-shot operations against a cluster YAML document, plus the long-running
operator loop.

Usage:
    clusterinfra provision cluster.yaml -l westeurope    # Create resources
    clusterinfra reconcile-rules cluster.yaml -l westeurope
    clusterinfra validate cluster.yaml -l westeurope     # Check references
    clusterinfra cleanup cluster.yaml -l westeurope      # Delete resources
    clusterinfra show cluster.yaml                       # Print state
    clusterinfra regions                                 # Fault-domain table
    clusterinfra run                                     # Operator loop
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

import click

from .config import DEFAULT_OPERATION_TIMEOUT_SECONDS
from .credentials import SecretLookup
from .errors import ProviderError
from .main import main as operator_main
from .main import setup_logging
from .models import Finalizer
from .provider import AzureProvider
from .regions import FAULT_DOMAINS_PER_REGION
from .secret_store import FileSecretStore, UnconfiguredSecretStore
from .spec_loader import SpecLoadError, dump_cluster
from .store import ClusterNotFoundError, ConflictError, FileClusterStore

T = TypeVar("T")

CLUSTER_FILE = click.argument(
    "cluster_file", type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
LOCATION = click.option(
    "--location",
    "-l",
    envvar="AZURE_LOCATION",
    required=True,
    help="Azure location for created resources",
)
SECRETS_FILE = click.option(
    "--secrets-file",
    "-s",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    envvar="SECRETS_FILE",
    help="YAML secret store for credentials references",
)
TIMEOUT = click.option(
    "--timeout",
    type=click.IntRange(min=1),
    default=DEFAULT_OPERATION_TIMEOUT_SECONDS,
    show_default=True,
    help="Timeout for long-running Azure operations (seconds)",
)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a provider coroutine, turning provider errors into CLI errors."""
    try:
        return asyncio.run(coro)
    except (ProviderError, ConflictError, ClusterNotFoundError) as e:
        raise click.ClickException(str(e)) from e


def _open_store(cluster_file: Path) -> tuple[FileClusterStore, str]:
    try:
        store = FileClusterStore(cluster_file)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e
    return store, store.names()[0]


def _provider(location: str, secrets_file: Path | None, timeout: int) -> AzureProvider:
    secret_lookup: SecretLookup = (
        FileSecretStore(secrets_file) if secrets_file is not None else UnconfiguredSecretStore()
    )
    return AzureProvider(location, secret_lookup, operation_timeout_seconds=timeout)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="clusterinfra")
@click.option("--verbose", "-v", is_flag=True, help="Emit JSON logs on stdout")
def cli(verbose: bool) -> None:
    """Provision and tear down Azure infrastructure for clusters.

    \b
    Quick Start:
        clusterinfra show cluster.yaml
        clusterinfra provision cluster.yaml -l westeurope -s secrets.yaml
    """
    if verbose:
        setup_logging()


# =============================================================================
# Cluster Commands
# =============================================================================


@cli.command()
@CLUSTER_FILE
@LOCATION
@SECRETS_FILE
@TIMEOUT
def provision(cluster_file: Path, location: str, secrets_file: Path | None, timeout: int) -> None:
    """Create missing resources and restore baseline security rules."""
    store, name = _open_store(cluster_file)
    provider = _provider(location, secrets_file, timeout)

    cluster = _run(provider.initialize(store.get(name), store.update))
    added = _run(provider.add_icmp_rules_if_required(cluster))

    click.secho(f"✓ Cluster '{name}' provisioned", fg="green")
    for rule in added:
        click.echo(f"  added security rule {rule}")


@cli.command()
@CLUSTER_FILE
@LOCATION
@SECRETS_FILE
@TIMEOUT
def cleanup(cluster_file: Path, location: str, secrets_file: Path | None, timeout: int) -> None:
    """Delete every resource that still carries a finalizer."""
    store, name = _open_store(cluster_file)
    provider = _provider(location, secrets_file, timeout)

    cluster = _run(provider.cleanup(store.get(name), store.update))

    click.secho(f"✓ Cluster '{name}' cleaned up", fg="green")
    if cluster.finalizers:
        click.echo(f"  finalizers remaining: {len(cluster.finalizers)}")


@cli.command("reconcile-rules")
@CLUSTER_FILE
@LOCATION
@SECRETS_FILE
@TIMEOUT
def reconcile_rules(
    cluster_file: Path, location: str, secrets_file: Path | None, timeout: int
) -> None:
    """Re-add missing baseline rules to the cluster security group."""
    store, name = _open_store(cluster_file)
    provider = _provider(location, secrets_file, timeout)

    added = _run(provider.add_icmp_rules_if_required(store.get(name)))
    if not added:
        click.echo("No security rules missing")
    for rule in added:
        click.echo(f"Added security rule {rule}")


@cli.command()
@CLUSTER_FILE
@LOCATION
@SECRETS_FILE
def validate(cluster_file: Path, location: str, secrets_file: Path | None) -> None:
    """Check that every referenced resource exists and is readable."""
    store, name = _open_store(cluster_file)
    provider = _provider(location, secrets_file, DEFAULT_OPERATION_TIMEOUT_SECONDS)

    _run(provider.validate_cloud_spec(store.get(name).cloud))
    click.secho(f"✓ Cloud spec of cluster '{name}' is valid", fg="green")


@cli.command()
@CLUSTER_FILE
def show(cluster_file: Path) -> None:
    """Print the cluster document and its finalizers."""
    store, name = _open_store(cluster_file)
    cluster = store.get(name)

    click.echo(dump_cluster(cluster))
    click.echo("Finalizers:")
    for finalizer in Finalizer:
        mark = "✓" if cluster.has_finalizer(finalizer) else "-"
        click.echo(f"  {mark} {finalizer.value}")


@cli.command()
def regions() -> None:
    """List regions with a known fault-domain count."""
    for region, count in sorted(FAULT_DOMAINS_PER_REGION.items()):
        click.echo(f"{region:<20} {count}")


@cli.command()
def run() -> None:
    """Run the operator loop configured from environment variables."""
    sys.exit(asyncio.run(operator_main()))


# =============================================================================
# Entry Point
# =============================================================================


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
