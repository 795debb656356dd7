"""Cluster record stores.

Stores persist cluster snapshots and implement the update collaborator the
provider uses to record progress: ``update(name, mutate)`` applies a pure
``Cluster -> Cluster`` mutation to the stored version and persists the
result with an incremented ``resource_version``.

``put`` uses optimistic concurrency: writing a snapshot whose
``resource_version`` does not match the stored one raises ConflictError.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path

from .models import Cluster
from .provider import ClusterMutation
from .spec_loader import dump_cluster, load_cluster

logger = logging.getLogger(__name__)


class ClusterNotFoundError(KeyError):
    """Raised when a cluster is not in the store."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"cluster '{self.name}' not found"


class ConflictError(Exception):
    """Raised when a write is based on an outdated resource version."""

    pass


class InMemoryClusterStore:
    """Thread-safe cluster store kept in process memory."""

    def __init__(self, clusters: list[Cluster] | None = None) -> None:
        self._lock = threading.Lock()
        self._clusters: dict[str, Cluster] = {}
        for cluster in clusters or []:
            self._clusters[cluster.name] = cluster

    def get(self, name: str) -> Cluster:
        with self._lock:
            return self._get(name)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._clusters)

    def put(self, cluster: Cluster) -> Cluster:
        """Store a snapshot, creating the cluster if it does not exist yet.

        Raises:
            ConflictError: If the snapshot's resource version is stale.
        """
        with self._lock:
            stored = self._clusters.get(cluster.name)
            if stored is not None and stored.resource_version != cluster.resource_version:
                raise ConflictError(
                    f"cluster '{cluster.name}' was modified: stored version "
                    f"{stored.resource_version}, got {cluster.resource_version}"
                )
            return self._write(cluster)

    def update(self, name: str, mutate: ClusterMutation) -> Cluster:
        """Apply a mutation to the stored cluster and persist the result.

        A mutation that changes nothing is not written and does not bump
        the resource version.

        Raises:
            ClusterNotFoundError: If the cluster does not exist.
        """
        with self._lock:
            stored = self._get(name)
            updated = mutate(stored)
            if updated == stored:
                return stored
            return self._write(updated)

    def _get(self, name: str) -> Cluster:
        try:
            return self._clusters[name]
        except KeyError:
            raise ClusterNotFoundError(name) from None

    def _write(self, cluster: Cluster) -> Cluster:
        stored = cluster.model_copy(update={"resource_version": cluster.resource_version + 1})
        self._persist(stored)
        self._clusters[stored.name] = stored
        logger.debug(
            "Cluster stored",
            extra={"cluster": stored.name, "resource_version": stored.resource_version},
        )
        return stored

    def _persist(self, cluster: Cluster) -> None:
        pass


class FileClusterStore(InMemoryClusterStore):
    """Cluster store backed by a single-cluster YAML document on disk.

    Each write replaces the file atomically, so a crash never leaves a
    partially written document behind.
    """

    def __init__(self, path: Path) -> None:
        super().__init__([load_cluster(path)] if path.exists() else None)
        self.path = path

    def _persist(self, cluster: Cluster) -> None:
        others = [name for name in self._clusters if name != cluster.name]
        if others:
            raise ConflictError(f"{self.path} already holds cluster '{others[0]}'")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(dump_cluster(cluster))
            os.replace(tmp_name, self.path)
        except BaseException:
            os.unlink(tmp_name)
            raise
