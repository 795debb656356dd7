"""Reconciliation loop for one cluster.

Each cycle reads the stored cluster and drives it towards its desired
state:

1. Deletion requested: tear down every resource that still has a finalizer
2. Otherwise: provision missing resources, then restore any baseline
   security rules that were removed out of band

Provisioning and teardown record progress in the store after every step,
so a failed cycle is simply resumed by the next one.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from .config import ProviderConfig
from .provider import AzureProvider
from .store import InMemoryClusterStore

logger = logging.getLogger(__name__)

# Circuit breaker settings
MAX_CONSECUTIVE_FAILURES = 5
CIRCUIT_BREAKER_RESET_SECONDS = 300  # 5 minutes


class ReconcileAction(str, Enum):
    PROVISION = "provision"
    CLEANUP = "cleanup"


@dataclass
class ReconcileResult:
    """Result of a single reconciliation cycle."""

    cluster: str
    action: ReconcileAction = ReconcileAction.PROVISION
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    rules_added: list[str] = field(default_factory=list)
    finalizers_remaining: int = 0
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None


class ClusterReconciler:
    """Runs reconciliation cycles for a single cluster until shutdown."""

    def __init__(
        self,
        config: ProviderConfig,
        provider: AzureProvider,
        store: InMemoryClusterStore,
        name: str,
    ) -> None:
        self._config = config
        self._provider = provider
        self._store = store
        self._name = name

        self._shutdown_event = asyncio.Event()
        self._consecutive_failures = 0
        self._circuit_open_until: datetime | None = None

    async def reconcile_once(self) -> ReconcileResult:
        """Run one reconciliation cycle. Errors are captured in the result."""
        result = ReconcileResult(cluster=self._name)
        try:
            cluster = self._store.get(self._name)
            if cluster.deletion_requested:
                result.action = ReconcileAction.CLEANUP
                cluster = await self._provider.cleanup(cluster, self._store.update)
            else:
                cluster = await self._provider.initialize(cluster, self._store.update)
                result.rules_added = await self._provider.add_icmp_rules_if_required(cluster)
            result.finalizers_remaining = len(cluster.finalizers)
        except Exception as e:
            result.error = e
        finally:
            result.end_time = datetime.now(UTC)
        return result

    async def run(self) -> None:
        """Run reconciliation cycles at the configured interval until shutdown.

        After MAX_CONSECUTIVE_FAILURES failed cycles the circuit opens and
        reconciliation pauses for CIRCUIT_BREAKER_RESET_SECONDS.
        """
        logger.info(
            "Starting reconciler",
            extra={
                "cluster": self._name,
                "location": self._config.location,
                "interval_seconds": self._config.reconcile_interval_seconds,
            },
        )

        while not self._shutdown_event.is_set():
            if self._circuit_open_until is not None:
                now = datetime.now(UTC)
                if now < self._circuit_open_until:
                    remaining = (self._circuit_open_until - now).total_seconds()
                    logger.warning(
                        "Circuit breaker open, skipping reconciliation",
                        extra={
                            "cluster": self._name,
                            "remaining_seconds": remaining,
                            "consecutive_failures": self._consecutive_failures,
                        },
                    )
                    await self._wait(min(remaining, self._config.reconcile_interval_seconds))
                    continue

                logger.info(
                    "Circuit breaker reset, resuming reconciliation",
                    extra={"cluster": self._name},
                )
                self._circuit_open_until = None
                self._consecutive_failures = 0

            result = await self.reconcile_once()
            self._log_result(result)
            self._record(result)

            await self._wait(self._config.reconcile_interval_seconds)

        logger.info("Reconciler shutdown complete", extra={"cluster": self._name})

    def shutdown(self) -> None:
        """Signal the reconciler to stop."""
        logger.info("Shutdown requested", extra={"cluster": self._name})
        self._shutdown_event.set()

    def _record(self, result: ReconcileResult) -> None:
        if result.error is None:
            self._consecutive_failures = 0
            return

        self._consecutive_failures += 1
        if self._consecutive_failures >= MAX_CONSECUTIVE_FAILURES:
            self._circuit_open_until = datetime.now(UTC) + timedelta(
                seconds=CIRCUIT_BREAKER_RESET_SECONDS
            )
            logger.error(
                "Circuit breaker opened after consecutive failures",
                extra={
                    "cluster": self._name,
                    "consecutive_failures": self._consecutive_failures,
                    "reset_seconds": CIRCUIT_BREAKER_RESET_SECONDS,
                },
            )

    async def _wait(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
        except TimeoutError:
            # Normal timeout, continue to next cycle
            pass

    def _log_result(self, result: ReconcileResult) -> None:
        extra: dict[str, Any] = {
            "cluster": result.cluster,
            "action": result.action.value,
            "duration_seconds": result.duration_seconds,
            "finalizers_remaining": result.finalizers_remaining,
        }
        if result.rules_added:
            extra["rules_added"] = result.rules_added

        if result.error is not None:
            extra["error"] = str(result.error)
            logger.error("Reconciliation failed", extra=extra)
        elif result.rules_added:
            logger.warning("Reconciliation: security rule drift repaired", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
