"""Main entry point for the cluster infrastructure operator.

The operator reconciles the single cluster stored in CLUSTER_STATE_FILE:
it provisions the cluster's Azure resources, keeps the baseline security
rules in place and tears everything down once deletion is requested.

Exit codes:
    0: Stopped cleanly
    1: Configuration or runtime error
    2: Security violation (secret-based operator credentials in environment)
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime

from .config import ConfigurationError, ProviderConfig
from .provider import AzureProvider
from .reconciler import ClusterReconciler
from .secret_store import build_secret_lookup
from .security import SecretlessViolationError
from .spec_loader import SpecLoadError
from .store import FileClusterStore

# LogRecord attributes that are not structured "extra" fields
_RESERVED_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    """Format log records as single-line JSON, including ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class AuditFilter(logging.Filter):
    """Drop security audit events when audit logging is disabled."""

    def filter(self, record: logging.LogRecord) -> bool:
        return not getattr(record, "security_audit", False)


def setup_logging(enable_audit_logging: bool = True) -> None:
    """Configure structured JSON logging on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    if not enable_audit_logging:
        handler.addFilter(AuditFilter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO)

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


async def main() -> int:
    """Run the operator.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    logger = logging.getLogger(__name__)

    try:
        config = ProviderConfig.from_env()
    except ConfigurationError as e:
        setup_logging()
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(config.enable_audit_logging)

    try:
        secret_lookup = build_secret_lookup(config)
        store = FileClusterStore(config.cluster_state_file)
    except SecretlessViolationError as e:
        logger.critical(
            "Security violation: credentials detected in environment",
            extra={"error": str(e)},
        )
        return 2
    except SpecLoadError as e:
        logger.error(
            "Failed to load cluster state",
            extra={"error": str(e), "path": str(config.cluster_state_file)},
        )
        return 1

    names = store.names()
    if not names:
        logger.error(
            "No cluster found in state file",
            extra={"path": str(config.cluster_state_file)},
        )
        return 1

    provider = AzureProvider(
        config.location,
        secret_lookup,
        operation_timeout_seconds=config.operation_timeout_seconds,
        audit_logging=config.enable_audit_logging,
    )
    reconciler = ClusterReconciler(config, provider, store, names[0])

    logger.info(
        "Starting cluster infrastructure operator",
        extra={"cluster": names[0], "location": config.location},
    )

    loop = asyncio.get_event_loop()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal", extra={"signal": sig.name})
        reconciler.shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    try:
        await reconciler.run()
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Operator stopped")
    return 0


def run() -> None:
    """Entry point for the operator."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
