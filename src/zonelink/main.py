"""Run one private DNS zone link reconciliation pass.

    discover subscriptions -> resolve hub -> scope filter
      -> zones (allow-list or hub discovery)
      -> desired set (networks x zones)
      -> reconcile against observed links
      -> execute actions (skipped in dry-run)
      -> summary + optional JSON action log

Exit codes: 0 when the pass completed (per-action failures are logged, not
fatal), 1 on configuration or setup failure, 2 on a security violation.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from azure.core.exceptions import AzureError

from .config import Config
from .desired import build_desired_set
from .directory import AzureDirectoryClient, DirectoryClient
from .executor import ActionExecutor, ActionLog
from .models import DecisionKind, Outcome, Subscription
from .pool import WorkerPool
from .reconciler import LinkReconciler
from .scope_filter import ScopeFilter
from .security import SecretlessViolationError, get_credential

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SETUP_FAILURE = 1
EXIT_SECURITY_VIOLATION = 2

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
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
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


def setup_logging(verbose: bool = False) -> None:
    """Configure structured JSON logging on stdout."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Reduce noise from Azure SDK
    logging.getLogger("azure").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


class SetupError(Exception):
    """Fatal failure before reconciliation could start."""

    pass


@dataclass
class RunResult:
    """Outcome of one reconciliation pass."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    decisions: dict[str, int] = field(default_factory=dict)
    action_log: ActionLog = field(default_factory=ActionLog)
    failed_subscriptions: list[str] = field(default_factory=list)
    failed_zones: list[str] = field(default_factory=list)
    cancelled: bool = False

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def outcomes(self) -> dict[str, int]:
        return self.action_log.counts()

    @property
    def has_failures(self) -> bool:
        return bool(
            self.outcomes[Outcome.FAILED.value] or self.failed_subscriptions or self.failed_zones
        )


def resolve_hub(subscriptions: list[Subscription], hub: str) -> Subscription:
    """Find the hub subscription by display name or ID.

    Raises:
        SetupError: If no subscription matches.
    """
    for subscription in subscriptions:
        if hub in (subscription.display_name, subscription.subscription_id):
            return subscription
    raise SetupError(f"Hub subscription not found: {hub}")


class LinkSync:
    """One reconciliation pass over all subscriptions of the tenant."""

    def __init__(self, config: Config, directory: DirectoryClient) -> None:
        self._config = config
        self._directory = directory
        self._scope = ScopeFilter.from_config(config)
        self._shutdown_event = asyncio.Event()

    def shutdown(self) -> None:
        """Stop before the next action. A running action is not interrupted."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def run(self) -> RunResult:
        """Run the pass.

        Raises:
            SetupError: If subscriptions, the hub or its zones cannot be read.
        """
        result = RunResult()

        async with WorkerPool(self._config.max_workers) as pool:
            try:
                discovered = await pool.run(self._directory.list_subscriptions)
            except AzureError as e:
                raise SetupError(f"Cannot enumerate subscriptions: {e}") from e

            hub = resolve_hub(discovered, self._config.hub_subscription)
            subscriptions = self._scope.subscriptions(discovered)
            logger.info(
                "Subscriptions in scope",
                extra={
                    "hub": hub.display_name,
                    "discovered": len(discovered),
                    "in_scope": len(subscriptions),
                },
            )

            zone_names = await self._zone_names(hub, pool)

            desired = await build_desired_set(
                self._directory, subscriptions, zone_names, self._scope, pool
            )
            result.failed_subscriptions = [s.display_name for s in desired.failed_subscriptions]

            reconciler = LinkReconciler(self._directory, hub.subscription_id, pool)
            plan = await reconciler.reconcile(desired)
            result.decisions = plan.counts()
            result.failed_zones = plan.failed_zones

            executor = ActionExecutor(
                self._directory,
                hub.subscription_id,
                pool,
                dry_run=self._config.dry_run,
                max_retries=self._config.max_retries,
                retry_backoff_base_seconds=self._config.retry_backoff_base_seconds,
                shutdown_event=self._shutdown_event,
                action_log=result.action_log,
            )
            await executor.execute(plan.actions)

        result.cancelled = self._shutdown_event.is_set()
        result.end_time = datetime.now(UTC)

        if self._config.output_path is not None:
            result.action_log.write_json(self._config.output_path)

        self._log_result(result)
        return result

    async def _zone_names(self, hub: Subscription, pool: WorkerPool) -> list[str]:
        if self._scope.uses_zone_allow_list:
            zone_names = self._scope.zone_names()
            logger.info("Using explicit zone list", extra={"zones": zone_names})
            return zone_names

        try:
            zones = await pool.run(self._directory.list_private_zones, hub.subscription_id)
        except AzureError as e:
            raise SetupError(
                f"Cannot list private DNS zones in {self._config.zones_resource_group}: {e}"
            ) from e

        zone_names = self._scope.zone_names(zones)
        logger.info(
            "Discovered private DNS zones",
            extra={"discovered": len(zones), "in_scope": len(zone_names)},
        )
        return zone_names

    def _log_result(self, result: RunResult) -> None:
        extra: dict[str, Any] = {
            "dry_run": self._config.dry_run,
            "duration_seconds": result.duration_seconds,
            "create": result.decisions.get(DecisionKind.CREATE.value, 0),
            "replace": result.decisions.get(DecisionKind.REPLACE.value, 0),
            "noop": result.decisions.get(DecisionKind.NOOP.value, 0),
            "applied": result.outcomes[Outcome.APPLIED.value],
            "failed": result.outcomes[Outcome.FAILED.value],
            "skipped": result.outcomes[Outcome.SKIPPED.value],
            "skipped_dry_run": result.outcomes[Outcome.SKIPPED_DRY_RUN.value],
            "failed_subscriptions": result.failed_subscriptions,
            "failed_zones": result.failed_zones,
            "cancelled": result.cancelled,
        }
        for record in result.action_log.failures():
            logger.error(
                "Failed action",
                extra={
                    "zone": record.zone,
                    "network": record.network,
                    "action": record.action,
                    "error": record.error,
                },
            )
        if result.has_failures or result.cancelled:
            logger.warning("Reconciliation finished with failures", extra=extra)
        else:
            logger.info("Reconciliation finished", extra=extra)


async def reconcile(config: Config) -> int:
    """Authenticate, run one pass and map the outcome to an exit code."""
    try:
        credential = get_credential(config.tenant_id, config.client_id)
    except SecretlessViolationError as e:
        logger.critical(
            "Security violation: credentials detected in environment",
            extra={"error": str(e)},
        )
        return EXIT_SECURITY_VIOLATION

    directory = AzureDirectoryClient(
        credential, config.zones_resource_group, tenant_id=config.tenant_id
    )
    sync = LinkSync(config, directory)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, sync.shutdown)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable off the main thread and on Windows
            pass

    timeout_handle = None
    if config.run_timeout_seconds is not None:
        timeout_handle = loop.call_later(config.run_timeout_seconds, sync.shutdown)

    try:
        await sync.run()
    except SetupError as e:
        logger.error("Setup failed", extra={"error": str(e)})
        return EXIT_SETUP_FAILURE
    except Exception as e:
        logger.exception("Reconciliation failed unexpectedly", extra={"error": str(e)})
        return EXIT_SETUP_FAILURE
    finally:
        if timeout_handle is not None:
            timeout_handle.cancel()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

    return EXIT_OK


def run(config: Config) -> int:
    """Synchronous entry point used by the CLI."""
    return asyncio.run(reconcile(config))
