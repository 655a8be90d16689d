"""Action executor: the only component that mutates zone links.

Actions are grouped by zone. Within a zone they run strictly in order, so a
DELETE of a stale link always completes before the CREATE that replaces it.
Different zones run concurrently on the worker pool.

Failures are isolated per action: an error is recorded in the action log and
the executor moves on. Throttled calls (HTTP 429) are retried with
exponential backoff before being recorded as failed. A shutdown request is
honoured between actions; an action that has started always runs to
completion, and so does the CREATE that follows an applied REPLACE DELETE.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import threading
from collections import Counter
from pathlib import Path
from typing import Any

from azure.core.exceptions import AzureError, HttpResponseError, ResourceNotFoundError

from .config import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_BACKOFF_BASE_SECONDS
from .directory import DirectoryClient
from .models import Action, ActionKind, ActionRecord, DecisionKind, Outcome
from .pool import WorkerPool

logger = logging.getLogger(__name__)

THROTTLED_STATUS_CODE = 429


def is_throttled(error: Exception) -> bool:
    return isinstance(error, HttpResponseError) and error.status_code == THROTTLED_STATUS_CODE


class ActionLog:
    """Append-safe accumulator of action records for one run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: list[ActionRecord] = []

    def append(self, record: ActionRecord) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> list[ActionRecord]:
        with self._lock:
            return list(self._records)

    def counts(self) -> dict[str, int]:
        counter = Counter(r.outcome for r in self.records)
        return {outcome.value: counter.get(outcome.value, 0) for outcome in Outcome}

    def failures(self) -> list[ActionRecord]:
        return [r for r in self.records if r.outcome == Outcome.FAILED.value]

    def to_list(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self.records]

    def write_json(self, path: Path) -> None:
        """Write the log as a JSON array of flat objects (UTF-8)."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_list(), indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info("Action log written", extra={"path": str(path), "records": len(self.records)})


class ActionExecutor:
    """Applies planned actions through the directory client."""

    def __init__(
        self,
        directory: DirectoryClient,
        hub_subscription_id: str,
        pool: WorkerPool,
        *,
        dry_run: bool = False,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff_base_seconds: float = DEFAULT_RETRY_BACKOFF_BASE_SECONDS,
        shutdown_event: asyncio.Event | None = None,
        action_log: ActionLog | None = None,
    ) -> None:
        self._directory = directory
        self._hub_subscription_id = hub_subscription_id
        self._pool = pool
        self._dry_run = dry_run
        self._max_retries = max_retries
        self._backoff_base = retry_backoff_base_seconds
        self._shutdown_event = shutdown_event or asyncio.Event()
        self.log = action_log or ActionLog()

    async def execute(self, actions: list[Action]) -> ActionLog:
        """Apply all actions, zone by zone, and return the action log."""
        by_zone: dict[str, list[Action]] = {}
        for action in actions:
            by_zone.setdefault(action.zone, []).append(action)

        logger.info(
            "Executing actions",
            extra={"actions": len(actions), "zones": len(by_zone), "dry_run": self._dry_run},
        )
        await asyncio.gather(*(self._execute_zone(zone_actions) for zone_actions in by_zone.values()))
        return self.log

    async def _execute_zone(self, actions: list[Action]) -> None:
        # Links whose stale DELETE failed; their CREATE must not run
        blocked: set[tuple[str, str]] = set()
        # Links whose stale DELETE was applied; their CREATE always runs
        replacing: set[tuple[str, str]] = set()

        for action in actions:
            completes_replace = action.kind == ActionKind.CREATE and action.link.key in replacing
            if self._shutdown_event.is_set() and not completes_replace:
                self._record(action, Outcome.SKIPPED, "cancelled before start")
                continue

            if self._dry_run:
                self._record(action, Outcome.SKIPPED_DRY_RUN)
                continue

            if action.kind == ActionKind.CREATE and action.link.key in blocked:
                self._record(action, Outcome.SKIPPED, "stale link could not be removed")
                continue

            try:
                await self._apply_with_retry(action)
            except (AzureError, ValueError) as e:
                if action.kind == ActionKind.DELETE and action.decision == DecisionKind.REPLACE:
                    blocked.add(action.link.key)
                self._record(action, Outcome.FAILED, str(e))
            else:
                if action.kind == ActionKind.DELETE and action.decision == DecisionKind.REPLACE:
                    replacing.add(action.link.key)
                self._record(action, Outcome.APPLIED)

    async def _apply_with_retry(self, action: Action) -> None:
        """Apply one action, retrying only throttled responses.

        Raises:
            AzureError: If the action fails or stays throttled after all retries.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                await self._apply(action)
                return
            except HttpResponseError as e:
                if not is_throttled(e) or attempt > self._max_retries:
                    raise

                # Exponential backoff with jitter
                backoff = self._backoff_base * (2 ** (attempt - 1))
                wait_time = backoff + random.uniform(0, backoff * 0.2)
                logger.warning(
                    "Throttled, retrying",
                    extra={
                        "zone": action.zone,
                        "network": action.network.network_id,
                        "action": action.kind.value,
                        "attempt": attempt,
                        "max_retries": self._max_retries,
                        "wait_seconds": wait_time,
                    },
                )
                await asyncio.sleep(wait_time)

    async def _apply(self, action: Action) -> None:
        match action.kind:
            case ActionKind.DELETE:
                # SAFETY: DELETE actions are only built from a stale link
                assert action.existing_link_id is not None
                try:
                    await self._pool.run(self._directory.delete_zone_link, action.existing_link_id)
                except ResourceNotFoundError:
                    # Already gone counts as deleted
                    logger.info(
                        "Stale link already absent",
                        extra={"zone": action.zone, "link_id": action.existing_link_id},
                    )
            case ActionKind.CREATE:
                await self._pool.run(
                    self._directory.create_zone_link,
                    self._hub_subscription_id,
                    action.zone,
                    action.network.network_id,
                    action.network.link_name,
                )
            case _:
                raise ValueError(f"Unsupported action: {action.kind}")

    def _record(self, action: Action, outcome: Outcome, error: str | None = None) -> None:
        self.log.append(ActionRecord.for_action(action, outcome, error))

        extra = {
            "zone": action.zone,
            "network": action.network.network_id,
            "decision": action.decision.value,
            "action": action.kind.value,
            "outcome": outcome.value,
        }
        if error is not None:
            extra["error"] = error

        if outcome == Outcome.FAILED:
            logger.error("Action failed", extra=extra)
        elif outcome == Outcome.SKIPPED:
            logger.warning("Action skipped", extra=extra)
        else:
            logger.info("Action processed", extra=extra)
