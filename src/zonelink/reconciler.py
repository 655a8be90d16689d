"""Link reconciler: compare desired zone links with observed ones.

For every desired (zone, network) pair the reconciler decides:

    exact link present                   -> NOOP
    stale link for the same network      -> REPLACE (DELETE, then CREATE)
    nothing usable                       -> CREATE

A link is stale for a network when it targets a network that no longer
exists in the same subscription but still represents the desired one: it
carries the network's link name, or its target ID ends in the network's name
(the network was recreated in place). Links that point at any discovered
network, desired or excluded, are never stale. Neither are links into a
subscription whose discovery failed this run.

Observation (listing each zone's links) is the only I/O here and runs on the
worker pool. Classification is pure and never fails. No mutation happens in
this module; the executor applies the resulting actions.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Collection
from dataclasses import dataclass, field

from azure.core.exceptions import AzureError

from .desired import DesiredSet
from .directory import DirectoryClient
from .models import (
    Action,
    ActionKind,
    Decision,
    DecisionKind,
    ExistingLink,
    VirtualNetwork,
    ZoneLink,
    resource_name_from_id,
    subscription_id_from_id,
)
from .pool import WorkerPool

logger = logging.getLogger(__name__)


def is_stale_reference(existing: ExistingLink, network: VirtualNetwork) -> bool:
    """Check whether an existing link is an outdated link for this network.

    Only links whose target lives in the network's own subscription qualify.
    """
    if existing.target_network_id == network.network_id:
        return False
    target_subscription = subscription_id_from_id(existing.target_network_id)
    if target_subscription is None or target_subscription != network.subscription_id.lower():
        return False
    if existing.name == network.link_name:
        return True
    return resource_name_from_id(existing.target_network_id) == network.name


def classify(
    link: ZoneLink,
    observed: list[ExistingLink],
    protected_targets: Collection[str] = (),
    claimed: set[str] | None = None,
    unscanned_subscriptions: Collection[str] = (),
) -> Decision:
    """Classify one desired link against the observed links of its zone.

    Args:
        link: The desired link.
        observed: Links currently attached to link.zone.
        protected_targets: Network IDs that exist this run (desired or
            excluded). Links targeting them are never treated as stale.
        claimed: Link IDs already chosen for replacement by an earlier
            decision. Updated when this decision claims a stale link.
        unscanned_subscriptions: Lower-cased IDs of subscriptions whose
            networks could not be listed. Their links are never stale.

    Returns:
        The decision for this link.
    """
    for existing in observed:
        if existing.target_network_id == link.network.network_id:
            return Decision(kind=DecisionKind.NOOP, link=link, existing=existing)

    candidates = [
        existing
        for existing in observed
        if existing.target_network_id not in protected_targets
        and subscription_id_from_id(existing.target_network_id) not in unscanned_subscriptions
        and (claimed is None or existing.link_id not in claimed)
        and is_stale_reference(existing, link.network)
    ]
    if candidates:
        # Prefer the link that carries our link name
        candidates.sort(key=lambda e: e.name != link.network.link_name)
        stale = candidates[0]
        if claimed is not None:
            claimed.add(stale.link_id)
        return Decision(kind=DecisionKind.REPLACE, link=link, existing=stale)

    return Decision(kind=DecisionKind.CREATE, link=link)


def expand(decision: Decision) -> list[Action]:
    """Turn a decision into the ordered actions that implement it."""
    match decision.kind:
        case DecisionKind.NOOP:
            return []
        case DecisionKind.CREATE:
            return [Action(kind=ActionKind.CREATE, decision=decision.kind, link=decision.link)]
        case DecisionKind.REPLACE:
            # SAFETY: decision.existing is always set for REPLACE
            assert decision.existing is not None
            return [
                Action(
                    kind=ActionKind.DELETE,
                    decision=decision.kind,
                    link=decision.link,
                    existing_link_id=decision.existing.link_id,
                ),
                Action(
                    kind=ActionKind.CREATE,
                    decision=decision.kind,
                    link=decision.link,
                    existing_link_id=decision.existing.link_id,
                ),
            ]
    raise ValueError(f"Unsupported decision: {decision.kind}")


@dataclass
class ReconcilePlan:
    """Decisions and actions of one pass, in desired-set order."""

    decisions: list[Decision] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    failed_zones: list[str] = field(default_factory=list)
    unreconciled: list[ZoneLink] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        counter = Counter(d.kind for d in self.decisions)
        return {kind.value: counter.get(kind, 0) for kind in DecisionKind}


def plan(
    desired: list[ZoneLink],
    observed: dict[str, list[ExistingLink]],
    known_networks: Collection[str] = (),
    unscanned_subscriptions: Collection[str] = (),
) -> ReconcilePlan:
    """Classify every desired link and lay out the actions.

    Links whose zone has no entry in observed (listing failed) get no
    decision and are reported as unreconciled.

    Args:
        desired: Desired links in processing order.
        observed: Existing links by zone.
        known_networks: IDs of every discovered network, including excluded
            ones. Links to them are left alone.
        unscanned_subscriptions: IDs of subscriptions whose discovery failed.
    """
    result = ReconcilePlan()
    protected = set(known_networks)
    protected.update(link.network.network_id for link in desired)
    unscanned = {sub.lower() for sub in unscanned_subscriptions}

    claimed: set[str] = set()
    for link in desired:
        zone_links = observed.get(link.zone)
        if zone_links is None:
            result.unreconciled.append(link)
            continue
        decision = classify(link, zone_links, protected, claimed, unscanned)
        result.decisions.append(decision)
        result.actions.extend(expand(decision))

    return result


class LinkReconciler:
    """Observes zone links and classifies the desired set against them."""

    def __init__(
        self,
        directory: DirectoryClient,
        hub_subscription_id: str,
        pool: WorkerPool,
    ) -> None:
        self._directory = directory
        self._hub_subscription_id = hub_subscription_id
        self._pool = pool

    async def observe(self, zone_names: list[str]) -> tuple[dict[str, list[ExistingLink]], list[str]]:
        """List the links of each zone in parallel.

        Returns:
            Tuple of (links by zone, zones whose listing failed).
        """

        async def list_links(zone: str) -> list[ExistingLink] | None:
            try:
                return await self._pool.run(
                    self._directory.list_zone_links, self._hub_subscription_id, zone
                )
            except AzureError as e:
                logger.warning(
                    "Listing zone links failed, zone skipped for this run",
                    extra={"zone": zone, "error": str(e)},
                )
                return None

        listed = await asyncio.gather(*(list_links(zone) for zone in zone_names))

        observed: dict[str, list[ExistingLink]] = {}
        failed: list[str] = []
        for zone, links in zip(zone_names, listed, strict=True):
            if links is None:
                failed.append(zone)
            else:
                observed[zone] = links
        return observed, failed

    async def reconcile(self, desired: DesiredSet) -> ReconcilePlan:
        """Compute the full plan. Nothing is applied here."""
        zone_names = list(dict.fromkeys(link.zone for link in desired.links))
        observed, failed_zones = await self.observe(zone_names)

        result = plan(
            desired.links,
            observed,
            known_networks=desired.known_network_ids,
            unscanned_subscriptions=[s.subscription_id for s in desired.failed_subscriptions],
        )
        result.failed_zones = failed_zones

        counts = result.counts()
        logger.info(
            "Reconciliation decisions computed",
            extra={
                "desired_links": len(desired.links),
                "create": counts[DecisionKind.CREATE.value],
                "replace": counts[DecisionKind.REPLACE.value],
                "noop": counts[DecisionKind.NOOP.value],
                "actions": len(result.actions),
                "failed_zones": failed_zones,
            },
        )
        for decision in result.decisions:
            if decision.kind != DecisionKind.NOOP:
                logger.debug(
                    "Decision",
                    extra={
                        "zone": decision.link.zone,
                        "network": decision.link.network.network_id,
                        "decision": decision.kind.value,
                        "existing_link": decision.existing.link_id if decision.existing else None,
                    },
                )
        return result
