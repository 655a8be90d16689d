"""Desired-set builder: which zone links should exist.

The desired set is the cross product of every surviving virtual network with
every surviving zone. Its order (subscription, then network, then zone) is
the order in which actions are later applied.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from azure.core.exceptions import AzureError

from .directory import DirectoryClient
from .models import Subscription, VirtualNetwork, ZoneLink
from .pool import WorkerPool
from .scope_filter import ScopeFilter

logger = logging.getLogger(__name__)


@dataclass
class DesiredSet:
    """Desired links in processing order plus what discovery saw and missed."""

    links: list[ZoneLink] = field(default_factory=list)
    failed_subscriptions: list[Subscription] = field(default_factory=list)
    # Every network seen during discovery, excluded ones included
    known_network_ids: set[str] = field(default_factory=set)


def cross_product(
    networks_by_subscription: list[tuple[Subscription, list[VirtualNetwork]]],
    zone_names: list[str],
) -> list[ZoneLink]:
    """Expand (subscription, networks) x zones in deterministic order."""
    links = []
    for _subscription, networks in networks_by_subscription:
        for network in networks:
            for zone in zone_names:
                links.append(ZoneLink(zone=zone, network=network))
    return links


async def build_desired_set(
    directory: DirectoryClient,
    subscriptions: list[Subscription],
    zone_names: list[str],
    scope: ScopeFilter,
    pool: WorkerPool,
) -> DesiredSet:
    """Discover virtual networks per subscription and expand the desired links.

    Subscriptions are scanned in parallel on the pool; results are put back
    in subscription order. A subscription whose listing fails contributes
    nothing and is reported in failed_subscriptions. known_network_ids
    collects every listed network, including those the scope excludes.
    """
    result = DesiredSet()

    if not zone_names:
        logger.warning("No private DNS zones in scope, desired set is empty")
        return result

    async def discover(
        subscription: Subscription,
    ) -> tuple[list[VirtualNetwork], list[VirtualNetwork]] | None:
        try:
            discovered = await pool.run(
                directory.list_virtual_networks, subscription.subscription_id
            )
        except AzureError as e:
            logger.warning(
                "Virtual network discovery failed, subscription skipped for this run",
                extra={
                    "subscription": subscription.display_name,
                    "subscription_id": subscription.subscription_id,
                    "error": str(e),
                },
            )
            return None
        networks = scope.networks(discovered)
        logger.info(
            "Discovered virtual networks",
            extra={
                "subscription": subscription.display_name,
                "discovered": len(discovered),
                "in_scope": len(networks),
            },
        )
        return discovered, networks

    results = await asyncio.gather(*(discover(sub) for sub in subscriptions))

    scanned: list[tuple[Subscription, list[VirtualNetwork]]] = []
    for subscription, found in zip(subscriptions, results, strict=True):
        if found is None:
            result.failed_subscriptions.append(subscription)
            continue
        discovered, networks = found
        result.known_network_ids.update(n.network_id for n in discovered)
        scanned.append((subscription, networks))

    result.links = cross_product(scanned, zone_names)
    logger.info(
        "Desired set built",
        extra={
            "subscriptions": len(scanned),
            "zones": len(zone_names),
            "links": len(result.links),
            "failed_subscriptions": len(result.failed_subscriptions),
        },
    )
    return result
