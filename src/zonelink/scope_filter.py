"""Inclusion and exclusion of subscriptions, zones and virtual networks.

Names are compared as exact strings. Azure treats some names
case-insensitively, but the filter never normalises: what the operator
typed is what is matched.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .config import Config
from .models import PrivateZone, Subscription, VirtualNetwork


@dataclass(frozen=True)
class ScopeFilter:
    """Name lists that decide what enters reconciliation.

    Attributes:
        exclude_subscriptions: Subscription display names or IDs to drop.
        exclude_zones: Zone names to drop from discovered zones.
        exclude_networks: Virtual network names to drop.
        zones: Explicit zone allow-list. When set it replaces discovery and
            is not subject to exclude_zones.
    """

    exclude_subscriptions: frozenset[str] = frozenset()
    exclude_zones: frozenset[str] = frozenset()
    exclude_networks: frozenset[str] = frozenset()
    zones: tuple[str, ...] | None = None

    @classmethod
    def from_config(cls, config: Config) -> ScopeFilter:
        return cls(
            exclude_subscriptions=frozenset(config.exclude_subscriptions),
            exclude_zones=frozenset(config.exclude_zones),
            exclude_networks=frozenset(config.exclude_networks),
            zones=config.zones,
        )

    @property
    def uses_zone_allow_list(self) -> bool:
        return self.zones is not None

    def subscriptions(self, discovered: Iterable[Subscription]) -> list[Subscription]:
        return [
            sub
            for sub in discovered
            if sub.display_name not in self.exclude_subscriptions
            and sub.subscription_id not in self.exclude_subscriptions
        ]

    def zone_names(self, discovered: Iterable[PrivateZone] = ()) -> list[str]:
        """Return the zone dimension of the desired set.

        With an allow-list the discovered zones are ignored entirely.
        Duplicates are dropped, first occurrence wins.
        """
        if self.zones is not None:
            return _unique(self.zones)
        return _unique(zone.name for zone in discovered if zone.name not in self.exclude_zones)

    def networks(self, discovered: Sequence[VirtualNetwork]) -> list[VirtualNetwork]:
        return [vnet for vnet in discovered if vnet.name not in self.exclude_networks]


def _unique(names: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for name in names:
        if name not in seen:
            seen.add(name)
            result.append(name)
    return result
