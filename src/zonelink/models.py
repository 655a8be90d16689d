"""Domain values for private DNS zone link reconciliation.

Everything here is an immutable value that lives for one reconciliation pass.
Discovery produces Subscription, VirtualNetwork, PrivateZone and ExistingLink;
the desired-set builder produces ZoneLink; the reconciler produces Decision
and Action; the executor produces ActionRecord.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

# ARM limit for virtualNetworkLinks names
MAX_LINK_NAME_LENGTH = 80


class DecisionKind(str, Enum):
    """Outcome of classifying one desired link against observed state."""

    CREATE = "CREATE"
    REPLACE = "REPLACE"
    NOOP = "NOOP"


class ActionKind(str, Enum):
    """Mutations the executor can perform."""

    CREATE = "CREATE"
    DELETE = "DELETE"


class Outcome(str, Enum):
    """Result of applying (or not applying) one action."""

    APPLIED = "applied"
    FAILED = "failed"
    SKIPPED_DRY_RUN = "skipped-dry-run"
    SKIPPED = "skipped"


def resource_name_from_id(resource_id: str) -> str:
    """Return the last path segment of an ARM resource ID."""
    return resource_id.rstrip("/").rsplit("/", 1)[-1]


def subscription_id_from_id(resource_id: str) -> str | None:
    """Return the subscription segment of an ARM resource ID, lower-cased.

    None when the ID carries no subscription segment.
    """
    segments = [s for s in resource_id.split("/") if s]
    for key, value in zip(segments[0::2], segments[1::2], strict=False):
        if key.lower() == "subscriptions":
            return value.lower()
    return None


@dataclass(frozen=True)
class Subscription:
    """An Azure subscription visible to the credential."""

    subscription_id: str
    display_name: str


@dataclass(frozen=True)
class VirtualNetwork:
    """A virtual network discovered in one subscription.

    Attributes:
        network_id: Full ARM resource ID. Unique within the tenant.
        name: Virtual network name.
        subscription_id: Owning subscription (reference only).
    """

    network_id: str
    name: str
    subscription_id: str

    @property
    def link_name(self) -> str:
        """Name used for the zone link that points at this network."""
        return self.name[:MAX_LINK_NAME_LENGTH]


@dataclass(frozen=True)
class PrivateZone:
    """A private DNS zone hosted in the hub subscription."""

    name: str


@dataclass(frozen=True)
class ExistingLink:
    """A zone link as currently reported by the directory.

    Attributes:
        link_id: Full ARM resource ID of the virtualNetworkLinks resource.
        name: Link name.
        zone: Private DNS zone the link belongs to.
        target_network_id: Resource ID of the linked virtual network.
    """

    link_id: str
    name: str
    zone: str
    target_network_id: str


@dataclass(frozen=True)
class ZoneLink:
    """A desired link, identified by (zone, network.network_id)."""

    zone: str
    network: VirtualNetwork

    @property
    def key(self) -> tuple[str, str]:
        return (self.zone, self.network.network_id)


@dataclass(frozen=True)
class Decision:
    """Classification of one desired link."""

    kind: DecisionKind
    link: ZoneLink
    existing: ExistingLink | None = None


@dataclass(frozen=True)
class Action:
    """One executable mutation derived from a Decision.

    A REPLACE decision yields a DELETE action followed by a CREATE action
    for the same link.
    """

    kind: ActionKind
    decision: DecisionKind
    link: ZoneLink
    existing_link_id: str | None = None

    @property
    def zone(self) -> str:
        return self.link.zone

    @property
    def network(self) -> VirtualNetwork:
        return self.link.network


@dataclass(frozen=True)
class ActionRecord:
    """Audit row for the action log."""

    zone: str
    network: str
    decision: str
    action: str
    outcome: str
    error: str | None = None

    @classmethod
    def for_action(
        cls, action: Action, outcome: Outcome, error: str | None = None
    ) -> ActionRecord:
        return cls(
            zone=action.zone,
            network=action.network.network_id,
            decision=action.decision.value,
            action=action.kind.value,
            outcome=outcome.value,
            error=error,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a flat dictionary for JSON export."""
        return asdict(self)
