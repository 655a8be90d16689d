"""Tag audit: report resource groups and resources missing required tags.

A flat scan with no reconciliation. Subscriptions go through the same scope
filter as the link reconciler; a subscription that cannot be scanned is
logged and skipped.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError
from azure.mgmt.resource import ResourceManagementClient

from .models import Subscription

logger = logging.getLogger(__name__)

ClientFactory = Callable[[TokenCredential, str], ResourceManagementClient]


@dataclass(frozen=True)
class TagFinding:
    """One resource group or resource missing at least one required tag."""

    subscription: str
    kind: str
    name: str
    id: str
    missing_tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def missing_tags(tags: dict[str, str] | None, required: Iterable[str]) -> list[str]:
    """Required tag names absent (or empty) in tags. Names match exactly."""
    present = {k for k, v in (tags or {}).items() if v}
    return [name for name in required if name not in present]


def audit_subscription(
    client: ResourceManagementClient,
    subscription: Subscription,
    required_tags: list[str],
) -> list[TagFinding]:
    findings = []
    for group in client.resource_groups.list():
        missing = missing_tags(group.tags, required_tags)
        if missing:
            findings.append(
                TagFinding(
                    subscription=subscription.display_name,
                    kind="resourceGroup",
                    name=group.name,
                    id=group.id,
                    missing_tags=missing,
                )
            )
    for resource in client.resources.list():
        missing = missing_tags(resource.tags, required_tags)
        if missing:
            findings.append(
                TagFinding(
                    subscription=subscription.display_name,
                    kind=resource.type,
                    name=resource.name,
                    id=resource.id,
                    missing_tags=missing,
                )
            )
    return findings


def audit_tags(
    credential: TokenCredential,
    subscriptions: list[Subscription],
    required_tags: list[str],
    client_factory: ClientFactory = ResourceManagementClient,
) -> list[TagFinding]:
    """Scan every subscription and collect findings in subscription order."""
    findings: list[TagFinding] = []
    for subscription in subscriptions:
        client = client_factory(credential, subscription.subscription_id)
        try:
            found = audit_subscription(client, subscription, required_tags)
        except AzureError as e:
            logger.warning(
                "Tag audit failed for subscription, skipped",
                extra={"subscription": subscription.display_name, "error": str(e)},
            )
            continue
        logger.info(
            "Tag audit scanned subscription",
            extra={"subscription": subscription.display_name, "findings": len(found)},
        )
        findings.extend(found)
    return findings


def write_findings(findings: list[TagFinding], path: Path) -> None:
    """Export findings as a JSON array of flat objects (UTF-8)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps([f.to_dict() for f in findings], indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
