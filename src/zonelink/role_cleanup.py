"""Purge role assignments whose principal no longer exists.

When a user, group or service principal is deleted from Entra ID its role
assignments stay behind and show up with principal type "Unknown". This
module lists those per subscription and deletes them.

Only assignments scoped to the subscription or below are touched; ones
inherited from a management group cannot be removed from here.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError
from azure.mgmt.authorization import AuthorizationManagementClient

from .models import Outcome, Subscription

logger = logging.getLogger(__name__)

UNKNOWN_PRINCIPAL_TYPE = "Unknown"

ClientFactory = Callable[[TokenCredential, str], AuthorizationManagementClient]


@dataclass(frozen=True)
class RoleAssignmentRecord:
    """Audit row for one orphaned assignment."""

    subscription: str
    assignment_id: str
    principal_id: str
    role_definition_id: str
    scope: str
    outcome: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def is_orphaned(assignment: Any, subscription_id: str) -> bool:
    principal_type = getattr(assignment, "principal_type", None)
    if principal_type is None or str(principal_type) != UNKNOWN_PRINCIPAL_TYPE:
        return False
    scope = (getattr(assignment, "scope", "") or "").lower()
    return scope.startswith(f"/subscriptions/{subscription_id.lower()}")


def purge_subscription(
    client: AuthorizationManagementClient,
    subscription: Subscription,
    dry_run: bool,
) -> list[RoleAssignmentRecord]:
    records = []
    for assignment in client.role_assignments.list_for_subscription():
        if not is_orphaned(assignment, subscription.subscription_id):
            continue

        def record(outcome: Outcome, error: str | None = None) -> RoleAssignmentRecord:
            return RoleAssignmentRecord(
                subscription=subscription.display_name,
                assignment_id=assignment.id,
                principal_id=assignment.principal_id,
                role_definition_id=assignment.role_definition_id,
                scope=assignment.scope,
                outcome=outcome.value,
                error=error,
            )

        if dry_run:
            logger.info(
                "Dry run: would remove orphaned role assignment",
                extra={"assignment_id": assignment.id, "principal_id": assignment.principal_id},
            )
            records.append(record(Outcome.SKIPPED_DRY_RUN))
            continue

        try:
            client.role_assignments.delete_by_id(assignment.id)
        except AzureError as e:
            logger.error(
                "Failed to remove orphaned role assignment",
                extra={"assignment_id": assignment.id, "error": str(e)},
            )
            records.append(record(Outcome.FAILED, str(e)))
        else:
            logger.info(
                "Removed orphaned role assignment",
                extra={"assignment_id": assignment.id, "principal_id": assignment.principal_id},
            )
            records.append(record(Outcome.APPLIED))
    return records


def purge_orphaned_assignments(
    credential: TokenCredential,
    subscriptions: list[Subscription],
    dry_run: bool = False,
    client_factory: ClientFactory = AuthorizationManagementClient,
) -> list[RoleAssignmentRecord]:
    """Remove orphaned assignments across subscriptions.

    A subscription whose listing fails is logged and skipped.
    """
    records: list[RoleAssignmentRecord] = []
    for subscription in subscriptions:
        client = client_factory(credential, subscription.subscription_id)
        try:
            records.extend(purge_subscription(client, subscription, dry_run))
        except AzureError as e:
            logger.warning(
                "Listing role assignments failed, subscription skipped",
                extra={"subscription": subscription.display_name, "error": str(e)},
            )
    return records
