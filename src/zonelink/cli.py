"""Zonelink CLI.

Usage:
    zonelink reconcile --hub-subscription sub-connectivity \\
        --zones-resource-group rg-private-dns --tenant-id <guid> [--dry-run]
    zonelink audit-tags --tenant-id <guid> --tag Owner --tag CostCenter
    zonelink purge-roles --tenant-id <guid> [--dry-run]

Every option can also be set through a ZONELINK_* environment variable.
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
from azure.core.credentials import TokenCredential
from azure.core.exceptions import AzureError

from .config import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_WORKERS,
    DEFAULT_RETRY_BACKOFF_BASE_SECONDS,
    Config,
    ConfigurationError,
)
from .directory import AzureDirectoryClient
from .main import EXIT_SECURITY_VIOLATION, EXIT_SETUP_FAILURE, run, setup_logging
from .models import Outcome, Subscription
from .role_cleanup import purge_orphaned_assignments
from .scope_filter import ScopeFilter
from .scope_loader import ScopeFileError, load_scope
from .security import SecretlessViolationError, get_credential
from .tag_audit import audit_tags, write_findings

VERSION = "0.1.0"


def merge_lists(*parts: tuple[str, ...] | list[str] | None) -> tuple[str, ...]:
    """Concatenate name lists, dropping duplicates but keeping order."""
    merged: list[str] = []
    for part in parts:
        for name in part or ():
            if name not in merged:
                merged.append(name)
    return tuple(merged)


@click.group()
@click.version_option(version=VERSION, prog_name="zonelink")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose: bool) -> None:
    """Governance chores across the subscriptions of one tenant.

    \b
    Commands:
        reconcile    Link virtual networks to the hub's private DNS zones
        audit-tags   Report resource groups/resources missing required tags
        purge-roles  Remove role assignments of deleted principals
    """
    setup_logging(verbose)


@cli.command()
@click.option("--hub-subscription", envvar="ZONELINK_HUB_SUBSCRIPTION", help="Hub subscription name or ID")
@click.option(
    "--zones-resource-group",
    envvar="ZONELINK_ZONES_RESOURCE_GROUP",
    help="Resource group hosting the private DNS zones",
)
@click.option("--tenant-id", envvar="ZONELINK_TENANT_ID", required=True, help="Entra ID tenant")
@click.option(
    "--zone",
    "zones",
    multiple=True,
    envvar="ZONELINK_ZONES",
    help="Zone to link (repeatable). Replaces zone discovery.",
)
@click.option(
    "--exclude-subscription",
    multiple=True,
    envvar="ZONELINK_EXCLUDE_SUBSCRIPTIONS",
    help="Subscription name or ID to skip (repeatable)",
)
@click.option("--exclude-zone", multiple=True, envvar="ZONELINK_EXCLUDE_ZONES", help="Zone to skip")
@click.option(
    "--exclude-vnet", multiple=True, envvar="ZONELINK_EXCLUDE_VNETS", help="Virtual network to skip"
)
@click.option(
    "--scope-file",
    type=click.Path(path_type=Path, dir_okay=False),
    envvar="ZONELINK_SCOPE_FILE",
    help="YAML file with hub, zones and exclusions",
)
@click.option("--dry-run", is_flag=True, envvar="ZONELINK_DRY_RUN", help="Classify only, change nothing")
@click.option(
    "--max-workers",
    type=int,
    default=DEFAULT_MAX_WORKERS,
    show_default=True,
    envvar="ZONELINK_MAX_WORKERS",
    help="Parallel Azure API calls",
)
@click.option(
    "--max-retries",
    type=int,
    default=DEFAULT_MAX_RETRIES,
    show_default=True,
    envvar="ZONELINK_MAX_RETRIES",
    help="Retries for a throttled call",
)
@click.option(
    "--retry-backoff",
    type=float,
    default=DEFAULT_RETRY_BACKOFF_BASE_SECONDS,
    show_default=True,
    envvar="ZONELINK_RETRY_BACKOFF",
    help="Base backoff in seconds between throttled retries",
)
@click.option(
    "--timeout", type=float, envvar="ZONELINK_TIMEOUT", help="Stop starting new actions after N seconds"
)
@click.option(
    "--output",
    type=click.Path(path_type=Path, dir_okay=False),
    envvar="ZONELINK_OUTPUT",
    help="Write the JSON action log here",
)
@click.option("--client-id", envvar="ZONELINK_CLIENT_ID", help="User-assigned managed identity client ID")
def reconcile(
    hub_subscription: str | None,
    zones_resource_group: str | None,
    tenant_id: str,
    zones: tuple[str, ...],
    exclude_subscription: tuple[str, ...],
    exclude_zone: tuple[str, ...],
    exclude_vnet: tuple[str, ...],
    scope_file: Path | None,
    dry_run: bool,
    max_workers: int,
    max_retries: int,
    retry_backoff: float,
    timeout: float | None,
    output: Path | None,
    client_id: str | None,
) -> None:
    """Link every in-scope virtual network to every in-scope private DNS zone."""
    scope = None
    if scope_file is not None:
        try:
            scope = load_scope(scope_file)
        except ScopeFileError as e:
            raise click.ClickException(str(e)) from e

    try:
        config = Config(
            hub_subscription=hub_subscription or (scope.hub_subscription if scope else None) or "",
            zones_resource_group=(
                zones_resource_group or (scope.zones_resource_group if scope else None) or ""
            ),
            tenant_id=tenant_id,
            zones=merge_lists(scope.zones if scope else None, zones) or None,
            exclude_subscriptions=merge_lists(
                scope.exclude.subscriptions if scope else None, exclude_subscription
            ),
            exclude_zones=merge_lists(scope.exclude.zones if scope else None, exclude_zone),
            exclude_networks=merge_lists(
                scope.exclude.virtual_networks if scope else None, exclude_vnet
            ),
            dry_run=dry_run,
            max_workers=max_workers,
            run_timeout_seconds=timeout,
            output_path=output,
            client_id=client_id,
            max_retries=max_retries,
            retry_backoff_base_seconds=retry_backoff,
        )
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    sys.exit(run(config))


def _in_scope_subscriptions(
    tenant_id: str, client_id: str | None, exclude: tuple[str, ...]
) -> tuple[TokenCredential, list[Subscription]]:
    """Authenticate and list the subscriptions a chore should visit."""
    try:
        credential = get_credential(tenant_id, client_id)
    except SecretlessViolationError as e:
        click.echo(str(e), err=True)
        sys.exit(EXIT_SECURITY_VIOLATION)

    # Zone operations are not used by the chores
    directory = AzureDirectoryClient(credential, zones_resource_group="", tenant_id=tenant_id)
    try:
        discovered = directory.list_subscriptions()
    except AzureError as e:
        click.echo(f"Cannot enumerate subscriptions: {e}", err=True)
        sys.exit(EXIT_SETUP_FAILURE)

    scope = ScopeFilter(exclude_subscriptions=frozenset(exclude))
    return credential, scope.subscriptions(discovered)


@cli.command("audit-tags")
@click.option("--tenant-id", envvar="ZONELINK_TENANT_ID", required=True, help="Entra ID tenant")
@click.option("--tag", "tags", multiple=True, required=True, help="Required tag name (repeatable)")
@click.option(
    "--exclude-subscription",
    multiple=True,
    envvar="ZONELINK_EXCLUDE_SUBSCRIPTIONS",
    help="Subscription name or ID to skip (repeatable)",
)
@click.option("--output", type=click.Path(path_type=Path, dir_okay=False), help="JSON export path")
@click.option("--client-id", envvar="ZONELINK_CLIENT_ID", help="User-assigned managed identity client ID")
def audit_tags_command(
    tenant_id: str,
    tags: tuple[str, ...],
    exclude_subscription: tuple[str, ...],
    output: Path | None,
    client_id: str | None,
) -> None:
    """Report resource groups and resources missing any required tag."""
    credential, subscriptions = _in_scope_subscriptions(tenant_id, client_id, exclude_subscription)
    findings = audit_tags(credential, subscriptions, list(tags))

    if output is not None:
        write_findings(findings, output)
        click.echo(f"{len(findings)} findings written to {output}")
    else:
        click.echo(json.dumps([f.to_dict() for f in findings], indent=2, ensure_ascii=False))


@cli.command("purge-roles")
@click.option("--tenant-id", envvar="ZONELINK_TENANT_ID", required=True, help="Entra ID tenant")
@click.option(
    "--exclude-subscription",
    multiple=True,
    envvar="ZONELINK_EXCLUDE_SUBSCRIPTIONS",
    help="Subscription name or ID to skip (repeatable)",
)
@click.option("--dry-run", is_flag=True, envvar="ZONELINK_DRY_RUN", help="List only, delete nothing")
@click.option("--output", type=click.Path(path_type=Path, dir_okay=False), help="JSON export path")
@click.option("--client-id", envvar="ZONELINK_CLIENT_ID", help="User-assigned managed identity client ID")
def purge_roles_command(
    tenant_id: str,
    exclude_subscription: tuple[str, ...],
    dry_run: bool,
    output: Path | None,
    client_id: str | None,
) -> None:
    """Delete role assignments whose principal no longer exists."""
    credential, subscriptions = _in_scope_subscriptions(tenant_id, client_id, exclude_subscription)
    records = purge_orphaned_assignments(credential, subscriptions, dry_run=dry_run)

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(
            json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False),
            encoding="utf-8",
        )

    failed = sum(1 for r in records if r.outcome == Outcome.FAILED.value)
    click.echo(f"{len(records)} orphaned assignments processed, {failed} failed")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
