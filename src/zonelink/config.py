"""Configuration management with validation.

All operator inputs are validated when the Config is constructed so a bad
invocation fails before any Azure call is made.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_MAX_WORKERS = 4
MIN_MAX_WORKERS = 1
MAX_MAX_WORKERS = 32

DEFAULT_MAX_RETRIES = 3
MAX_MAX_RETRIES = 10
DEFAULT_RETRY_BACKOFF_BASE_SECONDS = 2.0

# Azure private DNS zones are global; links are always created in "global"
ZONE_LINK_LOCATION = "global"

MAX_RESOURCE_GROUP_NAME_LENGTH = 90
MAX_SCOPE_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max scope file

# Input validation patterns
VALID_TENANT_ID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_RESOURCE_GROUP_PATTERN = r"^[-\w._()]+$"

ENV_PREFIX = "ZONELINK_"


@dataclass(frozen=True)
class Config:
    """Configuration for one reconciliation pass.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError listing every problem at once.
    """

    # Required fields
    hub_subscription: str
    zones_resource_group: str
    tenant_id: str

    # Scope: an explicit zone list replaces zone discovery
    zones: tuple[str, ...] | None = None
    exclude_subscriptions: tuple[str, ...] = ()
    exclude_zones: tuple[str, ...] = ()
    exclude_networks: tuple[str, ...] = ()

    # Behavior
    dry_run: bool = False
    max_workers: int = DEFAULT_MAX_WORKERS
    run_timeout_seconds: float | None = None
    output_path: Path | None = None

    # Identity: user-assigned managed identity, otherwise Azure CLI login
    client_id: str | None = None

    # Throttling retry
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_backoff_base_seconds: float = DEFAULT_RETRY_BACKOFF_BASE_SECONDS

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.hub_subscription:
            errors.append("HUB_SUBSCRIPTION is required")

        if not self.zones_resource_group:
            errors.append("ZONES_RESOURCE_GROUP is required")
        elif len(self.zones_resource_group) > MAX_RESOURCE_GROUP_NAME_LENGTH:
            errors.append(
                f"ZONES_RESOURCE_GROUP exceeds maximum length of {MAX_RESOURCE_GROUP_NAME_LENGTH}"
            )
        elif not re.match(VALID_RESOURCE_GROUP_PATTERN, self.zones_resource_group):
            errors.append(f"ZONES_RESOURCE_GROUP is not a valid name: {self.zones_resource_group}")

        if not self.tenant_id:
            errors.append("TENANT_ID is required")
        elif not re.match(VALID_TENANT_ID_PATTERN, self.tenant_id.lower()):
            errors.append(f"TENANT_ID must be a valid GUID: {self.tenant_id}")

        if self.zones is not None and not self.zones:
            errors.append("ZONES must not be empty when given")

        if not (MIN_MAX_WORKERS <= self.max_workers <= MAX_MAX_WORKERS):
            errors.append(
                f"MAX_WORKERS must be between {MIN_MAX_WORKERS} and {MAX_MAX_WORKERS}"
            )

        if self.run_timeout_seconds is not None and self.run_timeout_seconds <= 0:
            errors.append("TIMEOUT must be a positive number of seconds")

        if not (0 <= self.max_retries <= MAX_MAX_RETRIES):
            errors.append(f"MAX_RETRIES must be between 0 and {MAX_MAX_RETRIES}")

        if self.retry_backoff_base_seconds < 0:
            errors.append("RETRY_BACKOFF must not be negative")

        if self.output_path is not None and self.output_path.is_dir():
            errors.append(f"OUTPUT must be a file path, not a directory: {self.output_path}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            ZONELINK_HUB_SUBSCRIPTION: Display name (or ID) of the subscription hosting the zones
            ZONELINK_ZONES_RESOURCE_GROUP: Resource group holding the private DNS zones
            ZONELINK_TENANT_ID: Entra ID tenant
            ZONELINK_ZONES: Comma-separated zone allow-list (replaces discovery)
            ZONELINK_EXCLUDE_SUBSCRIPTIONS: Comma-separated subscription names or IDs
            ZONELINK_EXCLUDE_ZONES: Comma-separated zone names
            ZONELINK_EXCLUDE_VNETS: Comma-separated virtual network names
            ZONELINK_DRY_RUN: If "true", classify but do not mutate (default: false)
            ZONELINK_MAX_WORKERS: Worker pool size (default: 4)
            ZONELINK_TIMEOUT: Seconds before the pass is cancelled between actions
            ZONELINK_OUTPUT: Path of the JSON action log
            ZONELINK_CLIENT_ID: Client ID of a user-assigned managed identity
            ZONELINK_MAX_RETRIES: Retries for a throttled call (default: 3)
            ZONELINK_RETRY_BACKOFF: Base backoff in seconds between retries (default: 2)
        """

        def get(key: str) -> str:
            return os.environ.get(ENV_PREFIX + key, "")

        def get_int(key: str, default: int) -> int:
            value = get(key)
            if not value:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{ENV_PREFIX}{key} must be an integer: {value}") from e

        def get_float(key: str, default: float | None = None) -> float | None:
            value = get(key)
            if not value:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{ENV_PREFIX}{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = get(key).lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_list(key: str) -> tuple[str, ...]:
            return tuple(item.strip() for item in get(key).split(",") if item.strip())

        zones = get_list("ZONES")
        output = get("OUTPUT")

        return cls(
            hub_subscription=get("HUB_SUBSCRIPTION"),
            zones_resource_group=get("ZONES_RESOURCE_GROUP"),
            tenant_id=get("TENANT_ID"),
            zones=zones or None,
            exclude_subscriptions=get_list("EXCLUDE_SUBSCRIPTIONS"),
            exclude_zones=get_list("EXCLUDE_ZONES"),
            exclude_networks=get_list("EXCLUDE_VNETS"),
            dry_run=get_bool("DRY_RUN", False),
            max_workers=get_int("MAX_WORKERS", DEFAULT_MAX_WORKERS),
            run_timeout_seconds=get_float("TIMEOUT"),
            output_path=Path(output) if output else None,
            client_id=get("CLIENT_ID") or None,
            max_retries=get_int("MAX_RETRIES", DEFAULT_MAX_RETRIES),
            retry_backoff_base_seconds=get_float(
                "RETRY_BACKOFF", DEFAULT_RETRY_BACKOFF_BASE_SECONDS
            ),
        )
