"""Scope file loading with validation.

A scope file lets operators keep the hub location and the long exclusion
lists in version control instead of on the command line:

    apiVersion: zonelink/v1
    kind: LinkScope
    spec:
      hubSubscription: sub-connectivity
      zonesResourceGroup: rg-private-dns
      zones:
        - privatelink.blob.core.windows.net
      exclude:
        subscriptions: [sub-sandbox]
        zones: []
        virtualNetworks: [vnet-excluded]

The flat form (the contents of "spec:" without the wrapper) is accepted as well.

SECURITY: File size is checked before reading to refuse oversized input.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .config import MAX_SCOPE_FILE_SIZE_BYTES

logger = logging.getLogger(__name__)


class ScopeFileError(Exception):
    """Raised when scope file loading or validation fails."""

    pass


class ExcludeSpec(BaseModel):
    """Exclusion name lists."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    subscriptions: list[str] = Field(default_factory=list)
    zones: list[str] = Field(default_factory=list)
    virtual_networks: list[str] = Field(default_factory=list, alias="virtualNetworks")

    @field_validator("subscriptions", "zones", "virtual_networks")
    @classmethod
    def reject_blank_names(cls, v: list[str]) -> list[str]:
        if any(not name.strip() for name in v):
            raise ValueError("names must not be blank")
        return v


class ScopeSpec(BaseModel):
    """Reconciliation scope as declared in a scope file."""

    model_config = {"extra": "forbid", "populate_by_name": True}

    hub_subscription: str | None = Field(None, alias="hubSubscription")
    zones_resource_group: str | None = Field(None, alias="zonesResourceGroup")
    zones: list[str] | None = None
    exclude: ExcludeSpec = Field(default_factory=ExcludeSpec)

    @field_validator("zones")
    @classmethod
    def validate_zones(cls, v: list[str] | None) -> list[str] | None:
        if v is not None:
            if not v:
                raise ValueError("zones must list at least one zone when present")
            if any(not name.strip() for name in v):
                raise ValueError("zone names must not be blank")
        return v


def load_scope(path: Path) -> ScopeSpec:
    """Load and validate a scope file.

    Args:
        path: YAML file to read.

    Returns:
        Validated scope.

    Raises:
        ScopeFileError: If the file cannot be read or fails validation.
    """
    if not path.exists():
        raise ScopeFileError(f"Scope file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ScopeFileError(f"Failed to stat scope file {path}: {e}") from e

    if file_size > MAX_SCOPE_FILE_SIZE_BYTES:
        raise ScopeFileError(
            f"Scope file exceeds maximum size of {MAX_SCOPE_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ScopeFileError(f"Failed to read scope file {path}: {e}") from e

    try:
        raw_data: Any = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ScopeFileError(f"Invalid YAML in {path}: {e}") from e

    if raw_data is None:
        raw_data = {}
    if not isinstance(raw_data, dict):
        raise ScopeFileError(f"Scope file must contain a YAML mapping: {path}")

    if "apiVersion" in raw_data and "spec" in raw_data:
        spec_data = raw_data.get("spec") or {}
        if not isinstance(spec_data, dict):
            raise ScopeFileError(f"Spec section must be a mapping: {path}")
    else:
        spec_data = raw_data

    try:
        scope = ScopeSpec.model_validate(spec_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise ScopeFileError(f"Validation failed for {path}:\n{error_list}") from e

    logger.info("Loaded scope file %s", path)
    return scope
