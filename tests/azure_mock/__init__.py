"""Azure mock for reconciliation tests.

Provides an in-memory DirectoryClient with error injection and a context
manager that wires it into zonelink.main, so full reconciliation passes run
without Azure connectivity.

Usage:
    from azure_mock import MockAzureContext, MockDirectory

    directory = MockDirectory()
    hub = directory.add_subscription("Hub")
    directory.add_zone(hub, "privatelink.blob.core.windows.net")

    with MockAzureContext(directory):
        exit_code = await reconcile(config)
"""

from .context import MockAzureContext
from .directory import (
    DEFAULT_ZONES_RESOURCE_GROUP,
    DirectoryCall,
    MockDirectory,
    http_error,
    network_id,
)

__all__ = [
    "DEFAULT_ZONES_RESOURCE_GROUP",
    "DirectoryCall",
    "MockAzureContext",
    "MockDirectory",
    "http_error",
    "network_id",
]
