"""Directory client: the only module that talks to Azure Resource Manager.

Every call names the subscription it acts on. There is no "current
subscription" context; SDK clients are created per subscription from the one
credential established at startup.

Errors are not translated. Callers see azure.core.exceptions types
(HttpResponseError, ResourceNotFoundError, ClientAuthenticationError).
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol

from azure.core.credentials import TokenCredential
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.privatedns import PrivateDnsManagementClient
from azure.mgmt.privatedns.models import SubResource, VirtualNetworkLink
from azure.mgmt.resource import SubscriptionClient

from .config import ZONE_LINK_LOCATION
from .models import ExistingLink, PrivateZone, Subscription, VirtualNetwork

logger = logging.getLogger(__name__)

ENABLED_SUBSCRIPTION_STATE = "Enabled"


class DirectoryClient(Protocol):
    """Operations the reconciliation core needs from the control plane."""

    def list_subscriptions(self) -> list[Subscription]: ...

    def list_virtual_networks(self, subscription_id: str) -> list[VirtualNetwork]: ...

    def list_private_zones(self, subscription_id: str) -> list[PrivateZone]: ...

    def list_zone_links(self, subscription_id: str, zone_name: str) -> list[ExistingLink]: ...

    def create_zone_link(
        self, subscription_id: str, zone_name: str, network_id: str, link_name: str
    ) -> str: ...

    def delete_zone_link(self, link_id: str) -> None: ...


def parse_link_id(link_id: str) -> dict[str, str]:
    """Split a virtualNetworkLinks resource ID into its parts.

    /subscriptions/{sub}/resourceGroups/{rg}/providers/Microsoft.Network/
    privateDnsZones/{zone}/virtualNetworkLinks/{name}

    Returns:
        Dict with subscription_id, resource_group, zone and name.

    Raises:
        ValueError: If the ID is not a zone link ID.
    """
    segments = [s for s in link_id.split("/") if s]
    # Keys are case-insensitive in ARM IDs, values are not
    pairs: dict[str, str] = {}
    for key, value in zip(segments[0::2], segments[1::2], strict=False):
        pairs[key.lower()] = value

    required = {
        "subscription_id": pairs.get("subscriptions"),
        "resource_group": pairs.get("resourcegroups"),
        "zone": pairs.get("privatednszones"),
        "name": pairs.get("virtualnetworklinks"),
    }
    missing = [k for k, v in required.items() if not v]
    if missing:
        raise ValueError(f"Not a private DNS zone link ID ({', '.join(missing)} missing): {link_id}")
    return {k: v for k, v in required.items() if v is not None}


class AzureDirectoryClient:
    """DirectoryClient backed by the Azure management SDKs.

    Private DNS zones are looked up in one resource group (the hub's zone
    resource group). SDK clients are cached per subscription.
    """

    def __init__(
        self,
        credential: TokenCredential,
        zones_resource_group: str,
        tenant_id: str | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            credential: Credential shared by every SDK client.
            zones_resource_group: Resource group hosting the private DNS zones.
            tenant_id: When set, subscriptions of other tenants are ignored.
        """
        self._credential = credential
        self._zones_resource_group = zones_resource_group
        self._tenant_id = tenant_id
        self._lock = threading.Lock()
        self._network_clients: dict[str, NetworkManagementClient] = {}
        self._dns_clients: dict[str, PrivateDnsManagementClient] = {}

    def _network_client(self, subscription_id: str) -> NetworkManagementClient:
        with self._lock:
            client = self._network_clients.get(subscription_id)
            if client is None:
                client = NetworkManagementClient(self._credential, subscription_id)
                self._network_clients[subscription_id] = client
            return client

    def _dns_client(self, subscription_id: str) -> PrivateDnsManagementClient:
        with self._lock:
            client = self._dns_clients.get(subscription_id)
            if client is None:
                client = PrivateDnsManagementClient(self._credential, subscription_id)
                self._dns_clients[subscription_id] = client
            return client

    def list_subscriptions(self) -> list[Subscription]:
        """List enabled subscriptions of the tenant."""
        client = SubscriptionClient(self._credential)
        subscriptions = []
        for sub in client.subscriptions.list():
            if self._tenant_id and sub.tenant_id and sub.tenant_id != self._tenant_id:
                continue
            if sub.state and str(sub.state) != ENABLED_SUBSCRIPTION_STATE:
                logger.debug(
                    "Skipping subscription that is not enabled",
                    extra={"subscription": sub.display_name, "state": str(sub.state)},
                )
                continue
            subscriptions.append(
                Subscription(subscription_id=sub.subscription_id, display_name=sub.display_name)
            )
        return subscriptions

    def list_virtual_networks(self, subscription_id: str) -> list[VirtualNetwork]:
        networks = [
            VirtualNetwork(network_id=vnet.id, name=vnet.name, subscription_id=subscription_id)
            for vnet in self._network_client(subscription_id).virtual_networks.list_all()
        ]
        logger.debug(
            "Listed virtual networks",
            extra={"subscription_id": subscription_id, "count": len(networks)},
        )
        return networks

    def list_private_zones(self, subscription_id: str) -> list[PrivateZone]:
        client = self._dns_client(subscription_id)
        return [
            PrivateZone(name=zone.name)
            for zone in client.private_zones.list_by_resource_group(self._zones_resource_group)
        ]

    def list_zone_links(self, subscription_id: str, zone_name: str) -> list[ExistingLink]:
        client = self._dns_client(subscription_id)
        links = []
        for link in client.virtual_network_links.list(self._zones_resource_group, zone_name):
            target = link.virtual_network.id if link.virtual_network else ""
            links.append(
                ExistingLink(
                    link_id=link.id,
                    name=link.name,
                    zone=zone_name,
                    target_network_id=target or "",
                )
            )
        return links

    def create_zone_link(
        self, subscription_id: str, zone_name: str, network_id: str, link_name: str
    ) -> str:
        """Create a resolution-only link and wait for it to be provisioned.

        Returns:
            The resource ID of the new link.
        """
        client = self._dns_client(subscription_id)
        parameters = VirtualNetworkLink(
            location=ZONE_LINK_LOCATION,
            virtual_network=SubResource(id=network_id),
            registration_enabled=False,
        )
        poller = client.virtual_network_links.begin_create_or_update(
            self._zones_resource_group,
            zone_name,
            link_name,
            parameters,
            # Never overwrite a link of the same name
            if_none_match="*",
        )
        created = poller.result()
        return created.id

    def delete_zone_link(self, link_id: str) -> None:
        parts = parse_link_id(link_id)
        client = self._dns_client(parts["subscription_id"])
        poller = client.virtual_network_links.begin_delete(
            parts["resource_group"], parts["zone"], parts["name"]
        )
        poller.result()
