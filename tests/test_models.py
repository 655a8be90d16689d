"""Tests for the domain values."""

from zonelink.models import (
    MAX_LINK_NAME_LENGTH,
    Action,
    ActionKind,
    ActionRecord,
    DecisionKind,
    Outcome,
    VirtualNetwork,
    ZoneLink,
    resource_name_from_id,
    subscription_id_from_id,
)

VNET_ID = (
    "/subscriptions/00000000-0000-0000-0000-000000000002/resourceGroups/rg-network"
    "/providers/Microsoft.Network/virtualNetworks/vnet-spoke1"
)


def test_resource_name_from_id() -> None:
    assert resource_name_from_id(VNET_ID) == "vnet-spoke1"
    assert resource_name_from_id(VNET_ID + "/") == "vnet-spoke1"


def test_subscription_id_from_id() -> None:
    assert subscription_id_from_id(VNET_ID) == "00000000-0000-0000-0000-000000000002"
    assert subscription_id_from_id(VNET_ID.upper()) == "00000000-0000-0000-0000-000000000002"
    assert subscription_id_from_id("vnet-spoke1") is None


class TestVirtualNetwork:
    def test_link_name_is_network_name(self) -> None:
        network = VirtualNetwork(VNET_ID, "vnet-spoke1", "sub")
        assert network.link_name == "vnet-spoke1"

    def test_long_name_truncated(self) -> None:
        network = VirtualNetwork(VNET_ID, "v" * 100, "sub")
        assert len(network.link_name) == MAX_LINK_NAME_LENGTH


class TestZoneLink:
    def test_identity_is_zone_and_network_id(self) -> None:
        a = ZoneLink("privatelink.blob.core", VirtualNetwork(VNET_ID, "vnet-spoke1", "sub"))
        b = ZoneLink("privatelink.blob.core", VirtualNetwork(VNET_ID, "vnet-spoke1", "sub"))

        assert a == b
        assert a.key == ("privatelink.blob.core", VNET_ID)
        assert len({a, b}) == 1


def test_action_record_for_action() -> None:
    link = ZoneLink("privatelink.blob.core", VirtualNetwork(VNET_ID, "vnet-spoke1", "sub"))
    action = Action(ActionKind.DELETE, DecisionKind.REPLACE, link, existing_link_id="/old")

    record = ActionRecord.for_action(action, Outcome.FAILED, "conflict")

    assert record.to_dict() == {
        "zone": "privatelink.blob.core",
        "network": VNET_ID,
        "decision": "REPLACE",
        "action": "DELETE",
        "outcome": "failed",
        "error": "conflict",
    }
