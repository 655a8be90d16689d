"""End-to-end reconciliation passes against the in-memory directory."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from unittest import mock

import pytest
from azure_mock import MockAzureContext, MockDirectory, network_id

from zonelink.config import Config
from zonelink.main import (
    EXIT_OK,
    EXIT_SECURITY_VIOLATION,
    EXIT_SETUP_FAILURE,
    JsonFormatter,
    LinkSync,
    SetupError,
    reconcile,
    resolve_hub,
)
from zonelink.models import Outcome
from zonelink.security import SecretlessViolationError

BLOB = "privatelink.blob.core"
VAULT = "privatelink.vaultcore.azure.net"


@pytest.fixture
def directory() -> MockDirectory:
    """Hub with two zones, one spoke with one network."""
    directory = MockDirectory()
    hub = directory.add_subscription("Hub")
    spoke = directory.add_subscription("Spoke1")
    directory.add_network(spoke, "vnet-spoke1")
    directory.add_zone(hub, BLOB)
    directory.add_zone(hub, VAULT)
    return directory


def make_config(tenant_id: str, **overrides) -> Config:
    values = {
        "hub_subscription": "Hub",
        "zones_resource_group": "rg-private-dns",
        "tenant_id": tenant_id,
        "retry_backoff_base_seconds": 0,
    }
    values.update(overrides)
    return Config(**values)


class TestReconcile:
    @pytest.mark.asyncio
    async def test_creates_missing_links_then_converges(
        self, directory: MockDirectory, tenant_id: str
    ) -> None:
        network = directory.networks[directory.subscriptions[1].subscription_id][0]

        with MockAzureContext(directory) as ctx:
            assert await reconcile(make_config(tenant_id)) == EXIT_OK
            # Zones run concurrently, so only the set of mutations is fixed
            assert sorted(ctx.directory.mutations()) == [
                ("create", BLOB, network.network_id),
                ("create", VAULT, network.network_id),
            ]

            ctx.directory.calls.clear()
            assert await reconcile(make_config(tenant_id)) == EXIT_OK
            assert ctx.directory.calls == []

    @pytest.mark.asyncio
    async def test_directory_built_for_configured_resource_group(
        self, directory: MockDirectory, tenant_id: str
    ) -> None:
        with MockAzureContext(directory) as ctx:
            await reconcile(make_config(tenant_id, dry_run=True))

        ctx.directory_factory.assert_called_once_with(
            ctx.credential, "rg-private-dns", tenant_id=tenant_id
        )

    @pytest.mark.asyncio
    async def test_dry_run_makes_no_changes(self, directory: MockDirectory, tenant_id: str) -> None:
        with MockAzureContext(directory) as ctx:
            assert await reconcile(make_config(tenant_id, dry_run=True)) == EXIT_OK

        assert ctx.directory.calls == []
        assert ctx.directory.link_targets(BLOB) == []

    @pytest.mark.asyncio
    async def test_excluded_network_is_not_linked(
        self, directory: MockDirectory, tenant_id: str
    ) -> None:
        spoke = directory.subscriptions[1]
        directory.add_network(spoke, "vnet-excluded")

        with MockAzureContext(directory) as ctx:
            await reconcile(make_config(tenant_id, exclude_networks=("vnet-excluded",)))

        targets = {target for _, _, target in ctx.directory.mutations()}
        assert all(not t.endswith("/vnet-excluded") for t in targets)
        assert len(targets) == 1

    @pytest.mark.asyncio
    async def test_hub_networks_are_linked_unless_excluded(
        self, directory: MockDirectory, tenant_id: str
    ) -> None:
        hub = directory.subscriptions[0]
        hub_network = directory.add_network(hub, "vnet-hub")

        with MockAzureContext(directory) as ctx:
            await reconcile(make_config(tenant_id))

        assert hub_network.network_id in ctx.directory.link_targets(BLOB)

    @pytest.mark.asyncio
    async def test_zone_allow_list_replaces_discovery(
        self, directory: MockDirectory, tenant_id: str
    ) -> None:
        directory.fail_zone_listing = True

        with MockAzureContext(directory) as ctx:
            exit_code = await reconcile(
                make_config(tenant_id, zones=(VAULT,), exclude_zones=(VAULT,))
            )

        assert exit_code == EXIT_OK
        assert {zone for _, zone, _ in ctx.directory.mutations()} == {VAULT}

    @pytest.mark.asyncio
    async def test_stale_link_is_replaced(self, directory: MockDirectory, tenant_id: str) -> None:
        hub = directory.subscriptions[0]
        network = directory.networks[directory.subscriptions[1].subscription_id][0]
        old = network_id(network.subscription_id, network.name, resource_group="rg-old")
        stale = directory.add_link(hub, BLOB, old, network.link_name)

        with MockAzureContext(directory) as ctx:
            await reconcile(make_config(tenant_id, zones=(BLOB,)))

        assert ctx.directory.mutations() == [
            ("delete", BLOB, stale.link_id),
            ("create", BLOB, network.network_id),
        ]
        assert ctx.directory.link_targets(BLOB) == [network.network_id]

    @pytest.mark.asyncio
    async def test_link_into_excluded_subscription_is_kept(
        self, directory: MockDirectory, tenant_id: str
    ) -> None:
        """A same-named network in an excluded subscription keeps its link."""
        hub = directory.subscriptions[0]
        network = directory.networks[directory.subscriptions[1].subscription_id][0]
        other = directory.add_subscription("Spoke2")
        twin = directory.add_network(other, network.name)
        directory.add_link(hub, BLOB, twin.network_id, "spoke2-vnet-spoke1")

        with MockAzureContext(directory) as ctx:
            config = make_config(tenant_id, zones=(BLOB,), exclude_subscriptions=("Spoke2",))
            assert await reconcile(config) == EXIT_OK

        assert ctx.directory.mutations() == [("create", BLOB, network.network_id)]
        assert ctx.directory.link_targets(BLOB) == [twin.network_id, network.network_id]

    @pytest.mark.asyncio
    async def test_link_into_failed_subscription_is_kept(
        self, directory: MockDirectory, tenant_id: str
    ) -> None:
        hub = directory.subscriptions[0]
        network = directory.networks[directory.subscriptions[1].subscription_id][0]
        broken = directory.add_subscription("Broken")
        twin = directory.add_network(broken, network.name)
        directory.add_link(hub, BLOB, twin.network_id, "broken-vnet-spoke1")
        directory.fail_network_listing.add(broken.subscription_id)

        with MockAzureContext(directory) as ctx:
            assert await reconcile(make_config(tenant_id, zones=(BLOB,))) == EXIT_OK

        assert [m for m in ctx.directory.mutations() if m[0] == "delete"] == []
        assert twin.network_id in ctx.directory.link_targets(BLOB)
        assert network.network_id in ctx.directory.link_targets(BLOB)

    @pytest.mark.asyncio
    async def test_link_to_excluded_network_is_kept(
        self, directory: MockDirectory, tenant_id: str, tmp_path: Path
    ) -> None:
        """An excluded network holding our link name keeps its link."""
        hub = directory.subscriptions[0]
        spoke = directory.subscriptions[1]
        network = directory.networks[spoke.subscription_id][0]
        excluded = directory.add_network(spoke, "vnet-excluded")
        directory.add_link(hub, BLOB, excluded.network_id, network.link_name)
        output = tmp_path / "actions.json"

        with MockAzureContext(directory) as ctx:
            config = make_config(
                tenant_id, zones=(BLOB,), exclude_networks=("vnet-excluded",), output_path=output
            )
            assert await reconcile(config) == EXIT_OK

        assert [m for m in ctx.directory.mutations() if m[0] == "delete"] == []
        assert ctx.directory.link_targets(BLOB) == [excluded.network_id]
        records = json.loads(output.read_text(encoding="utf-8"))
        assert [(r["decision"], r["action"], r["outcome"]) for r in records] == [
            ("CREATE", "CREATE", Outcome.FAILED.value)
        ]

    @pytest.mark.asyncio
    async def test_action_failures_do_not_change_exit_code(
        self, directory: MockDirectory, tenant_id: str, tmp_path: Path
    ) -> None:
        network = directory.networks[directory.subscriptions[1].subscription_id][0]
        directory.reject_creates.add((BLOB, network.network_id))
        output = tmp_path / "actions.json"

        with MockAzureContext(directory):
            exit_code = await reconcile(make_config(tenant_id, output_path=output))

        assert exit_code == EXIT_OK
        records = json.loads(output.read_text(encoding="utf-8"))
        outcomes = {(r["zone"], r["outcome"]) for r in records}
        assert outcomes == {(BLOB, Outcome.FAILED.value), (VAULT, Outcome.APPLIED.value)}

    @pytest.mark.asyncio
    async def test_action_log_written_in_dry_run(
        self, directory: MockDirectory, tenant_id: str, tmp_path: Path
    ) -> None:
        output = tmp_path / "actions.json"

        with MockAzureContext(directory):
            await reconcile(make_config(tenant_id, dry_run=True, output_path=output))

        records = json.loads(output.read_text(encoding="utf-8"))
        assert len(records) == 2
        assert {r["outcome"] for r in records} == {Outcome.SKIPPED_DRY_RUN.value}
        assert set(records[0]) == {"zone", "network", "decision", "action", "outcome", "error"}

    @pytest.mark.asyncio
    async def test_authentication_failure_is_setup_failure(
        self, directory: MockDirectory, tenant_id: str
    ) -> None:
        directory.fail_auth = True

        with MockAzureContext(directory) as ctx:
            assert await reconcile(make_config(tenant_id)) == EXIT_SETUP_FAILURE

        assert ctx.directory.calls == []

    @pytest.mark.asyncio
    async def test_unknown_hub_is_setup_failure(
        self, directory: MockDirectory, tenant_id: str
    ) -> None:
        with MockAzureContext(directory) as ctx:
            exit_code = await reconcile(make_config(tenant_id, hub_subscription="NoSuchHub"))

        assert exit_code == EXIT_SETUP_FAILURE
        assert ctx.directory.calls == []

    @pytest.mark.asyncio
    async def test_zone_listing_failure_is_setup_failure(
        self, directory: MockDirectory, tenant_id: str
    ) -> None:
        directory.fail_zone_listing = True

        with MockAzureContext(directory):
            assert await reconcile(make_config(tenant_id)) == EXIT_SETUP_FAILURE

    @pytest.mark.asyncio
    async def test_failed_subscription_does_not_block_others(
        self, directory: MockDirectory, tenant_id: str
    ) -> None:
        broken = directory.add_subscription("Broken")
        directory.add_network(broken, "vnet-broken")
        directory.fail_network_listing.add(broken.subscription_id)

        with MockAzureContext(directory) as ctx:
            assert await reconcile(make_config(tenant_id)) == EXIT_OK

        assert len(ctx.directory.mutations()) == 2

    @pytest.mark.asyncio
    async def test_secret_in_environment_exits_with_security_violation(
        self, tenant_id: str
    ) -> None:
        with mock.patch(
            "zonelink.main.get_credential",
            side_effect=SecretlessViolationError("SECURITY VIOLATION: AZURE_CLIENT_SECRET is set"),
        ):
            assert await reconcile(make_config(tenant_id)) == EXIT_SECURITY_VIOLATION

    @pytest.mark.asyncio
    async def test_real_credential_check_rejects_client_secret(
        self, tenant_id: str, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("AZURE_CLIENT_SECRET", "s3cr3t")

        with mock.patch("zonelink.main.AzureDirectoryClient") as factory:
            assert await reconcile(make_config(tenant_id)) == EXIT_SECURITY_VIOLATION

        factory.assert_not_called()


class TestLinkSync:
    @pytest.mark.asyncio
    async def test_shutdown_skips_remaining_actions(
        self, directory: MockDirectory, tenant_id: str
    ) -> None:
        sync = LinkSync(make_config(tenant_id), directory)
        sync.shutdown()

        result = await sync.run()

        assert result.cancelled is True
        assert directory.calls == []
        assert result.outcomes[Outcome.SKIPPED.value] == 2

    @pytest.mark.asyncio
    async def test_result_counts(self, directory: MockDirectory, tenant_id: str) -> None:
        hub = directory.subscriptions[0]
        network = directory.networks[directory.subscriptions[1].subscription_id][0]
        directory.add_link(hub, BLOB, network.network_id, network.link_name)

        result = await LinkSync(make_config(tenant_id), directory).run()

        assert result.decisions == {"CREATE": 1, "REPLACE": 0, "NOOP": 1}
        assert result.outcomes[Outcome.APPLIED.value] == 1
        assert result.has_failures is False
        assert result.end_time is not None

    @pytest.mark.asyncio
    async def test_failed_zone_is_reported(self, directory: MockDirectory, tenant_id: str) -> None:
        directory.fail_link_listing.add(VAULT)

        result = await LinkSync(make_config(tenant_id), directory).run()

        assert result.failed_zones == [VAULT]
        assert result.has_failures is True
        assert [c.zone for c in directory.calls] == [BLOB]

    @pytest.mark.asyncio
    async def test_unknown_hub_raises(self, directory: MockDirectory, tenant_id: str) -> None:
        sync = LinkSync(make_config(tenant_id, hub_subscription="Missing"), directory)

        with pytest.raises(SetupError, match="Hub subscription not found"):
            await sync.run()


def test_resolve_hub_by_id(directory: MockDirectory) -> None:
    hub = directory.subscriptions[0]
    assert resolve_hub(directory.subscriptions, hub.subscription_id) == hub


class TestJsonFormatter:
    def test_includes_extra_fields(self) -> None:
        record = logging.LogRecord(
            name="zonelink.executor",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Action processed",
            args=(),
            exc_info=None,
        )
        record.zone = BLOB
        record.outcome = "applied"

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Action processed"
        assert data["level"] == "INFO"
        assert data["zone"] == BLOB
        assert data["outcome"] == "applied"
        assert data["timestamp"].endswith("Z")
