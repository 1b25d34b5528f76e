"""Role orchestration: fragments, local files, services and status rows"""

from fsmoctl.core.models import ALL_ROLES, Role, RoleStatus, RoleStatusRecord
from fsmoctl.core.records import node_services_key, parse_key_values
from fsmoctl.core.roles import RoleStatusBook
from fsmoctl.orchestrator.configurers import (
    CHRONY_DC_KEY,
    CHRONY_PDC_KEY,
    DHCP_ACTIVE_KEY,
    PASSWORD_POLICY_KEY,
)

from conftest import FakeSystemctl


async def test_holder_converges_and_second_run_is_noop(make_node, store, tmp_path):
    systemctl = FakeSystemctl(active={"samba-ad-dc", "chrony"})
    node = make_node("a", systemctl=systemctl)
    ownership = await node.query()

    first = await node.orchestrator.reconcile(ownership.held_roles, ownership)
    assert first.changed
    assert not first.failures
    assert CHRONY_PDC_KEY in first.fragments_written
    assert DHCP_ACTIVE_KEY in first.fragments_written
    assert "MANAGED_BY=a" in store.get(PASSWORD_POLICY_KEY)
    assert "local stratum 10" in (tmp_path / "hosts" / "a" / "chrony.conf").read_text()
    assert "isc-dhcp-server" in systemctl.active
    assert "isc-dhcp-server" in systemctl.enabled
    assert "bind9" in systemctl.active

    actions = list(systemctl.actions)
    second = await node.orchestrator.reconcile(ownership.held_roles, ownership)
    assert not second.changed
    assert systemctl.actions == actions


async def test_status_rows_for_held_roles(make_node, store):
    node = make_node("a")
    ownership = await node.query()
    await node.orchestrator.reconcile(ownership.held_roles, ownership)

    table = RoleStatusBook(store).read()
    for role in ALL_ROLES:
        assert table.get(role).is_active_on("a")
    assert table.get(Role.PDC).services == ["chrony", "isc-dhcp-server", "samba-ad-dc"]
    assert table.get(Role.DOMAIN_NAMING).services == ["samba-ad-dc", "bind9"]


async def test_non_holder_keeps_foreign_rows_and_clears_own(make_node, store, clock):
    book = RoleStatusBook(store, clock)
    book.update([
        RoleStatusRecord(role=Role.PDC, holder="a", last_checked=clock(), status=RoleStatus.ACTIVE, services=["chrony"]),
        RoleStatusRecord(role=Role.RID, holder="b", last_checked=clock(), status=RoleStatus.ACTIVE),
    ])

    node = make_node("b")
    ownership = await node.query()
    await node.orchestrator.reconcile(ownership.held_roles, ownership)

    table = book.read()
    assert table.get(Role.PDC).is_active_on("a")
    assert table.get(Role.RID).holder == "other"
    assert table.get(Role.RID).status == RoleStatus.INACTIVE
    # Unclaimed rows are filled in as well
    assert table.get(Role.SCHEMA).status == RoleStatus.INACTIVE


async def test_non_holder_follows_pdc_for_time_and_stops_dhcp(make_node, store, tmp_path):
    systemctl = FakeSystemctl(
        active={"samba-ad-dc", "chrony", "isc-dhcp-server"},
        enabled={"isc-dhcp-server"},
    )
    node = make_node("b", systemctl=systemctl)
    ownership = await node.query()

    report = await node.orchestrator.reconcile(ownership.held_roles, ownership)

    chrony = (tmp_path / "hosts" / "b" / "chrony.conf").read_text()
    assert chrony == store.get(CHRONY_DC_KEY)
    assert "server a.example.test iburst prefer" in chrony
    assert "local stratum 11" in chrony
    assert "isc-dhcp-server" not in systemctl.active
    assert "isc-dhcp-server" not in systemctl.enabled
    assert {"disable isc-dhcp-server", "stop isc-dhcp-server", "restart chrony"} <= set(report.service_actions)
    assert not report.held_roles


async def test_unknown_pdc_falls_back_to_pools(make_node, world, tmp_path):
    world.holders[Role.PDC] = None
    node = make_node("b")
    ownership = await node.query()

    await node.orchestrator.reconcile(ownership.held_roles, ownership)

    chrony = (tmp_path / "hosts" / "b" / "chrony.conf").read_text()
    assert "server " not in chrony
    assert chrony.count("pool ") == 3


async def test_service_failure_keeps_role_active(make_node, store):
    systemctl = FakeSystemctl(active={"samba-ad-dc", "chrony"}, failing={"isc-dhcp-server"})
    node = make_node("a", systemctl=systemctl)
    ownership = await node.query()

    report = await node.orchestrator.reconcile(ownership.held_roles, ownership)

    assert Role.PDC in report.failures
    assert Role.RID not in report.failures
    assert RoleStatusBook(store).read().get(Role.PDC).is_active_on("a")

    values = parse_key_values(store.get(node_services_key("a")))
    assert values["CONFIG_PDC"] == "failed"
    assert values["CONFIG_RID"] == "ok"
    assert values["chrony"].startswith("active:2026-03-02_12:00:00:")
    assert values["chrony"].endswith(":PDC")
    assert values["samba-ad-dc"].endswith(":PDC,RID,INFRASTRUCTURE,SCHEMA,DOMAIN_NAMING")


async def test_seeded_lease_config_is_not_overwritten(make_node, store, tmp_path):
    operator_config = "# edited by hand\nauthoritative;\n"
    store.put_atomic(DHCP_ACTIVE_KEY, operator_config)
    node = make_node("a")
    ownership = await node.query()

    await node.orchestrator.reconcile(ownership.held_roles, ownership)

    assert store.get(DHCP_ACTIVE_KEY) == operator_config
    assert (tmp_path / "hosts" / "a" / "dhcpd.conf").read_text() == operator_config


async def test_changed_local_file_is_backed_up(make_node, tmp_path):
    chrony = tmp_path / "hosts" / "a" / "chrony.conf"
    chrony.parent.mkdir(parents=True)
    chrony.write_text("server old.example.test\n")
    node = make_node("a")
    ownership = await node.query()

    await node.orchestrator.reconcile(ownership.held_roles, ownership)

    backup = chrony.with_name("chrony.conf.backup.20260302-120000")
    assert backup.read_text() == "server old.example.test\n"
    assert "local stratum 10" in chrony.read_text()


async def test_configure_single_role(make_node, store, tmp_path):
    systemctl = FakeSystemctl(active={"samba-ad-dc", "chrony"})
    node = make_node("a", systemctl=systemctl)

    report = await node.configure_role(Role.RID)

    assert report.reconcile.fragments_written == ["fsmo-configs/rid-management.conf"]
    assert not (tmp_path / "hosts" / "a" / "chrony.conf").exists()
    assert systemctl.actions == []
    table = RoleStatusBook(store).read()
    assert table.get(Role.RID).is_active_on("a")
    assert table.get(Role.PDC).status == RoleStatus.UNKNOWN
