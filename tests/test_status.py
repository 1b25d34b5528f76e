"""Status snapshot, cluster overview and rendering"""

from datetime import timedelta

from rich.console import Console

from fsmoctl.core.commands import CommandResult
from fsmoctl.core.models import Role, SeizureLock, SeizureOutcome
from fsmoctl.core.records import ROLE_STATUS_KEY, format_lock, lock_key
from fsmoctl.core.roles import RoleStatusBook
from fsmoctl.core.store import MemoryStateStore
from fsmoctl.orchestrator.status import render_cluster, render_snapshot

from conftest import FakeSystemctl, ScriptedProbe


class BrokenUnitSystemctl(FakeSystemctl):
    """systemctl that cannot query one unit"""

    def __init__(self, broken: str, **kwargs):
        super().__init__(**kwargs)
        self.broken = broken

    async def __call__(self, args, timeout):
        if args[2] == self.broken:
            return CommandResult(args=list(args), returncode=127, stderr="not found\n")
        return await super().__call__(args, timeout)


async def test_fresh_store_reports_explicit_unknowns(make_node):
    node = make_node("a")
    snapshot = await node.status()

    assert [row["status"] for row in snapshot.roles] == ["UNKNOWN"] * 5
    assert [row["holder"] for row in snapshot.roles] == ["unknown"] * 5
    assert snapshot.locks == []
    assert snapshot.priorities == []
    assert snapshot.cooldown["in_cooldown"] is False


async def test_status_after_cycle(make_node, store, clock):
    node = make_node("a")
    await node.orchestrate(seize=False)
    stale = SeizureLock(Role.RID, "c", clock() - timedelta(seconds=400))
    store.put_atomic(lock_key(Role.RID), format_lock(stale))

    snapshot = await node.status()

    pdc = snapshot.roles[0]
    assert pdc["role"] == "PDC"
    assert pdc["holder"] == "a"
    assert pdc["status"] == "ACTIVE"
    assert snapshot.services["isc-dhcp-server"] == "active"
    assert snapshot.locks == [{
        "role": "RID",
        "holder": "c",
        "acquired_at": "2026-03-02_11:53:20",
        "age_seconds": 400,
        "expired": True,
    }]
    assert [row["node"] for row in snapshot.priorities] == ["a"]
    assert snapshot.priorities[0]["stale"] is False

    data = snapshot.to_dict()
    assert data["collected_at"] == "2026-03-02_12:00:00"


async def test_unqueryable_service_is_error(make_node):
    systemctl = BrokenUnitSystemctl("bind9", active={"samba-ad-dc", "chrony"})
    node = make_node("a", systemctl=systemctl)
    snapshot = await node.status()
    assert snapshot.services["bind9"] == "error"
    assert snapshot.services["chrony"] == "active"


async def test_render_snapshot(make_node, store, clock):
    node = make_node("a")
    await node.orchestrate(seize=False)
    store.put_atomic(lock_key(Role.PDC), format_lock(SeizureLock(Role.PDC, "b", clock())))
    node.history.record(Role.PDC, SeizureOutcome.SUCCESS)

    console = Console(record=True, width=200)
    render_snapshot(console, await node.status())
    text = console.export_text()

    assert "FSMO Roles (viewed from a)" in text
    assert "Seizure Locks" in text
    assert "Recent Seizure Attempts" in text
    assert "isc-dhcp-server" in text


async def test_cluster_view_marks_silent_nodes(make_node):
    a = make_node("a", probe=ScriptedProbe(reachable={"a", "b"}))
    b = make_node("b")
    await a.orchestrate(seize=False)
    b.registry.publish_self()

    nodes = await a.multi_dc_status()

    by_name = {item["node"]: item for item in nodes}
    assert sorted(by_name) == ["a", "b", "c"]
    assert by_name["a"]["self"] is True
    assert by_name["a"]["configs"]["PDC"] == "ok"
    assert by_name["a"]["services"]["chrony"]["roles"] == "PDC"
    assert by_name["b"]["report"] == "UNKNOWN"
    assert by_name["b"]["reachable"] is True
    assert by_name["c"]["reachable"] is False
    assert by_name["c"]["probe"] == "0/3 tests passed"

    console = Console(record=True, width=200)
    render_cluster(console, nodes)
    assert "Domain Controllers" in console.export_text()


class RacingStore(MemoryStateStore):
    """Another DC creates the role table right after this node looked for it"""

    def get(self, key):
        value = super().get(key)
        if value is None and key == ROLE_STATUS_KEY:
            self.put_atomic(key, "PDC=c:2026-03-02 11:59:00:ACTIVE:samba-ad-dc\n")
        return value


def test_initialize_tolerates_concurrent_creation(clock):
    store = RacingStore()
    book = RoleStatusBook(store, clock=clock)

    assert book.initialize() is False
    assert book.read().get(Role.PDC).holder == "c"
