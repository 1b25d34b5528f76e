"""
Shared pytest fixtures for fsmoctl tests.

Everything that would touch a real domain controller is replaced here:
- MemoryStateStore stands in for the replicated SYSVOL tree
- DirectoryWorld holds the "true" role ownership shared by all fake nodes
- ScriptedProbe answers reachability from a fixed set or a per-node script
- FakeSystemctl is a command runner that emulates systemctl unit state
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import pytest

from fsmoctl.errors import DirectoryUnreachable, SeizureFailed
from fsmoctl.core.commands import CommandResult
from fsmoctl.core.config import FsmoConfig
from fsmoctl.core.models import ALL_ROLES, Role, RoleOwnership, normalize_node
from fsmoctl.core.store import MemoryStateStore
from fsmoctl.cluster.discovery import PeerDiscovery
from fsmoctl.cluster.probe import ProbeResult
from fsmoctl.node import FsmoNode
from fsmoctl.orchestrator.services import ServiceManager


class FixedClock:
    """Controllable UTC clock"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


class DirectoryWorld:
    """Ground truth of role ownership shared by every fake node"""

    def __init__(self, holders: Dict[Role, str], servers: Sequence[str]):
        self.holders: Dict[Role, Optional[str]] = {role: holders.get(role) for role in ALL_ROLES}
        self.servers = list(servers)
        self.seize_calls: List[tuple] = []
        self.failing_nodes: set = set()
        self.seize_delay = 0.0
        self.unreachable = False

    def adapter(self, node: str) -> "FakeDirectory":
        return FakeDirectory(self, node)


class FakeDirectory:
    def __init__(self, world: DirectoryWorld, node: str):
        self.world = world
        self.this_node = normalize_node(node)

    async def query_roles(self) -> RoleOwnership:
        if self.world.unreachable:
            raise DirectoryUnreachable("samba-tool exited with 1")
        return RoleOwnership(this_node=self.this_node, holders=dict(self.world.holders))

    async def seize(self, role: Role):
        self.world.seize_calls.append((self.this_node, role))
        if self.world.seize_delay:
            await asyncio.sleep(self.world.seize_delay)
        if self.this_node in self.world.failing_nodes:
            raise SeizureFailed(role.value, "samba-tool exited with 255")
        self.world.holders[role] = self.this_node

    async def list_servers(self) -> List[str]:
        return list(self.world.servers)


class ScriptedProbe:
    """Reachability from a fixed set, or a per-node list of answers consumed in order"""

    def __init__(self, reachable: Iterable[str] = (), scripts: Optional[Dict[str, List[bool]]] = None):
        self.reachable = {normalize_node(n) for n in reachable}
        self.scripts = {normalize_node(k): list(v) for k, v in (scripts or {}).items()}
        self.calls: List[str] = []

    async def check(self, node: str) -> ProbeResult:
        node = normalize_node(node)
        self.calls.append(node)
        await asyncio.sleep(0)
        if self.scripts.get(node):
            ok = self.scripts[node].pop(0)
        else:
            ok = node in self.reachable
        return ProbeResult(node=node, checks={"ping": ok, "ldap": ok, "smb": ok})

    async def is_reachable(self, node: str) -> bool:
        return (await self.check(node)).reachable


class FakeSystemctl:
    """Command runner emulating systemctl for a handful of units"""

    def __init__(self, active: Iterable[str] = (), enabled: Iterable[str] = (), failing: Iterable[str] = ()):
        self.active = set(active)
        self.enabled = set(enabled)
        self.failing = set(failing)
        self.actions: List[str] = []

    async def __call__(self, args: Sequence[str], timeout: float) -> CommandResult:
        action, service = args[1], args[2]
        if action == "is-active":
            state = "active" if service in self.active else "inactive"
            return CommandResult(args=list(args), returncode=0 if state == "active" else 3, stdout=f"{state}\n")
        if action == "is-enabled":
            return CommandResult(args=list(args), returncode=0 if service in self.enabled else 1)

        self.actions.append(f"{action} {service}")
        if service in self.failing:
            return CommandResult(args=list(args), returncode=1, stderr=f"Job for {service} failed.\n")
        if action in ("start", "restart"):
            self.active.add(service)
        elif action == "stop":
            self.active.discard(service)
        elif action == "enable":
            self.enabled.add(service)
        elif action == "disable":
            self.enabled.discard(service)
        return CommandResult(args=list(args), returncode=0)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture
def world() -> DirectoryWorld:
    return DirectoryWorld({role: "a" for role in ALL_ROLES}, servers=["A$", "B$", "C$"])


@pytest.fixture
def sleeps() -> List[float]:
    return []


def make_config(root, node: str, **auto_seize) -> FsmoConfig:
    local = root / "hosts" / node
    return FsmoConfig(
        node_name=node,
        domain="example.test",
        shared_root=root / "sysvol",
        run_lock_file=local / "fsmoctl.lock",
        auto_seize={"roles": ["PDC"], **auto_seize},
        services={
            "chrony_config": local / "chrony.conf",
            "dhcp_config": local / "dhcpd.conf",
        },
        dhcp={"dns_servers": ["192.168.1.10", "192.168.1.11"]},
    )


@pytest.fixture
def make_node(tmp_path, store, clock, world, sleeps):
    """Build an FsmoNode wired to the shared fakes"""

    async def fake_sleep(seconds: float):
        sleeps.append(seconds)

    def factory(
        name: str,
        probe: Optional[ScriptedProbe] = None,
        systemctl: Optional[FakeSystemctl] = None,
        **auto_seize,
    ) -> FsmoNode:
        config = make_config(tmp_path, name, **auto_seize)
        systemctl = systemctl or FakeSystemctl(active={"samba-ad-dc", "chrony"})
        directory = world.adapter(name)
        return FsmoNode(
            config,
            store=store,
            runner=systemctl,
            directory=directory,
            probe=probe or ScriptedProbe(),
            discovery=PeerDiscovery("", directory=directory),
            services=ServiceManager(runner=systemctl),
            clock=clock,
            sleep=fake_sleep,
        )

    return factory
