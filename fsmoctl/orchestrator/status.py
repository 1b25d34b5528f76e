"""
Read-only status reporting

Collects the role table, local service states, seizure locks, priorities,
cooldown and recent seizure attempts into one snapshot, and renders it as
rich tables. Nothing here writes to the shared store. Missing or unreadable
data shows up as UNKNOWN / error instead of being omitted.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from ..core.config import FsmoConfig
from ..core.models import ALL_ROLES, ServiceKind, format_timestamp, normalize_node, utcnow
from ..core.records import SERVICE_CONFIG_DIR, PriorityTable, parse_key_values
from ..core.roles import RoleStatusBook
from ..core.store import SharedStateStore
from ..failover.history import CooldownTracker, SeizureHistory
from ..failover.locks import SeizureLockManager
from ..failover.priority import PriorityRegistry
from .services import ServiceManager

logger = logging.getLogger(__name__)

STATUS_COLORS = {
    "ACTIVE": "green",
    "INACTIVE": "dim",
    "SEIZED": "yellow",
    "UNKNOWN": "red",
    "active": "green",
    "inactive": "dim",
    "failed": "red",
    "error": "red",
}


@dataclass
class StatusSnapshot:
    node: str
    collected_at: datetime
    roles: List[Dict[str, Any]] = field(default_factory=list)
    services: Dict[str, str] = field(default_factory=dict)
    locks: List[Dict[str, Any]] = field(default_factory=list)
    priorities: List[Dict[str, Any]] = field(default_factory=list)
    cooldown: Dict[str, Any] = field(default_factory=dict)
    history: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": self.node,
            "collected_at": format_timestamp(self.collected_at),
            "roles": self.roles,
            "services": self.services,
            "locks": self.locks,
            "priorities": self.priorities,
            "cooldown": self.cooldown,
            "history": self.history,
        }


class StatusReporter:
    """Operator view of the shared state and local services"""

    def __init__(
        self,
        config: FsmoConfig,
        store: SharedStateStore,
        services: ServiceManager,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.node = config.node_name
        self.store = store
        self.services = services
        self.clock = clock

    def _roles(self) -> List[Dict[str, Any]]:
        table = RoleStatusBook(self.store, self.clock).read()
        rows = []
        for role in ALL_ROLES:
            record = table.get(role)
            rows.append({
                "role": role.value,
                "holder": record.holder,
                "status": record.status.value,
                "last_checked": format_timestamp(record.last_checked),
                "services": record.services,
            })
        return rows

    def _locks(self, now: datetime) -> List[Dict[str, Any]]:
        manager = SeizureLockManager(self.store, self.node, self.config.auto_seize.lock_ttl_seconds, self.clock)
        locks = []
        for role in ALL_ROLES:
            lock = manager.read(role)
            if lock is None:
                continue
            locks.append({
                "role": role.value,
                "holder": lock.holder,
                "acquired_at": format_timestamp(lock.acquired_at),
                "age_seconds": int(lock.age_seconds(now)),
                "expired": lock.is_expired(now, manager.ttl_seconds),
            })
        return locks

    def _priorities(self, table: PriorityTable, now: datetime) -> List[Dict[str, Any]]:
        rows = []
        for entry in table.entries.values():
            age = entry.age(now)
            rows.append({
                "node": entry.node,
                "priority": entry.general,
                "roles": {role.value: entry.roles.get(role) for role in ALL_ROLES},
                "last_seen": format_timestamp(entry.last_seen) if entry.last_seen else (entry.last_seen_raw or "UNKNOWN"),
                "age_hours": round(age.total_seconds() / 3600, 1) if age is not None else None,
                "stale": age is not None and age.total_seconds() > self.config.priority.stale_after_hours * 3600,
            })
        return sorted(rows, key=lambda row: row["node"])

    def _cooldown(self, now: datetime) -> Dict[str, Any]:
        state = CooldownTracker(self.store, self.node, self.clock).load()
        seconds = self.config.auto_seize.cooldown_seconds
        return {
            "last_seizure_attempt": format_timestamp(state.last_seizure_attempt) if state.last_seizure_attempt else None,
            "in_cooldown": state.in_cooldown(now, seconds),
            "remaining_seconds": int(state.remaining_seconds(now, seconds)),
        }

    async def collect(self, history_limit: int = 10) -> StatusSnapshot:
        now = self.clock()
        snapshot = StatusSnapshot(node=self.node, collected_at=now)
        snapshot.roles = self._roles()

        names = [self.config.service_name(kind) for kind in ServiceKind if self.config.service_name(kind)]
        snapshot.services = await self.services.states(names)

        snapshot.locks = self._locks(now)
        registry = PriorityRegistry(self.store, self.node, clock=self.clock)
        snapshot.priorities = self._priorities(registry.read_table(), now)
        snapshot.cooldown = self._cooldown(now)
        snapshot.history = [
            {
                "timestamp": format_timestamp(attempt.timestamp),
                "node": attempt.actor,
                "role": attempt.role.value,
                "result": attempt.outcome.value,
            }
            for attempt in SeizureHistory(self.store, self.node, self.clock).recent(history_limit)
        ]
        return snapshot

    def collect_cluster(self) -> List[Dict[str, Any]]:
        """Per-node service reports published under service-configs/"""
        nodes = []
        table = PriorityRegistry(self.store, self.node, clock=self.clock).read_table()
        known = set(table.entries)
        suffix = "-services.conf"

        for key in self.store.list_keys(f"{SERVICE_CONFIG_DIR}/"):
            name = key.rsplit("/", 1)[-1]
            if not name.endswith(suffix):
                continue
            node = normalize_node(name[: -len(suffix)])
            known.discard(node)
            values = parse_key_values(self.store.get(key))
            services = {}
            configs = {}
            for service, value in values.items():
                if service.startswith("CONFIG_"):
                    configs[service[len("CONFIG_"):]] = value
                    continue
                state, _, rest = value.partition(":")
                updated, _, roles = rest.rpartition(":")
                services[service] = {"state": state, "last_update": updated, "roles": roles}
            nodes.append({"node": node, "services": services, "configs": configs})

        # Nodes that published priorities but never a service report
        for node in sorted(known):
            nodes.append({"node": node, "services": {}, "configs": {}, "report": "UNKNOWN"})
        return sorted(nodes, key=lambda item: item["node"])


def _colored(value: Optional[str]) -> str:
    if value is None:
        return "[red]UNKNOWN[/red]"
    color = STATUS_COLORS.get(value)
    return f"[{color}]{value}[/{color}]" if color else value


def render_snapshot(console: Console, snapshot: StatusSnapshot):
    table = Table(title=f"FSMO Roles (viewed from {snapshot.node})")
    table.add_column("Role", style="cyan")
    table.add_column("Holder", style="bold")
    table.add_column("Status")
    table.add_column("Last Check", style="dim")
    table.add_column("Services")
    for row in snapshot.roles:
        table.add_row(
            row["role"], row["holder"], _colored(row["status"]), row["last_checked"],
            ", ".join(row["services"]) or "none",
        )
    console.print(table)

    table = Table(title="Local Services")
    table.add_column("Service", style="cyan")
    table.add_column("State")
    for service, state in snapshot.services.items():
        table.add_row(service, _colored(state))
    console.print(table)

    if snapshot.locks:
        table = Table(title="Seizure Locks")
        table.add_column("Role", style="cyan")
        table.add_column("Holder", style="bold")
        table.add_column("Age")
        table.add_column("State")
        for lock in snapshot.locks:
            state = "[dim]expired[/dim]" if lock["expired"] else "[yellow]active[/yellow]"
            table.add_row(lock["role"], lock["holder"], f"{lock['age_seconds']}s", state)
        console.print(table)
    else:
        console.print("[dim]No seizure locks present[/dim]")

    table = Table(title="DC Priorities (lower = preferred)")
    table.add_column("DC", style="cyan")
    table.add_column("General")
    for role in ALL_ROLES:
        table.add_column(role.value)
    table.add_column("Last Seen", style="dim")
    for row in snapshot.priorities:
        values = [str(row["roles"][role.value]) if row["roles"][role.value] is not None else "-" for role in ALL_ROLES]
        last_seen = f"[red]{row['last_seen']} (stale)[/red]" if row["stale"] else row["last_seen"]
        general = str(row["priority"]) if row["priority"] is not None else "-"
        table.add_row(row["node"], general, *values, last_seen)
    console.print(table)

    cooldown = snapshot.cooldown
    if cooldown.get("in_cooldown"):
        console.print(f"[yellow]Seizure cooldown active, {cooldown['remaining_seconds']}s remaining[/yellow]")

    if snapshot.history:
        table = Table(title="Recent Seizure Attempts")
        table.add_column("Time", style="dim")
        table.add_column("DC", style="cyan")
        table.add_column("Role")
        table.add_column("Result")
        for item in snapshot.history:
            color = "green" if item["result"] == "SUCCESS" else "red"
            table.add_row(item["timestamp"], item["node"], item["role"], f"[{color}]{item['result']}[/{color}]")
        console.print(table)


def render_cluster(console: Console, nodes: List[Dict[str, Any]]):
    table = Table(title="Domain Controllers")
    table.add_column("DC", style="cyan")
    table.add_column("Services")
    table.add_column("Role Config")
    for item in nodes:
        if item.get("report") == "UNKNOWN":
            table.add_row(item["node"], "[red]UNKNOWN[/red]", "-")
            continue
        services = ", ".join(
            f"{name}={_colored(info['state'])}" for name, info in item["services"].items()
        ) or "-"
        configs = ", ".join(f"{role}={value}" for role, value in item["configs"].items()) or "-"
        table.add_row(item["node"], services, configs)
    console.print(table)
