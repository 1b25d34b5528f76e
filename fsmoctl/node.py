"""
fsmoctl Node

Composition root: wires one domain controller's adapters, failover components
and orchestrator from an FsmoConfig and exposes the operations the CLI and
the timers run.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .errors import WriteConflict
from .core.commands import CommandRunner, run_command
from .core.config import FsmoConfig
from .core.models import Role, RoleOwnership, utcnow
from .core.records import (
    LAYOUT_DIRECTORIES,
    PRIORITIES_HEADER,
    PRIORITIES_KEY,
    SERVICES_DECLARATION,
    SERVICES_DECLARATION_KEY,
)
from .core.roles import RoleStatusBook
from .core.store import FileStateStore, SharedStateStore
from .cluster.directory import RoleQueryAdapter
from .cluster.discovery import PeerDiscovery
from .cluster.probe import ConnectivityProbe
from .failover.history import CooldownTracker, SeizureHistory
from .failover.locks import SeizureLockManager
from .failover.priority import PriorityRegistry
from .failover.seizure import SeizureCoordinator, SeizureReport
from .orchestrator.orchestrator import ReconcileReport, RoleOrchestrator
from .orchestrator.services import ServiceManager
from .orchestrator.status import StatusReporter, StatusSnapshot

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """Result of one orchestration cycle"""
    node: str
    ownership: Optional[RoleOwnership] = None
    seizure: Optional[SeizureReport] = None
    reconcile: Optional[ReconcileReport] = None
    pruned: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": self.node,
            "roles": self.ownership.to_dict() if self.ownership else None,
            "seizure": self.seizure.to_dict() if self.seizure else None,
            "reconcile": self.reconcile.to_dict() if self.reconcile else None,
            "pruned": self.pruned,
        }


class FsmoNode:
    """One domain controller running fsmoctl"""

    def __init__(
        self,
        config: FsmoConfig,
        store: Optional[SharedStateStore] = None,
        runner: CommandRunner = run_command,
        directory: Optional[RoleQueryAdapter] = None,
        probe: Optional[ConnectivityProbe] = None,
        discovery: Optional[PeerDiscovery] = None,
        services: Optional[ServiceManager] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.node = config.node_name
        self.clock = clock
        self.store = store or FileStateStore(config.sysvol_path)

        self.directory = directory or RoleQueryAdapter(
            self.node,
            samba_tool=config.directory.samba_tool,
            use_sudo=config.directory.use_sudo,
            timeout=config.directory.timeout_seconds,
            runner=runner,
        )
        self.probe = probe or ConnectivityProbe(
            timeout=config.probe.timeout_seconds,
            ldap_port=config.probe.ldap_port,
            smb_port=config.probe.smb_port,
            required_passes=config.probe.required_passes,
            ping_command=config.probe.ping_command,
            domain=config.domain,
            runner=runner,
        )
        self.discovery = discovery or PeerDiscovery(
            config.domain,
            directory=self.directory,
            dig_command=config.directory.dig_command,
            timeout=config.directory.timeout_seconds,
            runner=runner,
        )
        self.services = services or ServiceManager(
            config.services.systemctl, config.services.timeout_seconds, runner
        )

        self.status_book = RoleStatusBook(self.store, clock)
        self.registry = PriorityRegistry(
            self.store,
            self.node,
            default=config.priority.default,
            stale_after=timedelta(hours=config.priority.stale_after_hours),
            clock=clock,
        )
        self.locks = SeizureLockManager(self.store, self.node, config.auto_seize.lock_ttl_seconds, clock)
        self.history = SeizureHistory(self.store, self.node, clock)
        self.cooldown = CooldownTracker(self.store, self.node, clock)
        self.orchestrator = RoleOrchestrator(config, self.store, self.services, self.status_book, clock=clock)
        self.coordinator = SeizureCoordinator(
            self.node,
            self.directory,
            self.probe,
            self.discovery,
            self.registry,
            self.locks,
            self.history,
            self.cooldown,
            self.status_book,
            roles=config.auto_seize.roles,
            cooldown_seconds=config.auto_seize.cooldown_seconds,
            confirm_delay=config.auto_seize.confirm_delay_seconds,
            tie_break=config.auto_seize.tie_break,
            service_names={role: c.service_names() for role, c in self.orchestrator.configurers.items()},
            orchestrator=self.orchestrator,
            clock=clock,
            sleep=sleep,
        )
        self.reporter = StatusReporter(config, self.store, self.services, clock)

    def _seed(self, key: str, content: str) -> bool:
        if self.store.get(key) is not None:
            return False
        try:
            self.store.put_atomic(key, content, expected_previous=None)
        except WriteConflict:
            return False
        logger.info(f"Created {key}")
        return True

    def initialize(self) -> Dict[str, Any]:
        """Create the shared tree and seed records without overwriting any"""
        logger.info(f"Initializing FSMO orchestration structure in {self.store.describe()}")
        created = self.store.ensure_layout(LAYOUT_DIRECTORIES)
        seeded = []
        if self.status_book.initialize():
            seeded.append("role status table")
        if self._seed(SERVICES_DECLARATION_KEY, SERVICES_DECLARATION):
            seeded.append("service declaration")
        if self._seed(PRIORITIES_KEY, "\n".join(PRIORITIES_HEADER) + "\n"):
            seeded.append("priority table")
        return {"root": self.store.describe(), "directories_created": created, "records_created": seeded}

    async def query(self) -> RoleOwnership:
        return await self.directory.query_roles()

    def _housekeeping(self, report: CycleReport):
        self.registry.publish_self()
        report.pruned = self.registry.prune_stale()

    async def orchestrate(self, seize: bool = True) -> CycleReport:
        """Full cycle: seizure evaluation (optional), then reconciliation"""
        report = CycleReport(node=self.node)
        report.ownership = await self.query()
        self._housekeeping(report)

        if seize and self.config.auto_seize.enabled:
            report.seizure = await self.coordinator.evaluate(report.ownership)
            if report.seizure.reconcile is not None:
                report.reconcile = report.seizure.reconcile
                return report
        elif seize:
            logger.info("Automatic seizure is disabled")

        report.reconcile = await self.orchestrator.reconcile(report.ownership.held_roles, report.ownership)
        return report

    async def seize_only(self) -> CycleReport:
        """Seizure evaluation only; services are reconciled only after a seizure"""
        report = CycleReport(node=self.node)
        report.ownership = await self.query()
        self._housekeeping(report)
        if not self.config.auto_seize.enabled:
            logger.info("Automatic seizure is disabled")
            return report
        report.seizure = await self.coordinator.evaluate(report.ownership)
        report.reconcile = report.seizure.reconcile
        return report

    async def configure_role(self, role: Role) -> CycleReport:
        """Reconfigure the services of a single role"""
        report = CycleReport(node=self.node)
        report.ownership = await self.query()
        if not report.ownership.holds(role):
            logger.info(f"This server does not hold {role.value}, applying non-holder configuration")
        report.reconcile = await self.orchestrator.reconcile(
            report.ownership.held_roles, report.ownership, roles=[role]
        )
        return report

    async def status(self) -> StatusSnapshot:
        return await self.reporter.collect()

    async def multi_dc_status(self) -> List[Dict[str, Any]]:
        """Per-DC service reports plus live reachability of discovered DCs"""
        nodes = {item["node"]: item for item in self.reporter.collect_cluster()}
        for name in await self.discovery.discover():
            nodes.setdefault(name, {"node": name, "services": {}, "configs": {}, "report": "UNKNOWN"})

        names = sorted(nodes)
        results = await asyncio.gather(*(self.probe.check(name) for name in names))
        for name, result in zip(names, results):
            nodes[name]["reachable"] = result.reachable
            nodes[name]["probe"] = result.summary()
            nodes[name]["self"] = name == self.node
        return [nodes[name] for name in names]
