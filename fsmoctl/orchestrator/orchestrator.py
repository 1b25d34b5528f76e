"""
fsmoctl Role Orchestrator

Level-triggered convergence of local services onto the current role set.
Every run recomputes the full desired state from ownership:

- held roles: role fragments written to the shared tree, local config files
  installed from them, role services running, status row ACTIVE
- roles held elsewhere: non-holder plan applied (time client, lease service
  stopped) and a stale self claim in the status table cleared

Writes happen only when content changes, so a run with an unchanged role set
only refreshes status timestamps.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Set

from prometheus_client import Counter, Gauge

from ..errors import ConfigApplyFailed, ServiceControlError, WriteConflict
from ..core.config import FsmoConfig
from ..core.models import (
    ALL_ROLES,
    OTHER_HOLDER,
    ROLE_SERVICE_KINDS,
    UNKNOWN_HOLDER,
    Role,
    RoleOwnership,
    RoleStatus,
    RoleStatusRecord,
    ServiceKind,
    format_timestamp,
    normalize_node,
    utcnow,
)
from ..core.records import RoleStatusTable, node_services_key, render_key_values
from ..core.roles import RoleStatusBook
from ..core.store import SharedStateStore
from .configurers import ConfigPlan, ServiceConfigurer, default_configurers
from .services import ServiceManager

logger = logging.getLogger(__name__)

# Metrics
RECONCILE_RUNS = Counter('fsmoctl_reconcile_runs_total', 'Role reconciliation runs')
CONFIG_APPLY_FAILURES = Counter('fsmoctl_config_apply_failures_total', 'Role configuration failures', ['role'])
ROLES_HELD = Gauge('fsmoctl_roles_held', 'FSMO roles held by this node')


@dataclass
class ReconcileReport:
    """What one reconcile run changed"""
    node: str
    held_roles: FrozenSet[Role] = frozenset()
    fragments_written: List[str] = field(default_factory=list)
    files_installed: List[str] = field(default_factory=list)
    service_actions: List[str] = field(default_factory=list)
    failures: Dict[Role, List[str]] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.fragments_written or self.files_installed or self.service_actions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": self.node,
            "held_roles": sorted(role.value for role in self.held_roles),
            "fragments_written": self.fragments_written,
            "files_installed": self.files_installed,
            "service_actions": self.service_actions,
            "failures": {role.value: errors for role, errors in self.failures.items()},
        }


class RoleOrchestrator:
    """Maps held roles to local service state"""

    def __init__(
        self,
        config: FsmoConfig,
        store: SharedStateStore,
        services: ServiceManager,
        status: RoleStatusBook,
        configurers: Optional[Dict[Role, ServiceConfigurer]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.node = config.node_name
        self.store = store
        self.services = services
        self.status = status
        self.configurers = configurers or default_configurers(config)
        self.clock = clock

    # Shared fragments

    def _write_fragments(self, plan: ConfigPlan, report: ReconcileReport):
        for key, content in plan.fragments.items():
            if self.store.get(key) == content:
                continue
            self.store.put_atomic(key, content)
            logger.info(f"Updated {plan.role.value} configuration: {key}")
            report.fragments_written.append(key)
        for key, content in plan.seed_fragments.items():
            if self.store.get(key) is not None:
                continue
            try:
                self.store.put_atomic(key, content, expected_previous=None)
            except WriteConflict:
                continue
            logger.info(f"Generated initial {plan.role.value} configuration: {key}")
            report.fragments_written.append(key)

    # Local files

    def _install(self, source_key: str, target: Path) -> bool:
        """Copy a fragment to a local file; returns True when the file changed"""
        content = self.store.get(source_key)
        if content is None:
            raise OSError(f"shared fragment {source_key} is missing")
        try:
            current = target.read_text()
        except FileNotFoundError:
            current = None
        if current == content:
            return False

        if current is not None:
            backup = target.with_name(f"{target.name}.backup.{self.clock().strftime('%Y%m%d-%H%M%S')}")
            shutil.copy2(target, backup)
            logger.debug(f"Backed up {target} to {backup}")
        target.parent.mkdir(parents=True, exist_ok=True)
        temp = target.with_name(f".{target.name}.fsmoctl.tmp")
        with open(temp, "w") as f:
            f.write(content)
        os.replace(temp, target)
        logger.info(f"Applied {source_key} to {target}")
        return True

    # Services

    async def _ensure(self, kind: ServiceKind, running: bool, restart: bool, report: ReconcileReport) -> None:
        name = self.config.service_name(kind)
        if not name:
            return
        active = await self.services.is_active(name)
        if running:
            if restart:
                await self.services.restart(name)
                report.service_actions.append(f"restart {name}")
            elif not active:
                await self.services.start(name)
                report.service_actions.append(f"start {name}")
        elif active:
            await self.services.stop(name)
            report.service_actions.append(f"stop {name}")

    async def _apply_services(self, plans: List[ConfigPlan], changed: Set[ServiceKind], report: ReconcileReport):
        """Deduplicated service actions across all plans; failures are attributed to every requesting role"""
        requests: Dict[tuple, List[Role]] = {}
        for plan in plans:
            for kind in plan.enable:
                requests.setdefault(("enable", kind), []).append(plan.role)
            for kind in plan.disable:
                requests.setdefault(("disable", kind), []).append(plan.role)
            for kind in plan.ensure_running:
                requests.setdefault(("running", kind), []).append(plan.role)
            for kind in plan.ensure_stopped:
                requests.setdefault(("stopped", kind), []).append(plan.role)

        for (action, kind), roles in requests.items():
            name = self.config.service_name(kind)
            if not name:
                continue
            try:
                if action == "enable":
                    if not await self.services.is_enabled(name):
                        await self.services.enable(name)
                        report.service_actions.append(f"enable {name}")
                elif action == "disable":
                    if await self.services.is_enabled(name):
                        await self.services.disable(name)
                        report.service_actions.append(f"disable {name}")
                elif action == "running":
                    await self._ensure(kind, True, kind in changed, report)
                else:
                    await self._ensure(kind, False, False, report)
            except ServiceControlError as e:
                for role in roles:
                    report.failures.setdefault(role, []).append(str(e))

    # Status

    def _status_records(self, held: FrozenSet[Role], roles: Iterable[Role], current: RoleStatusTable) -> List[RoleStatusRecord]:
        now = self.clock()
        records = []
        for role in roles:
            if role in held:
                records.append(RoleStatusRecord(
                    role=role,
                    holder=self.node,
                    last_checked=now,
                    status=RoleStatus.ACTIVE,
                    services=self.configurers[role].service_names(),
                ))
                continue
            # Only clear rows this node claimed or nobody has claimed yet
            existing = current.get(role)
            claimed = normalize_node(existing.holder)
            if claimed not in (self.node, UNKNOWN_HOLDER, ""):
                continue
            records.append(RoleStatusRecord(
                role=role, holder=OTHER_HOLDER, last_checked=now, status=RoleStatus.INACTIVE,
            ))
        return records

    async def _write_node_services(self, held: FrozenSet[Role], report: ReconcileReport):
        kinds = [ServiceKind.TIME, ServiceKind.LEASE, ServiceKind.DIRECTORY, ServiceKind.DNS]
        names = [self.config.service_name(kind) for kind in kinds if self.config.service_name(kind)]
        states = await self.services.states(names)
        timestamp = format_timestamp(self.clock())

        values = {}
        for kind in kinds:
            name = self.config.service_name(kind)
            if not name:
                continue
            roles = [role.value for role in ALL_ROLES if role in held and kind in ROLE_SERVICE_KINDS[role]]
            values[name] = f"{states.get(name, 'error')}:{timestamp}:{','.join(roles) or 'none'}"
        for role in sorted(held, key=ALL_ROLES.index):
            values[f"CONFIG_{role.value}"] = "failed" if role in report.failures else "ok"

        header = [f"# Local service state of {self.node}", "# Format: SERVICE=STATE:LAST_UPDATE:ROLES", ""]
        self.store.put_atomic(node_services_key(self.node), render_key_values(values, header=header))

    async def reconcile(
        self,
        held_roles: Iterable[Role],
        ownership: Optional[RoleOwnership] = None,
        roles: Optional[Iterable[Role]] = None,
    ) -> ReconcileReport:
        """Converge local services for the given held roles.

        roles restricts the run to a subset (single-role reconfiguration).
        StorageUnavailable aborts the run; local service and file failures are
        logged per role and do not change the role's ACTIVE status.
        """
        held = frozenset(held_roles)
        selected = [role for role in ALL_ROLES if roles is None or role in set(roles)]
        report = ReconcileReport(node=self.node, held_roles=held)
        RECONCILE_RUNS.inc()
        logger.info(f"Reconciling services for roles: {', '.join(r.value for r in sorted(held, key=ALL_ROLES.index)) or 'none'}")

        plans: List[ConfigPlan] = []
        for role in selected:
            configurer = self.configurers[role]
            if role in held:
                plan = configurer.plan_held()
            else:
                plan = configurer.plan_not_held(ownership.holder(role) if ownership else None)
            if not plan.empty:
                plans.append(plan)

        changed: Set[ServiceKind] = set()
        for plan in plans:
            self._write_fragments(plan, report)
            for install in plan.installs:
                try:
                    if self._install(install.source_key, install.target):
                        changed.add(install.service)
                        report.files_installed.append(str(install.target))
                except OSError as e:
                    report.failures.setdefault(plan.role, []).append(f"install {install.target}: {e}")

        await self._apply_services(plans, changed, report)

        for role, failures in report.failures.items():
            CONFIG_APPLY_FAILURES.labels(role=role.value).inc()
            logger.error(str(ConfigApplyFailed(role.value, failures)))

        self.status.update(self._status_records(held, selected, self.status.read()))
        await self._write_node_services(held, report)
        ROLES_HELD.set(len(held))

        if report.changed:
            logger.info(
                f"Reconcile changed {len(report.fragments_written)} fragments, "
                f"{len(report.files_installed)} files, {len(report.service_actions)} services"
            )
        else:
            logger.debug("Reconcile found nothing to change")
        return report
