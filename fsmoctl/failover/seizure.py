"""
fsmoctl Seizure Coordinator

Decides whether this node may take over a role whose holder has gone away.
Features:

- Cooldown snapshot taken once per cycle (anti-thrash)
- Majority-vote reachability with a confirmation re-probe
- Priority ordering across reachable peers, optional tie-break policy
- Advisory per-role lock around the seize call
- Audit log entry and cooldown update for every seize call
- Immediate reconciliation of local services after a successful seizure

Per-role evaluation order:
    held by self -> holder known -> cooldown -> holder reachable -> better peer -> lock -> seize
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from prometheus_client import Counter

from ..errors import DirectoryUnreachable, LockContention, SeizureFailed
from ..core.config import TieBreakPolicy
from ..core.models import (
    ALL_ROLES,
    ROLE_SERVICE_KINDS,
    Role,
    RoleOwnership,
    RoleStatus,
    RoleStatusRecord,
    SeizureOutcome,
    UNKNOWN_HOLDER,
    normalize_node,
    utcnow,
)
from ..core.records import PriorityTable
from ..core.roles import RoleStatusBook
from ..cluster.directory import RoleQueryAdapter
from ..cluster.discovery import PeerDiscovery
from ..cluster.probe import ConnectivityProbe, ProbeResult
from .history import CooldownTracker, SeizureHistory
from .locks import SeizureLockManager
from .priority import PriorityRegistry

logger = logging.getLogger(__name__)

# Metrics
SEIZURE_ATTEMPTS = Counter('fsmoctl_seizure_attempts_total', 'Seize commands issued', ['role', 'result'])
SEIZURE_DECISIONS = Counter('fsmoctl_seizure_decisions_total', 'Per-role seizure decisions', ['role', 'decision'])


class SeizureDecision(Enum):
    HELD_BY_SELF = "held_by_self"
    HOLDER_UNKNOWN = "holder_unknown"
    COOLDOWN = "cooldown"
    HOLDER_REACHABLE = "holder_reachable"
    DEFERRED = "deferred"
    LOCK_CONTENTION = "lock_contention"
    SEIZED = "seized"
    FAILED = "failed"


@dataclass
class RoleDecision:
    role: Role
    decision: SeizureDecision
    holder: Optional[str] = None
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "decision": self.decision.value,
            "holder": self.holder,
            "detail": self.detail,
        }


@dataclass
class SeizureReport:
    """Outcome of one seizure evaluation"""
    node: str
    decisions: List[RoleDecision] = field(default_factory=list)
    # Set when services were reconciled after a seizure
    reconcile: Optional[Any] = None

    @property
    def seized(self) -> List[Role]:
        return [d.role for d in self.decisions if d.decision == SeizureDecision.SEIZED]

    def decision_for(self, role: Role) -> Optional[RoleDecision]:
        for decision in self.decisions:
            if decision.role == role:
                return decision
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": self.node,
            "decisions": [d.to_dict() for d in self.decisions],
            "seized": [role.value for role in self.seized],
        }


class SeizureCoordinator:
    """Automatic role seizure for unreachable holders"""

    def __init__(
        self,
        node: str,
        directory: RoleQueryAdapter,
        probe: ConnectivityProbe,
        discovery: PeerDiscovery,
        registry: PriorityRegistry,
        locks: SeizureLockManager,
        history: SeizureHistory,
        cooldown: CooldownTracker,
        status: RoleStatusBook,
        roles: Sequence[Role] = (Role.PDC, Role.RID, Role.INFRASTRUCTURE),
        cooldown_seconds: float = 3600,
        confirm_delay: float = 30.0,
        tie_break: TieBreakPolicy = TieBreakPolicy.NONE,
        service_names: Optional[Dict[Role, List[str]]] = None,
        orchestrator=None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.node = normalize_node(node)
        self.directory = directory
        self.probe = probe
        self.discovery = discovery
        self.registry = registry
        self.locks = locks
        self.history = history
        self.cooldown = cooldown
        self.status = status
        self.roles = [role for role in ALL_ROLES if role in set(roles)]
        self.cooldown_seconds = cooldown_seconds
        self.confirm_delay = confirm_delay
        self.tie_break = tie_break
        self.service_names = service_names or {
            role: [kind.value for kind in kinds] for role, kinds in ROLE_SERVICE_KINDS.items()
        }
        self.orchestrator = orchestrator
        self.clock = clock
        self.sleep = sleep

        # Per-cycle caches
        self._probes: Dict[str, ProbeResult] = {}
        self._confirmed: Dict[str, bool] = {}

    async def _probe(self, node: Optional[str]) -> ProbeResult:
        key = normalize_node(node) if node else ""
        if key not in self._probes:
            self._probes[key] = await self.probe.check(key)
        return self._probes[key]

    async def _holder_alive(self, holder: Optional[str]) -> bool:
        """Probe the holder, re-probing once after the confirmation delay"""
        key = normalize_node(holder) if holder else ""
        if key in self._confirmed:
            return self._confirmed[key]

        result = await self._probe(key)
        if result.reachable:
            self._confirmed[key] = True
            return True

        logger.warning(
            f"FSMO holder {key or 'unknown'} appears unreachable "
            f"({result.summary()}, {result.verdict.value})"
        )
        if key and self.confirm_delay > 0:
            logger.info(f"Waiting {self.confirm_delay:.0f}s before confirming {key} is down")
            await self.sleep(self.confirm_delay)
            result = await self.probe.check(key)
            self._probes[key] = result
            if result.reachable:
                logger.info(f"{key} is reachable again, cancelling seizure")

        self._confirmed[key] = result.reachable
        return result.reachable

    def _outranks(self, peer: str, peer_priority: int, own_priority: int) -> bool:
        if peer_priority < own_priority:
            return True
        if peer_priority == own_priority and self.tie_break == TieBreakPolicy.LEXICOGRAPHIC:
            return peer < self.node
        return False

    async def _better_peer(self, role: Role, holder: Optional[str], table: PriorityTable) -> Optional[str]:
        """First reachable peer that outranks this node for the role"""
        own = self.registry.priority_of(self.node, role, table)
        exclude = [self.node] + ([holder] if holder else [])
        for peer in await self.discovery.peers(exclude):
            peer_priority = self.registry.priority_of(peer, role, table)
            if not self._outranks(peer, peer_priority, own):
                continue
            if (await self._probe(peer)).reachable:
                logger.info(
                    f"Higher priority DC {peer} (priority {peer_priority}) is available "
                    f"for {role.value}, deferring (own priority {own})"
                )
                return peer
        logger.debug(f"No reachable DC outranks this node for {role.value} (own priority {own})")
        return None

    async def _seize(self, role: Role, holder: Optional[str]) -> RoleDecision:
        try:
            lock = self.locks.acquire(role)
        except LockContention as e:
            logger.info(f"Another DC is handling {role.value} seizure: {e}")
            return RoleDecision(role, SeizureDecision.LOCK_CONTENTION, holder, f"lock held by {e.holder}")

        logger.warning(f"Attempting to seize {role.value} role from {holder or 'unknown'}")
        try:
            await self.directory.seize(role)
        except (SeizureFailed, DirectoryUnreachable) as e:
            logger.error(f"Failed to seize {role.value} role: {e}")
            SEIZURE_ATTEMPTS.labels(role=role.value, result="failed").inc()
            self.history.record(role, SeizureOutcome.FAILED)
            return RoleDecision(role, SeizureDecision.FAILED, holder, str(e))
        else:
            SEIZURE_ATTEMPTS.labels(role=role.value, result="success").inc()
            self.history.record(role, SeizureOutcome.SUCCESS)
            self.status.update([
                RoleStatusRecord(
                    role=role,
                    holder=self.node,
                    last_checked=self.clock(),
                    status=RoleStatus.ACTIVE,
                    services=list(self.service_names.get(role, [])),
                )
            ])
            logger.info(f"Successfully seized {role.value} role")
            return RoleDecision(role, SeizureDecision.SEIZED, self.node, f"seized from {holder or 'unknown'}")
        finally:
            try:
                self.cooldown.mark()
            finally:
                self.locks.release(lock)

    async def _evaluate_role(
        self,
        role: Role,
        ownership: RoleOwnership,
        in_cooldown: bool,
        remaining: float,
        table: PriorityTable,
    ) -> RoleDecision:
        holder = ownership.holder(role)
        if ownership.holds(role):
            return RoleDecision(role, SeizureDecision.HELD_BY_SELF, holder)
        if not holder or normalize_node(holder) == UNKNOWN_HOLDER:
            logger.warning(f"Holder of {role.value} could not be determined, not seizing")
            return RoleDecision(role, SeizureDecision.HOLDER_UNKNOWN, None, "holder unknown")
        if in_cooldown:
            logger.info(f"In cooldown period, {remaining:.0f}s remaining, skipping {role.value}")
            return RoleDecision(role, SeizureDecision.COOLDOWN, holder, f"{remaining:.0f}s remaining")
        if await self._holder_alive(holder):
            logger.debug(f"{role.value} holder {holder} is reachable")
            return RoleDecision(role, SeizureDecision.HOLDER_REACHABLE, holder)

        peer = await self._better_peer(role, holder, table)
        if peer is not None:
            return RoleDecision(role, SeizureDecision.DEFERRED, holder, f"{peer} has higher priority")

        return await self._seize(role, holder)

    async def evaluate(self, ownership: Optional[RoleOwnership] = None) -> SeizureReport:
        """Evaluate every monitored role once.

        DirectoryUnreachable from the initial role query and StorageUnavailable
        propagate to the caller; everything else ends up in the report.
        """
        self._probes = {}
        self._confirmed = {}
        self.discovery.reset()

        report = SeizureReport(node=self.node)
        if ownership is None:
            ownership = await self.directory.query_roles()

        now = self.clock()
        cooldown = self.cooldown.load()
        in_cooldown = cooldown.in_cooldown(now, self.cooldown_seconds)
        remaining = cooldown.remaining_seconds(now, self.cooldown_seconds)
        table = self.registry.read_table()

        for role in self.roles:
            decision = await self._evaluate_role(role, ownership, in_cooldown, remaining, table)
            SEIZURE_DECISIONS.labels(role=role.value, decision=decision.decision.value).inc()
            report.decisions.append(decision)

        if report.seized:
            logger.info(f"Seized roles: {', '.join(role.value for role in report.seized)}")
            if self.orchestrator is not None:
                report.reconcile = await self._reconcile_after_seizure(ownership, report.seized)
        return report

    async def _reconcile_after_seizure(self, ownership: RoleOwnership, seized: List[Role]):
        try:
            refreshed = await self.directory.query_roles()
        except DirectoryUnreachable as e:
            logger.warning(f"Role query after seizure failed, using local view: {e}")
            holders = dict(ownership.holders)
            holders.update({role: self.node for role in seized})
            refreshed = RoleOwnership(this_node=self.node, holders=holders)
        return await self.orchestrator.reconcile(refreshed.held_roles, refreshed)
