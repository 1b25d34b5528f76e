"""
Per-role seizure locks

A lock record `<holder>:<epoch>` lives next to the role table. It is
advisory: the claim is a compare-and-swap replace against the exact value the
claimant read, so two writers sharing one view of the store cannot both win,
but replicas that have not converged yet still can. Locks older than the TTL
are treated as abandoned.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from ..errors import LockContention, WriteConflict
from ..core.models import ALL_ROLES, Role, SeizureLock, normalize_node, utcnow
from ..core.records import format_lock, lock_key, parse_lock
from ..core.store import SharedStateStore

logger = logging.getLogger(__name__)


class SeizureLockManager:
    """Acquire and release seizure locks for this node"""

    def __init__(
        self,
        store: SharedStateStore,
        node: str,
        ttl_seconds: float = 300,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.node = normalize_node(node)
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def read(self, role: Role) -> Optional[SeizureLock]:
        return parse_lock(role, self.store.get(lock_key(role)))

    def acquire(self, role: Role) -> SeizureLock:
        """Claim the role lock or raise LockContention"""
        key = lock_key(role)
        now = self.clock()
        raw = self.store.get(key)
        current = parse_lock(role, raw)

        if current is not None and not current.is_expired(now, self.ttl_seconds):
            if current.holder != self.node:
                raise LockContention(role.value, current.holder, current.age_seconds(now))
            logger.debug(f"Seizure lock for {role.value} already held by this node")
            return current

        if current is not None:
            logger.info(
                f"Seizure lock for {role.value} held by {current.holder} expired "
                f"({current.age_seconds(now):.0f}s old), reclaiming"
            )

        lock = SeizureLock(role=role, holder=self.node, acquired_at=now)
        try:
            self.store.put_atomic(key, format_lock(lock), expected_previous=raw)
        except WriteConflict as e:
            winner = parse_lock(role, e.actual)
            holder = winner.holder if winner else "unknown"
            raise LockContention(role.value, holder)
        logger.info(f"Acquired seizure lock for {role.value}")
        return lock

    def release(self, lock: SeizureLock) -> bool:
        """Remove the lock if it is still ours"""
        key = lock_key(lock.role)
        raw = self.store.get(key)
        current = parse_lock(lock.role, raw)
        if current is None or current.holder != self.node:
            logger.warning(f"Seizure lock for {lock.role.value} no longer held by this node")
            return False
        try:
            released = self.store.delete(key, expected_previous=raw)
        except WriteConflict:
            logger.warning(f"Seizure lock for {lock.role.value} changed while releasing")
            return False
        if released:
            logger.debug(f"Released seizure lock for {lock.role.value}")
        return released

    def active_locks(self) -> List[SeizureLock]:
        """Locks that are still within their TTL"""
        now = self.clock()
        locks = []
        for role in ALL_ROLES:
            lock = self.read(role)
            if lock is not None and not lock.is_expired(now, self.ttl_seconds):
                locks.append(lock)
        return locks
