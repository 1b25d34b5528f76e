"""
Domain-wide seizure priorities

Each node publishes its own row in the shared priority table on every cycle.
Lower values are more eligible. A node that has never published gets a
bootstrap priority derived from a hash of its name, so a fresh cluster orders
itself without any manual configuration.
"""

import hashlib
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from ..core.models import PriorityEntry, Role, normalize_node, utcnow
from ..core.records import PRIORITIES_KEY, PRIORITY_ROLE_ORDER, PriorityTable
from ..core.store import SharedStateStore, update_record

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 50


def default_priority(node: str) -> int:
    """Bootstrap priority in [10, 99].

    md5 of the name plus a trailing newline, hex letters replaced by '5', the
    first two characters read as a decimal number, mapped with `% 90 + 10`.
    """
    digest = hashlib.md5(f"{normalize_node(node)}\n".encode()).hexdigest()
    digits = "".join("5" if ch in "abcdef" else ch for ch in digest)
    return int(digits[:2]) % 90 + 10


class PriorityRegistry:
    """Read/write access to the shared priority table"""

    def __init__(
        self,
        store: SharedStateStore,
        node: str,
        default: int = DEFAULT_PRIORITY,
        stale_after: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.node = normalize_node(node)
        self.default = default
        self.stale_after = stale_after
        self.clock = clock

    def read_table(self) -> PriorityTable:
        return PriorityTable.parse(self.store.get(PRIORITIES_KEY))

    def publish_self(self) -> PriorityEntry:
        """Upsert this node's row.

        An existing row only gets a fresh LAST_SEEN so priorities edited by an
        operator are kept; a missing row is created with hashed defaults.
        """
        now = self.clock()
        published = {}

        def mutate(text: Optional[str]) -> str:
            table = PriorityTable.parse(text)
            entry = table.get(self.node)
            if entry is None:
                value = default_priority(self.node)
                entry = PriorityEntry(
                    node=self.node,
                    general=value,
                    roles={role: value for role in PRIORITY_ROLE_ORDER},
                )
                logger.info(f"Adding {self.node} to domain priority table with priority {value}")
            entry.last_seen = now
            entry.last_seen_raw = ""
            table.set(entry)
            published["entry"] = entry
            return table.render()

        update_record(self.store, PRIORITIES_KEY, mutate)
        return published["entry"]

    def priority_of(self, node: str, role: Optional[Role] = None, table: Optional[PriorityTable] = None) -> int:
        """Role-specific value, else the general value, else the default"""
        if table is None:
            table = self.read_table()
        entry = table.get(node)
        if entry is None:
            return self.default
        value = entry.priority_for(role)
        return self.default if value is None else value

    def prune_stale(self, now: Optional[datetime] = None, threshold: Optional[timedelta] = None) -> List[str]:
        """Drop rows whose LAST_SEEN is older than the threshold.

        Rows with a missing or unparseable LAST_SEEN are left alone.
        """
        now = now or self.clock()
        threshold = threshold or self.stale_after
        removed: List[str] = []

        def mutate(text: Optional[str]) -> Optional[str]:
            removed.clear()
            if text is None:
                return None
            table = PriorityTable.parse(text)
            for node, entry in list(table.entries.items()):
                age = entry.age(now)
                if age is not None and age > threshold:
                    table.remove(node)
                    removed.append(node)
            return table.render() if removed else None

        update_record(self.store, PRIORITIES_KEY, mutate)
        for node in removed:
            logger.info(f"Removed stale DC entry: {node}")
        return list(removed)
