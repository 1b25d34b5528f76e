"""Seizure audit log and per-node cooldown state"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from ..core.models import CooldownState, Role, SeizureAttempt, SeizureOutcome, from_epoch, normalize_node, utcnow
from ..core.records import (
    SEIZURE_HISTORY_KEY,
    cooldown_key,
    format_attempt,
    parse_attempt,
    parse_key_values,
    render_key_values,
)
from ..core.store import SharedStateStore

logger = logging.getLogger(__name__)

COOLDOWN_FIELD = "LAST_SEIZURE_ATTEMPT"


class SeizureHistory:
    """Append-only SEIZURE_ATTEMPT log shared by all nodes"""

    def __init__(self, store: SharedStateStore, node: str, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.node = normalize_node(node)
        self.clock = clock

    def record(self, role: Role, outcome: SeizureOutcome) -> SeizureAttempt:
        attempt = SeizureAttempt(role=role, actor=self.node, timestamp=self.clock(), outcome=outcome)
        self.store.append(SEIZURE_HISTORY_KEY, format_attempt(attempt))
        return attempt

    def recent(self, limit: Optional[int] = 20, role: Optional[Role] = None) -> List[SeizureAttempt]:
        attempts = []
        for line in (self.store.get(SEIZURE_HISTORY_KEY) or "").splitlines():
            attempt = parse_attempt(line)
            if attempt is None:
                continue
            if role is not None and attempt.role != role:
                continue
            attempts.append(attempt)
        if limit is not None:
            attempts = attempts[-limit:]
        return attempts


class CooldownTracker:
    """Last seizure attempt time of one node"""

    def __init__(self, store: SharedStateStore, node: str, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.node = normalize_node(node)
        self.clock = clock

    def load(self) -> CooldownState:
        values = parse_key_values(self.store.get(cooldown_key(self.node)))
        state = CooldownState(node=self.node)
        raw = values.get(COOLDOWN_FIELD)
        if raw:
            try:
                state.last_seizure_attempt = from_epoch(int(raw))
            except (ValueError, OverflowError, OSError):
                logger.warning(f"Ignoring malformed cooldown value: {raw}")
        return state

    def mark(self, when: Optional[datetime] = None) -> CooldownState:
        when = when or self.clock()
        self.store.put_atomic(
            cooldown_key(self.node),
            render_key_values({COOLDOWN_FIELD: str(int(when.timestamp()))}),
        )
        return CooldownState(node=self.node, last_seizure_attempt=when)
