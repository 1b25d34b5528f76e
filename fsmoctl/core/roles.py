"""Shared role status table access"""

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from ..errors import WriteConflict
from .models import ALL_ROLES, RoleStatusRecord, utcnow
from .records import ROLE_STATUS_KEY, RoleStatusTable
from .store import SharedStateStore, update_record

logger = logging.getLogger(__name__)


class RoleStatusBook:
    """Read-modify-write access to fsmo-roles.conf"""

    def __init__(self, store: SharedStateStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    def read(self) -> RoleStatusTable:
        table = RoleStatusTable.parse(self.store.get(ROLE_STATUS_KEY))
        for role in ALL_ROLES:
            if role not in table.records:
                # Missing rows are reported explicitly as UNKNOWN
                table.records[role] = RoleStatusRecord(role=role, last_checked=self.clock())
        return table

    def initialize(self) -> bool:
        """Write an all-UNKNOWN table unless one exists"""
        if self.store.get(ROLE_STATUS_KEY) is not None:
            return False
        table = RoleStatusTable()
        now = self.clock()
        for role in ALL_ROLES:
            table.set(RoleStatusRecord(role=role, last_checked=now))
        try:
            self.store.put_atomic(ROLE_STATUS_KEY, table.render(), expected_previous=None)
        except WriteConflict:
            logger.debug("Role status table created concurrently by another DC")
            return False
        logger.info("Initialized FSMO role status table")
        return True

    def update(self, records: Iterable[RoleStatusRecord]) -> Optional[str]:
        """Replace the given rows in one compare-and-swap write"""
        records = list(records)

        def mutate(text: Optional[str]) -> str:
            table = RoleStatusTable.parse(text)
            for record in records:
                table.set(record)
            return table.render()

        return update_record(self.store, ROLE_STATUS_KEY, mutate)
