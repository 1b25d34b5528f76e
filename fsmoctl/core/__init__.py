"""Core data model, configuration and shared state"""

from .config import FsmoConfig, TieBreakPolicy, load_config
from .models import (
    ALL_ROLES,
    OTHER_HOLDER,
    UNKNOWN_HOLDER,
    CooldownState,
    PriorityEntry,
    Role,
    RoleOwnership,
    RoleStatus,
    RoleStatusRecord,
    SeizureAttempt,
    SeizureLock,
    SeizureOutcome,
    ServiceKind,
    normalize_node,
)
from .roles import RoleStatusBook
from .store import FileStateStore, MemoryStateStore, SharedStateStore, update_record

__all__ = [
    "FsmoConfig",
    "TieBreakPolicy",
    "load_config",
    "ALL_ROLES",
    "OTHER_HOLDER",
    "UNKNOWN_HOLDER",
    "CooldownState",
    "PriorityEntry",
    "Role",
    "RoleOwnership",
    "RoleStatus",
    "RoleStatusRecord",
    "SeizureAttempt",
    "SeizureLock",
    "SeizureOutcome",
    "ServiceKind",
    "normalize_node",
    "RoleStatusBook",
    "FileStateStore",
    "MemoryStateStore",
    "SharedStateStore",
    "update_record",
]
