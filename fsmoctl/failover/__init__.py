"""Priority registry, seizure locks and the seizure coordinator"""

from .history import CooldownTracker, SeizureHistory
from .locks import SeizureLockManager
from .priority import PriorityRegistry, default_priority
from .seizure import RoleDecision, SeizureCoordinator, SeizureDecision, SeizureReport

__all__ = [
    "CooldownTracker",
    "SeizureHistory",
    "SeizureLockManager",
    "PriorityRegistry",
    "default_priority",
    "RoleDecision",
    "SeizureCoordinator",
    "SeizureDecision",
    "SeizureReport",
]
