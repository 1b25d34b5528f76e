"""Local service convergence and status reporting"""

from .configurers import ConfigPlan, LocalInstall, ServiceConfigurer, default_configurers
from .orchestrator import ReconcileReport, RoleOrchestrator
from .services import ServiceManager
from .status import StatusReporter, StatusSnapshot, render_cluster, render_snapshot

__all__ = [
    "ConfigPlan",
    "LocalInstall",
    "ServiceConfigurer",
    "default_configurers",
    "ReconcileReport",
    "RoleOrchestrator",
    "ServiceManager",
    "StatusReporter",
    "StatusSnapshot",
    "render_cluster",
    "render_snapshot",
]
