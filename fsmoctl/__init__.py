"""
fsmoctl Main Package

FSMO role orchestration and failover coordination for Samba AD domain controllers
"""

from .core import FsmoConfig, Role, load_config
from .node import CycleReport, FsmoNode

__version__ = "1.0.0"

__all__ = ["FsmoConfig", "Role", "load_config", "CycleReport", "FsmoNode"]
