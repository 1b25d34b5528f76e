"""Directory, discovery and reachability adapters"""

from .directory import RoleQueryAdapter, parse_computer_list, parse_fsmo_show
from .discovery import PeerDiscovery, parse_srv_records
from .probe import ConnectivityProbe, ProbeResult, ProbeVerdict

__all__ = [
    "RoleQueryAdapter",
    "parse_fsmo_show",
    "parse_computer_list",
    "PeerDiscovery",
    "parse_srv_records",
    "ConnectivityProbe",
    "ProbeResult",
    "ProbeVerdict",
]
