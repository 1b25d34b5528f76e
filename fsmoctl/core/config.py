"""
fsmoctl Configuration

Validated node configuration. Values come from the built-in defaults, then
the YAML file (`$FSMOCTL_CONFIG` or /etc/fsmoctl/config.yaml), then a small
set of environment overrides.
"""

import logging
import os
import socket
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..errors import ConfigError
from .models import Role, normalize_node

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path("/etc/fsmoctl/config.yaml")


class TieBreakPolicy(str, Enum):
    """How a node treats a reachable peer with exactly equal priority"""
    NONE = "none"                    # proceed; the lock write decides
    LEXICOGRAPHIC = "lexicographic"  # defer to the lexicographically smaller name


class AutoSeizeSettings(BaseModel):
    enabled: bool = Field(True, description="Evaluate unreachable role holders for seizure")
    roles: List[Role] = Field(
        default_factory=lambda: [Role.PDC, Role.RID, Role.INFRASTRUCTURE],
        description="Roles monitored for automatic seizure",
    )
    cooldown_seconds: int = Field(3600, ge=0, description="Minimum interval between seizure attempts")
    lock_ttl_seconds: int = Field(300, ge=1, description="Seizure lock validity")
    confirm_delay_seconds: float = Field(30.0, ge=0, description="Re-probe delay before declaring a holder dead")
    tie_break: TieBreakPolicy = Field(TieBreakPolicy.NONE, description="Equal priority handling")

    @field_validator("roles", mode="before")
    @classmethod
    def parse_roles(cls, value):
        if isinstance(value, str):
            value = [item for item in value.split(",") if item.strip()]
        return [Role.parse(item) if isinstance(item, str) else item for item in value]


class PrioritySettings(BaseModel):
    stale_after_hours: float = Field(24.0, gt=0, description="Prune rows not refreshed for this long")
    default: int = Field(50, ge=0, le=100, description="Priority for nodes without an entry")


class ProbeSettings(BaseModel):
    timeout_seconds: float = Field(2.0, gt=0)
    ldap_port: int = Field(389, ge=1, le=65535)
    smb_port: int = Field(445, ge=1, le=65535)
    required_passes: int = Field(2, ge=1, le=3)
    ping_command: str = "ping"


class DirectorySettings(BaseModel):
    samba_tool: str = "samba-tool"
    use_sudo: bool = False
    timeout_seconds: float = Field(30.0, gt=0)
    dig_command: str = "dig"


class ServiceSettings(BaseModel):
    time: str = "chrony"
    lease: str = "isc-dhcp-server"
    directory: str = "samba-ad-dc"
    dns: str = "bind9"
    systemctl: str = "systemctl"
    chrony_config: Path = Path("/etc/chrony/chrony.conf")
    dhcp_config: Path = Path("/etc/dhcp/dhcpd.conf")
    timeout_seconds: float = Field(60.0, gt=0)


class TimeSettings(BaseModel):
    pools: List[str] = Field(
        default_factory=lambda: [
            "time.windows.com",
            "pool.ntp.org",
            "time.google.com",
            "time.cloudflare.com",
        ]
    )
    authority_stratum: int = Field(10, ge=1, le=15)
    client_stratum: int = Field(11, ge=1, le=15)


class DhcpSettings(BaseModel):
    subnet: str = "192.168.1.0"
    netmask: str = "255.255.255.0"
    range_start: str = "192.168.1.100"
    range_end: str = "192.168.1.200"
    routers: str = "192.168.1.1"
    broadcast: str = "192.168.1.255"
    dns_servers: List[str] = Field(default_factory=list)
    default_lease_time: int = 600
    max_lease_time: int = 7200


class LoggingSettings(BaseModel):
    level: str = "INFO"
    file: Optional[Path] = None
    syslog: bool = False


def _default_node_name() -> str:
    return normalize_node(socket.gethostname())


def _default_domain() -> str:
    fqdn = socket.getfqdn()
    if "." in fqdn:
        return fqdn.split(".", 1)[1].lower()
    return ""


class FsmoConfig(BaseModel):
    """Complete node configuration"""
    node_name: str = Field(default_factory=_default_node_name)
    domain: str = Field(default_factory=_default_domain)
    sysvol_root: Path = Path("/var/lib/samba/sysvol")
    shared_root: Optional[Path] = Field(None, description="Overrides <sysvol_root>/<domain>")
    run_lock_file: Path = Path("/var/run/fsmoctl.lock")

    auto_seize: AutoSeizeSettings = Field(default_factory=AutoSeizeSettings)
    priority: PrioritySettings = Field(default_factory=PrioritySettings)
    probe: ProbeSettings = Field(default_factory=ProbeSettings)
    directory: DirectorySettings = Field(default_factory=DirectorySettings)
    services: ServiceSettings = Field(default_factory=ServiceSettings)
    time: TimeSettings = Field(default_factory=TimeSettings)
    dhcp: DhcpSettings = Field(default_factory=DhcpSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("node_name")
    @classmethod
    def normalize_node_name(cls, value: str) -> str:
        normalized = normalize_node(value)
        if not normalized:
            raise ValueError("node_name must not be empty")
        return normalized

    @property
    def sysvol_path(self) -> Path:
        """Shared root all store keys are relative to"""
        if self.shared_root is not None:
            return self.shared_root
        if self.domain:
            return self.sysvol_root / self.domain
        return self.sysvol_root

    def service_name(self, kind) -> str:
        return getattr(self.services, kind.value)


_ENV_OVERRIDES = {
    "FSMOCTL_NODE_NAME": ("node_name",),
    "FSMOCTL_DOMAIN": ("domain",),
    "FSMOCTL_SYSVOL_ROOT": ("sysvol_root",),
    "FSMOCTL_SHARED_ROOT": ("shared_root",),
    "FSMOCTL_LOG_LEVEL": ("logging", "level"),
}


def _apply_env(data: Dict[str, Any]) -> Dict[str, Any]:
    for variable, path in _ENV_OVERRIDES.items():
        value = os.getenv(variable)
        if not value:
            continue
        target = data
        for part in path[:-1]:
            target = target.setdefault(part, {})
        target[path[-1]] = value
    return data


def load_config(path: Optional[Path] = None) -> FsmoConfig:
    """Load configuration from YAML plus environment overrides"""
    if path is None:
        env_path = os.getenv("FSMOCTL_CONFIG")
        path = Path(env_path) if env_path else DEFAULT_CONFIG_FILE
        required = bool(env_path)
    else:
        required = True

    data: Dict[str, Any] = {}
    if path.exists():
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config {path}: {e}")
        if not isinstance(data, dict):
            raise ConfigError(f"Config {path} must contain a mapping")
        logger.debug(f"Loaded configuration from {path}")
    elif required:
        raise ConfigError(f"Config file not found: {path}")

    try:
        return FsmoConfig(**_apply_env(data))
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}")
