"""
fsmoctl Data Model

Typed records for everything the orchestrator keeps in the shared SYSVOL
store: role status rows, per-node seizure priorities, seizure locks, the
seizure attempt history and per-node cooldown state. Also carries the fixed
role -> service table and the node identity normalization used everywhere a
host name is compared.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from enum import Enum
from typing import Dict, List, Optional, FrozenSet

UNKNOWN_HOLDER = "unknown"
OTHER_HOLDER = "other"

TIMESTAMP_FORMAT = "%Y-%m-%d_%H:%M:%S"
LOG_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class Role(str, Enum):
    """The five single-owner directory roles"""
    PDC = "PDC"
    RID = "RID"
    INFRASTRUCTURE = "INFRASTRUCTURE"
    SCHEMA = "SCHEMA"
    DOMAIN_NAMING = "DOMAIN_NAMING"

    @property
    def samba_name(self) -> str:
        """Role name accepted by `samba-tool fsmo seize --role=`"""
        return _SAMBA_ROLE_NAMES[self]

    @property
    def fsmo_label(self) -> str:
        """Owner label printed by `samba-tool fsmo show`"""
        return _FSMO_SHOW_LABELS[self]

    @classmethod
    def parse(cls, value: str) -> "Role":
        """Accept canonical names, samba names and a few common aliases"""
        key = value.strip().upper().replace("-", "_")
        aliases = {
            "INFRA": cls.INFRASTRUCTURE,
            "NAMING": cls.DOMAIN_NAMING,
            "PDC_EMULATOR": cls.PDC,
        }
        if key in aliases:
            return aliases[key]
        return cls(key)


_SAMBA_ROLE_NAMES = {
    Role.PDC: "pdc",
    Role.RID: "rid",
    Role.INFRASTRUCTURE: "infrastructure",
    Role.SCHEMA: "schema",
    Role.DOMAIN_NAMING: "naming",
}

_FSMO_SHOW_LABELS = {
    Role.PDC: "PdcEmulationMasterRole",
    Role.RID: "RidAllocationMasterRole",
    Role.INFRASTRUCTURE: "InfrastructureMasterRole",
    Role.SCHEMA: "SchemaMasterRole",
    Role.DOMAIN_NAMING: "DomainNamingMasterRole",
}

ALL_ROLES = (Role.PDC, Role.RID, Role.INFRASTRUCTURE, Role.SCHEMA, Role.DOMAIN_NAMING)


class RoleStatus(str, Enum):
    """Status of a role as recorded in the shared role table"""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SEIZED = "SEIZED"
    UNKNOWN = "UNKNOWN"


class ServiceKind(Enum):
    """Local services driven by role ownership"""
    TIME = "time"
    LEASE = "lease"
    DIRECTORY = "directory"
    DNS = "dns"


# Fixed role -> service table
ROLE_SERVICE_KINDS: Dict[Role, List[ServiceKind]] = {
    Role.PDC: [ServiceKind.TIME, ServiceKind.LEASE, ServiceKind.DIRECTORY],
    Role.RID: [ServiceKind.DIRECTORY],
    Role.INFRASTRUCTURE: [ServiceKind.DIRECTORY, ServiceKind.DNS],
    Role.SCHEMA: [ServiceKind.DIRECTORY],
    Role.DOMAIN_NAMING: [ServiceKind.DIRECTORY, ServiceKind.DNS],
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse a table timestamp, returning None when it is malformed"""
    try:
        return datetime.strptime(value.strip(), TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def from_epoch(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def normalize_node(name: Optional[str]) -> str:
    """Normalize a host identity: short, lower-case, no trailing '$' or '.'"""
    if not name:
        return ""
    value = name.strip().rstrip(".").rstrip("$").strip()
    # DN forms are reduced to the server CN
    if "=" in value:
        value = holder_from_dn(value) or ""
    value = value.split(".")[0]
    return value.lower()


_CN_PATTERN = re.compile(r"CN=([^,]+)", re.IGNORECASE)


def holder_from_dn(dn: str) -> Optional[str]:
    """Extract the server name from an NTDS Settings DN.

    `CN=NTDS Settings,CN=DC1,CN=Servers,...` -> `DC1`. When the DN carries no
    NTDS Settings component the first CN is used.
    """
    names = _CN_PATTERN.findall(dn)
    if not names:
        return None
    for index, name in enumerate(names):
        if name.strip().lower() == "ntds settings":
            if index + 1 < len(names):
                return names[index + 1].strip()
            return None
    return names[0].strip()


@dataclass
class RoleStatusRecord:
    """One row of the shared role status table"""
    role: Role
    holder: str = UNKNOWN_HOLDER
    last_checked: datetime = field(default_factory=utcnow)
    status: RoleStatus = RoleStatus.UNKNOWN
    services: List[str] = field(default_factory=list)

    def is_active_on(self, node: str) -> bool:
        return self.status == RoleStatus.ACTIVE and normalize_node(self.holder) == normalize_node(node)


@dataclass
class PriorityEntry:
    """Seizure priorities published by one node (lower = more eligible)"""
    node: str
    general: Optional[int] = None
    roles: Dict[Role, Optional[int]] = field(default_factory=dict)
    last_seen: Optional[datetime] = None
    # Raw LAST_SEEN text kept when it could not be parsed
    last_seen_raw: str = ""

    def priority_for(self, role: Optional[Role]) -> Optional[int]:
        if role is not None:
            value = self.roles.get(role)
            if value is not None:
                return value
        return self.general

    def age(self, now: datetime) -> Optional[timedelta]:
        if self.last_seen is None:
            return None
        return now - self.last_seen


@dataclass
class SeizureLock:
    """Advisory cross-node mutual exclusion token for one role"""
    role: Role
    holder: str
    acquired_at: datetime

    def age_seconds(self, now: datetime) -> float:
        return (now - self.acquired_at).total_seconds()

    def is_expired(self, now: datetime, ttl_seconds: float) -> bool:
        return self.age_seconds(now) >= ttl_seconds


class SeizureOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class SeizureAttempt:
    """Append-only audit record of one seize call"""
    role: Role
    actor: str
    timestamp: datetime
    outcome: SeizureOutcome


@dataclass
class CooldownState:
    """Per-node anti-thrash window"""
    node: str
    last_seizure_attempt: Optional[datetime] = None

    def in_cooldown(self, now: datetime, cooldown_seconds: float) -> bool:
        if self.last_seizure_attempt is None:
            return False
        return now < self.last_seizure_attempt + timedelta(seconds=cooldown_seconds)

    def remaining_seconds(self, now: datetime, cooldown_seconds: float) -> float:
        if self.last_seizure_attempt is None:
            return 0.0
        end = self.last_seizure_attempt + timedelta(seconds=cooldown_seconds)
        return max(0.0, (end - now).total_seconds())


@dataclass
class RoleOwnership:
    """Structured result of one role query against the directory"""
    this_node: str
    holders: Dict[Role, Optional[str]] = field(default_factory=dict)
    queried_at: datetime = field(default_factory=utcnow)

    def holder(self, role: Role) -> Optional[str]:
        return self.holders.get(role)

    def holds(self, role: Role) -> bool:
        holder = self.holders.get(role)
        return bool(holder) and normalize_node(holder) == normalize_node(self.this_node)

    @property
    def held_roles(self) -> FrozenSet[Role]:
        return frozenset(role for role in ALL_ROLES if self.holds(role))

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {role.value: self.holders.get(role) or UNKNOWN_HOLDER for role in ALL_ROLES}
