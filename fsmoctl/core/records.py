"""
SYSVOL record layout and line codecs

Every shared record is a small line-oriented text file. This module owns the
key names and the exact field order/delimiters so no other module parses or
renders record text by hand.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .models import (
    ALL_ROLES,
    LOG_TIMESTAMP_FORMAT,
    PriorityEntry,
    Role,
    RoleStatus,
    RoleStatusRecord,
    SeizureAttempt,
    SeizureLock,
    SeizureOutcome,
    format_timestamp,
    from_epoch,
    normalize_node,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

# Directory tree
FSMO_CONFIG_DIR = "fsmo-configs"
NTP_CONFIG_DIR = "ntp-configs"
DHCP_CONFIG_DIR = "dhcp-configs"
DNS_CONFIG_DIR = "dns-configs"
SERVICE_CONFIG_DIR = "service-configs"
COOLDOWN_DIR = f"{FSMO_CONFIG_DIR}/cooldown"

LAYOUT_DIRECTORIES = (
    FSMO_CONFIG_DIR,
    NTP_CONFIG_DIR,
    DHCP_CONFIG_DIR,
    DNS_CONFIG_DIR,
    SERVICE_CONFIG_DIR,
    COOLDOWN_DIR,
)

# Record keys
ROLE_STATUS_KEY = f"{FSMO_CONFIG_DIR}/fsmo-roles.conf"
SERVICES_DECLARATION_KEY = f"{FSMO_CONFIG_DIR}/fsmo-services.conf"
PRIORITIES_KEY = f"{FSMO_CONFIG_DIR}/domain-dc-priorities.conf"
SEIZURE_HISTORY_KEY = f"{FSMO_CONFIG_DIR}/seizure-history.log"
LOCK_KEY_PREFIX = f"{FSMO_CONFIG_DIR}/seizure-coordination.conf."


def lock_key(role: Role) -> str:
    return f"{LOCK_KEY_PREFIX}{role.value}.lock"


def cooldown_key(node: str) -> str:
    return f"{COOLDOWN_DIR}/{normalize_node(node)}.conf"


def node_services_key(node: str) -> str:
    return f"{SERVICE_CONFIG_DIR}/{normalize_node(node)}-services.conf"


ROLE_STATUS_HEADER = [
    "# FSMO Roles Status Configuration",
    "# Format: ROLE=HOLDER:LAST_CHECK:STATUS:SERVICES",
    "# Status: ACTIVE, INACTIVE, SEIZED, UNKNOWN",
    "",
]

PRIORITIES_HEADER = [
    "# Domain-wide DC Priority Configuration (SHARED via SYSVOL)",
    "# Lower priority numbers get preference for FSMO role seizure",
    "# Format: DC_NAME:PRIORITY:PDC_PREF:RID_PREF:INFRA_PREF:SCHEMA_PREF:NAMING_PREF:LAST_SEEN",
    "#",
    "# Priority Scale: 0-100 (lower = higher priority)",
    "# This file is maintained by fsmoctl; manual priority edits are preserved",
    "",
]

SERVICES_DECLARATION = """# FSMO Services Configuration
# Defines which services should be active based on FSMO role ownership

[PDC]
NTP_ROLE=external_sources
DHCP_SERVICE=active
TIME_SERVER=true
PASSWORD_POLICY=primary

[RID]
SID_ALLOCATION=primary
RID_POOL_MANAGEMENT=active

[INFRASTRUCTURE]
CROSS_DOMAIN_REFS=active
DNS_INFRASTRUCTURE=primary

[SCHEMA]
SCHEMA_UPDATES=primary
FOREST_SCHEMA=owner

[DOMAIN_NAMING]
DOMAIN_OPERATIONS=primary
FOREST_DOMAINS=owner
DNS_FOREST_ZONES=primary
"""

# Priority row field order after DC_NAME
PRIORITY_ROLE_ORDER = (Role.PDC, Role.RID, Role.INFRASTRUCTURE, Role.SCHEMA, Role.DOMAIN_NAMING)


def _split_header(text: Optional[str]) -> Tuple[List[str], List[str]]:
    """Split leading comment/blank lines from data lines"""
    header: List[str] = []
    body: List[str] = []
    for line in (text or "").splitlines():
        stripped = line.strip()
        if not body and (not stripped or stripped.startswith("#")):
            header.append(line)
        elif stripped and not stripped.startswith("#"):
            body.append(stripped)
    return header, body


def _render(header: List[str], lines: List[str]) -> str:
    return "\n".join(list(header) + lines) + "\n"


@dataclass
class RoleStatusTable:
    """Shared role status table (one row per role)"""
    header: List[str] = field(default_factory=lambda: list(ROLE_STATUS_HEADER))
    records: Dict[Role, RoleStatusRecord] = field(default_factory=dict)

    @classmethod
    def parse(cls, text: Optional[str]) -> "RoleStatusTable":
        header, body = _split_header(text)
        table = cls(header=header or list(ROLE_STATUS_HEADER))
        for line in body:
            record = parse_role_status_line(line)
            if record is None:
                logger.debug(f"Ignoring malformed role status line: {line}")
                continue
            table.records[record.role] = record
        return table

    def get(self, role: Role) -> RoleStatusRecord:
        return self.records.get(role) or RoleStatusRecord(role=role)

    def set(self, record: RoleStatusRecord):
        self.records[record.role] = record

    def render(self) -> str:
        lines = [format_role_status_line(self.records[role]) for role in ALL_ROLES if role in self.records]
        return _render(self.header, lines)


def format_role_status_line(record: RoleStatusRecord) -> str:
    services = ",".join(record.services) if record.services else "none"
    return (
        f"{record.role.value}={record.holder}:{format_timestamp(record.last_checked)}:"
        f"{record.status.value}:{services}"
    )


def parse_role_status_line(line: str) -> Optional[RoleStatusRecord]:
    if "=" not in line:
        return None
    name, value = line.split("=", 1)
    try:
        role = Role(name.strip())
        holder, rest = value.split(":", 1)
        # LAST_CHECK contains ':' so status and services are split from the right
        checked, status, services = rest.rsplit(":", 2)
        status_value = RoleStatus(status.strip())
    except ValueError:
        return None
    last_checked = parse_timestamp(checked)
    service_list = [] if services.strip() in ("", "none") else [s.strip() for s in services.split(",") if s.strip()]
    record = RoleStatusRecord(role=role, holder=holder.strip(), status=status_value, services=service_list)
    if last_checked is not None:
        record.last_checked = last_checked
    return record


@dataclass
class PriorityTable:
    """Domain-wide priority table (one row per node)"""
    header: List[str] = field(default_factory=lambda: list(PRIORITIES_HEADER))
    entries: Dict[str, PriorityEntry] = field(default_factory=dict)

    @classmethod
    def parse(cls, text: Optional[str]) -> "PriorityTable":
        header, body = _split_header(text)
        table = cls(header=header or list(PRIORITIES_HEADER))
        for line in body:
            entry = parse_priority_line(line)
            if entry is None:
                logger.debug(f"Ignoring malformed priority line: {line}")
                continue
            table.entries[entry.node] = entry
        return table

    def get(self, node: str) -> Optional[PriorityEntry]:
        return self.entries.get(normalize_node(node))

    def set(self, entry: PriorityEntry):
        self.entries[normalize_node(entry.node)] = entry

    def remove(self, node: str) -> Optional[PriorityEntry]:
        return self.entries.pop(normalize_node(node), None)

    def render(self) -> str:
        return _render(self.header, [format_priority_line(entry) for entry in self.entries.values()])


def _format_priority(value: Optional[int]) -> str:
    return "" if value is None else str(value)


def _parse_priority(value: str) -> Optional[int]:
    value = value.strip()
    if not value:
        return None
    try:
        return max(0, min(100, int(value)))
    except ValueError:
        return None


def format_priority_line(entry: PriorityEntry) -> str:
    fields = [normalize_node(entry.node), _format_priority(entry.general)]
    fields.extend(_format_priority(entry.roles.get(role)) for role in PRIORITY_ROLE_ORDER)
    if entry.last_seen is not None:
        fields.append(format_timestamp(entry.last_seen))
    else:
        fields.append(entry.last_seen_raw)
    return ":".join(fields)


def parse_priority_line(line: str) -> Optional[PriorityEntry]:
    # LAST_SEEN is the remainder after the seventh ':' and may contain ':'
    parts = line.split(":", 7)
    node = normalize_node(parts[0])
    if not node:
        return None
    parts += [""] * (8 - len(parts))
    roles = {role: _parse_priority(parts[index + 2]) for index, role in enumerate(PRIORITY_ROLE_ORDER)}
    last_seen_raw = parts[7].strip()
    return PriorityEntry(
        node=node,
        general=_parse_priority(parts[1]),
        roles=roles,
        last_seen=parse_timestamp(last_seen_raw) if last_seen_raw else None,
        last_seen_raw=last_seen_raw,
    )


def format_lock(lock: SeizureLock) -> str:
    return f"{normalize_node(lock.holder)}:{int(lock.acquired_at.timestamp())}\n"


def parse_lock(role: Role, text: Optional[str]) -> Optional[SeizureLock]:
    if not text or not text.strip():
        return None
    holder, _, acquired = text.strip().partition(":")
    try:
        acquired_at = from_epoch(int(acquired.strip()))
    except (ValueError, OverflowError, OSError):
        return None
    if not holder.strip():
        return None
    return SeizureLock(role=role, holder=normalize_node(holder), acquired_at=acquired_at)


_ATTEMPT_PATTERN = re.compile(
    r"^(?P<ts>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}) \[(?P<actor>[^\]]+)\] "
    r"SEIZURE_ATTEMPT role=(?P<role>\w+) result=(?P<result>\w+)"
)


def format_attempt(attempt: SeizureAttempt) -> str:
    timestamp = attempt.timestamp.strftime(LOG_TIMESTAMP_FORMAT)
    return (
        f"{timestamp} [{attempt.actor}] SEIZURE_ATTEMPT "
        f"role={attempt.role.value} result={attempt.outcome.value}"
    )


def parse_attempt(line: str) -> Optional[SeizureAttempt]:
    match = _ATTEMPT_PATTERN.match(line.strip())
    if not match:
        return None
    try:
        timestamp = datetime.strptime(match.group("ts"), LOG_TIMESTAMP_FORMAT)
        return SeizureAttempt(
            role=Role(match.group("role")),
            actor=normalize_node(match.group("actor")),
            timestamp=timestamp.replace(tzinfo=timezone.utc),
            outcome=SeizureOutcome(match.group("result")),
        )
    except ValueError:
        return None


def parse_key_values(text: Optional[str]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for line in (text or "").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip()] = value.strip()
    return values


def render_key_values(values: Dict[str, str], header: Optional[List[str]] = None) -> str:
    lines = list(header or []) + [f"{key}={value}" for key, value in values.items()]
    return "\n".join(lines) + "\n"
