"""
Per-role service configurers

Each configurer turns "this node holds / does not hold role X" into a
ConfigPlan: shared configuration fragments, local files installed from those
fragments and the desired state of the local services. Plans are pure data;
RoleOrchestrator applies them.

Fragments never embed timestamps so an unchanged role set renders
byte-identical fragments and nothing is rewritten.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..core.config import FsmoConfig
from ..core.models import ROLE_SERVICE_KINDS, UNKNOWN_HOLDER, Role, ServiceKind, normalize_node
from ..core.records import (
    DHCP_CONFIG_DIR,
    DNS_CONFIG_DIR,
    FSMO_CONFIG_DIR,
    NTP_CONFIG_DIR,
    render_key_values,
)

logger = logging.getLogger(__name__)

# Fragment keys
CHRONY_PDC_KEY = f"{NTP_CONFIG_DIR}/chrony.conf.pdc"
CHRONY_DC_KEY = f"{NTP_CONFIG_DIR}/chrony.conf.dc"
NTP_SETTINGS_KEY = f"{NTP_CONFIG_DIR}/ntp-settings.conf"
DHCP_ACTIVE_KEY = f"{DHCP_CONFIG_DIR}/dhcpd.conf.active"
DHCP_SETTINGS_KEY = f"{DHCP_CONFIG_DIR}/dhcp-settings.conf"
PASSWORD_POLICY_KEY = f"{FSMO_CONFIG_DIR}/password-policy.conf"
RID_MANAGEMENT_KEY = f"{FSMO_CONFIG_DIR}/rid-management.conf"
CROSS_DOMAIN_REFS_KEY = f"{FSMO_CONFIG_DIR}/cross-domain-refs.conf"
INFRASTRUCTURE_DNS_KEY = f"{DNS_CONFIG_DIR}/infrastructure-dns.conf"
SCHEMA_MANAGEMENT_KEY = f"{FSMO_CONFIG_DIR}/schema-management.conf"
DOMAIN_NAMING_KEY = f"{FSMO_CONFIG_DIR}/domain-naming.conf"
FOREST_DNS_KEY = f"{DNS_CONFIG_DIR}/forest-dns.conf"

CHRONY_BASE = """# Basic chrony configuration
confdir /etc/chrony/conf.d
keyfile /etc/chrony/chrony.keys
driftfile /var/lib/chrony/chrony.drift
rtcsync
makestep 1 3
leapsectz right/UTC
"""


@dataclass
class LocalInstall:
    """Copy a shared fragment to a local config file"""
    source_key: str
    target: Path
    service: ServiceKind


@dataclass
class ConfigPlan:
    """Desired state contributed by one role"""
    role: Role
    fragments: Dict[str, str] = field(default_factory=dict)
    # Written only when absent so operator edits survive
    seed_fragments: Dict[str, str] = field(default_factory=dict)
    installs: List[LocalInstall] = field(default_factory=list)
    ensure_running: List[ServiceKind] = field(default_factory=list)
    ensure_stopped: List[ServiceKind] = field(default_factory=list)
    enable: List[ServiceKind] = field(default_factory=list)
    disable: List[ServiceKind] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (
            self.fragments or self.seed_fragments or self.installs
            or self.ensure_running or self.ensure_stopped or self.enable or self.disable
        )


def _metadata(title: str, description: str, values: Dict[str, str], node: str) -> str:
    header = [f"# {title}", f"# {description}", ""]
    return render_key_values({**values, "MANAGED_BY": node}, header=header)


class ServiceConfigurer:
    """Base configurer: held roles keep the directory service running"""

    role: Role

    def __init__(self, config: FsmoConfig):
        self.config = config
        self.node = config.node_name

    def plan_held(self) -> ConfigPlan:
        return ConfigPlan(role=self.role, ensure_running=list(ROLE_SERVICE_KINDS[self.role]))

    def plan_not_held(self, holder: Optional[str]) -> ConfigPlan:
        return ConfigPlan(role=self.role)

    def service_names(self) -> List[str]:
        return [self.config.service_name(kind) for kind in ROLE_SERVICE_KINDS[self.role]]


class PdcConfigurer(ServiceConfigurer):
    """Time authority and lease authority follow the PDC emulator"""

    role = Role.PDC

    def chrony_authority(self) -> str:
        lines = [CHRONY_BASE, "# NTP configuration for PDC Emulator (managed by fsmoctl)"]
        lines += [f"pool {pool} iburst" for pool in self.config.time.pools]
        lines += [
            "",
            "# Allow time serving to domain clients",
            "allow all",
            "",
            "# Serve time even if not synchronized to external sources",
            f"local stratum {self.config.time.authority_stratum}",
        ]
        return "\n".join(lines) + "\n"

    def chrony_client(self, pdc_holder: Optional[str]) -> str:
        lines = [CHRONY_BASE, "# NTP configuration for Additional DC (managed by fsmoctl)"]
        holder = normalize_node(pdc_holder)
        if holder and holder != UNKNOWN_HOLDER:
            server = f"{holder}.{self.config.domain}" if self.config.domain else holder
            lines.append(f"server {server} iburst prefer")
            lines.append("# Fallback external sources if PDC is unavailable")
            lines += [f"pool {pool} iburst" for pool in self.config.time.pools[:2]]
        else:
            lines.append("# PDC unavailable - using external sources")
            lines += [f"pool {pool} iburst" for pool in self.config.time.pools[:3]]
        lines += [
            "",
            "# Allow time serving to domain clients",
            "allow all",
            "",
            "# Higher stratum since we're not the PDC",
            f"local stratum {self.config.time.client_stratum}",
        ]
        return "\n".join(lines) + "\n"

    def dhcp_config(self) -> str:
        dhcp = self.config.dhcp
        lines = [
            "# DHCP Configuration for PDC Emulator (generated by fsmoctl)",
            f"default-lease-time {dhcp.default_lease_time};",
            f"max-lease-time {dhcp.max_lease_time};",
            "authoritative;",
            "",
        ]
        if self.config.domain:
            lines.append(f'option domain-name "{self.config.domain}";')
        if dhcp.dns_servers:
            lines.append(f"option domain-name-servers {', '.join(dhcp.dns_servers)};")
        lines += [
            "",
            f"subnet {dhcp.subnet} netmask {dhcp.netmask} {{",
            f"    range {dhcp.range_start} {dhcp.range_end};",
            f"    option routers {dhcp.routers};",
            f"    option broadcast-address {dhcp.broadcast};",
            "}",
        ]
        return "\n".join(lines) + "\n"

    def dhcp_settings(self) -> str:
        dhcp = self.config.dhcp
        values = {
            "SUBNET": dhcp.subnet,
            "NETMASK": dhcp.netmask,
            "RANGE_START": dhcp.range_start,
            "RANGE_END": dhcp.range_end,
            "ROUTERS": dhcp.routers,
            "BROADCAST": dhcp.broadcast,
            "DNS_SERVERS": ",".join(dhcp.dns_servers),
            "DEFAULT_LEASE_TIME": str(dhcp.default_lease_time),
            "MAX_LEASE_TIME": str(dhcp.max_lease_time),
        }
        return _metadata("DHCP Settings", "Lease authority parameters used to seed dhcpd.conf.active", values, self.node)

    def plan_held(self) -> ConfigPlan:
        services = self.config.services
        plan = ConfigPlan(role=self.role)
        plan.fragments = {
            CHRONY_PDC_KEY: self.chrony_authority(),
            NTP_SETTINGS_KEY: _metadata(
                "NTP Configuration Metadata",
                "Time hierarchy published by the PDC emulator",
                {"ROLE": "pdc", "PDC_HOST": self.node, "CONFIG_FILE": "chrony.conf.pdc"},
                self.node,
            ),
            DHCP_SETTINGS_KEY: self.dhcp_settings(),
            PASSWORD_POLICY_KEY: _metadata(
                "Domain Password Policy Configuration (PDC Emulator)",
                "This file tracks password policy settings for the domain",
                {
                    "MINIMUM_PASSWORD_LENGTH": "8",
                    "PASSWORD_COMPLEXITY": "enabled",
                    "MAXIMUM_PASSWORD_AGE": "90",
                    "MINIMUM_PASSWORD_AGE": "1",
                    "PASSWORD_HISTORY": "12",
                    "ACCOUNT_LOCKOUT_THRESHOLD": "5",
                    "ACCOUNT_LOCKOUT_DURATION": "30",
                },
                self.node,
            ),
        }
        plan.seed_fragments = {DHCP_ACTIVE_KEY: self.dhcp_config()}
        plan.installs = [
            LocalInstall(CHRONY_PDC_KEY, services.chrony_config, ServiceKind.TIME),
            LocalInstall(DHCP_ACTIVE_KEY, services.dhcp_config, ServiceKind.LEASE),
        ]
        plan.ensure_running = [ServiceKind.TIME, ServiceKind.LEASE, ServiceKind.DIRECTORY]
        plan.enable = [ServiceKind.LEASE]
        return plan

    def plan_not_held(self, holder: Optional[str]) -> ConfigPlan:
        plan = ConfigPlan(role=self.role)
        plan.fragments = {CHRONY_DC_KEY: self.chrony_client(holder)}
        plan.installs = [LocalInstall(CHRONY_DC_KEY, self.config.services.chrony_config, ServiceKind.TIME)]
        plan.ensure_running = [ServiceKind.TIME]
        plan.ensure_stopped = [ServiceKind.LEASE]
        plan.disable = [ServiceKind.LEASE]
        return plan


class RidConfigurer(ServiceConfigurer):
    role = Role.RID

    def plan_held(self) -> ConfigPlan:
        plan = super().plan_held()
        plan.fragments[RID_MANAGEMENT_KEY] = _metadata(
            "RID Pool Management Configuration",
            "RID Master manages relative ID allocation",
            {
                "RID_POOL_SIZE": "5000",
                "RID_POOL_WARNING_THRESHOLD": "1000",
                "RID_ALLOCATION_MONITORING": "enabled",
                "AUTOMATIC_POOL_EXTENSION": "enabled",
                "POOL_EXHAUSTION_ALERTS": "enabled",
                "SID_GENERATION": "managed",
            },
            self.node,
        )
        return plan


class InfrastructureConfigurer(ServiceConfigurer):
    role = Role.INFRASTRUCTURE

    def plan_held(self) -> ConfigPlan:
        plan = super().plan_held()
        plan.fragments[CROSS_DOMAIN_REFS_KEY] = _metadata(
            "Cross-Domain Reference Management Configuration",
            "Infrastructure Master manages references to objects in other domains",
            {
                "CLEANUP_INTERVAL": "daily",
                "PHANTOM_CLEANUP": "enabled",
                "REFERENCE_VALIDATION": "enabled",
                "CROSS_DOMAIN_MOVE_SUPPORT": "enabled",
            },
            self.node,
        )
        plan.fragments[INFRASTRUCTURE_DNS_KEY] = _metadata(
            "DNS Infrastructure Management Configuration",
            "Infrastructure Master manages DNS infrastructure records",
            {
                "FOREST_DNS_ZONES": "enabled",
                "DOMAIN_DNS_ZONES": "enabled",
                "CONDITIONAL_FORWARDERS": "managed",
                "DNS_SCAVENGING": "enabled",
                "ZONE_TRANSFER_SECURITY": "enabled",
                "DYNAMIC_UPDATES": "secure_only",
            },
            self.node,
        )
        return plan


class SchemaConfigurer(ServiceConfigurer):
    role = Role.SCHEMA

    def plan_held(self) -> ConfigPlan:
        plan = super().plan_held()
        plan.fragments[SCHEMA_MANAGEMENT_KEY] = _metadata(
            "Schema Management Configuration",
            "Schema Master manages forest-wide schema changes",
            {
                "SCHEMA_UPDATES": "controlled",
                "SCHEMA_EXTENSIONS": "logged",
                "SCHEMA_REPLICATION": "monitored",
                "EMERGENCY_SCHEMA_CHANGES": "restricted",
                "SCHEMA_VERSION_TRACKING": "enabled",
                "SCHEMA_CONFLICTS": "monitored",
            },
            self.node,
        )
        return plan


class DomainNamingConfigurer(ServiceConfigurer):
    role = Role.DOMAIN_NAMING

    def plan_held(self) -> ConfigPlan:
        plan = super().plan_held()
        plan.fragments[DOMAIN_NAMING_KEY] = _metadata(
            "Domain Naming Management Configuration",
            "Domain Naming Master manages forest domain operations",
            {
                "DOMAIN_CREATION": "controlled",
                "DOMAIN_DELETION": "controlled",
                "FOREST_TRUST_MANAGEMENT": "enabled",
                "DOMAIN_RENAME_OPERATIONS": "managed",
                "FOREST_DNS_MANAGEMENT": "primary",
                "TRUST_RELATIONSHIP_MANAGEMENT": "enabled",
            },
            self.node,
        )
        plan.fragments[FOREST_DNS_KEY] = _metadata(
            "Forest DNS Zone Configuration",
            "Domain Naming Master owns forest-wide DNS zone metadata",
            {
                "FOREST_ZONES": "primary",
                "DOMAIN_ZONE": self.config.domain or "unknown",
                "ZONE_REPLICATION_SCOPE": "forest",
            },
            self.node,
        )
        return plan


def default_configurers(config: FsmoConfig) -> Dict[Role, ServiceConfigurer]:
    configurers = [
        PdcConfigurer(config),
        RidConfigurer(config),
        InfrastructureConfigurer(config),
        SchemaConfigurer(config),
        DomainNamingConfigurer(config),
    ]
    return {configurer.role: configurer for configurer in configurers}
