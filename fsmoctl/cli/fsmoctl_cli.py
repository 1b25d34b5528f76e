#!/usr/bin/env python3
"""
fsmoctl Command Line Interface

Operator and timer entry points for FSMO role orchestration:
- Full orchestration cycles (seizure evaluation + service reconciliation)
- Reconciliation-only and seizure-only cycles
- Role, service, lock and priority status
- Multi-DC overview
- Shared tree initialization and systemd timer units
"""

import asyncio
import json
import logging
import logging.handlers
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import typer
import yaml
from prometheus_client import REGISTRY, write_to_textfile
from rich.console import Console
from rich.panel import Panel

from ..errors import AlreadyRunning, ConfigError, DirectoryUnreachable, FsmoError, StorageUnavailable
from ..core.config import FsmoConfig, LoggingSettings, load_config
from ..core.models import ALL_ROLES, Role
from ..core.runlock import RunLock
from ..node import CycleReport, FsmoNode
from ..orchestrator.status import render_cluster, render_snapshot

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Initialize CLI app
app = typer.Typer(
    name="fsmoctl",
    help="fsmoctl - FSMO role orchestration and failover for Samba AD domain controllers",
    rich_markup_mode="rich",
)
console = Console()

# Global options
state: Dict[str, Any] = {"config": None, "verbose": False}


def setup_logging(settings: LoggingSettings, verbose: bool = False):
    """Stream handler plus optional file and syslog handlers"""
    level = logging.DEBUG if verbose else getattr(logging, settings.level.upper(), logging.INFO)
    handlers = [logging.StreamHandler()]
    if settings.file:
        try:
            settings.file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(settings.file))
        except OSError as e:
            console.print(f"[yellow]Warning: cannot open log file {settings.file}: {e}[/yellow]")
    if settings.syslog:
        try:
            syslog = logging.handlers.SysLogHandler(address="/dev/log")
            syslog.setFormatter(logging.Formatter('fsmoctl: %(levelname)s %(message)s'))
            handlers.append(syslog)
        except OSError as e:
            console.print(f"[yellow]Warning: syslog unavailable: {e}[/yellow]")

    # basicConfig leaves the syslog formatter in place
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)


def get_config() -> FsmoConfig:
    try:
        config = load_config(state["config"])
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    setup_logging(config.logging, state["verbose"])
    return config


def build_node(config: FsmoConfig) -> FsmoNode:
    return FsmoNode(config)


def output(data: Any, output_format: str):
    """Machine-readable output; the table format is rendered by the caller"""
    if output_format == "json":
        typer.echo(json.dumps(data, indent=2, default=str))
    elif output_format == "yaml":
        typer.echo(yaml.safe_dump(json.loads(json.dumps(data, default=str)), default_flow_style=False, sort_keys=False))


def write_metrics(path: Optional[Path]):
    if path is None:
        return
    try:
        write_to_textfile(str(path), REGISTRY)
    except OSError as e:
        logger.warning(f"Cannot write metrics to {path}: {e}")


def print_cycle(report: CycleReport):
    lines = []
    if report.ownership is not None:
        held = sorted(report.ownership.held_roles, key=ALL_ROLES.index)
        lines.append(f"[bold]Roles held:[/bold] {', '.join(r.value for r in held) or 'none'}")
    if report.seizure is not None:
        for decision in report.seizure.decisions:
            detail = f" ({decision.detail})" if decision.detail else ""
            lines.append(f"[bold]{decision.role.value}:[/bold] {decision.decision.value}{detail}")
    if report.reconcile is not None:
        rec = report.reconcile
        lines.append(
            f"[bold]Reconcile:[/bold] {len(rec.fragments_written)} fragments, "
            f"{len(rec.files_installed)} files, {len(rec.service_actions)} service actions"
        )
        for role, failures in rec.failures.items():
            lines.append(f"[red]{role.value} configuration failed:[/red] {'; '.join(failures)}")
    if report.pruned:
        lines.append(f"[bold]Pruned DCs:[/bold] {', '.join(report.pruned)}")
    console.print(Panel("\n".join(lines) or "Nothing to report", title=f"fsmoctl cycle on {report.node}", border_style="blue"))


def run_cycle(
    operation: Callable[[FsmoNode], Awaitable[CycleReport]],
    output_format: str,
    metrics_file: Optional[Path],
):
    """Run one locked cycle.

    Setup failures (config, shared tree, run lock file) exit 1. Anything that
    goes wrong inside the cycle is logged and exits 0; the next scheduled run
    retries.
    """
    config = get_config()
    node = build_node(config)
    try:
        node.initialize()
    except StorageUnavailable as e:
        console.print(f"[red]Error: cannot prepare shared storage: {e}[/red]")
        raise typer.Exit(1)

    lock = RunLock(config.run_lock_file)
    try:
        lock.acquire()
    except AlreadyRunning as e:
        logger.info(f"{e}, exiting")
        return
    except StorageUnavailable as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    report = None
    try:
        report = asyncio.run(operation(node))
    except StorageUnavailable as e:
        logger.error(f"Shared storage unavailable, cycle aborted: {e}")
    except DirectoryUnreachable as e:
        logger.error(f"Directory unreachable, retrying next cycle: {e}")
    except FsmoError as e:
        logger.error(f"Cycle failed: {e}")
    finally:
        lock.release()
        write_metrics(metrics_file)

    if report is None:
        return
    if output_format == "table":
        print_cycle(report)
    else:
        output(report.to_dict(), output_format)


FORMAT_OPTION = typer.Option("table", "--format", "-f", help="Output format (table, json, yaml)")
METRICS_OPTION = typer.Option(None, "--metrics-file", help="Write Prometheus metrics to this textfile")


@app.callback()
def main(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config.yaml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """FSMO role orchestration for Samba AD"""
    state["config"] = config
    state["verbose"] = verbose


@app.command("orchestrate")
def orchestrate(output_format: str = FORMAT_OPTION, metrics_file: Optional[Path] = METRICS_OPTION):
    """Full cycle: evaluate seizures, then reconcile services for held roles"""
    run_cycle(lambda node: node.orchestrate(seize=True), output_format, metrics_file)


@app.command("orchestrate-only")
def orchestrate_only(output_format: str = FORMAT_OPTION, metrics_file: Optional[Path] = METRICS_OPTION):
    """Reconcile services for held roles without seizure evaluation"""
    run_cycle(lambda node: node.orchestrate(seize=False), output_format, metrics_file)


@app.command("auto-seize")
def auto_seize(output_format: str = FORMAT_OPTION, metrics_file: Optional[Path] = METRICS_OPTION):
    """Evaluate unreachable role holders and seize where eligible"""
    run_cycle(lambda node: node.seize_only(), output_format, metrics_file)


@app.command("role")
def configure_role(
    role: str = typer.Argument(..., help="PDC, RID, INFRASTRUCTURE, SCHEMA or DOMAIN_NAMING"),
    output_format: str = FORMAT_OPTION,
    metrics_file: Optional[Path] = METRICS_OPTION,
):
    """Reconfigure the services of one role"""
    try:
        parsed = Role.parse(role)
    except ValueError:
        raise typer.BadParameter(f"Unknown role: {role}")
    run_cycle(lambda node: node.configure_role(parsed), output_format, metrics_file)


@app.command("status")
def status(output_format: str = FORMAT_OPTION):
    """Show roles, local services, seizure locks and priorities"""
    config = get_config()
    node = build_node(config)
    try:
        snapshot = asyncio.run(node.status())
    except FsmoError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if output_format == "table":
        render_snapshot(console, snapshot)
    else:
        output(snapshot.to_dict(), output_format)


@app.command("query")
def query(output_format: str = FORMAT_OPTION):
    """Query current role ownership from the directory"""
    config = get_config()
    node = build_node(config)
    try:
        with console.status("[bold blue]Querying FSMO roles..."):
            ownership = asyncio.run(node.query())
    except FsmoError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    data = {"node": ownership.this_node, "roles": ownership.to_dict()}
    if output_format != "table":
        output(data, output_format)
        return
    for role in ALL_ROLES:
        holder = ownership.holder(role) or "unknown"
        marker = " [green](this server)[/green]" if ownership.holds(role) else ""
        console.print(f"[bold]{role.value}:[/bold] {holder}{marker}")


@app.command("multi-dc-status")
def multi_dc_status(output_format: str = FORMAT_OPTION):
    """Show every known domain controller with reachability and service state"""
    config = get_config()
    node = build_node(config)
    try:
        with console.status("[bold blue]Probing domain controllers..."):
            nodes = asyncio.run(node.multi_dc_status())
    except FsmoError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if output_format != "table":
        output(nodes, output_format)
        return
    render_cluster(console, nodes)
    for item in nodes:
        color = "green" if item.get("reachable") else "red"
        label = "reachable" if item.get("reachable") else "unreachable"
        suffix = " (this server)" if item.get("self") else ""
        console.print(f"[{color}]{item['node']}[/{color}]{suffix}: {label}, {item.get('probe', '')}")


@app.command("init")
def init(output_format: str = FORMAT_OPTION):
    """Create the shared directory tree and seed records"""
    config = get_config()
    node = build_node(config)
    try:
        result = node.initialize()
    except StorageUnavailable as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if output_format != "table":
        output(result, output_format)
        return
    console.print(f"[green]✓[/green] FSMO orchestration structure ready in {result['root']}")
    for directory in result["directories_created"]:
        console.print(f"  created {directory}/")
    for record in result["records_created"]:
        console.print(f"  created {record}")


def render_systemd_units(binary: str, reconcile_interval: str, orchestrate_interval: str) -> Dict[str, str]:
    """Service and timer pairs for the two scheduled cycles"""
    units = {}
    for name, command, interval, description in (
        ("fsmoctl-reconcile", "orchestrate-only", reconcile_interval, "FSMO role service reconciliation"),
        ("fsmoctl-orchestrate", "orchestrate", orchestrate_interval, "FSMO role orchestration and automatic seizure"),
    ):
        units[f"{name}.service"] = (
            "[Unit]\n"
            f"Description={description}\n"
            "After=network-online.target samba-ad-dc.service\n"
            "Wants=network-online.target\n"
            "\n"
            "[Service]\n"
            "Type=oneshot\n"
            f"ExecStart={binary} {command}\n"
        )
        units[f"{name}.timer"] = (
            "[Unit]\n"
            f"Description=Run {description}\n"
            "\n"
            "[Timer]\n"
            "OnBootSec=1min\n"
            f"OnUnitActiveSec={interval}\n"
            "RandomizedDelaySec=15\n"
            "Persistent=true\n"
            "\n"
            "[Install]\n"
            "WantedBy=timers.target\n"
        )
    return units


@app.command("systemd-units")
def systemd_units(
    output_dir: Optional[Path] = typer.Option(None, "--output", "-o", help="Write units into this directory"),
    reconcile_interval: str = typer.Option("5min", "--reconcile-interval", help="Reconciliation timer interval"),
    orchestrate_interval: str = typer.Option("10min", "--orchestrate-interval", help="Full orchestration timer interval"),
    binary: str = typer.Option("/usr/local/bin/fsmoctl", "--binary", help="fsmoctl executable path"),
):
    """Render the systemd service/timer units for scheduled cycles"""
    units = render_systemd_units(binary, reconcile_interval, orchestrate_interval)
    if output_dir is None:
        for name, content in units.items():
            typer.echo(f"# {name}\n{content}")
        return

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        for name, content in units.items():
            (output_dir / name).write_text(content)
    except OSError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Wrote {len(units)} units to {output_dir}")
    console.print("Enable with: systemctl daemon-reload && systemctl enable --now fsmoctl-reconcile.timer fsmoctl-orchestrate.timer")


if __name__ == "__main__":
    app()
