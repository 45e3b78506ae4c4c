#!/usr/bin/env python3
"""
mxl - MultiversX localnet developer CLI.

One CLI (`mxl`) that drives the localnet lifecycle, configuration templates,
backups, security scans, monitoring, benchmarks and the surrounding
toolchain. Every heavy lifting step is delegated to mxpy, sc-meta, docker
compose, terraform or the scanners.

Usage:
    mxl setup                      # mxpy localnet setup
    mxl start                      # Start the localnet in the background
    mxl status                     # Processes, proxy and chain height
    mxl config apply dev           # Switch configuration template
    mxl backup create              # Archive the localnet directory
    mxl security audit contracts/  # Rule scan, gas analysis and scanners
    mxl bench all                  # Connectivity, throughput, deploy, stress
    mxl menu                       # Interactive menu
"""

from __future__ import annotations

import shutil
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from . import bench as bench_mod
from . import devops as devops_mod
from . import security as security_mod
from . import simulator as simulator_mod
from . import toolchain
from .backup import BackupManager
from .contracts import NETWORKS, ScMeta, deploy_contract
from .errors import MxLocalnetError
from .faucet import fund_from_wallet, request_tokens
from .localnet import LocalnetManager
from .log import configure_logging
from .menu import run_menu
from .monitoring import (
    MetricsCollector,
    serve_dashboard,
    summarize_metrics,
    write_dashboard,
    write_performance_report,
)
from .mxpy import Mxpy
from .processes import attach_signal_handlers, run_command, terminate_process_group
from .proxy import ProxyClient, check_health
from .reports import publish, summarize
from .runtime_env import LocalnetSettings, builder_for, load_settings, mask_sensitive_value
from .stack import SERVICES, MonitoringStack, query_up
from .templates import ConfigManager

# CLI App
HELP_TEXT = """MultiversX localnet developer CLI

[bold yellow]Run commands with:[/bold yellow] mxl <command>

[bold cyan]Quick Examples:[/bold cyan]
  mxl setup && mxl start    Create and start a localnet
  mxl status                Processes and chain height
  mxl bench all             Run every benchmark
  mxl menu                  Interactive menu
"""

app = typer.Typer(
    name="mxl",
    help=HELP_TEXT,
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

# Sub-apps for grouped commands
config_app = typer.Typer(help="Configuration templates", no_args_is_help=True)
backup_app = typer.Typer(help="Backup and recovery", no_args_is_help=True)
security_app = typer.Typer(help="Smart contract security scans", no_args_is_help=True)
monitor_app = typer.Typer(help="Network metrics and dashboard", no_args_is_help=True)
stack_app = typer.Typer(help="Prometheus/Grafana monitoring stack", no_args_is_help=True)
bench_app = typer.Typer(help="Tests and benchmarks against the localnet", no_args_is_help=True)
contract_app = typer.Typer(help="Smart contract scaffolding, build and deploy", no_args_is_help=True)
wallet_app = typer.Typer(help="Wallet helpers", no_args_is_help=True)
sdk_app = typer.Typer(help="Toolchain status and installers", no_args_is_help=True)
devops_app = typer.Typer(help="Terraform and Docker glue", no_args_is_help=True)
simulator_app = typer.Typer(help="Multi-node chain simulator and test scenarios", no_args_is_help=True)
app.add_typer(config_app, name="config")
app.add_typer(backup_app, name="backup")
app.add_typer(security_app, name="security")
app.add_typer(monitor_app, name="monitor")
app.add_typer(stack_app, name="stack")
app.add_typer(bench_app, name="bench")
app.add_typer(contract_app, name="contract")
app.add_typer(wallet_app, name="wallet")
app.add_typer(sdk_app, name="sdk")
app.add_typer(devops_app, name="devops")
app.add_typer(simulator_app, name="simulator")


# ==============================================================================
# Helper Functions
# ==============================================================================

def _settings() -> LocalnetSettings:
    try:
        return load_settings()
    except ValueError as e:
        console.print(f"[red]Configuration Error:[/red]\n{e}")
        raise typer.Exit(1)


@contextmanager
def _errors():
    """Turn library errors into a red message and exit code 1."""
    try:
        yield
    except ValueError as e:
        console.print(f"[red]Configuration Error:[/red]\n{e}")
        raise typer.Exit(1)
    except MxLocalnetError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def _confirm(message: str, default: bool = False) -> bool:
    """Prompt for confirmation."""
    suffix = " [y/N]: " if not default else " [Y/n]: "
    response = input(message + suffix).strip().lower()
    if not response:
        return default
    return response in ("y", "yes")


def _mxpy(settings: LocalnetSettings, env: Optional[Dict[str, str]] = None) -> Mxpy:
    return Mxpy(dry_run=settings.dry_run, env=env)


def _default_pem(settings: LocalnetSettings, pem: Optional[Path]) -> Path:
    return pem or settings.pem or toolchain.TESTWALLETS_DIR / "alice.pem"


def _security_dirs(settings: LocalnetSettings):
    return settings.security_dir / "config", settings.security_dir / "reports"


def _spinner(description: str) -> Progress:
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    )
    progress.add_task(description, total=None)
    return progress


def _dry_run_banner(settings: LocalnetSettings) -> None:
    if settings.dry_run:
        console.print("[yellow]DRY_RUN is set: external commands are printed, not executed[/yellow]")


@app.callback()
def _main(
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="-v for INFO, -vv for DEBUG"),
):
    settings = _settings()
    configure_logging(verbose, settings.logs_dir / "mxlocalnet.log")


# ==============================================================================
# mxl setup / start / stop / reset - Localnet lifecycle
# ==============================================================================

@app.command()
def setup(
    force: bool = typer.Option(False, "--force", "-f", help="Run mxpy localnet setup even if already set up"),
    profile: str = typer.Option("dev", "--profile", "-p", help="Profile: dev, test, production or ci"),
):
    """
    Create the localnet with `mxpy localnet setup`.

    [bold]Examples:[/bold]
        mxl setup                 # First time setup
        mxl setup --force         # Regenerate the localnet directory
    """
    settings = _settings()
    _dry_run_banner(settings)
    with _errors():
        env = builder_for(profile, settings).build()
        manager = LocalnetManager(settings, _mxpy(settings, env))
        with _spinner("Running mxpy localnet setup..."):
            created = manager.setup(force=force)
    if created:
        console.print(f"[green]Localnet set up in {settings.localnet_dir}[/green]")
    else:
        console.print(f"[yellow]Localnet already set up in {settings.localnet_dir} (use --force)[/yellow]")


@app.command()
def start(
    profile: str = typer.Option("dev", "--profile", "-p", help="Profile: dev, test, production or ci"),
    timeout: int = typer.Option(120, "--timeout", help="Proxy startup timeout in seconds"),
    no_wait: bool = typer.Option(False, "--no-wait", help="Return without waiting for the proxy"),
    force: bool = typer.Option(False, "--force", "-f", help="Start even if localnet processes are found"),
    foreground: bool = typer.Option(False, "--foreground", help="Stay attached; Ctrl+C stops the localnet"),
):
    """
    Start the localnet in the background.

    Output goes to logs/localnet.log. Runs setup first when needed.

    [bold]Examples:[/bold]
        mxl start                       # Dev profile, wait for the proxy
        mxl start --profile ci          # Fast 1s rounds
        mxl start --no-wait             # Return immediately
        mxl start --foreground          # Stop with Ctrl+C
    """
    settings = _settings()
    _dry_run_banner(settings)
    with _errors():
        env = builder_for(profile, settings).build()
        manager = LocalnetManager(settings, _mxpy(settings, env))
        console.print(Panel.fit(
            "[bold green]MultiversX Localnet[/bold green]",
            subtitle=f"Profile: {profile.upper()}",
        ))
        if not manager.is_set_up():
            console.print("[bold]Localnet not set up yet, running setup...[/bold]")
            manager.setup()
        if no_wait:
            proc = manager.start(wait=False, force=force)
        else:
            with _spinner(f"Waiting for proxy (timeout: {timeout}s)..."):
                proc = manager.start(wait=True, timeout=timeout, force=force)

    table = Table(title="Localnet", show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim")
    table.add_column("Value")
    table.add_row("Proxy", settings.proxy_url)
    table.add_row("Directory", str(settings.localnet_dir))
    table.add_row("Log", str(manager.log_file))
    console.print(table)
    console.print("[green]Localnet started[/green]")
    if foreground and proc is not None:
        _stay_attached(proc, manager)


def _stay_attached(proc, manager: LocalnetManager) -> None:
    running = [("localnet", proc)]
    attach_signal_handlers(running)
    console.print("\n[dim]Press Ctrl+C to stop the localnet[/dim]\n")
    try:
        while proc.poll() is None:
            time.sleep(1)
        console.print(f"[red]localnet exited with code {proc.returncode}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")
    finally:
        terminate_process_group(proc)
        stopped = manager.stop()
        if stopped:
            console.print(f"[dim]Stopped {len(stopped)} leftover process(es)[/dim]")


@app.command()
def stop(
    grace: int = typer.Option(5, "--grace", help="Seconds to wait before force killing"),
):
    """Stop every localnet process."""
    settings = _settings()
    with _errors():
        stopped = LocalnetManager(settings, _mxpy(settings)).stop(grace=grace)
    if stopped:
        console.print(f"[green]Stopped {len(stopped)} process(es): {', '.join(map(str, stopped))}[/green]")
    else:
        console.print("[yellow]No localnet processes running[/yellow]")


@app.command()
def reset(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
    setup_again: bool = typer.Option(False, "--setup", help="Run mxpy localnet setup afterwards"),
):
    """Stop the localnet and delete its directory (DESTRUCTIVE)."""
    settings = _settings()
    if not force:
        console.print("[bold red]WARNING: This deletes all localnet data![/bold red]")
        if not _confirm("Are you sure you want to reset the localnet?"):
            console.print("[yellow]Cancelled[/yellow]")
            raise typer.Exit(0)
    with _errors():
        manager = LocalnetManager(settings, _mxpy(settings))
        removed = manager.reset()
        for path in removed:
            console.print(f"[dim]Removed {path}[/dim]")
        if setup_again:
            manager.setup()
    console.print("[green]Localnet reset complete[/green]")
    if not setup_again:
        console.print("[dim]Run 'mxl setup' to create a fresh localnet[/dim]")


# ==============================================================================
# mxl status / health - Observability
# ==============================================================================

@app.command()
def status():
    """Show localnet processes, proxy state and chain height."""
    settings = _settings()
    snapshot = LocalnetManager(settings, _mxpy(settings)).status()

    table = Table(title="Localnet Status", show_header=True, header_style="bold cyan")
    table.add_column("Property")
    table.add_column("Value")
    table.add_row("Localnet", "[green]RUNNING[/green]" if snapshot.running else "[red]STOPPED[/red]")
    table.add_row("Proxy", f"[green]UP[/green] ({snapshot.latency_ms}ms)" if snapshot.proxy_up
                  else f"[red]{snapshot.proxy_status}[/red]")
    for label, value in (("Epoch", snapshot.epoch), ("Round", snapshot.round), ("Nonce", snapshot.nonce)):
        table.add_row(label, "N/A" if value is None else str(value))
    table.add_row("Processes", str(len(snapshot.processes)))
    console.print(table)

    if snapshot.processes:
        procs = Table(show_header=True, header_style="bold cyan")
        procs.add_column("PID", justify="right")
        procs.add_column("Name")
        procs.add_column("Role")
        for proc in snapshot.processes:
            procs.add_row(str(proc.pid), proc.name, proc.role)
        console.print(procs)


@app.command()
def health(
    watch: bool = typer.Option(False, "--watch", help="Continuous monitoring (refresh every 5s)"),
):
    """
    Quick health check of the proxy and monitoring services.

    [bold]Examples:[/bold]
        mxl health              # Check once
        mxl health --watch      # Continuous monitoring
    """
    settings = _settings()
    checks = [
        ("Proxy config", f"{settings.proxy_url}/network/config"),
        ("Proxy status", f"{settings.proxy_url}/network/status"),
        ("Dashboard", f"http://localhost:{settings.monitoring_port}/"),
        ("Prometheus", f"{SERVICES['Prometheus']}/-/healthy"),
        ("Grafana", f"{SERVICES['Grafana']}/api/health"),
    ]

    def print_health_table():
        table = Table(title="Localnet Health Check", show_header=True, header_style="bold cyan")
        table.add_column("Service")
        table.add_column("Status")
        table.add_column("Latency", justify="right")
        table.add_column("URL")
        for name, url in checks:
            is_up, latency, state = check_health(url)
            display = "[green]UP[/green]" if is_up else f"[red]{state}[/red]"
            table.add_row(name, display, f"{latency}ms", url)
        console.print(table)

    if watch:
        try:
            while True:
                console.clear()
                print_health_table()
                console.print("\n[dim]Refreshing every 5s. Press Ctrl+C to stop.[/dim]")
                time.sleep(5)
        except KeyboardInterrupt:
            pass
    else:
        print_health_table()


# ==============================================================================
# mxl faucet / fund - Getting tokens
# ==============================================================================

@app.command()
def faucet(
    address: str = typer.Argument(..., help="erd1 address to fund"),
    url: Optional[str] = typer.Option(None, "--url", help="Faucet endpoint (default: MX_FAUCET_URL)"),
):
    """Request testnet xEGLD from the public faucet."""
    settings = _settings()
    with _errors():
        result = request_tokens(address, url or settings.faucet_url)
    if result.success:
        console.print("[green]Tokens requested successfully[/green]")
        console.print(f"[dim]{result.body.strip()}[/dim]")
    else:
        console.print("[red]Faucet request failed. You may be rate limited, try again later.[/red]")
        console.print(f"[dim]{result.body.strip()}[/dim]")
        raise typer.Exit(1)


@app.command()
def fund(
    address: str = typer.Argument(..., help="erd1 address to fund"),
    amount: float = typer.Option(1.0, "--amount", "-a", help="Amount in EGLD"),
    pem: Optional[Path] = typer.Option(None, "--pem", help="Funding wallet (default: MX_PEM or alice.pem)"),
):
    """Send EGLD from a local wallet, the localnet stand-in for a faucet."""
    settings = _settings()
    wallet = _default_pem(settings, pem)
    with _errors():
        fund_from_wallet(address, amount, wallet, _mxpy(settings), settings.proxy_url, settings.chain_id)
    console.print(f"[green]Sent {amount} EGLD to {address}[/green]")


# ==============================================================================
# mxl menu / info / report / logs / clean
# ==============================================================================

def _menu_action(func: Callable[..., None], **kwargs) -> Callable[[], None]:
    def action() -> None:
        try:
            func(**kwargs)
        except typer.Exit:
            pass
        input("Press Enter to continue...")
    return action


@app.command()
def menu():
    """Interactive menu over the most common commands."""
    settings = _settings()
    actions = {
        "start": _menu_action(start, profile="dev", timeout=120, no_wait=False, force=False, foreground=False),
        "stop": _menu_action(stop, grace=5),
        "reset": _menu_action(reset, force=False, setup_again=False),
        "dashboard.web": _menu_action(monitor_dashboard, port=None, serve=True),
        "dashboard.monitor": _menu_action(monitor_watch, interval=None, iterations=None),
        "dashboard.report": _menu_action(monitor_report),
        "bench.all": _menu_action(bench_all, duration=60, pem=None, bytecode=None),
        "bench.connectivity": _menu_action(bench_connectivity),
        "bench.throughput": _menu_action(bench_throughput, duration=60, pem=None),
        "bench.contract": _menu_action(_prompt_bench_contract),
        "bench.stress": _menu_action(bench_stress, streams=10, tx_per_stream=20),
        "config.init": _menu_action(config_init),
        "config.list": _menu_action(config_list),
        "config.apply": _menu_action(_prompt_config_apply),
        "config.current": _menu_action(config_current),
        "backup.create": _menu_action(backup_create, keep=10),
        "backup.incremental": _menu_action(backup_incremental),
        "backup.list": _menu_action(backup_list),
        "backup.restore": _menu_action(_prompt_backup, command=backup_restore, force=False),
        "backup.verify": _menu_action(_prompt_backup, command=backup_verify),
        "backup.schedule": _menu_action(_prompt_backup_schedule),
        "status": _menu_action(status),
        "faucet": _menu_action(_prompt_faucet),
        "logs": _menu_action(logs, source="localnet", lines=50, follow=False),
        "clean": _menu_action(clean, force=False),
    }
    manager = LocalnetManager(settings, _mxpy(settings))
    run_menu(actions, prompt=input, is_running=manager.is_running, console=console)


def _prompt_faucet() -> None:
    address = input("Address (erd1...): ").strip()
    faucet(address=address, url=None)


def _prompt_config_apply() -> None:
    config_list()
    name = input("Enter template name: ").strip()
    config_apply(name=name)


def _prompt_backup(command: Callable[..., None], **kwargs) -> None:
    backup_list()
    name = input("Enter backup name: ").strip()
    command(name=name, **kwargs)


def _prompt_backup_schedule() -> None:
    raw = input("Enter backup interval in hours [24]: ").strip()
    backup_schedule(interval=float(raw) if raw else 24.0, iterations=None)


def _prompt_bench_contract() -> None:
    bytecode = input("Path to contract .wasm: ").strip()
    bench_contract(bytecode=Path(bytecode), pem=None)


@app.command()
def info():
    """Show settings, the active template and installed tool versions."""
    settings = _settings()
    table = Table(title=f"mxl {__version__}", show_header=True, header_style="bold cyan")
    table.add_column("Setting", style="dim")
    table.add_column("Value")
    table.add_row("Workspace", str(settings.workspace))
    table.add_row("Localnet dir", str(settings.localnet_dir))
    table.add_row("Proxy", settings.proxy_url)
    table.add_row("Chain ID", settings.chain_id)
    table.add_row("Shards", str(settings.shards))
    table.add_row("Monitoring port", str(settings.monitoring_port))
    table.add_row("Dry run", str(settings.dry_run))
    table.add_row("Wallet", mask_sensitive_value(str(settings.pem)) if settings.pem else "not set")
    with _errors():
        current = ConfigManager(settings.workspace, settings.localnet_dir).current()
    table.add_row("Active template", f"{current.name} ({current.key})" if current else "none")
    console.print(table)


@app.command()
def report(
    no_publish: bool = typer.Option(False, "--no-publish", help="Do not append to $GITHUB_STEP_SUMMARY"),
):
    """
    Summarize benchmarks, security scans and backups as Markdown.

    Appended to $GITHUB_STEP_SUMMARY when it is set.
    """
    settings = _settings()
    text = summarize(settings.workspace)
    console.print(text, markup=False)
    if not no_publish:
        written = publish(text)
        if written:
            console.print(f"[green]Summary appended to {written}[/green]")


@app.command()
def logs(
    source: str = typer.Argument("localnet", help="localnet or mxl"),
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow log output"),
):
    """Show the localnet or CLI log."""
    settings = _settings()
    files = {
        "localnet": settings.logs_dir / "localnet.log",
        "mxl": settings.logs_dir / "mxlocalnet.log",
    }
    if source not in files:
        console.print(f"[red]Unknown log '{source}'. Choose one of: {', '.join(files)}[/red]")
        raise typer.Exit(1)
    path = files[source]
    if not path.is_file():
        console.print(f"[yellow]No log found at {path}[/yellow]")
        raise typer.Exit(1)
    if follow:
        try:
            run_command(["tail", "-n", str(lines), "-f", str(path)], capture=False)
        except KeyboardInterrupt:
            pass
        return
    content = path.read_text(encoding="utf-8", errors="replace").splitlines()
    for line in content[-lines:]:
        console.print(line, markup=False, highlight=False)


@app.command()
def clean(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Remove the localnet and all workspace data (DESTRUCTIVE)."""
    settings = _settings()
    targets = [
        settings.logs_dir,
        settings.backups_dir,
        settings.results_dir,
        settings.data_dir,
        settings.configs_dir,
        settings.workspace / "dashboard",
    ]
    if not force:
        console.print("[bold red]WARNING: This removes ALL localnet data, logs, backups and configurations![/bold red]")
        if input("Type 'DELETE' to confirm: ").strip() != "DELETE":
            console.print("[yellow]Cleanup cancelled[/yellow]")
            raise typer.Exit(0)
    with _errors():
        LocalnetManager(settings, _mxpy(settings)).reset()
    if settings.dry_run:
        for target in targets:
            console.print(f"[yellow][DRY RUN] would remove {target}[/yellow]")
        return
    for target in targets:
        if target.exists():
            shutil.rmtree(target)
            console.print(f"[dim]Removed {target}[/dim]")
    console.print("[green]All data cleaned up[/green]")


# ==============================================================================
# mxl config - Configuration templates
# ==============================================================================

def _config_manager(settings: LocalnetSettings) -> ConfigManager:
    return ConfigManager(settings.workspace, settings.localnet_dir)


@config_app.command("init")
def config_init():
    """Write the dev, test, production and ci templates."""
    settings = _settings()
    with _errors():
        created = _config_manager(settings).init()
    for path in created:
        console.print(f"[green]Template written: {path}[/green]")


@config_app.command("list")
def config_list():
    """List available templates."""
    settings = _settings()
    with _errors():
        templates = _config_manager(settings).list_templates()
    if not templates:
        console.print("[yellow]No templates found. Run: mxl config init[/yellow]")
        return
    table = Table(title="Configuration Templates", show_header=True, header_style="bold cyan")
    table.add_column("Key")
    table.add_column("Name")
    table.add_column("Type")
    table.add_column("Description")
    for template in templates:
        table.add_row(template.key, template.name, template.type, template.description)
    console.print(table)


@config_app.command("apply")
def config_apply(
    name: str = typer.Argument(..., help="Template key (dev, test, production, ci or a custom one)"),
):
    """
    Make a template the active configuration.

    [bold]Examples:[/bold]
        mxl config apply dev
        mxl config apply my-custom
    """
    settings = _settings()
    with _errors():
        applied = _config_manager(settings).apply(name)
    console.print(f"[green]Template '{applied.name}' applied[/green]")
    if applied.recommended_for:
        console.print(f"[dim]Recommended for: {applied.recommended_for}[/dim]")
    console.print("[dim]Restart the localnet for the change to take effect[/dim]")


@config_app.command("current")
def config_current():
    """Show the active template."""
    settings = _settings()
    with _errors():
        current = _config_manager(settings).current()
    if current is None:
        console.print("[yellow]No active configuration. Run: mxl config apply <template>[/yellow]")
        return
    table = Table(title="Active Configuration", show_header=False)
    table.add_column("Property", style="dim")
    table.add_column("Value")
    table.add_row("Name", current.name)
    table.add_row("Type", current.type)
    table.add_row("Description", current.description)
    table.add_row("Features", ", ".join(current.features) or "-")
    table.add_row("Use cases", ", ".join(current.use_cases) or "-")
    console.print(table)


# ==============================================================================
# mxl backup - Backup and recovery
# ==============================================================================

def _backup_manager(settings: LocalnetSettings, max_backups: int = 10) -> BackupManager:
    mxpy = _mxpy(settings)
    return BackupManager(settings, LocalnetManager(settings, mxpy), max_backups=max_backups, mxpy=mxpy)


@backup_app.command("create")
def backup_create(
    keep: int = typer.Option(10, "--keep", help="Number of archives to keep"),
):
    """Full backup of the localnet directory."""
    settings = _settings()
    with _errors():
        with _spinner("Creating backup..."):
            created = _backup_manager(settings, keep).create_full()
    console.print(f"[green]Backup created: {created.name} ({created.size_mb} MB)[/green]")


@backup_app.command("incremental")
def backup_incremental():
    """Archive only files changed since the last backup."""
    settings = _settings()
    with _errors():
        created = _backup_manager(settings).create_incremental()
    if created is None:
        console.print("[yellow]No changes since the last backup[/yellow]")
    else:
        console.print(f"[green]Backup created: {created.name} ({created.size_mb} MB)[/green]")


@backup_app.command("list")
def backup_list():
    """List backups, newest first."""
    settings = _settings()
    backups = _backup_manager(settings).list_backups()
    if not backups:
        console.print("[yellow]No backups found[/yellow]")
        return
    table = Table(title="Backups", show_header=True, header_style="bold cyan")
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Size (MB)", justify="right")
    table.add_column("Created")
    for item in backups:
        created = item.created.strftime("%Y-%m-%d %H:%M:%S") if item.created else "-"
        table.add_row(item.name, item.kind, str(item.size_mb), created)
    console.print(table)


@backup_app.command("restore")
def backup_restore(
    name: str = typer.Argument(..., help="Backup name (without .tar.gz)"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Restore a backup; the current state is archived first."""
    settings = _settings()
    if not force and not _confirm(f"Restore {name}? The current localnet is archived first."):
        console.print("[yellow]Cancelled[/yellow]")
        raise typer.Exit(0)
    with _errors():
        restored = _backup_manager(settings).restore(name)
    console.print(f"[green]Backup {name} restored into {restored}[/green]")


@backup_app.command("verify")
def backup_verify(
    name: str = typer.Argument(..., help="Backup name (without .tar.gz)"),
):
    """Check that an archive can be read."""
    settings = _settings()
    with _errors():
        count = _backup_manager(settings).verify(name)
    console.print(f"[green]Backup integrity verified: {count} entries[/green]")


@backup_app.command("cleanup")
def backup_cleanup(
    keep: int = typer.Option(10, "--keep", help="Number of archives to keep"),
):
    """Delete the oldest archives beyond --keep."""
    settings = _settings()
    with _errors():
        removed = _backup_manager(settings, keep).cleanup()
    console.print(f"[green]Removed {len(removed)} old backup(s)[/green]")


@backup_app.command("schedule")
def backup_schedule(
    interval: float = typer.Option(24, "--interval", help="Hours between backups"),
    iterations: Optional[int] = typer.Option(None, "--iterations", help="Stop after N backups"),
):
    """Create a full backup every --interval hours (foreground)."""
    settings = _settings()
    try:
        with _errors():
            created = _backup_manager(settings).run_schedule(interval, iterations)
    except KeyboardInterrupt:
        console.print("\n[yellow]Schedule stopped[/yellow]")
        return
    console.print(f"[green]{created} scheduled backup(s) created[/green]")


# ==============================================================================
# mxl security - Smart contract security
# ==============================================================================

@security_app.command("install")
def security_install():
    """Install Mythril, Slither and Aderyn, and write their configs."""
    settings = _settings()
    config_dir, _ = _security_dirs(settings)
    outcome = security_mod.install_tools(dry_run=settings.dry_run)
    security_mod.write_security_configs(config_dir)
    table = Table(title="Security Tools", show_header=True, header_style="bold cyan")
    table.add_column("Tool")
    table.add_column("Result")
    for tool, result in outcome.items():
        style = "green" if result in ("installed", "already installed") else "yellow"
        table.add_row(security_mod.SCANNERS[tool], f"[{style}]{result}[/{style}]")
    console.print(table)


@security_app.command("audit")
def security_audit(
    target: Path = typer.Argument(Path("."), help="Contract file or directory"),
):
    """
    Full audit: rule scan, gas analysis and every installed scanner.

    [bold]Examples:[/bold]
        mxl security audit contracts/
        mxl security audit contracts/counter/src/lib.rs
    """
    settings = _settings()
    config_dir, reports_dir = _security_dirs(settings)
    with _errors():
        result = security_mod.audit(target, reports_dir, config_dir, dry_run=settings.dry_run)
    console.print(f"Rust contracts: {len(result.rust_contracts)}  Solidity contracts: {len(result.solidity_contracts)}")
    console.print(f"Rule findings: {len(result.findings)}")
    for scan in result.scans:
        state = f"[green]{scan.issues} issue(s)[/green]" if scan.ok else f"[yellow]skipped: {scan.error}[/yellow]"
        console.print(f"  {scan.tool} {scan.target}: {state}")
    console.print(f"[green]Audit report: {result.report_path}[/green]")


@security_app.command("quick")
def security_quick(
    target: Path = typer.Argument(Path("."), help="Directory with Rust contracts"),
    limit: int = typer.Option(5, "--limit", help="Maximum contracts to scan"),
):
    """Rule scan of the first few Rust contracts."""
    settings = _settings()
    config_dir, reports_dir = _security_dirs(settings)
    with _errors():
        results = security_mod.quick_scan(target, security_mod.load_rules(config_dir), reports_dir, limit)
    total = 0
    for contract, findings in results.items():
        total += len(findings)
        colour = "green" if not findings else "yellow"
        console.print(f"[{colour}]{contract}: {len(findings)} finding(s)[/{colour}]")
        for finding in findings:
            console.print(f"  \\[{finding.severity}] {finding.rule_id} line {finding.line}: {finding.name}")
    if total:
        raise typer.Exit(1)


def _print_scan(result: security_mod.ScanResult) -> None:
    if not result.ok:
        console.print(f"[red]{result.tool} failed: {result.error}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]{result.tool}: {result.issues} issue(s)[/green]")
    if result.report_path:
        console.print(f"[dim]Report: {result.report_path}[/dim]")


@security_app.command("mythril")
def security_mythril(file: Path = typer.Argument(..., help="Solidity contract")):
    """Run Mythril on a Solidity file."""
    settings = _settings()
    config_dir, reports_dir = _security_dirs(settings)
    with _errors():
        result = security_mod.run_mythril(file, config_dir, reports_dir, dry_run=settings.dry_run)
    _print_scan(result)


@security_app.command("slither")
def security_slither(file: Path = typer.Argument(..., help="Solidity contract")):
    """Run Slither on a Solidity file."""
    settings = _settings()
    config_dir, reports_dir = _security_dirs(settings)
    with _errors():
        result = security_mod.run_slither(file, config_dir, reports_dir, dry_run=settings.dry_run)
    _print_scan(result)


@security_app.command("aderyn")
def security_aderyn(directory: Path = typer.Argument(..., help="Contract directory")):
    """Run Aderyn on a contract directory."""
    settings = _settings()
    _, reports_dir = _security_dirs(settings)
    with _errors():
        result = security_mod.run_aderyn(directory, reports_dir, dry_run=settings.dry_run)
    _print_scan(result)


@security_app.command("gas")
def security_gas(file: Path = typer.Argument(..., help="Rust contract source")):
    """Count gas-expensive constructs and suggest optimisations."""
    settings = _settings()
    _, reports_dir = _security_dirs(settings)
    if not file.is_file():
        console.print(f"[red]Contract file not found: {file}[/red]")
        raise typer.Exit(1)
    result = security_mod.analyze_gas(file)
    output = security_mod.write_gas_report(result, reports_dir)
    table = Table(title=f"Gas Analysis: {file.name}", show_header=True, header_style="bold cyan")
    table.add_column("Construct")
    table.add_column("Count", justify="right")
    table.add_row("Storage operations", str(result.storage_ops))
    table.add_row("External calls", str(result.external_calls))
    table.add_row("Loops", str(result.loops))
    table.add_row("Math operations", str(result.math_ops))
    console.print(table)
    for recommendation in result.recommendations:
        console.print(f"[yellow]- {recommendation}[/yellow]")
    console.print(f"[dim]Report: {output}[/dim]")


@security_app.command("compliance")
def security_compliance(
    max_age: int = typer.Option(30, "--max-age", help="Audits older than this many days do not count"),
):
    """Check scanner availability, recent audits and security workflow."""
    settings = _settings()
    _, reports_dir = _security_dirs(settings)
    result = security_mod.compliance_check(settings.workspace, reports_dir, max_age)
    console.print(result.report_path.read_text(encoding="utf-8"), markup=False)
    if not result.passed:
        raise typer.Exit(1)


@security_app.command("reports")
def security_reports():
    """List generated security reports, newest first."""
    settings = _settings()
    _, reports_dir = _security_dirs(settings)
    reports = security_mod.list_reports(reports_dir)
    if not reports:
        console.print("[yellow]No security reports yet[/yellow]")
        return
    for path in reports:
        console.print(f"{path.name}  [dim]{path.stat().st_size} bytes[/dim]")


# ==============================================================================
# mxl monitor - Metrics and dashboard
# ==============================================================================

def _collector(settings: LocalnetSettings) -> MetricsCollector:
    return MetricsCollector(ProxyClient(settings.proxy_url), settings.data_dir / "metrics")


def _print_sample(record: Dict[str, object]) -> None:
    if record.get("proxy") != "running":
        console.print(f"[red]{record['timestamp']} proxy stopped[/red]")
        return
    data = record.get("status") or {}
    console.print(
        f"[green]{record['timestamp']}[/green] epoch {data.get('erd_epoch_number', 'N/A')}"
        f" round {data.get('erd_round_number', 'N/A')} nonce {data.get('erd_nonce', 'N/A')}"
    )


@monitor_app.command("collect")
def monitor_collect():
    """Take one metrics sample."""
    settings = _settings()
    record = _collector(settings).collect()
    _print_sample(record)
    if record.get("proxy") != "running":
        raise typer.Exit(1)


@monitor_app.command("watch")
def monitor_watch(
    interval: Optional[int] = typer.Option(None, "--interval", help="Seconds between samples (default: METRICS_INTERVAL)"),
    iterations: Optional[int] = typer.Option(None, "--iterations", help="Stop after N samples"),
):
    """Collect samples until interrupted."""
    settings = _settings()
    try:
        _collector(settings).watch(interval or settings.metrics_interval, iterations, on_sample=_print_sample)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


@monitor_app.command("dashboard")
def monitor_dashboard(
    port: Optional[int] = typer.Option(None, "--port", help="Port (default: MONITORING_PORT)"),
    serve: bool = typer.Option(True, "--serve/--no-serve", help="Serve the dashboard after writing it"),
):
    """Write the HTML dashboard and serve it locally."""
    settings = _settings()
    dashboard_dir = settings.workspace / "dashboard"
    summary = summarize_metrics(settings.data_dir / "metrics")
    index = write_dashboard(dashboard_dir, summary, settings.proxy_url)
    console.print(f"[green]Dashboard written to {index}[/green]")
    if not serve:
        return
    port = port or settings.monitoring_port
    console.print(f"[bold]Serving on http://127.0.0.1:{port}/[/bold] [dim](Ctrl+C to stop)[/dim]")
    try:
        serve_dashboard(dashboard_dir, port)
    except OSError as e:
        console.print(f"[red]Cannot serve dashboard on port {port}: {e}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Dashboard stopped[/yellow]")


@monitor_app.command("report")
def monitor_report():
    """Write a Markdown performance report from the collected samples."""
    settings = _settings()
    summary = summarize_metrics(settings.data_dir / "metrics")
    running = LocalnetManager(settings, _mxpy(settings)).status().running
    path = write_performance_report(settings.reports_dir, summary, settings, running)
    console.print(f"[green]Performance report: {path}[/green]")


# ==============================================================================
# mxl stack - Prometheus / Grafana
# ==============================================================================

def _stack(settings: LocalnetSettings) -> MonitoringStack:
    return MonitoringStack(settings.workspace / "monitoring", dry_run=settings.dry_run)


@stack_app.command("setup")
def stack_setup():
    """Generate the compose file and every service config."""
    settings = _settings()
    files = _stack(settings).generate()
    console.print(f"[green]Generated {len(files)} files in {settings.workspace / 'monitoring'}[/green]")


@stack_app.command("up")
def stack_up():
    """Start the monitoring stack."""
    settings = _settings()
    with _errors():
        with _spinner("Starting monitoring stack..."):
            _stack(settings).up()
    table = Table(title="Monitoring Services", show_header=True, header_style="bold cyan")
    table.add_column("Service", style="dim")
    table.add_column("URL")
    for name, url in SERVICES.items():
        table.add_row(name, url)
    console.print(table)
    console.print("[dim]Grafana login: admin / admin[/dim]")


@stack_app.command("down")
def stack_down(
    volumes: bool = typer.Option(False, "--volumes", help="Also remove volumes"),
):
    """Stop the monitoring stack."""
    settings = _settings()
    with _errors():
        _stack(settings).down(volumes=volumes)
    console.print("[green]Monitoring stack stopped[/green]")


@stack_app.command("status")
def stack_status():
    """Container state and service reachability."""
    settings = _settings()
    with _errors():
        output = _stack(settings).ps()
    if output:
        console.print(output, markup=False)
    table = Table(title="Monitoring Services", show_header=True, header_style="bold cyan")
    table.add_column("Service")
    table.add_column("Status")
    table.add_column("URL")
    for name, url in SERVICES.items():
        is_up, _, state = check_health(url)
        table.add_row(name, "[green]UP[/green]" if is_up else f"[red]{state}[/red]", url)
    console.print(table)


@stack_app.command("logs")
def stack_logs(
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow log output"),
    tail: int = typer.Option(100, "--tail", help="Lines per service"),
):
    """Show container logs."""
    settings = _settings()
    try:
        with _errors():
            _stack(settings).logs(follow=follow, tail=tail)
    except KeyboardInterrupt:
        pass


@stack_app.command("metrics")
def stack_metrics(
    prometheus: str = typer.Option(SERVICES["Prometheus"], "--prometheus", help="Prometheus base URL"),
):
    """Ask Prometheus which MultiversX targets are up."""
    _settings()
    with _errors():
        jobs = query_up(prometheus)
    if not jobs:
        console.print("[yellow]No MultiversX targets reported yet[/yellow]")
        return
    table = Table(title="Prometheus Targets", show_header=True, header_style="bold cyan")
    table.add_column("Job")
    table.add_column("State")
    for job, state in sorted(jobs.items()):
        table.add_row(job, "[green]UP[/green]" if state == "UP" else "[red]DOWN[/red]")
    console.print(table)


# ==============================================================================
# mxl bench - Tests and benchmarks
# ==============================================================================

def _require_proxy(settings: LocalnetSettings) -> None:
    is_up, _, state = check_health(f"{settings.proxy_url}/network/config")
    if not is_up and not settings.dry_run:
        console.print(f"[red]Localnet proxy not reachable at {settings.proxy_url} ({state}). Run: mxl start[/red]")
        raise typer.Exit(1)


def _wallets_dir(settings: LocalnetSettings) -> Path:
    return settings.workspace / "wallets"


@bench_app.command("connectivity")
def bench_connectivity():
    """Latency of the core proxy endpoints."""
    settings = _settings()
    checks = bench_mod.connectivity_test(settings.proxy_url, settings.results_dir)
    table = Table(title="Connectivity", show_header=True, header_style="bold cyan")
    table.add_column("Endpoint")
    table.add_column("Status")
    table.add_column("Latency", justify="right")
    for check in checks:
        table.add_row(check.endpoint, "[green]OK[/green]" if check.ok else f"[red]{check.status}[/red]",
                      f"{check.latency_ms}ms")
    console.print(table)
    if not all(c.ok for c in checks):
        raise typer.Exit(1)


@bench_app.command("wallets")
def bench_wallets(
    count: int = typer.Option(10, "--count", help="Number of wallets"),
):
    """Generate test_wallet_<n>.pem files."""
    settings = _settings()
    with _errors():
        wallets = bench_mod.generate_wallets(_mxpy(settings), _wallets_dir(settings), count)
    console.print(f"[green]{len(wallets)} wallets in {_wallets_dir(settings)}[/green]")


def _run_throughput(settings: LocalnetSettings, duration: int, pem: Optional[Path]) -> bench_mod.TxStats:
    mxpy = _mxpy(settings)
    wallets = bench_mod.generate_wallets(mxpy, _wallets_dir(settings), 10)
    receivers = list(bench_mod.wallet_addresses(mxpy, wallets).values()) or [bench_mod.SYSTEM_ADDRESS]
    return bench_mod.throughput_test(
        mxpy, _default_pem(settings, pem), receivers, duration, settings.results_dir,
        proxy=settings.proxy_url, chain=settings.chain_id,
    )


@bench_app.command("throughput")
def bench_throughput(
    duration: int = typer.Option(60, "--duration", help="Seconds to send transactions"),
    pem: Optional[Path] = typer.Option(None, "--pem", help="Sender wallet (default: MX_PEM or alice.pem)"),
):
    """Send transfers for --duration seconds and report TPS."""
    settings = _settings()
    _require_proxy(settings)
    with _errors():
        stats = _run_throughput(settings, duration, pem)
    console.print(f"Transactions: {stats.total}  successful: {stats.successful}  failed: {stats.failed}")
    console.print(f"[bold]TPS: {stats.tps}[/bold]")


@bench_app.command("contract")
def bench_contract(
    bytecode: Path = typer.Argument(..., help="Contract .wasm file"),
    pem: Optional[Path] = typer.Option(None, "--pem", help="Deployer wallet (default: MX_PEM or alice.pem)"),
):
    """Time a contract deployment."""
    settings = _settings()
    _require_proxy(settings)
    try:
        result = bench_mod.contract_deployment_test(
            _mxpy(settings), bytecode, _default_pem(settings, pem), settings.results_dir,
            proxy=settings.proxy_url, chain=settings.chain_id,
        )
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    if not result.success:
        console.print(f"[red]Deployment failed: {result.error}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Deployed in {result.duration}s[/green]")


@bench_app.command("stress")
def bench_stress(
    streams: int = typer.Option(10, "--streams", help="Concurrent transaction streams"),
    tx_per_stream: int = typer.Option(20, "--tx", help="Transactions per stream"),
):
    """Parallel transfer streams between generated wallets."""
    settings = _settings()
    _require_proxy(settings)
    with _errors():
        mxpy = _mxpy(settings)
        wallets = bench_mod.generate_wallets(mxpy, _wallets_dir(settings), streams)
        result = bench_mod.stress_test(
            mxpy, bench_mod.wallet_addresses(mxpy, wallets), settings.results_dir,
            proxy=settings.proxy_url, chain=settings.chain_id, streams=streams, tx_per_stream=tx_per_stream,
        )
    console.print(f"Streams: {result.streams}  transactions: {result.stats.total}  failed: {result.stats.failed}")
    console.print(f"[bold]TPS: {result.stats.tps}[/bold]")


@bench_app.command("all")
def bench_all(
    duration: int = typer.Option(60, "--duration", help="Throughput test duration in seconds"),
    pem: Optional[Path] = typer.Option(None, "--pem", help="Sender wallet (default: MX_PEM or alice.pem)"),
    bytecode: Optional[Path] = typer.Option(None, "--bytecode", help="Also time deploying this .wasm"),
):
    """Run connectivity, throughput, deployment and stress tests, then write a report."""
    settings = _settings()
    _require_proxy(settings)
    bench_mod.connectivity_test(settings.proxy_url, settings.results_dir)
    with _errors():
        stats = _run_throughput(settings, duration, pem)
        console.print(f"Throughput: {stats.tps} TPS")
        mxpy = _mxpy(settings)
        if bytecode is not None:
            try:
                deployed = bench_mod.contract_deployment_test(
                    mxpy, bytecode, _default_pem(settings, pem), settings.results_dir,
                    proxy=settings.proxy_url, chain=settings.chain_id,
                )
            except FileNotFoundError as e:
                console.print(f"[red]{e}[/red]")
                raise typer.Exit(1)
            console.print(f"Deployment: {'ok' if deployed.success else 'failed'} in {deployed.duration}s")
        wallets = bench_mod.generate_wallets(mxpy, _wallets_dir(settings), 10)
        stress_result = bench_mod.stress_test(
            mxpy, bench_mod.wallet_addresses(mxpy, wallets), settings.results_dir,
            proxy=settings.proxy_url, chain=settings.chain_id,
        )
        console.print(f"Stress: {stress_result.stats.tps} TPS")
    path = bench_mod.write_test_report(settings.results_dir, settings.proxy_url, _mxpy(settings).version())
    console.print(f"[green]Test report: {path}[/green]")


# ==============================================================================
# mxl simulator - Multi-node chain simulator
# ==============================================================================

def _simulator(settings: LocalnetSettings) -> simulator_mod.ChainSimulator:
    return simulator_mod.ChainSimulator(settings.workspace / "simulator", dry_run=settings.dry_run)


@simulator_app.command("setup")
def simulator_setup(
    nodes: int = typer.Option(4, "--nodes", help="Number of nodes to simulate"),
    shards: int = typer.Option(2, "--shards", help="Number of shards"),
):
    """Write the compose project, node configs and bundled scenarios."""
    settings = _settings()
    with _errors():
        sim = _simulator(settings)
        layout = simulator_mod.SimulatorLayout(nodes=nodes, shards=shards)
        sim.generate(layout)
    last_port = layout.rest_port(layout.nodes - 1)
    console.print(Panel(
        f"Nodes: {layout.nodes}\nShards: {layout.shards}\nProxy: {sim.proxy_url}\n"
        f"Node APIs: http://localhost:{simulator_mod.REST_BASE_PORT}-{last_port}",
        title="Simulator setup completed",
        border_style="green",
    ))


@simulator_app.command("start")
def simulator_start(
    no_wait: bool = typer.Option(False, "--no-wait", help="Return without waiting for the proxy"),
    timeout: int = typer.Option(60, "--timeout", help="Seconds to wait for the proxy"),
):
    """Start the simulator containers (runs setup first when needed)."""
    settings = _settings()
    with _errors():
        sim = _simulator(settings)
        sim.start(wait=not no_wait, timeout=timeout)
    console.print("[green]Chain simulator started[/green]")
    console.print(f"  Proxy API:  {sim.proxy_url}")
    console.print(f"  Node 0 API: http://localhost:{simulator_mod.REST_BASE_PORT}")
    console.print(f"  Metrics:    http://localhost:{simulator_mod.METRICS_PORT}")


@simulator_app.command("stop")
def simulator_stop():
    """Stop the simulator containers."""
    settings = _settings()
    with _errors():
        _simulator(settings).down()
    console.print("[green]Simulator stopped[/green]")


@simulator_app.command("restart")
def simulator_restart(
    timeout: int = typer.Option(60, "--timeout", help="Seconds to wait for the proxy"),
):
    """Stop, then start the simulator."""
    settings = _settings()
    with _errors():
        sim = _simulator(settings)
        sim.down()
        sim.start(timeout=timeout)
    console.print("[green]Chain simulator restarted[/green]")


@simulator_app.command("status")
def simulator_status():
    """Container state and the simulator proxy's network status."""
    settings = _settings()
    with _errors():
        sim = _simulator(settings)
        output = sim.ps()
    if output:
        console.print(output, markup=False)
    try:
        network = ProxyClient(sim.proxy_url).network_status()
    except MxLocalnetError as e:
        console.print(f"[yellow]Proxy not responding: {e}[/yellow]")
        return
    table = Table(title="Simulator Network", show_header=True, header_style="bold cyan")
    table.add_column("Metric")
    table.add_column("Value")
    for key, value in sorted(network.items()):
        table.add_row(key, str(value))
    console.print(table)


@simulator_app.command("logs")
def simulator_logs(
    follow: bool = typer.Option(False, "--follow", "-f", help="Follow log output"),
    tail: int = typer.Option(100, "--tail", help="Lines per service"),
):
    """Show simulator container logs."""
    settings = _settings()
    try:
        with _errors():
            _simulator(settings).logs(follow=follow, tail=tail)
    except KeyboardInterrupt:
        pass


@simulator_app.command("reset")
def simulator_reset(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
):
    """Stop the simulator and wipe node data and logs."""
    settings = _settings()
    if not force and not _confirm("Delete all simulator node data?"):
        console.print("[yellow]Cancelled[/yellow]")
        raise typer.Exit(0)
    with _errors():
        cleared = _simulator(settings).reset()
    for path in cleared:
        console.print(f"[dim]Cleared {path}[/dim]")
    console.print("[green]Simulator state reset. Use 'mxl simulator start' to restart.[/green]")


@simulator_app.command("scenarios")
def simulator_scenarios():
    """List the scenarios in the simulator's scenarios directory."""
    settings = _settings()
    entries = simulator_mod.list_scenarios(_simulator(settings).scenarios_dir)
    if not entries:
        console.print("[yellow]No scenarios found. Run: mxl simulator setup[/yellow]")
        return
    table = Table(title="Scenarios", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="green")
    table.add_column("Description")
    for name, description in entries:
        table.add_row(name, description)
    console.print(table)


def _run_scenario(settings: LocalnetSettings, scenario: Dict, pem: Optional[Path], keep_going: bool) -> None:
    sim = _simulator(settings)
    runner = simulator_mod.ScenarioRunner(
        _mxpy(settings),
        _default_pem(settings, pem),
        _wallets_dir(settings) / "simulator",
        settings.results_dir,
        proxy_url=settings.proxy_url,
        chain=settings.chain_id,
        base_dir=sim.scenarios_dir,
    )
    console.print(f"[bold]Scenario:[/bold] {scenario['name']}")
    if scenario.get("description"):
        console.print(f"[dim]{scenario['description']}[/dim]")
    result = runner.run(scenario, keep_going=keep_going)
    table = Table(title=f"{result.name} ({result.duration}s)", show_header=True, header_style="bold cyan")
    table.add_column("Step", justify="right")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Details")
    colors = {"ok": "green", "failed": "red", "skipped": "yellow"}
    for step in result.steps:
        details = step.detail or ", ".join(f"{key}={value}" for key, value in step.data.items())
        table.add_row(str(step.index), step.action, f"[{colors[step.status]}]{step.status.upper()}[/]", details)
    console.print(table)
    if not result.success:
        raise typer.Exit(1)


@simulator_app.command("run")
def simulator_run(
    name: str = typer.Argument(..., help="Scenario name (see mxl simulator scenarios) or a .json path"),
    pem: Optional[Path] = typer.Option(None, "--pem", help="Funding wallet (default: MX_PEM or alice.pem)"),
    keep_going: bool = typer.Option(False, "--keep-going", help="Run the remaining steps after a failure"),
):
    """Run a JSON test scenario against the proxy."""
    settings = _settings()
    _require_proxy(settings)
    path = Path(name)
    if path.suffix != ".json":
        path = _simulator(settings).scenarios_dir / f"{name}.json"
    with _errors():
        scenario = simulator_mod.load_scenario(path)
    _run_scenario(settings, scenario, pem, keep_going)


@simulator_app.command("load-test")
def simulator_load_test(
    tps: int = typer.Option(50, "--tps", help="Target transactions per second"),
    duration: int = typer.Option(300, "--duration", help="Test duration in seconds"),
    accounts: int = typer.Option(50, "--accounts", help="Accounts to create and fund"),
    pem: Optional[Path] = typer.Option(None, "--pem", help="Funding wallet (default: MX_PEM or alice.pem)"),
):
    """Create accounts, send transfers at --tps for --duration, then measure."""
    settings = _settings()
    _require_proxy(settings)
    with _errors():
        scenario = simulator_mod.load_test_scenario(tps, duration, accounts)
    _run_scenario(settings, scenario, pem, keep_going=False)


@simulator_app.command("stress-test")
def simulator_stress_test(
    pem: Optional[Path] = typer.Option(None, "--pem", help="Funding wallet (default: MX_PEM or alice.pem)"),
):
    """Load test at 200 TPS for 10 minutes."""
    simulator_load_test(tps=200, duration=600, accounts=50, pem=pem)


# ==============================================================================
# mxl contract - sc-meta
# ==============================================================================

@contract_app.command("new")
def contract_new(
    name: str = typer.Argument(..., help="Contract name"),
    template: str = typer.Option("empty", "--template", help="sc-meta template (empty, adder, ...)"),
    path: Path = typer.Option(Path("contracts"), "--path", help="Parent directory"),
):
    """Scaffold a contract with sc-meta."""
    settings = _settings()
    with _errors():
        target = ScMeta(dry_run=settings.dry_run).new(template, name, path)
    console.print(f"[green]Contract created in {target}[/green]")


@contract_app.command("build")
def contract_build(
    contract_dir: Path = typer.Argument(Path("."), help="Contract directory (with Cargo.toml)"),
):
    """Build with `sc-meta all build`."""
    settings = _settings()
    with _errors():
        with _spinner("Building contract..."):
            wasm = ScMeta(dry_run=settings.dry_run).build(contract_dir)
    for path in wasm:
        console.print(f"[green]{path}[/green]")
    if not wasm and not settings.dry_run:
        console.print("[yellow]Build finished but no .wasm found in output/[/yellow]")


@contract_app.command("deploy")
def contract_deploy(
    contract_dir: Path = typer.Argument(Path("."), help="Contract directory"),
    network: str = typer.Option("localnet", "--network", help=f"One of: {', '.join(NETWORKS)}"),
    pem: Optional[Path] = typer.Option(None, "--pem", help="Deployer wallet (default: MX_PEM or alice.pem)"),
    no_build: bool = typer.Option(False, "--no-build", help="Deploy the existing output/*.wasm"),
):
    """
    Build and deploy a contract.

    [bold]Examples:[/bold]
        mxl contract deploy contracts/counter
        mxl contract deploy contracts/counter --network devnet --pem owner.pem
    """
    settings = _settings()
    with _errors():
        bytecode = deploy_contract(
            contract_dir, network, _default_pem(settings, pem), _mxpy(settings), build=not no_build
        )
    console.print(f"[green]Deployed {bytecode.name} to {network}[/green]")


# ==============================================================================
# mxl wallet
# ==============================================================================

@wallet_app.command("new")
def wallet_new(
    outfile: Path = typer.Argument(..., help="PEM file to create"),
):
    """Create a PEM wallet."""
    settings = _settings()
    if outfile.exists():
        console.print(f"[red]{outfile} already exists[/red]")
        raise typer.Exit(1)
    with _errors():
        _mxpy(settings).wallet_new(outfile)
    console.print(f"[green]Wallet written to {outfile}[/green]")


@wallet_app.command("address")
def wallet_address(
    pem: Path = typer.Argument(..., help="PEM wallet"),
):
    """Print the address of a PEM wallet."""
    settings = _settings()
    with _errors():
        address = _mxpy(settings).wallet_pem_address(pem)
    console.print(address)


# ==============================================================================
# mxl sdk - Toolchain
# ==============================================================================

def _tools_table(statuses: List[toolchain.ToolStatus]) -> Table:
    table = Table(title="Toolchain", show_header=True, header_style="bold cyan")
    table.add_column("Tool")
    table.add_column("Status")
    table.add_column("Version")
    table.add_column("Path", style="dim")
    for tool in statuses:
        if tool.installed:
            state = "[green]installed[/green]"
        else:
            state = "[red]missing[/red]" if tool.required else "[yellow]optional[/yellow]"
        table.add_row(tool.name, state, tool.version or "-", tool.path or "-")
    return table


@sdk_app.command("status")
def sdk_status():
    """Show installed tools and record their versions."""
    settings = _settings()
    statuses = toolchain.detect_tools()
    console.print(_tools_table(statuses))
    path = toolchain.record_versions(settings.data_dir / "tool_versions.json", statuses)
    console.print(f"[dim]Versions recorded in {path}[/dim]")


@sdk_app.command("install")
def sdk_install(
    mxpy: bool = typer.Option(False, "--mxpy", help="Install mxpy"),
    rust: bool = typer.Option(False, "--rust", help="Install Rust and the wasm target"),
    sc_meta: bool = typer.Option(False, "--sc-meta", help="Install sc-meta"),
    testwallets: bool = typer.Option(False, "--testwallets", help="Install the test wallets"),
    testnet: bool = typer.Option(False, "--testnet", help="Configure an mxpy testnet env"),
):
    """
    Install toolchain components; without flags installs all of them.

    [bold]Examples:[/bold]
        mxl sdk install
        mxl sdk install --rust --sc-meta
    """
    settings = _settings()
    everything = not any((mxpy, rust, sc_meta, testwallets, testnet))
    runner = _mxpy(settings)
    with _errors():
        if mxpy or everything:
            console.print("[bold]Installing mxpy...[/bold]")
            toolchain.install_mxpy(dry_run=settings.dry_run)
        if rust or everything:
            console.print("[bold]Installing Rust toolchain...[/bold]")
            toolchain.install_rust(dry_run=settings.dry_run)
        if sc_meta or everything:
            console.print("[bold]Installing sc-meta...[/bold]")
            toolchain.install_sc_meta(dry_run=settings.dry_run)
        if testwallets or everything:
            installed = toolchain.install_testwallets(runner)
            console.print("[green]Test wallets installed[/green]" if installed else "[dim]Test wallets present[/dim]")
        if testnet:
            toolchain.configure_testnet_env(runner)
            console.print("[green]mxpy testnet env configured[/green]")
    console.print("[green]Done[/green]")


@sdk_app.command("doctor")
def sdk_doctor():
    """Report missing required tools; exits 1 when any is missing."""
    _settings()
    statuses = toolchain.detect_tools()
    console.print(_tools_table(statuses))
    missing = toolchain.missing_required(statuses)
    if any(s.name == "rustup" and s.installed for s in statuses):
        if toolchain.wasm_target_installed():
            console.print(f"[green]{toolchain.WASM_TARGET} target installed[/green]")
        else:
            console.print(f"[red]{toolchain.WASM_TARGET} target missing. Run: mxl sdk install --rust[/red]")
            missing.append(toolchain.WASM_TARGET)
    if missing:
        console.print(f"[red]Found {len(missing)} critical issue(s): {', '.join(missing)}[/red]")
        console.print("[dim]Run 'mxl sdk install' to fix most issues automatically[/dim]")
        raise typer.Exit(1)
    console.print("[green]No critical issues found[/green]")
    console.print(f"[dim]{toolchain.localnet_proxy_hint(statuses)}[/dim]")


# ==============================================================================
# mxl devops - Terraform and Docker
# ==============================================================================

def _terraform_dir(settings: LocalnetSettings) -> Path:
    return settings.workspace / "devops" / "terraform"


@devops_app.command("init")
def devops_init(
    region: str = typer.Option("us-east-1", "--region", help="AWS region"),
    instance_type: str = typer.Option("t3.medium", "--instance-type", help="EC2 instance type"),
    nodes: int = typer.Option(3, "--nodes", help="Number of hosts"),
):
    """Write terraform files and a Dockerfile under devops/."""
    settings = _settings()
    with _errors():
        files = devops_mod.write_terraform(_terraform_dir(settings), region, instance_type, nodes)
        files.append(devops_mod.write_dockerfile(settings.workspace / "devops"))
    for path in files:
        console.print(f"[green]{path}[/green]")


def _terraform(action: str, auto_approve: bool = False) -> None:
    settings = _settings()
    with _errors():
        devops_mod.terraform(action, _terraform_dir(settings), dry_run=settings.dry_run, auto_approve=auto_approve)


@devops_app.command("plan")
def devops_plan():
    """terraform init + plan."""
    _terraform("init")
    _terraform("plan")


@devops_app.command("apply")
def devops_apply(
    yes: bool = typer.Option(False, "--yes", "-y", help="Pass -auto-approve"),
):
    """terraform apply."""
    _terraform("apply", auto_approve=yes)


@devops_app.command("destroy")
def devops_destroy(
    yes: bool = typer.Option(False, "--yes", "-y", help="Pass -auto-approve"),
):
    """terraform destroy (DESTRUCTIVE)."""
    if not yes and not _confirm("Destroy all terraform-managed infrastructure?"):
        console.print("[yellow]Cancelled[/yellow]")
        raise typer.Exit(0)
    _terraform("destroy", auto_approve=yes)


@devops_app.command("docker-build")
def devops_docker_build(
    tag: str = typer.Option(devops_mod.DEFAULT_IMAGE_TAG, "--tag", "-t", help="Image tag"),
):
    """Build the development image from devops/Dockerfile."""
    settings = _settings()
    with _errors():
        devops_mod.docker_build(
            settings.workspace, settings.workspace / "devops" / "Dockerfile", tag=tag, dry_run=settings.dry_run
        )
    console.print(f"[green]Image {tag} built[/green]")


# ==============================================================================
# Main entry point
# ==============================================================================

def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
