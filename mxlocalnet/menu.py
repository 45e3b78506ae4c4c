"""
Interactive numbered menu over the CLI commands.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, NamedTuple, Optional, Tuple

from rich.console import Console
from rich.table import Table

from .errors import MxLocalnetError

LOGGER = logging.getLogger(__name__)


class MenuEntry(NamedTuple):
    key: str
    label: str
    action: str


MENU = (
    MenuEntry("1", "Setup & start localnet", "start"),
    MenuEntry("2", "Stop localnet", "stop"),
    MenuEntry("3", "Reset localnet", "reset"),
    MenuEntry("4", "Monitoring dashboard", "dashboard"),
    MenuEntry("5", "Tests & benchmarks", "bench"),
    MenuEntry("6", "Configuration templates", "config"),
    MenuEntry("7", "Backup & recovery", "backup"),
    MenuEntry("8", "Network status", "status"),
    MenuEntry("9", "Faucet", "faucet"),
    MenuEntry("10", "View logs", "logs"),
    MenuEntry("11", "Cleanup", "clean"),
    MenuEntry("0", "Exit", "exit"),
)


SUBMENUS: Dict[str, Tuple[str, Tuple[MenuEntry, ...]]] = {
    "dashboard": ("Monitoring Dashboard", (
        MenuEntry("1", "Start web dashboard", "dashboard.web"),
        MenuEntry("2", "Start metrics collection", "dashboard.monitor"),
        MenuEntry("3", "Generate performance report", "dashboard.report"),
    )),
    "bench": ("Testing & Benchmarks", (
        MenuEntry("1", "Full test suite", "bench.all"),
        MenuEntry("2", "Connectivity test only", "bench.connectivity"),
        MenuEntry("3", "Throughput benchmark", "bench.throughput"),
        MenuEntry("4", "Smart contract deployment test", "bench.contract"),
        MenuEntry("5", "Network stress test", "bench.stress"),
    )),
    "config": ("Configuration Manager", (
        MenuEntry("1", "Initialize default templates", "config.init"),
        MenuEntry("2", "List available templates", "config.list"),
        MenuEntry("3", "Apply template", "config.apply"),
        MenuEntry("4", "View current configuration", "config.current"),
    )),
    "backup": ("Backup & Recovery", (
        MenuEntry("1", "Create full backup", "backup.create"),
        MenuEntry("2", "Create incremental backup", "backup.incremental"),
        MenuEntry("3", "List backups", "backup.list"),
        MenuEntry("4", "Restore from backup", "backup.restore"),
        MenuEntry("5", "Verify backup", "backup.verify"),
        MenuEntry("6", "Schedule automatic backups", "backup.schedule"),
    )),
}


def render_menu(running: bool) -> Table:
    state = "[green]RUNNING[/green]" if running else "[red]STOPPED[/red]"
    table = Table(title=f"MultiversX Localnet Manager  (localnet {state})", show_header=False)
    table.add_column("Key", style="cyan", justify="right")
    table.add_column("Action")
    for entry in MENU:
        table.add_row(entry.key, entry.label)
    return table


def render_submenu(name: str) -> Table:
    title, entries = SUBMENUS[name]
    table = Table(title=title, show_header=False)
    table.add_column("Key", style="cyan", justify="right")
    table.add_column("Action")
    for entry in entries:
        table.add_row(entry.key, entry.label)
    return table


def _available(action: str, actions: Dict[str, Callable[[], None]]) -> bool:
    if action in SUBMENUS:
        return any(entry.action in actions for entry in SUBMENUS[action][1])
    return action in actions


def _choose(
    name: str,
    actions: Dict[str, Callable[[], None]],
    prompt: Callable[[str], str],
    console: Console,
) -> Optional[str]:
    """Show the second-level menu for name; returns the chosen action or None."""
    entries = SUBMENUS[name][1]
    console.print(render_submenu(name))
    choice = prompt(f"Select [1-{len(entries)}]: ").strip()
    for entry in entries:
        if entry.key == choice and entry.action in actions:
            return entry.action
    console.print(f"[red]Invalid option: {choice or '(empty)'}[/red]")
    return None


def run_menu(
    actions: Dict[str, Callable[[], None]],
    prompt: Callable[[str], str] = input,
    is_running: Callable[[], bool] = lambda: False,
    console: Optional[Console] = None,
) -> int:
    """
    Loop until the user picks 0 (or closes stdin); returns the number of actions run.

    Dashboard, tests, configuration and backup open a second-level menu whose
    actions are keyed "<area>.<item>", e.g. "backup.restore". Errors raised by
    an action are printed and the menu keeps going.
    """
    console = console or Console()
    by_key = {entry.key: entry for entry in MENU}
    executed = 0
    while True:
        console.print(render_menu(is_running()))
        try:
            choice = prompt("Select option [0-11]: ").strip()
            entry = by_key.get(choice)
            if entry is None or (entry.action != "exit" and not _available(entry.action, actions)):
                console.print(f"[red]Invalid option: {choice or '(empty)'}[/red]")
                continue
            if entry.action == "exit":
                return executed
            action = entry.action
            if action in SUBMENUS:
                action = _choose(action, actions, prompt, console)
                if action is None:
                    continue
        except EOFError:
            return executed
        try:
            actions[action]()
        except (MxLocalnetError, ValueError) as exc:
            console.print(f"[red]{exc}[/red]")
        executed += 1
