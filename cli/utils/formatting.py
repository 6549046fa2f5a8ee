"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.table import Table

console = Console()


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def create_settings_table(summary: dict[str, Any]) -> Table:
    """Create a formatted table of non-secret settings"""
    table = Table(title="Worker Configuration", box=box.ROUNDED)

    table.add_column("Setting", justify="left", style="cyan", no_wrap=True)
    table.add_column("Value", justify="left", style="white")

    for key, value in summary.items():
        table.add_row(key, str(value))

    return table
