"""
Rich terminal UI components for the shellconf CLI.
"""
import sys
from typing import Dict, List

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

# Detect ASCII fallback
try:
    "🔑".encode(sys.stdout.encoding or "utf-8")
    HAS_UNICODE = True
except (UnicodeEncodeError, LookupError):
    HAS_UNICODE = False

ICONS: Dict[str, str] = {
    "key": "🔑",
    "group": "🗂️",
    "profile": "👤",
    "workspace": "🧰",
    "ini": "📄",
    "encrypt": "🔐",
    "protect": "🛡️",
    "sync": "🔄",
    "delete": "🗑️",
    "success": "✅",
    "error": "❌",
    "warn": "⚠️",
    "info": "ℹ️",
    "doctor": "🩺",
    "audit": "📜",
}

ASCII_ICONS: Dict[str, str] = {
    "key": "[KEY]",
    "group": "[GRP]",
    "profile": "[PRF]",
    "workspace": "[WS]",
    "ini": "[INI]",
    "encrypt": "[SEC]",
    "protect": "[PRT]",
    "sync": "[SYN]",
    "delete": "[DEL]",
    "success": "[OK]",
    "error": "[ERR]",
    "warn": "[WARN]",
    "info": "[INF]",
    "doctor": "[DOC]",
    "audit": "[AUD]",
}

def icon(name: str) -> str:
    return ICONS.get(name, "") if HAS_UNICODE else ASCII_ICONS.get(name, "")

console = Console(width=120)
err_console = Console(stderr=True, width=120)

def render_status(action: str, message: str, style: str = "white") -> None:
    """Print a single line status update."""
    i = icon(action)
    console.print(f"{i} [{style}]{message}[/]")

def render_error(message: str) -> None:
    """Print a styled error panel."""
    i = icon("error")
    err_console.print()
    err_console.print(Panel(Text(message, style="red"), border_style="red", expand=False, title=f"{i} ERROR"))

def render_warning(message: str) -> None:
    """Print a styled warning panel."""
    i = icon("warn")
    console.print()
    console.print(Panel(Text(message, style="yellow"), border_style="yellow", expand=False, title=f"{i} WARNING"))

def confirm(prompt_text: str) -> bool:
    """Interactive confirmation prompt."""
    i = icon("warn")
    return typer.confirm(f"{i} {prompt_text}", default=False)

def render_table(title: str, headers: List[str], rows: List[List[str]]) -> None:
    """Render a structured Rich Table."""
    console.print()
    table = Table(
        title=title,
        border_style="cyan",
        header_style="bold magenta",
        show_lines=True,
        box=box.ROUNDED if HAS_UNICODE else box.ASCII
    )

    if headers:
        table.add_column(headers[0], no_wrap=True)
        for h in headers[1:]:
            table.add_column(h, justify="left", overflow="fold")

    for r in rows:
        table.add_row(*r)

    console.print(table)
    console.print()

def build_workspace_tree(name: str, profile_keys: List[str], ssh_confs: Dict[str, List[str]]) -> Tree:
    """Build a tree of a workspace: profile keys and each SSH conf with its sections."""
    tree = Tree(f"[bold magenta]{name}[/]")
    profile = tree.add("[cyan]profile.conf[/]")
    for key in profile_keys:
        profile.add(Text(key))
    if ssh_confs:
        ssh = tree.add("[cyan].ssh[/]")
        for conf, sections in ssh_confs.items():
            node = ssh.add(conf)
            for section in sections:
                node.add(Text(f"[{section}]", style="yellow"))
    return tree

def render_tree(tree: Tree, title: str = "Workspace") -> None:
    """Render a Rich tree layout."""
    console.print(Panel(tree, border_style="magenta", title=title))
