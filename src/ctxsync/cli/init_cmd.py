"""Setup commands: init, audit."""

from __future__ import annotations

from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from ..audit import read_audit_log
from ..identity import key_path
from ._common import console, get_context, get_vault, handle_errors


def register_init_commands(main: click.Group) -> None:
    """Register init and audit."""

    @main.command()
    @click.option("--remote", default=None, help="Git remote URL (SSH, HTTPS or local path).")
    @click.pass_obj
    @handle_errors
    def init(obj, remote: Optional[str]):
        """Create your encryption key and the sync repository."""
        vault = get_vault(obj)
        result = vault.setup(remote_url=remote)

        lines = [f"Public key: [cyan]{result.public_key}[/]"]
        if result.key_created:
            lines.append(f"Private key: {key_path(vault.context.config_dir)} [dim](0600)[/]")
            lines.append("[yellow]Back up your private key somewhere safe. Without it the state cannot be decrypted.[/]")
        else:
            lines.append("[dim]Existing key kept.[/]")
        lines.append(f"Sync repo: {vault.context.sync_dir}")
        if remote:
            lines.append(f"Remote: {remote}")

        console.print()
        console.print(Panel("\n".join(lines), title="ctx-sync initialised", border_style="green"))
        console.print()

    @main.command()
    @click.option("--limit", default=20, show_default=True, help="Newest entries to show (0 = all).")
    @click.pass_obj
    @handle_errors
    def audit(obj, limit: int):
        """Show the local security audit log."""
        context = get_context(obj)
        entries = read_audit_log(context.config_dir, limit=limit)
        if not entries:
            console.print("[dim]No audit entries yet.[/]")
            return

        table = Table(title="Audit log")
        table.add_column("Time", style="dim")
        table.add_column("Event", style="cyan")
        table.add_column("Detail")
        for entry in entries:
            table.add_row(entry.timestamp[:19], entry.event_type, entry.detail)
        console.print(table)
