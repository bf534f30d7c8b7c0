"""Config commands: show, set, remote."""

from __future__ import annotations

import click
from rich.table import Table

from ..config import set_setting
from ._common import console, get_context, get_vault, handle_errors


def register_config_commands(main: click.Group) -> None:
    """Register the config command group."""

    @main.group()
    def config():
        """Local settings and the sync remote."""

    @config.command("show")
    @click.pass_obj
    @handle_errors
    def config_show(obj):
        """Show the effective settings."""
        vault = get_vault(obj)
        context = vault.context
        remote = vault.engine.git.get_remote(context.remote_name) if vault.engine.git.is_repo() else None

        table = Table(title="ctx-sync settings", show_header=False)
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        table.add_row("config_dir", str(context.config_dir))
        table.add_row("sync_dir", str(context.sync_dir))
        table.add_row("remote_name", context.remote_name)
        table.add_row("branch", context.branch)
        table.add_row("remote_url", (remote.url if remote else None) or "[dim]not set[/]")
        console.print(table)

    @config.command("set")
    @click.argument("key", type=click.Choice(["remote_name", "branch", "sync_dir"]))
    @click.argument("value")
    @click.pass_obj
    @handle_errors
    def config_set(obj, key: str, value: str):
        """Persist one setting to config.yaml."""
        updated = set_setting(get_context(obj), key, value)
        console.print(f"[green]{key}[/] = {getattr(updated, key)}", highlight=False)
        console.print(f"  [dim]Saved to {updated.settings_file}[/]", highlight=False)

    @config.command("remote")
    @click.argument("url")
    @click.pass_obj
    @handle_errors
    def config_remote(obj, url: str):
        """Attach or change the Git remote of the sync repository."""
        vault = get_vault(obj)
        vault.engine.set_remote(url)
        console.print(f"[green]Remote {vault.context.remote_name}[/] -> {url}", highlight=False)
        console.print("  [dim]Run `ctx-sync sync` to pull and push.[/]")
