"""Team commands: add, remove, revoke, list."""

from __future__ import annotations

import click
from rich.table import Table

from ..vault import TeamChange
from ._common import confirm_or_abort, console, get_vault, handle_errors


def _print_change(verb: str, change: TeamChange) -> None:
    console.print(f"[green]{verb} {change.member.name}[/] [dim]({change.member.fingerprint})[/]")
    console.print(f"  Re-encrypted {len(change.reencrypted)} state file(s).")
    if change.reencrypted:
        console.print("  [dim]Run `ctx-sync push` to publish the change.[/]")


def register_team_commands(main: click.Group) -> None:
    """Register the team command group."""

    @main.group()
    def team():
        """Share state with team members."""

    @team.command("add")
    @click.option("--name", required=True, help="Team member name.")
    @click.option("--key", "public_key", required=True, help="Their public key (ctx1...).")
    @click.pass_obj
    @handle_errors
    def team_add(obj, name: str, public_key: str):
        """Add a team member and re-encrypt all state for them."""
        _print_change("Added", get_vault(obj).add_member(name, public_key))
        console.print("  [dim]Verify the fingerprint with them out of band.[/]")

    @team.command("remove")
    @click.argument("name")
    @click.pass_obj
    @handle_errors
    def team_remove(obj, name: str):
        """Remove a team member by name."""
        _print_change("Removed", get_vault(obj).remove_member(name))

    @team.command("revoke")
    @click.argument("public_key")
    @click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
    @click.pass_obj
    @handle_errors
    def team_revoke(obj, public_key: str, yes: bool):
        """Revoke a key: it can decrypt none of the state afterwards."""
        confirm_or_abort("Revoke this key and re-encrypt all state?", yes)
        _print_change("Revoked", get_vault(obj).revoke_member(public_key))

    @team.command("list")
    @click.pass_obj
    @handle_errors
    def team_list(obj):
        """List team members."""
        members = get_vault(obj).list_members()
        if not members:
            console.print("[dim]No team members. State is encrypted for you only.[/]")
            return

        table = Table(title="Team members")
        table.add_column("Name", style="cyan")
        table.add_column("Fingerprint")
        table.add_column("Added", style="dim")
        for member in members:
            table.add_row(member.name, member.fingerprint, member.added_at.strftime("%Y-%m-%d"))
        console.print(table)
