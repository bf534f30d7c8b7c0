"""Key commands: show, verify, rotate, update."""

from __future__ import annotations

import sys
from typing import Optional

import click
from rich.markup import escape

from ..identity import verify_permissions
from ..recipients import compute_fingerprint
from ._common import confirm_or_abort, console, get_context, get_vault, handle_errors


def register_key_commands(main: click.Group) -> None:
    """Register the key command group."""

    @main.group()
    def key():
        """Manage your encryption key."""

    @key.command("show")
    @click.pass_obj
    @handle_errors
    def key_show(obj):
        """Print your public key (safe to share)."""
        public_key = get_vault(obj).public_key
        console.print(public_key, highlight=False, soft_wrap=True)
        console.print(f"[dim]Fingerprint: {compute_fingerprint(public_key)}[/]")

    @key.command("verify")
    @click.pass_obj
    @handle_errors
    def key_verify(obj):
        """Check key file and config directory permissions."""
        report = verify_permissions(get_context(obj).config_dir)
        if report.valid:
            console.print("[green]Key file and config directory permissions are secure.[/]")
            return
        for issue in report.issues:
            console.print(f"[red]-[/] {escape(issue)}", highlight=False, soft_wrap=True)
        sys.exit(1)

    @key.command("rotate")
    @click.option("--yes", is_flag=True, help="Do not ask for confirmation.")
    @click.option("--keep-history", is_flag=True, help="Do not squash sync repo history.")
    @click.pass_obj
    @handle_errors
    def key_rotate(obj, yes: bool, keep_history: bool):
        """Generate a new key and re-encrypt all state for it."""
        confirm_or_abort(
            "Rotate your encryption key? Team members keep access; other "
            "machines need the new private key.",
            yes,
        )
        result = get_vault(obj).rotate_key(rewrite_history=not keep_history)
        console.print(f"[green]Key rotated.[/] {len(result.reencrypted)} file(s) re-encrypted.")
        console.print(f"New public key: [cyan]{result.new_public_key}[/]", soft_wrap=True)
        if result.history_rewritten:
            console.print(
                "[yellow]Sync history was rewritten.[/] Publish it with: ctx-sync push --force"
            )
        console.print("[dim]Copy the new private key to your other machines with `ctx-sync key update`.[/]")

    @key.command("update")
    @click.option("--key-file", type=click.File("r"), default=None, help="Read the private key from a file.")
    @click.pass_obj
    @handle_errors
    def key_update(obj, key_file: Optional[click.File]):
        """Install an existing private key (e.g. from another machine)."""
        if key_file is not None:
            text = key_file.read()
        else:
            text = click.prompt("Private key", hide_input=True)
        public_key = get_vault(obj).restore_key(text)
        console.print(f"[green]Key installed.[/] Public key: [cyan]{public_key}[/]", soft_wrap=True)
