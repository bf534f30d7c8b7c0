"""Sync commands: push, pull, sync, status."""

from __future__ import annotations

import click
from rich.markup import escape
from rich.panel import Panel

from ..sync import SyncEngine
from ..sync.models import ConflictSide, PullResult, PushResult
from ._common import console, get_context, handle_errors, is_interactive


def _choose_side(path: str) -> ConflictSide:
    answer = click.prompt(
        f"Conflict in {path}: keep local (ours) or remote (theirs)?",
        type=click.Choice([s.value for s in ConflictSide]),
        default=ConflictSide.OURS.value,
    )
    return ConflictSide(answer)


def _print_push(result: PushResult) -> None:
    if result.committed:
        console.print(f"[green]Committed[/] {result.file_count} file(s).")
    else:
        console.print("[dim]Nothing new to commit.[/]")
    if result.pushed:
        console.print("[green]Pushed to remote.[/]")
    elif not result.has_remote:
        console.print("[yellow]No remote configured.[/] State committed locally only.")


def _print_pull(result: PullResult) -> None:
    console.print(f"Pull: [cyan]{result.outcome.value if result.outcome else 'none'}[/]")
    if result.had_conflicts:
        console.print(f"[yellow]{len(result.conflict_files)} conflict(s) resolved:[/]")
        for path in result.conflict_files:
            side = result.resolutions.get(path)
            console.print(f"  {path}: {side.value if side else 'reconciled'}", highlight=False)
    console.print(f"[dim]{result.state_file_count} state file(s) present.[/]")


def register_sync_commands(main: click.Group) -> None:
    """Register push, pull, sync and status."""

    @main.command()
    @click.option("--force", is_flag=True, help="Overwrite the remote branch (after a key rotation).")
    @click.pass_obj
    @handle_errors
    def push(obj, force: bool):
        """Commit encrypted state and push it."""
        _print_push(SyncEngine(get_context(obj)).push(force=force))

    @main.command()
    @click.option("--no-interactive", is_flag=True, help="Keep local versions of conflicting files.")
    @click.pass_obj
    @handle_errors
    def pull(obj, no_interactive: bool):
        """Fetch remote state and merge it, whole-file."""
        interactive = is_interactive(no_interactive)
        result = SyncEngine(get_context(obj)).pull(
            interactive=interactive,
            choose=_choose_side if interactive else None,
        )
        _print_pull(result)

    @main.command("sync")
    @click.option("--no-interactive", is_flag=True, help="Keep local versions of conflicting files.")
    @click.pass_obj
    @handle_errors
    def sync_cmd(obj, no_interactive: bool):
        """Pull, then push."""
        interactive = is_interactive(no_interactive)
        result = SyncEngine(get_context(obj)).sync(
            interactive=interactive,
            choose=_choose_side if interactive else None,
        )
        if result.pull is not None:
            _print_pull(result.pull)
        _print_push(result.push)

    @main.command()
    @click.pass_obj
    @handle_errors
    def status(obj):
        """Show sync repository status."""
        context = get_context(obj)
        st = SyncEngine(context).status()
        if not st.is_repo:
            console.print("[yellow]No sync repository.[/] Run `ctx-sync init` first.")
            return

        remote = escape(st.remote_url or "") if st.has_remote else "[yellow]none[/]"
        changes = "[green]clean[/]" if st.is_clean else f"[yellow]{len(st.files)} changed[/]"
        console.print(
            Panel(
                f"Branch: [cyan]{st.branch or '-'}[/]\n"
                f"Remote: {remote}\n"
                f"Working tree: {changes}\n"
                f"Ahead: {st.ahead}  Behind: {st.behind}\n"
                f"State files: {escape(', '.join(st.state_files)) or '[dim]none[/]'}",
                title="ctx-sync status",
                border_style="magenta",
            )
        )
