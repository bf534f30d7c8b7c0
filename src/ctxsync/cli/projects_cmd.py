"""Project commands: track, list."""

from __future__ import annotations

import click
from rich.markup import escape
from rich.table import Table

from ..projects import list_projects, track_project
from ._common import console, get_vault, handle_errors


def register_project_commands(main: click.Group) -> None:
    """Register track and list."""

    @main.command()
    @click.option("--path", "path", type=click.Path(file_okay=False), help="Project directory (default: current).")
    @click.option("--name", help="Project name (default: directory name).")
    @click.pass_obj
    @handle_errors
    def track(obj, path, name):
        """Track a project: path, git branch and machine, encrypted."""
        result = track_project(get_vault(obj), path=path, name=name)
        project = result.project

        verb = "Tracking" if result.is_new else "Updated"
        console.print(f"[green]{verb}[/] {escape(project.name)} [dim]({project.id})[/]")
        console.print(f"  Directory: {project.path}", highlight=False)
        git = project.git
        line = f"  Branch: {escape(git.branch)}"
        if git.has_uncommitted:
            line += " [yellow](uncommitted changes)[/]"
        if git.stash_count:
            line += f" [dim]{git.stash_count} stash(es)[/]"
        console.print(line)
        if result.env_file_found:
            console.print(
                "  [dim].env found. Add variables with "
                f"`ctx-sync env add {escape(project.name)} KEY`.[/]"
            )
        if result.compose_file_found:
            console.print("  [dim]Docker Compose file found.[/]")
        console.print("  [dim]Run `ctx-sync push` to publish.[/]")

    @main.command("list")
    @click.pass_obj
    @handle_errors
    def list_cmd(obj):
        """List tracked projects."""
        projects = list_projects(get_vault(obj))
        if not projects:
            console.print("[dim]No projects tracked. Run `ctx-sync track` in a project directory.[/]")
            return

        table = Table(title="Tracked projects")
        table.add_column("Name", style="cyan")
        table.add_column("Branch")
        table.add_column("Path", style="dim")
        table.add_column("Last accessed", style="dim")
        for project in projects:
            table.add_row(
                project.name,
                project.git.branch or "-",
                project.path,
                project.last_accessed.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)
