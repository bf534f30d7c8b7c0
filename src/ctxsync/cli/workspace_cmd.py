"""Workspace commands: env, service, dir, note."""

from __future__ import annotations

import click
from rich.markup import escape
from rich.table import Table

from ..errors import InvalidInputError
from ..models import Service
from ..workspace import (
    NoteInput,
    add_env_var,
    add_service,
    list_env_vars,
    list_services,
    parse_file_reference,
    parse_link,
    pin_directory,
    pinned_directories,
    remove_env_var,
    remove_recent_directory,
    remove_service,
    top_directories,
    unpin_directory,
    update_note,
    validate_env_key,
    visit_directory,
)
from ._common import console, get_vault, handle_errors


def _read_secret(key: str, from_stdin: bool) -> str:
    if from_stdin:
        value = click.get_text_stream("stdin").read().rstrip("\r\n")
    else:
        value = click.prompt(f"Value for {key}", hide_input=True, default="", show_default=False)
    if not value:
        raise InvalidInputError(f"No value given for {key}.")
    return value


def register_workspace_commands(main: click.Group) -> None:
    """Register the env, service and dir groups and the note command."""

    # -- env ----------------------------------------------------------------

    @main.group()
    def env():
        """Encrypted environment variables."""

    @env.command("add")
    @click.argument("project")
    @click.argument("key")
    @click.option("--stdin", "from_stdin", is_flag=True, help="Read the value from stdin.")
    @click.pass_obj
    @handle_errors
    def env_add(obj, project: str, key: str, from_stdin: bool):
        """Add or replace one variable. The value is never an argument."""
        key = validate_env_key(key)
        add_env_var(get_vault(obj), project, key, _read_secret(key, from_stdin))
        console.print(f"[green]Stored[/] {escape(key)} for {escape(project)} (encrypted)")

    @env.command("remove")
    @click.argument("project")
    @click.argument("key")
    @click.pass_obj
    @handle_errors
    def env_remove(obj, project: str, key: str):
        """Remove one variable."""
        if not remove_env_var(get_vault(obj), project, key):
            raise InvalidInputError(f"{key} is not set for {project}.")
        console.print(f"[green]Removed[/] {escape(key)}")

    @env.command("list")
    @click.argument("project")
    @click.option("--show-values", is_flag=True, help="Print decrypted values.")
    @click.pass_obj
    @handle_errors
    def env_list(obj, project: str, show_values: bool):
        """List a project's variables, values masked by default."""
        entries = list_env_vars(get_vault(obj), project, show_values=show_values)
        if not entries:
            console.print(f"[dim]No env vars for {escape(project)}.[/]")
            return
        for entry in entries:
            console.print(f"{escape(entry.key)}={escape(entry.value)}", highlight=False)

    # -- service ------------------------------------------------------------

    @main.group()
    def service():
        """Per-project service start commands."""

    @service.command("add")
    @click.argument("project")
    @click.argument("name")
    @click.option("--port", type=int, required=True, help="Port the service listens on.")
    @click.option("--command", "command", required=True, help="Command that starts it.")
    @click.option("--auto-start", is_flag=True, help="Offer to start it on restore.")
    @click.pass_obj
    @handle_errors
    def service_add(obj, project: str, name: str, port: int, command: str, auto_start: bool):
        """Add or replace a service."""
        stored = add_service(
            get_vault(obj),
            Service(project=project, name=name, port=port, command=command, auto_start=auto_start),
        )
        console.print(f"[green]Saved service[/] {escape(stored.name)} on port {stored.port}")

    @service.command("remove")
    @click.argument("project")
    @click.argument("name")
    @click.pass_obj
    @handle_errors
    def service_remove(obj, project: str, name: str):
        """Remove a service."""
        if not remove_service(get_vault(obj), project, name):
            raise InvalidInputError(f'No service "{name}" for {project}.')
        console.print(f"[green]Removed service[/] {escape(name)}")

    @service.command("list")
    @click.argument("project", required=False)
    @click.pass_obj
    @handle_errors
    def service_list(obj, project):
        """List services, optionally for one project."""
        services = list_services(get_vault(obj), project)
        if not services:
            console.print("[dim]No services.[/]")
            return

        table = Table(title="Services")
        table.add_column("Project", style="cyan")
        table.add_column("Name")
        table.add_column("Port")
        table.add_column("Command", style="dim")
        table.add_column("Auto-start")
        for svc in services:
            table.add_row(svc.project, svc.name, str(svc.port), svc.command, "yes" if svc.auto_start else "no")
        console.print(table)

    # -- dir ----------------------------------------------------------------

    @main.group("dir")
    def dir_group():
        """Recent and pinned directories."""

    @dir_group.command("visit")
    @click.argument("path", default=".")
    @click.pass_obj
    @handle_errors
    def dir_visit(obj, path: str):
        """Record a visit to a directory."""
        entry = visit_directory(get_vault(obj), path)
        console.print(f"{entry.path} [dim]({entry.frequency} visit(s))[/]", highlight=False)

    @dir_group.command("pin")
    @click.argument("path", default=".")
    @click.pass_obj
    @handle_errors
    def dir_pin(obj, path: str):
        """Pin a directory."""
        if pin_directory(get_vault(obj), path):
            console.print("[green]Pinned.[/]")
        else:
            console.print("[dim]Already pinned.[/]")

    @dir_group.command("unpin")
    @click.argument("path", default=".")
    @click.pass_obj
    @handle_errors
    def dir_unpin(obj, path: str):
        """Unpin a directory."""
        if unpin_directory(get_vault(obj), path):
            console.print("[green]Unpinned.[/]")
        else:
            console.print("[dim]Not pinned.[/]")

    @dir_group.command("remove")
    @click.argument("path")
    @click.pass_obj
    @handle_errors
    def dir_remove(obj, path: str):
        """Forget a directory from the recent list."""
        if not remove_recent_directory(get_vault(obj), path):
            raise InvalidInputError(f"Not in the recent list: {path}")
        console.print("[green]Removed.[/]")

    @dir_group.command("list")
    @click.option("--limit", default=10, show_default=True, help="How many recent directories.")
    @click.pass_obj
    @handle_errors
    def dir_list(obj, limit: int):
        """Show pinned and most-visited directories."""
        vault = get_vault(obj)
        pinned = pinned_directories(vault)
        recent = top_directories(vault, limit)
        if not pinned and not recent:
            console.print("[dim]No directories recorded.[/]")
            return
        if pinned:
            console.print("[bold]Pinned[/]")
            for path in pinned:
                console.print(f"  {path}", highlight=False)
        if recent:
            console.print("[bold]Recent[/]")
            for entry in recent:
                console.print(f"  {entry.path} [dim]({entry.frequency})[/]", highlight=False)

    # -- note ---------------------------------------------------------------

    @main.command()
    @click.argument("project")
    @click.option("--task", "-t", help="What you are working on.")
    @click.option("--blocker", "-b", multiple=True, help="Something in the way (repeatable).")
    @click.option("--next-step", "-s", multiple=True, help="What comes next (repeatable).")
    @click.option("--link", "-l", multiple=True, help='"Title: URL" (repeatable).')
    @click.option("--breadcrumb", "-c", help="A short note to your future self.")
    @click.option("--file", "-f", "file_ref", help="file[:line[:col]] you were in.")
    @click.option("--file-description", default="", help="What you were doing in --file.")
    @click.pass_obj
    @handle_errors
    def note(obj, project, task, blocker, next_step, link, breadcrumb, file_ref, file_description):
        """Update a project's mental context."""
        context = update_note(
            get_vault(obj),
            project,
            NoteInput(
                current_task=task,
                blockers=list(blocker),
                next_steps=list(next_step),
                related_links=[parse_link(text) for text in link if text.strip()],
                breadcrumb=breadcrumb,
                last_working_on=parse_file_reference(file_ref, file_description) if file_ref else None,
            ),
        )
        console.print(f"[green]Context updated[/] for {escape(project)} (encrypted)")
        if context.current_task:
            console.print(f"  Task: {escape(context.current_task)}")
        console.print(
            f"  {len(context.blockers)} blocker(s), {len(context.next_steps)} next step(s)",
        )
