"""Restore command: decrypt a project's context and offer its commands."""

from __future__ import annotations

import click
from rich.markup import escape

from ..approval import ApprovalChoice, PendingCommand, format_commands_for_display
from ..models import ProjectMentalContext
from ..restore import restore_project
from ._common import console, get_vault, handle_errors, is_interactive


def format_mental_context(context: ProjectMentalContext) -> str:
    lines: list[str] = []
    if context.current_task:
        lines.append("You were working on:")
        lines.append(f'   "{context.current_task}"')
    if context.last_working_on:
        loc = context.last_working_on
        lines.append(f"   Last file: {loc.file}:{loc.line}")
        if loc.description:
            lines.append(f"   {loc.description}")
    if context.blockers:
        lines.append("   Blockers:")
        lines.extend(f"   - {b.description}" for b in context.blockers)
    if context.next_steps:
        lines.append("   Next steps:")
        lines.extend(f"   - {step}" for step in context.next_steps)
    if context.related_links:
        lines.append("   Related:")
        lines.extend(f"   - {link.title}: {link.url}" for link in context.related_links)
    if context.breadcrumbs:
        lines.append("   Breadcrumbs:")
        lines.extend(f"   - {crumb.note}" for crumb in context.breadcrumbs)
    return "\n".join(lines)


def _prompt(commands: list[PendingCommand]) -> ApprovalChoice:
    console.print("\nThe following commands will be executed:")
    console.print(format_commands_for_display(commands), highlight=False, markup=False)
    answer = click.prompt(
        "Execute these commands? [all/none/select]",
        type=click.Choice([c.value for c in ApprovalChoice]),
        default=ApprovalChoice.NONE.value,
        show_choices=False,
    )
    return ApprovalChoice(answer)


def _select(cmd: PendingCommand, index: int) -> bool:
    return click.confirm(f"  {index}. {cmd.command}", default=False)


def register_restore_commands(main: click.Group) -> None:
    """Register restore."""

    @main.command()
    @click.argument("project")
    @click.option("--no-interactive", is_flag=True, help="Show commands but never run them.")
    @click.option("--path", "local_path", type=click.Path(file_okay=False), help="Where the project lives on this machine.")
    @click.option("--no-pull", is_flag=True, help="Skip pulling the latest state first.")
    @click.pass_obj
    @handle_errors
    def restore(obj, project: str, no_interactive: bool, local_path, no_pull: bool):
        """Restore a tracked project (by name or id) on this machine."""
        interactive = is_interactive(no_interactive)
        report = restore_project(
            get_vault(obj),
            project,
            interactive=interactive,
            prompt_fn=_prompt if interactive else None,
            select_fn=_select if interactive else None,
            local_path=local_path,
            pull=not no_pull,
        )

        if report.pulled:
            console.print("[dim]Pulled latest state from the remote.[/]")
        console.print(f"\n[green]Restored:[/] {escape(report.project.name)}")
        console.print(f"Directory: {report.local_path}", highlight=False)
        if not report.path_found and not local_path:
            console.print("  [yellow]Tracked path not found here, using this directory instead.[/]")
        branch = report.project.git.branch or "-"
        suffix = " (checked out)" if report.branch_checked_out else ""
        console.print(f"Branch: {escape(branch)}{suffix}")
        console.print(f"Env vars: {report.env_var_count} decrypted")

        if report.mental_context:
            console.print()
            console.print(format_mental_context(report.mental_context), highlight=False, markup=False)

        if report.approval.skipped_all:
            console.print()
            console.print(format_commands_for_display(report.commands), highlight=False, markup=False)
            console.print("[yellow]Commands not run (non-interactive mode).[/]")
        for command in report.executed:
            console.print(f"[green]ran[/] {escape(command)}", highlight=False)
        for failure in report.failed:
            console.print(f"[red]failed[/] {escape(failure.command)}: {escape(failure.error)}", highlight=False)
