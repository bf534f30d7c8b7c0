"""
Restore -- bring a tracked project back on this machine.

Decrypts the project record, its env vars and mental context, and
rebuilds the commands that would start its services. Those commands
go through the approval gate; ``execute_approved`` only ever runs
what came back approved.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel, Field

from .approval import (
    ApprovalResult,
    PendingCommand,
    PromptFn,
    SelectFn,
    present_for_approval,
)
from .audit import audit_event
from .models import (
    DockerState,
    EnvVars,
    MentalContext,
    Project,
    ProjectMentalContext,
    ServiceState,
    StateType,
)
from .projects import UNKNOWN_BRANCH, find_project
from .sync.git import GitClient
from .vault import Vault

logger = logging.getLogger("ctxsync.restore")

DOCKER_LABEL = "Docker services"
SERVICE_LABEL = "Auto-start services"
COMMAND_TIMEOUT = 120


class CommandFailure(BaseModel):
    command: str
    error: str


class RestoreReport(BaseModel):
    """Everything ``restore_project`` found, decided and ran."""

    project: Project
    pulled: bool = False
    local_path: str
    path_found: bool = True
    path_resolved: bool = False
    branch_checked_out: bool = False
    env_var_count: int = 0
    mental_context: Optional[ProjectMentalContext] = None
    commands: list[PendingCommand] = Field(default_factory=list)
    approval: ApprovalResult = Field(default_factory=ApprovalResult)
    executed: list[str] = Field(default_factory=list)
    failed: list[CommandFailure] = Field(default_factory=list)


def collect_restore_commands(vault: Vault, project_name: str) -> list[PendingCommand]:
    """Commands for the project's auto-start docker services and services."""
    commands: list[PendingCommand] = []

    docker = vault.read(StateType.DOCKER)
    if isinstance(docker, DockerState) and project_name in docker.root:
        project_docker = docker.root[project_name]
        cwd = str(Path(project_docker.compose_file).parent) if project_docker.compose_file else None
        for service in project_docker.services:
            if service.auto_start:
                commands.append(PendingCommand(
                    command=f"docker compose up -d {service.name}",
                    label=DOCKER_LABEL,
                    port=service.port,
                    image=service.image or None,
                    cwd=cwd,
                ))

    services = vault.read(StateType.SERVICES)
    if isinstance(services, ServiceState):
        for service in services.services:
            if service.project == project_name and service.auto_start:
                commands.append(PendingCommand(
                    command=service.command,
                    label=SERVICE_LABEL,
                    port=service.port,
                ))

    return commands


def execute_approved(
    approval: ApprovalResult,
    default_cwd: Optional[str] = None,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    timeout: int = COMMAND_TIMEOUT,
) -> tuple[list[str], list[CommandFailure]]:
    """Run the approved commands, and only those.

    Each command runs through the shell with a timeout. A failing
    command is recorded and the rest still run.

    Returns:
        (executed command strings, failures)
    """
    executed: list[str] = []
    failed: list[CommandFailure] = []

    for cmd in approval.approved:
        cwd = cmd.cwd or default_cwd
        if cwd and not Path(cwd).is_dir():
            failed.append(CommandFailure(command=cmd.command, error=f"Working directory not found: {cwd}"))
            continue
        try:
            result = runner(
                cmd.command,
                shell=True,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            failed.append(CommandFailure(command=cmd.command, error=f"Timed out after {timeout}s"))
            continue
        except OSError as exc:
            failed.append(CommandFailure(command=cmd.command, error=str(exc)))
            continue

        if result.returncode == 0:
            executed.append(cmd.command)
            logger.info("Ran approved command: %s", cmd.command)
        else:
            error = (result.stderr or "").strip() or f"exit status {result.returncode}"
            failed.append(CommandFailure(command=cmd.command, error=error))
            logger.warning("Approved command failed: %s", cmd.command)

    return executed, failed


def resolve_local_path(
    stored_path: str,
    override: Optional[str] = None,
    cwd: Optional[str] = None,
) -> tuple[str, bool]:
    """Where the project lives on this machine.

    An explicit override wins, then the stored path if it exists here,
    then the current directory.

    Returns:
        (effective path, whether it differs from the stored path)
    """
    if override:
        resolved = os.path.abspath(os.path.expanduser(override))
        return resolved, resolved != stored_path
    if Path(stored_path).is_dir():
        return stored_path, False
    return cwd or os.getcwd(), True


def checkout_branch(project_path: str, branch: str, git_bin: str = "git") -> bool:
    """Switch the project's working tree to ``branch``.

    Returns False when the directory is not a Git repo, the branch is
    unknown, or git refuses (e.g. the branch does not exist here).
    """
    if not branch or branch == UNKNOWN_BRANCH or branch.startswith("-"):
        return False
    git = GitClient(Path(project_path), git_bin=git_bin)
    if not git.is_repo():
        return False
    if git.current_branch() == branch:
        return True
    result = git.run("checkout", "--quiet", branch, check=False)
    if result.returncode != 0:
        logger.warning("Could not check out %s in %s: %s", branch, project_path, result.stderr.strip())
        return False
    return True


def restore_project(
    vault: Vault,
    project_name: str,
    interactive: bool = False,
    prompt_fn: Optional[PromptFn] = None,
    select_fn: Optional[SelectFn] = None,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    local_path: Optional[str] = None,
    pull: bool = True,
) -> RestoreReport:
    """Decrypt a project's context and offer to start its services.

    When a remote is configured the latest state is pulled first, with
    conflicts kept local. The project is looked up by name or id.

    Args:
        local_path: Where the project lives on this machine, when that
            differs from the tracked path.
        pull: Pull from the remote before decrypting.

    Raises:
        NotFoundError: If nothing is tracked or the project is unknown.
        DecryptionError: If the local key cannot open the state.
    """
    pulled = False
    if pull and vault.engine.has_remote():
        pulled = vault.engine.pull(interactive=False).pulled

    project = find_project(vault, project_name)
    path_found = Path(project.path).is_dir()
    effective_path, path_resolved = resolve_local_path(project.path, local_path)
    if path_resolved and not local_path:
        logger.warning("Stored path %s not found here, using %s", project.path, effective_path)

    env_vars = vault.read(StateType.ENV_VARS)
    env_var_count = len(env_vars.root.get(project.name, {})) if isinstance(env_vars, EnvVars) else 0

    mental = vault.read(StateType.MENTAL_CONTEXT)
    mental_context = mental.root.get(project.name) if isinstance(mental, MentalContext) else None

    commands = collect_restore_commands(vault, project.name)
    approval = present_for_approval(commands, interactive, prompt_fn, select_fn)
    executed, failed = execute_approved(approval, default_cwd=effective_path, runner=runner)

    branch_checked_out = checkout_branch(effective_path, project.git.branch)

    audit_event(
        vault.context.config_dir,
        "RESTORE",
        f"Restored {project.name}: {len(executed)} command(s) run, "
        f"{len(approval.rejected)} rejected",
    )
    return RestoreReport(
        project=project,
        pulled=pulled,
        local_path=effective_path,
        path_found=path_found,
        path_resolved=path_resolved,
        branch_checked_out=branch_checked_out,
        env_var_count=env_var_count,
        mental_context=mental_context,
        commands=commands,
        approval=approval,
        executed=executed,
        failed=failed,
    )
