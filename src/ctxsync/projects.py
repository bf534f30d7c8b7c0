"""
Project tracking -- the records that land in ``state.enc``.

``track_project`` snapshots a working directory: its canonical path,
the Git branch and remote, whether work is uncommitted or stashed, and
which machine saw it last. Only directories under the user's home are
accepted, and a symlink may not lead outside it.
"""

from __future__ import annotations

import hashlib
import logging
import os
import socket
import uuid
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from .errors import InvalidInputError, NotFoundError
from .models import GitInfo, MachineInfo, Project, ProjectState, StateType, utcnow
from .sync.git import GitClient
from .vault import Vault

logger = logging.getLogger("ctxsync.projects")

UNKNOWN_BRANCH = "unknown"

COMPOSE_FILES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")


class TrackResult(BaseModel):
    """Outcome of ``track_project``."""

    project: Project
    is_new: bool
    env_file_found: bool = False
    compose_file_found: bool = False


def _within(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


def validate_project_path(raw: str, home: Path) -> str:
    """Canonicalise ``raw`` and require it to live under ``home``.

    ``~`` expands to ``home`` (not the process home), relative paths
    resolve against the working directory, and an existing symlink must
    point back inside ``home``.

    Raises:
        InvalidInputError: If the path is empty or escapes ``home``.
    """
    if not raw or not raw.strip():
        raise InvalidInputError("Path cannot be empty.")

    home = Path(os.path.abspath(home))
    text = raw.strip()
    if text == "~":
        text = str(home)
    elif text.startswith("~/"):
        text = str(home / text[2:])
    resolved = Path(os.path.abspath(text))

    if not _within(resolved, home):
        raise InvalidInputError(
            f"Path must be within home directory: {resolved}",
            suggestion=f"Only paths under {home} can be tracked.",
        )

    if resolved.is_symlink():
        target = resolved.resolve()
        if not (_within(target, home) or _within(target, home.resolve())):
            raise InvalidInputError(
                f"Symlink target outside home directory: {resolved} -> {target}"
            )
    return str(resolved)


def detect_git_info(project_path: Path, git_bin: str = "git") -> GitInfo:
    """Branch, origin URL, dirty flag and stash count for a working tree.

    A directory that is not a Git repository reports an unknown branch
    and nothing else.
    """
    git = GitClient(project_path, git_bin=git_bin)
    if not git.is_repo():
        return GitInfo(branch=UNKNOWN_BRANCH)

    origin = git.get_remote("origin")
    status = git.run("status", "--porcelain", check=False)
    stashes = git.run("stash", "list", check=False)
    return GitInfo(
        branch=git.current_branch() or UNKNOWN_BRANCH,
        remote=(origin.url or "") if origin else "",
        has_uncommitted=bool(status.stdout.strip()) if status.returncode == 0 else False,
        stash_count=len(stashes.stdout.splitlines()) if stashes.returncode == 0 else 0,
    )


def machine_info() -> MachineInfo:
    hostname = socket.gethostname()
    return MachineInfo(
        id=hashlib.sha256(hostname.encode("utf-8")).hexdigest()[:16],
        hostname=hostname,
    )


def track_project(
    vault: Vault,
    path: Optional[str] = None,
    name: Optional[str] = None,
) -> TrackResult:
    """Add or refresh the project at ``path`` (default: the cwd).

    Projects are keyed by path; re-tracking keeps the project id and
    replaces everything else.
    """
    project_path = validate_project_path(path or os.getcwd(), vault.context.home)
    root = Path(project_path)
    if not root.is_dir():
        raise InvalidInputError(f"Project directory does not exist: {project_path}")

    state = vault.read(StateType.PROJECTS)
    if not isinstance(state, ProjectState):
        state = ProjectState(machine=machine_info())
    state.machine = machine_info()

    existing = next((p for p in state.projects if p.path == project_path), None)
    project = Project(
        id=existing.id if existing else str(uuid.uuid4()),
        name=(name or "").strip() or root.name,
        path=project_path,
        git=detect_git_info(root),
        last_accessed=utcnow(),
    )
    if existing:
        state.projects[state.projects.index(existing)] = project
    else:
        state.projects.append(project)

    vault.write(StateType.PROJECTS, state)
    logger.info("%s project %s at %s", "Updated" if existing else "Tracking", project.name, project_path)
    return TrackResult(
        project=project,
        is_new=existing is None,
        env_file_found=(root / ".env").exists(),
        compose_file_found=any((root / f).exists() for f in COMPOSE_FILES),
    )


def list_projects(vault: Vault) -> list[Project]:
    state = vault.read(StateType.PROJECTS)
    return list(state.projects) if isinstance(state, ProjectState) else []


def find_project(vault: Vault, name_or_id: str) -> Project:
    """Look a project up by name (case-insensitive) or by id.

    Raises:
        NotFoundError: If nothing is tracked or no project matches.
    """
    state = vault.read(StateType.PROJECTS)
    if not isinstance(state, ProjectState):
        raise NotFoundError(
            "No state file found. Nothing has been tracked yet.",
            suggestion="Track a project with `ctx-sync track` or pull with `ctx-sync pull`.",
        )

    project = state.find(name_or_id)
    if project is None:
        names = ", ".join(p.name for p in state.projects)
        raise NotFoundError(
            f'Project "{name_or_id}" not found.'
            + (f" Available projects: {names}" if names else ""),
            suggestion="Run `ctx-sync list` to see tracked projects.",
        )
    return project
