"""
Workspace handlers -- env vars, services, directories and notes.

Each handler is a read-modify-write of one encrypted state file
through the Vault, so every change is re-encrypted for the whole
recipient set. Nothing here commits or pushes; that stays an
explicit ``ctx-sync push``.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from pydantic import BaseModel, Field

from .errors import InvalidInputError
from .models import (
    Blocker,
    Breadcrumb,
    DirectoryState,
    EnvVarEntry,
    EnvVars,
    MentalContext,
    ProjectMentalContext,
    RecentDirectory,
    RelatedLink,
    Service,
    ServiceState,
    StateType,
    WorkingLocation,
    utcnow,
)
from .projects import find_project, validate_project_path
from .vault import Vault

logger = logging.getLogger("ctxsync.workspace")

MASKED_VALUE = "********"
MAX_RECENT_DIRS = 50

_ENV_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*$")


# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------


class ListedEnvVar(BaseModel):
    key: str
    value: str
    added_at: str


def validate_env_key(key: str) -> str:
    """Reject ``KEY=value`` arguments and malformed names.

    Secret values never travel as command-line arguments, where shell
    history and process listings would keep them.
    """
    key = (key or "").strip()
    if "=" in key and key.split("=", 1)[1]:
        name = key.split("=", 1)[0]
        raise InvalidInputError(
            "Cannot pass secret values as CLI arguments.",
            suggestion=f"Enter the value at the prompt, or pipe it: echo VALUE | ctx-sync env add PROJECT {name} --stdin",
        )
    key = key.rstrip("=")
    if not _ENV_KEY.match(key):
        raise InvalidInputError(f"Invalid environment variable name: {key!r}")
    return key


def _env_vars(vault: Vault) -> EnvVars:
    env = vault.read(StateType.ENV_VARS)
    return env if isinstance(env, EnvVars) else EnvVars()


def import_env_vars(vault: Vault, project: str, values: dict[str, str]) -> int:
    """Merge ``values`` into the project's variables; existing keys are replaced."""
    env = _env_vars(vault)
    bucket = env.root.setdefault(project, {})
    now = utcnow()
    for key, value in values.items():
        bucket[validate_env_key(key)] = EnvVarEntry(value=value, added_at=now)
    vault.write(StateType.ENV_VARS, env)
    logger.info("Stored %d env var(s) for %s", len(values), project)
    return len(values)


def add_env_var(vault: Vault, project: str, key: str, value: str) -> None:
    import_env_vars(vault, project, {key: value})


def remove_env_var(vault: Vault, project: str, key: str) -> bool:
    env = _env_vars(vault)
    bucket = env.root.get(project, {})
    if key not in bucket:
        return False
    del bucket[key]
    if not bucket:
        del env.root[project]
    vault.write(StateType.ENV_VARS, env)
    return True


def list_env_vars(vault: Vault, project: str, show_values: bool = False) -> list[ListedEnvVar]:
    """The project's variables, values masked unless ``show_values``."""
    bucket = _env_vars(vault).root.get(project, {})
    return [
        ListedEnvVar(
            key=key,
            value=entry.value if show_values else MASKED_VALUE,
            added_at=entry.added_at.isoformat(),
        )
        for key, entry in bucket.items()
    ]


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def validate_service(service: Service) -> list[str]:
    """Human-readable problems with ``service``; empty when it is valid."""
    errors = []
    if not service.name.strip():
        errors.append("Service name cannot be empty.")
    if not service.command.strip():
        errors.append("Service command cannot be empty.")
    if service.port is None or not 1 <= service.port <= 65535:
        errors.append(f"Port must be an integer between 1 and 65535, got {service.port}.")
    return errors


def _services(vault: Vault) -> ServiceState:
    state = vault.read(StateType.SERVICES)
    return state if isinstance(state, ServiceState) else ServiceState()


def add_service(vault: Vault, service: Service) -> Service:
    """Store ``service``, replacing any entry with the same project and name.

    Raises:
        InvalidInputError: If the service fails validation.
    """
    errors = validate_service(service)
    if errors:
        raise InvalidInputError(" ".join(errors))

    state = _services(vault)
    state.services = [
        s for s in state.services
        if not (s.project == service.project and s.name == service.name)
    ]
    state.services.append(service)
    vault.write(StateType.SERVICES, state)
    return service


def remove_service(vault: Vault, project: str, name: str) -> bool:
    state = _services(vault)
    kept = [s for s in state.services if not (s.project == project and s.name == name)]
    if len(kept) == len(state.services):
        return False
    state.services = kept
    vault.write(StateType.SERVICES, state)
    return True


def list_services(vault: Vault, project: Optional[str] = None) -> list[Service]:
    services = _services(vault).services
    return [s for s in services if project is None or s.project == project]


# ---------------------------------------------------------------------------
# Directories
# ---------------------------------------------------------------------------


def _directories(vault: Vault) -> DirectoryState:
    state = vault.read(StateType.DIRECTORIES)
    return state if isinstance(state, DirectoryState) else DirectoryState()


def _sort_recent(dirs: list[RecentDirectory]) -> list[RecentDirectory]:
    return sorted(dirs, key=lambda d: (d.frequency, d.last_visit), reverse=True)


def visit_directory(vault: Vault, path: str) -> RecentDirectory:
    """Count a visit to ``path``, keeping the most-visited MAX_RECENT_DIRS."""
    path = validate_project_path(path, vault.context.home)
    state = _directories(vault)

    entry = next((d for d in state.recent_dirs if d.path == path), None)
    if entry is None:
        entry = RecentDirectory(path=path)
        state.recent_dirs.append(entry)
    else:
        entry.frequency += 1
        entry.last_visit = utcnow()

    state.recent_dirs = _sort_recent(state.recent_dirs)[:MAX_RECENT_DIRS]
    vault.write(StateType.DIRECTORIES, state)
    return entry


def pin_directory(vault: Vault, path: str) -> bool:
    """Pin ``path``. False if it was already pinned."""
    path = validate_project_path(path, vault.context.home)
    state = _directories(vault)
    if path in state.pinned_dirs:
        return False
    state.pinned_dirs.append(path)
    vault.write(StateType.DIRECTORIES, state)
    return True


def unpin_directory(vault: Vault, path: str) -> bool:
    path = validate_project_path(path, vault.context.home)
    state = _directories(vault)
    if path not in state.pinned_dirs:
        return False
    state.pinned_dirs.remove(path)
    vault.write(StateType.DIRECTORIES, state)
    return True


def remove_recent_directory(vault: Vault, path: str) -> bool:
    path = validate_project_path(path, vault.context.home)
    state = _directories(vault)
    kept = [d for d in state.recent_dirs if d.path != path]
    if len(kept) == len(state.recent_dirs):
        return False
    state.recent_dirs = kept
    vault.write(StateType.DIRECTORIES, state)
    return True


def top_directories(vault: Vault, limit: int = 10) -> list[RecentDirectory]:
    return _sort_recent(_directories(vault).recent_dirs)[:limit]


def pinned_directories(vault: Vault) -> list[str]:
    return list(_directories(vault).pinned_dirs)


# ---------------------------------------------------------------------------
# Notes (mental context)
# ---------------------------------------------------------------------------


class NoteInput(BaseModel):
    """What one ``ctx-sync note`` adds to a project's mental context."""

    current_task: Optional[str] = None
    blockers: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    related_links: list[RelatedLink] = Field(default_factory=list)
    breadcrumb: Optional[str] = None
    last_working_on: Optional[WorkingLocation] = None

    def is_empty(self) -> bool:
        return not (
            (self.current_task or "").strip()
            or self.blockers
            or self.next_steps
            or self.related_links
            or (self.breadcrumb or "").strip()
            or self.last_working_on
        )


def parse_file_reference(ref: str, description: str = "") -> Optional[WorkingLocation]:
    """``file``, ``file:line`` or ``file:line:col`` to a WorkingLocation."""
    match = re.match(r"^(.+?)(?::(\d+))?(?::(\d+))?$", (ref or "").strip())
    if not match:
        return None
    return WorkingLocation(
        file=match.group(1),
        line=int(match.group(2)) if match.group(2) else 0,
        column=int(match.group(3)) if match.group(3) else None,
        description=description,
    )


def parse_link(text: str) -> RelatedLink:
    """``Title: URL`` or ``Title - URL``; a bare URL is its own title."""
    trimmed = text.strip()
    match = re.match(r"^(.+?)\s*[-:]\s*(https?://.+)$", trimmed, re.IGNORECASE)
    if match:
        return RelatedLink(title=match.group(1).strip(), url=match.group(2).strip())
    return RelatedLink(title=trimmed, url=trimmed)


def merge_context(existing: Optional[ProjectMentalContext], note: NoteInput) -> ProjectMentalContext:
    """Fold ``note`` into ``existing``.

    The task and last location are replaced; blockers and next steps
    are appended unless already present (case-insensitive), links are
    de-duplicated by URL and a breadcrumb is always appended.
    """
    merged = existing.model_copy(deep=True) if existing else ProjectMentalContext()
    now = utcnow()

    if (note.current_task or "").strip():
        merged.current_task = note.current_task.strip()
    if note.last_working_on is not None:
        merged.last_working_on = note.last_working_on.model_copy(update={"timestamp": now})

    seen = {b.description.lower() for b in merged.blockers}
    for description in (d.strip() for d in note.blockers):
        if description and description.lower() not in seen:
            merged.blockers.append(Blocker(description=description, added_at=now))
            seen.add(description.lower())

    steps = {s.lower() for s in merged.next_steps}
    for step in (s.strip() for s in note.next_steps):
        if step and step.lower() not in steps:
            merged.next_steps.append(step)
            steps.add(step.lower())

    urls = {link.url for link in merged.related_links}
    for link in note.related_links:
        url = link.url.strip()
        if url and url not in urls:
            merged.related_links.append(RelatedLink(title=link.title.strip(), url=url))
            urls.add(url)

    if (note.breadcrumb or "").strip():
        merged.breadcrumbs.append(Breadcrumb(note=note.breadcrumb.strip(), timestamp=now))
    return merged


def get_note(vault: Vault, project: str) -> Optional[ProjectMentalContext]:
    mental = vault.read(StateType.MENTAL_CONTEXT)
    return mental.root.get(project) if isinstance(mental, MentalContext) else None


def update_note(vault: Vault, project_name: str, note: NoteInput) -> ProjectMentalContext:
    """Merge ``note`` into a tracked project's mental context.

    Raises:
        NotFoundError: If the project is not tracked.
        InvalidInputError: If ``note`` adds nothing.
    """
    if note.is_empty():
        raise InvalidInputError(
            "Nothing to note.",
            suggestion="Pass at least one of --task, --blocker, --next-step, --link, --breadcrumb or --file.",
        )
    project = find_project(vault, project_name)

    mental = vault.read(StateType.MENTAL_CONTEXT)
    if not isinstance(mental, MentalContext):
        mental = MentalContext()
    context = merge_context(mental.root.get(project.name), note)
    mental.root[project.name] = context
    vault.write(StateType.MENTAL_CONTEXT, mental)
    return context

