"""
Pydantic models for everything ctx-sync persists or passes around.

State records are the decrypted, in-memory shape of each encrypted
state file. On disk and in Git they only ever exist as ciphertext;
the manifest is the single plaintext exception and holds timestamps
and nothing else.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, RootModel

ENCRYPTED_EXTENSION = ".enc"
MANIFEST_FILENAME = "manifest.json"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateType(str, Enum):
    """Closed set of encrypted state categories."""

    PROJECTS = "state"
    ENV_VARS = "env-vars"
    DOCKER = "docker-state"
    MENTAL_CONTEXT = "mental-context"
    SERVICES = "services"
    DIRECTORIES = "directories"

    @property
    def filename(self) -> str:
        return f"{self.value}{ENCRYPTED_EXTENSION}"


# ---------------------------------------------------------------------------
# Projects (state.enc)
# ---------------------------------------------------------------------------


class MachineInfo(BaseModel):
    id: str
    hostname: str


class GitInfo(BaseModel):
    branch: str = ""
    remote: str = ""
    has_uncommitted: bool = False
    stash_count: int = 0


class Project(BaseModel):
    """A tracked project."""

    id: str
    name: str
    path: str
    git: GitInfo = Field(default_factory=GitInfo)
    last_accessed: datetime = Field(default_factory=utcnow)


class ProjectState(BaseModel):
    machine: MachineInfo
    projects: list[Project] = Field(default_factory=list)

    def find(self, name_or_id: str) -> Optional[Project]:
        """Look up a project by name (case-insensitive) or exact id."""
        for project in self.projects:
            if project.name.lower() == name_or_id.lower() or project.id == name_or_id:
                return project
        return None


# ---------------------------------------------------------------------------
# Environment variables (env-vars.enc)
# ---------------------------------------------------------------------------


class EnvVarEntry(BaseModel):
    value: str
    added_at: datetime = Field(default_factory=utcnow)


class EnvVars(RootModel[dict[str, dict[str, EnvVarEntry]]]):
    """Project name -> variable name -> entry."""

    root: dict[str, dict[str, EnvVarEntry]] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Docker (docker-state.enc)
# ---------------------------------------------------------------------------


class DockerService(BaseModel):
    name: str
    container: str = ""
    image: str = ""
    port: Optional[int] = None
    volumes: list[str] = Field(default_factory=list)
    auto_start: bool = False
    health_check: Optional[str] = None


class ProjectDocker(BaseModel):
    compose_file: str = ""
    services: list[DockerService] = Field(default_factory=list)
    networks: list[str] = Field(default_factory=list)
    last_started: Optional[datetime] = None


class DockerState(RootModel[dict[str, ProjectDocker]]):
    root: dict[str, ProjectDocker] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Mental context (mental-context.enc)
# ---------------------------------------------------------------------------


class Blocker(BaseModel):
    description: str
    added_at: datetime = Field(default_factory=utcnow)
    priority: Literal["low", "medium", "high"] = "medium"


class RelatedLink(BaseModel):
    title: str
    url: str


class Breadcrumb(BaseModel):
    note: str
    timestamp: datetime = Field(default_factory=utcnow)


class WorkingLocation(BaseModel):
    file: str
    line: int
    column: Optional[int] = None
    description: str = ""
    timestamp: datetime = Field(default_factory=utcnow)


class ProjectMentalContext(BaseModel):
    """Where your head was when you walked away from a project."""

    current_task: str = ""
    last_working_on: Optional[WorkingLocation] = None
    blockers: list[Blocker] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    related_links: list[RelatedLink] = Field(default_factory=list)
    breadcrumbs: list[Breadcrumb] = Field(default_factory=list)


class MentalContext(RootModel[dict[str, ProjectMentalContext]]):
    root: dict[str, ProjectMentalContext] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Services (services.enc)
# ---------------------------------------------------------------------------


class Service(BaseModel):
    project: str
    name: str
    port: Optional[int] = None
    command: str
    auto_start: bool = False


class ServiceState(BaseModel):
    services: list[Service] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Directories (directories.enc)
# ---------------------------------------------------------------------------


class RecentDirectory(BaseModel):
    path: str
    frequency: int = 1
    last_visit: datetime = Field(default_factory=utcnow)


class DirectoryState(BaseModel):
    recent_dirs: list[RecentDirectory] = Field(default_factory=list)
    pinned_dirs: list[str] = Field(default_factory=list)


STATE_MODELS: dict[StateType, type[BaseModel]] = {
    StateType.PROJECTS: ProjectState,
    StateType.ENV_VARS: EnvVars,
    StateType.DOCKER: DockerState,
    StateType.MENTAL_CONTEXT: MentalContext,
    StateType.SERVICES: ServiceState,
    StateType.DIRECTORIES: DirectoryState,
}


# ---------------------------------------------------------------------------
# Manifest (manifest.json, the only plaintext file in the sync repo)
# ---------------------------------------------------------------------------


class ManifestFileEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    last_modified: datetime = Field(default_factory=utcnow, alias="lastModified")


class Manifest(BaseModel):
    """Versions and timestamps only. Never anything sensitive."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    version: str
    last_sync: datetime = Field(default_factory=utcnow, alias="lastSync")
    files: dict[str, ManifestFileEntry] = Field(default_factory=dict)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


# ---------------------------------------------------------------------------
# Recipients (local-only, never synced)
# ---------------------------------------------------------------------------


class Recipient(BaseModel):
    """A team member allowed to decrypt the synced state."""

    name: str
    public_key: str
    fingerprint: str
    added_at: datetime = Field(default_factory=utcnow)


class RecipientsConfig(BaseModel):
    owner_public_key: str
    members: list[Recipient] = Field(default_factory=list)
