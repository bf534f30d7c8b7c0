"""
Sync data models -- results handed back to the CLI for rendering.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ConflictSide(str, Enum):
    """Whole-file resolution choices. There is no merge option."""

    OURS = "ours"
    THEIRS = "theirs"


class PullOutcome(str, Enum):
    UP_TO_DATE = "up-to-date"
    FAST_FORWARDED = "fast-forwarded"
    MERGED = "merged"
    REMOTE_EMPTY = "remote-empty"


class GitRemote(BaseModel):
    name: str
    fetch_url: Optional[str] = None
    push_url: Optional[str] = None

    @property
    def url(self) -> Optional[str]:
        return self.push_url or self.fetch_url


class PushResult(BaseModel):
    committed: bool = False
    pushed: bool = False
    commit_hash: Optional[str] = None
    file_count: int = 0
    has_remote: bool = False


class PullResult(BaseModel):
    pulled: bool = False
    outcome: Optional[PullOutcome] = None
    local_commit: Optional[str] = None
    had_conflicts: bool = False
    conflict_files: list[str] = Field(default_factory=list)
    resolutions: dict[str, ConflictSide] = Field(default_factory=dict)
    state_file_count: int = 0
    has_remote: bool = False


class SyncResult(BaseModel):
    pull: Optional[PullResult] = None
    push: PushResult


class SyncStatus(BaseModel):
    """Working tree and remote-tracking status of the sync repo."""

    is_repo: bool = False
    branch: Optional[str] = None
    files: list[str] = Field(default_factory=list)
    is_clean: bool = True
    ahead: int = 0
    behind: int = 0
    has_remote: bool = False
    remote_url: Optional[str] = None
    state_files: list[str] = Field(default_factory=list)
