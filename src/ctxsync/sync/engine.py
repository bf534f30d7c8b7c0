"""
Sync Engine -- moves the encrypted state set through Git.

Git is only a transport for opaque blobs here. The engine decides
which files are ever staged (the state ciphertexts plus the
manifest), checks the remote's transport on every push and pull,
and resolves diverged histories whole-file: ours or theirs, never
a line merge.

    ctx-sync push  ->  validate remote -> stamp manifest -> commit -> push
    ctx-sync pull  ->  validate remote -> commit local -> fetch -> ff | merge + resolve
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError as ModelValidationError

from .. import MANIFEST_VERSION
from ..audit import audit_event
from ..config import SyncContext
from ..crypto import is_encrypted_artifact
from ..errors import GitCommandError, NoRemoteConfigured, PolicyViolation, SyncError
from ..log_sanitizer import sanitize_for_log
from ..models import ENCRYPTED_EXTENSION, MANIFEST_FILENAME, Manifest, StateType
from ..state import StateStore
from ..transport import validate_remote_url
from .git import GitClient
from .models import (
    ConflictSide,
    GitRemote,
    PullOutcome,
    PullResult,
    PushResult,
    SyncResult,
    SyncStatus,
)

logger = logging.getLogger("ctxsync.sync.engine")

# Written to .git/info/attributes, never committed. Both sides of a
# conflicting ciphertext stay intact in the index for whole-file picks.
GIT_ATTRIBUTES = (
    f"*{ENCRYPTED_EXTENSION} -merge -diff",
    f"{MANIFEST_FILENAME} -merge",
)

PUSH_MESSAGE = "sync: push encrypted state"
PRE_PULL_MESSAGE = "sync: save local state before pull"

ChooseFn = Callable[[str], ConflictSide]


class SyncEngine:
    """Git-backed push/pull of the encrypted state set.

    Args:
        context: Runtime context (sync dir, remote name, branch).
        git: Git client; defaults to one bound to ``context.sync_dir``.
    """

    def __init__(self, context: SyncContext, git: Optional[GitClient] = None):
        self.context = context
        self.sync_dir = context.sync_dir
        self.git = git or GitClient(context.sync_dir)
        self.store = StateStore(context.sync_dir)

    # ------------------------------------------------------------------
    # setup
    # ------------------------------------------------------------------

    def init_repo(self, remote_url: Optional[str] = None) -> bool:
        """Create the sync repository and optionally attach a remote.

        The remote URL is validated before anything is created.

        Returns:
            True if a new repository was created.
        """
        if remote_url:
            validate_remote_url(remote_url)
        created = self.git.init(self.context.branch)
        self.git.install_attributes(GIT_ATTRIBUTES)
        if remote_url:
            self.set_remote(remote_url)
        return created

    def set_remote(self, url: str) -> None:
        """Attach or repoint the sync remote after a transport check."""
        self._require_repo()
        self.git.add_remote(self.context.remote_name, url)
        logger.info("Remote %s set", self.context.remote_name)

    def _require_repo(self) -> None:
        if not self.git.is_repo():
            raise SyncError(f"No sync repository found at {self.sync_dir}.")

    def has_remote(self) -> bool:
        return self.git.is_repo() and self._remote() is not None

    def _remote(self) -> Optional[GitRemote]:
        return self.git.get_remote(self.context.remote_name)

    def _validated_remote(self) -> Optional[GitRemote]:
        """The configured remote, after a transport check of every URL it uses."""
        remote = self._remote()
        if remote is None:
            return None
        for url in {remote.fetch_url, remote.push_url} - {None}:
            validate_remote_url(url)
        return remote

    @property
    def _tracking_ref(self) -> str:
        return f"refs/remotes/{self.context.remote_name}/{self.context.branch}"

    # ------------------------------------------------------------------
    # staging
    # ------------------------------------------------------------------

    def collect_sync_files(self) -> list[str]:
        """Every file that belongs in the repo: state ciphertexts + manifest."""
        files = sorted(
            self.store.filename(state_type)
            for state_type in StateType
            if self.store.exists(state_type)
        )
        if self.store.manifest_path.exists():
            files.append(MANIFEST_FILENAME)
        return files

    def _stage(self) -> list[str]:
        """Stage the sync file set, including deletions of tracked ones.

        Raises:
            PolicyViolation: If a state file is not an encrypted artifact.
        """
        files = self.collect_sync_files()
        for name in files:
            if name == MANIFEST_FILENAME:
                continue
            text = (self.sync_dir / name).read_text(encoding="utf-8")
            if text.strip() and not is_encrypted_artifact(text):
                raise PolicyViolation(
                    f"Refusing to commit {name}: it is not an encrypted artifact."
                )

        known = {self.store.filename(t) for t in StateType} | {MANIFEST_FILENAME}
        removed = [
            f for f in self.git.tracked_files()
            if f in known and not (self.sync_dir / f).exists()
        ]
        self.git.add(files + removed)
        return files

    # ------------------------------------------------------------------
    # push
    # ------------------------------------------------------------------

    def push(self, force: bool = False) -> PushResult:
        """Commit the sync file set and push it if a remote exists.

        Never pulls first. A push the remote rejects because it moved on
        raises ConflictError; the caller decides when to pull.

        Args:
            force: Overwrite the remote branch (after a history rewrite).

        Raises:
            TransportError: If the remote URL is insecure. Nothing is
                committed in that case.
            ConflictError: If the remote has commits this machine lacks.
        """
        self._require_repo()
        remote = self._validated_remote()

        self.store.touch_last_sync()
        files = self._stage()
        commit_hash = self.git.commit(PUSH_MESSAGE)

        result = PushResult(
            committed=commit_hash is not None,
            commit_hash=commit_hash,
            file_count=len(files),
            has_remote=remote is not None,
        )

        if remote is not None and self.git.rev_parse("HEAD"):
            self.git.push(self.context.remote_name, self.context.branch, force=force)
            result.pushed = True

        logger.info(
            "Push: committed=%s pushed=%s files=%d",
            result.committed, result.pushed, result.file_count,
        )
        self._audit(
            "SYNC_PUSH",
            f"Pushed {result.file_count} file(s)" if result.pushed
            else f"Committed {result.file_count} file(s) locally",
            {"commit": commit_hash, "force": force},
        )
        return result

    # ------------------------------------------------------------------
    # pull
    # ------------------------------------------------------------------

    def pull(
        self,
        interactive: bool = False,
        choose: Optional[ChooseFn] = None,
    ) -> PullResult:
        """Fetch the remote and integrate it into the local branch.

        Local state is committed first so nothing local can be lost.
        On divergence every conflicting file is resolved whole-file:
        the local copy by default, the remote copy only when an
        interactive caller's ``choose`` asks for THEIRS.

        Args:
            interactive: Whether a human is present to pick sides.
            choose: Called with each conflicting path; returns a side.

        Raises:
            NoRemoteConfigured: If there is no remote to pull from.
            TransportError: If the remote URL is insecure.
        """
        self._require_repo()
        remote = self._validated_remote()
        if remote is None:
            raise NoRemoteConfigured("No remote configured. Cannot pull.")

        if self.git.merge_in_progress():
            logger.warning("Aborting merge left over from an interrupted pull")
            self.git.abort_merge()

        self._stage()
        result = PullResult(has_remote=True)
        result.local_commit = self.git.commit(PRE_PULL_MESSAGE)

        remote_head = self.git.fetch(self.context.remote_name, self.context.branch)
        if remote_head is None:
            result.outcome = PullOutcome.REMOTE_EMPTY
            logger.info("Remote branch %s does not exist yet", self.context.branch)
            return result

        head = self.git.rev_parse("HEAD")
        base = self.git.merge_base("HEAD", remote_head) if head else None

        if head is None:
            self.git.merge_fast_forward(self._tracking_ref)
            result.outcome = PullOutcome.FAST_FORWARDED
        elif head == remote_head or base == remote_head:
            result.outcome = PullOutcome.UP_TO_DATE
        elif base == head:
            self.git.merge_fast_forward(self._tracking_ref)
            result.outcome = PullOutcome.FAST_FORWARDED
        else:
            self._merge(result, interactive, choose)
            result.outcome = PullOutcome.MERGED

        result.pulled = result.outcome != PullOutcome.UP_TO_DATE
        result.state_file_count = len(self.store.list_existing())

        self._audit(
            "SYNC_PULL",
            f"Pull {result.outcome.value}"
            + (f", {len(result.conflict_files)} conflict(s)" if result.had_conflicts else ""),
            {"resolutions": {k: v.value for k, v in result.resolutions.items()}}
            if result.resolutions else None,
        )
        return result

    def _merge(
        self,
        result: PullResult,
        interactive: bool,
        choose: Optional[ChooseFn],
    ) -> None:
        proc = self.git.merge_no_commit(self._tracking_ref)
        try:
            conflicts = self.git.conflicted_files()
            if proc.returncode != 0 and not conflicts:
                raise GitCommandError(
                    f"git merge failed: {proc.stderr.strip()}", stderr=proc.stderr
                )

            result.had_conflicts = bool(conflicts)
            result.conflict_files = conflicts
            for path in conflicts:
                if path == MANIFEST_FILENAME:
                    continue
                side = ConflictSide.OURS
                if interactive and choose is not None:
                    side = ConflictSide(choose(path))
                self._take(path, side)
                result.resolutions[path] = side
                logger.info("Conflict on %s resolved with %s", path, side.value)

            if MANIFEST_FILENAME in conflicts:
                self._reconcile_manifest(result.resolutions)

            count = len(conflicts)
            self.git.commit(
                f"sync: merge remote state ({count} conflict(s) resolved)"
                if count else "sync: merge remote state"
            )
        except Exception:
            self.git.abort_merge()
            raise

    def _take(self, path: str, side: ConflictSide) -> None:
        """Resolve ``path`` to one side's blob, or delete it if that side did."""
        blob = self.git.show_stage(2 if side == ConflictSide.OURS else 3, path)
        target = self.sync_dir / path
        if blob is None:
            target.unlink(missing_ok=True)
        else:
            target.write_bytes(blob)
        self.git.add([path])

    def _manifest_stage(self, stage: int) -> Optional[Manifest]:
        blob = self.git.show_stage(stage, MANIFEST_FILENAME)
        if not blob:
            return None
        try:
            return Manifest.model_validate(json.loads(blob.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, ModelValidationError):
            logger.warning("Unreadable manifest at stage %d, ignoring it", stage)
            return None

    def _reconcile_manifest(self, resolutions: dict[str, ConflictSide]) -> None:
        """Rebuild a conflicting manifest from both sides.

        Resolved files take the entry from the side that was kept; every
        other file takes whichever entry is newer. Entries for files that
        no longer exist are dropped.
        """
        ours = self._manifest_stage(2)
        theirs = self._manifest_stage(3)
        sides = {ConflictSide.OURS: ours, ConflictSide.THEIRS: theirs}

        base = ours or theirs
        merged = Manifest(version=base.version if base else MANIFEST_VERSION)
        for name in self.collect_sync_files():
            if name == MANIFEST_FILENAME:
                continue
            chosen = sides[resolutions[name]] if name in resolutions else None
            if chosen is not None and name in chosen.files:
                merged.files[name] = chosen.files[name]
                continue
            entries = [m.files[name] for m in (ours, theirs) if m and name in m.files]
            if entries:
                merged.files[name] = max(entries, key=lambda e: e.last_modified)

        stamps = [m.last_sync for m in (ours, theirs) if m]
        merged.last_sync = max(stamps) if stamps else datetime.now(timezone.utc)
        self.store.write_manifest(merged)
        self.git.add([MANIFEST_FILENAME])

    # ------------------------------------------------------------------
    # sync / status / history
    # ------------------------------------------------------------------

    def sync(
        self,
        interactive: bool = False,
        choose: Optional[ChooseFn] = None,
    ) -> SyncResult:
        """Pull (when a remote exists), then push."""
        self._require_repo()
        pull = None
        if self._validated_remote() is not None:
            pull = self.pull(interactive=interactive, choose=choose)
        return SyncResult(pull=pull, push=self.push())

    def status(self) -> SyncStatus:
        """Working tree and tracking status.

        ``has_remote`` comes only from the remote lookup, never from
        ahead/behind counts.
        """
        if not self.git.is_repo():
            return SyncStatus(is_repo=False)

        files = self.git.status_files()
        remote = self._remote()
        ahead = behind = 0
        if remote and self.git.rev_parse("HEAD") and self.git.rev_parse(self._tracking_ref):
            ahead, behind = self.git.ahead_behind(self._tracking_ref)

        return SyncStatus(
            is_repo=True,
            branch=self.git.current_branch(),
            files=files,
            is_clean=not files,
            ahead=ahead,
            behind=behind,
            has_remote=remote is not None,
            remote_url=sanitize_for_log(remote.url) if remote and remote.url else None,
            state_files=self.store.list_existing(),
        )

    def rewrite_history(self, message: str = "sync: rotate encryption key") -> bool:
        """Commit the current set, then squash history to that one commit."""
        self._require_repo()
        self._stage()
        self.git.commit(message)
        squashed = self.git.squash_history(self.context.branch, message)
        if squashed:
            logger.info("Sync history rewritten to a single commit")
        return squashed

    def _audit(self, event_type: str, detail: str, metadata: Optional[dict] = None) -> None:
        """Write to the security audit log."""
        audit_event(self.context.config_dir, event_type, detail, metadata)
