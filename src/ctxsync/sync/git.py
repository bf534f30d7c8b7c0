"""
Thin git client -- every call is a ``git`` subprocess in the sync dir.

Nothing here understands what the files mean. The engine decides
what to stage and how to resolve; this module only runs commands
and turns failures into GitCommandError.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from ..errors import ConflictError, GitCommandError, SyncError
from ..transport import validate_remote_url
from .models import GitRemote

logger = logging.getLogger("ctxsync.sync.git")

_REJECTED_MARKERS = ("[rejected]", "non-fast-forward", "fetch first", "stale info")


class GitClient:
    """Runs git against one working tree.

    Args:
        repo_dir: The working tree (the sync directory).
        git_bin: Git executable to invoke.
    """

    def __init__(self, repo_dir: Path, git_bin: str = "git"):
        self.repo_dir = Path(repo_dir)
        self.git_bin = git_bin

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------

    def _env(self) -> dict[str, str]:
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env["LC_ALL"] = "C"
        return env

    def run(
        self,
        *args: str,
        check: bool = True,
        binary: bool = False,
    ) -> subprocess.CompletedProcess:
        """Run ``git <args>`` in the repo directory."""
        cmd = [self.git_bin, *args]
        try:
            result = subprocess.run(
                cmd,
                cwd=str(self.repo_dir),
                capture_output=True,
                text=not binary,
                check=False,
                env=self._env(),
            )
        except FileNotFoundError as exc:
            raise SyncError(
                f"Git executable not found: {self.git_bin}",
                suggestion="Install git and make sure it is on your PATH.",
            ) from exc

        if check and result.returncode != 0:
            stderr = result.stderr if not binary else result.stderr.decode("utf-8", "replace")
            logger.error("git %s failed: %s", " ".join(args), stderr.strip())
            raise GitCommandError(
                f"git {args[0]} failed: {stderr.strip() or 'exit status ' + str(result.returncode)}",
                stderr=stderr,
            )
        return result

    def _out(self, *args: str) -> str:
        return self.run(*args).stdout.strip()

    # ------------------------------------------------------------------
    # repository
    # ------------------------------------------------------------------

    def is_repo(self) -> bool:
        return (self.repo_dir / ".git").exists()

    def init(self, branch: str = "main") -> bool:
        """Create the repository. Returns False if one already exists."""
        if self.is_repo():
            return False
        self.repo_dir.mkdir(parents=True, exist_ok=True)
        self.run("init", "--quiet")
        self.run("symbolic-ref", "HEAD", f"refs/heads/{branch}")
        logger.info("Initialised sync repository at %s", self.repo_dir)
        return True

    def install_attributes(self, lines: Sequence[str]) -> Path:
        """Write repo-local (untracked) git attributes."""
        info_dir = self.repo_dir / ".git" / "info"
        info_dir.mkdir(parents=True, exist_ok=True)
        path = info_dir / "attributes"
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    def current_branch(self) -> Optional[str]:
        result = self.run("symbolic-ref", "--short", "HEAD", check=False)
        return result.stdout.strip() or None if result.returncode == 0 else None

    def rev_parse(self, ref: str) -> Optional[str]:
        result = self.run("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", check=False)
        return result.stdout.strip() or None if result.returncode == 0 else None

    # ------------------------------------------------------------------
    # remotes
    # ------------------------------------------------------------------

    def get_remotes(self) -> list[GitRemote]:
        remotes: dict[str, GitRemote] = {}
        for line in self._out("remote", "-v").splitlines():
            parts = line.split()
            if len(parts) < 3:
                continue
            name, url, kind = parts[0], parts[1], parts[2]
            remote = remotes.setdefault(name, GitRemote(name=name))
            if kind == "(fetch)":
                remote.fetch_url = url
            elif kind == "(push)":
                remote.push_url = url
        return list(remotes.values())

    def get_remote(self, name: str) -> Optional[GitRemote]:
        for remote in self.get_remotes():
            if remote.name == name:
                return remote
        return None

    def add_remote(self, name: str, url: str) -> None:
        """Add or repoint a remote. The URL is validated first."""
        validate_remote_url(url)
        if self.get_remote(name):
            self.run("remote", "set-url", name, url.strip())
        else:
            self.run("remote", "add", name, url.strip())

    # ------------------------------------------------------------------
    # index and commits
    # ------------------------------------------------------------------

    def add(self, paths: Sequence[str]) -> None:
        if paths:
            self.run("add", "-A", "--", *paths)

    def has_staged_changes(self) -> bool:
        return self.run("diff", "--cached", "--quiet", check=False).returncode != 0

    def commit(self, message: str) -> Optional[str]:
        """Commit staged changes; None when there is nothing to commit."""
        if not self.has_staged_changes() and not self.merge_in_progress():
            return None
        self.run("commit", "--quiet", "-m", message)
        return self.rev_parse("HEAD")

    def status_files(self) -> list[str]:
        files = []
        for line in self.run("status", "--porcelain").stdout.splitlines():
            if len(line) > 3:
                files.append(line[3:].strip().strip('"'))
        return files

    def tracked_files(self) -> list[str]:
        return [f for f in self._out("ls-files").splitlines() if f]

    # ------------------------------------------------------------------
    # fetch / merge / push
    # ------------------------------------------------------------------

    def fetch(self, remote: str, branch: str) -> Optional[str]:
        """Fetch ``remote``; return the remote branch head, or None if absent."""
        self.run("fetch", "--quiet", remote)
        return self.rev_parse(f"refs/remotes/{remote}/{branch}")

    def merge_base(self, a: str, b: str) -> Optional[str]:
        result = self.run("merge-base", a, b, check=False)
        return result.stdout.strip() or None if result.returncode == 0 else None

    def ahead_behind(self, upstream: str) -> tuple[int, int]:
        result = self.run(
            "rev-list", "--left-right", "--count", f"HEAD...{upstream}", check=False
        )
        if result.returncode != 0:
            return 0, 0
        ahead, _, behind = result.stdout.strip().partition("\t")
        return int(ahead or 0), int(behind or 0)

    def merge_fast_forward(self, ref: str) -> None:
        self.run("merge", "--ff-only", "--quiet", ref)

    def merge_no_commit(self, ref: str) -> subprocess.CompletedProcess:
        """Start a merge and stop before committing. Never raises on conflict."""
        return self.run(
            "merge", "--no-ff", "--no-commit", "--allow-unrelated-histories", ref,
            check=False,
        )

    def merge_in_progress(self) -> bool:
        return (self.repo_dir / ".git" / "MERGE_HEAD").exists()

    def abort_merge(self) -> None:
        self.run("merge", "--abort", check=False)

    def conflicted_files(self) -> list[str]:
        return [f for f in self._out("diff", "--name-only", "--diff-filter=U").splitlines() if f]

    def show_stage(self, stage: int, path: str) -> Optional[bytes]:
        """Blob for ``path`` at index stage 2 (ours) or 3 (theirs)."""
        result = self.run("show", f":{stage}:{path}", check=False, binary=True)
        return result.stdout if result.returncode == 0 else None

    def push(self, remote: str, branch: str, force: bool = False) -> None:
        """Push ``branch``; a rejection for divergence becomes ConflictError."""
        args = ["push", "--quiet", "--set-upstream"]
        if force:
            args.append("--force-with-lease")
        args += [remote, branch]
        result = self.run(*args, check=False)
        if result.returncode == 0:
            return
        stderr = result.stderr.strip()
        if any(marker in stderr for marker in _REJECTED_MARKERS):
            raise ConflictError(
                "Push rejected: the remote has changes this machine does not have."
            )
        raise GitCommandError(f"git push failed: {stderr}", stderr=stderr)

    def squash_history(self, branch: str, message: str) -> bool:
        """Replace all history with one commit of the current tree.

        Local branch history and reflogs are dropped and pruned. Old
        blobs still reachable from the remote-tracking ref go away once
        the branch is force-pushed.
        """
        if self.rev_parse("HEAD") is None:
            return False
        orphan = f"_squash-{os.getpid()}"
        self.run("checkout", "--quiet", "--orphan", orphan)
        self.run("commit", "--quiet", "--allow-empty", "-m", message)
        self.run("branch", "-D", branch, check=False)
        self.run("branch", "-m", branch)
        self.run("reflog", "expire", "--expire=now", "--all")
        self.run("gc", "--quiet", "--prune=now")
        return True
