"""
Error taxonomy for ctx-sync.

Every failure the core raises is a CtxSyncError carrying a short
machine-readable code and, where one exists, the exact command that
fixes it. The CLI renders ``friendly()``; nothing here prints.
"""

from __future__ import annotations

from typing import Optional


class CtxSyncError(Exception):
    """Base class for all ctx-sync errors."""

    code = "CTX_SYNC_ERROR"
    default_suggestion = ""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.suggestion = (
            suggestion if suggestion is not None else self.default_suggestion
        )

    def friendly(self) -> str:
        """Format the error for a terminal, without a traceback."""
        lines = [f"Error: {self.message}"]
        if self.suggestion:
            lines.append("")
            lines.append(f"  Suggested fix: {self.suggestion}")
        return "\n".join(lines)


class InsecurePermissionError(CtxSyncError, PermissionError):
    """A key or registry file is readable by someone other than its owner."""

    code = "INSECURE_PERMISSIONS"
    default_suggestion = "Run `ctx-sync key verify` to diagnose permissions."


class DecryptionError(CtxSyncError):
    """Ciphertext could not be opened: wrong key, corruption or tampering."""

    code = "DECRYPTION_FAILED"
    default_suggestion = "Check your encryption key with `ctx-sync key verify`."


class PolicyViolation(CtxSyncError):
    """An operation would have written sensitive state as plaintext."""

    code = "POLICY_VIOLATION"


class TransportError(CtxSyncError):
    """The Git remote uses an insecure or malformed transport."""

    code = "INSECURE_TRANSPORT"
    default_suggestion = (
        "Use an SSH (git@host:user/repo.git) or HTTPS "
        "(https://host/user/repo.git) remote."
    )


class ConflictError(CtxSyncError):
    """Local and remote histories diverged on encrypted state."""

    code = "SYNC_CONFLICT"
    default_suggestion = "Run `ctx-sync pull`, then push again."


class ValidationError(CtxSyncError):
    """Malformed input to a single operation; nothing was changed."""

    code = "VALIDATION_FAILED"


class InvalidInputError(ValidationError):
    code = "INVALID_INPUT"


class InvalidKeyError(ValidationError):
    code = "INVALID_KEY"


class DuplicateKeyError(ValidationError):
    code = "DUPLICATE_KEY"


class DuplicateNameError(ValidationError):
    code = "DUPLICATE_NAME"


class NotFoundError(ValidationError):
    code = "NOT_FOUND"
    default_suggestion = "Run `ctx-sync team list` to see team members."


class ConfigError(CtxSyncError):
    """Missing or unreadable local configuration."""

    code = "CONFIG_ERROR"
    default_suggestion = "Run `ctx-sync init` to create a fresh configuration."


class SyncError(CtxSyncError):
    """Git sync failures."""

    code = "SYNC_FAILED"
    default_suggestion = "Run `ctx-sync init` to set up the sync repository."


class NoRemoteConfigured(SyncError):
    code = "NO_REMOTE"
    default_suggestion = "Add a remote with: ctx-sync init --remote <url>"


class GitCommandError(SyncError):
    """A git subprocess exited non-zero."""

    code = "GIT_FAILED"
    default_suggestion = "Inspect the sync repository with `git status`."

    def __init__(
        self,
        message: str,
        stderr: str = "",
        suggestion: Optional[str] = None,
    ):
        super().__init__(message, suggestion)
        self.stderr = stderr
