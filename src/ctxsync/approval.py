"""
Command approval gate -- nothing from synced state runs unconfirmed.

Restoring a project can rebuild shell commands (docker services,
auto-start services) from decrypted state. That state arrived through
a Git remote, so it is treated as untrusted input: every command is
checked against a table of dangerous shapes, shown to a human, and
only runs if that human approves it.

The pattern table is a second line of defence. The first is the
prompt itself, and there is no flag, setting or argument that skips it.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger("ctxsync.approval")


class PendingCommand(BaseModel):
    """A command rebuilt from state, waiting for a decision. Never persisted."""

    command: str
    label: str
    cwd: Optional[str] = None
    port: Optional[int] = None
    image: Optional[str] = None


class CommandCheck(BaseModel):
    suspicious: bool = False
    reason: str = ""


class ApprovalChoice(str, Enum):
    ALL = "all"
    NONE = "none"
    SELECT = "select"


class ApprovalResult(BaseModel):
    approved: list[PendingCommand] = Field(default_factory=list)
    rejected: list[PendingCommand] = Field(default_factory=list)
    skipped_all: bool = False


PromptFn = Callable[[list[PendingCommand]], "ApprovalChoice | str"]
SelectFn = Callable[[PendingCommand, int], bool]


# ---------------------------------------------------------------------------
# Pattern table
# ---------------------------------------------------------------------------

SUSPICIOUS_PATTERNS: tuple[tuple[re.Pattern, str], ...] = (
    (
        re.compile(r"\b(curl|wget)\b.*\|\s*(sh|bash|zsh|ksh|dash|csh)\b", re.I),
        "Pipes remote content to a shell: potential remote code execution.",
    ),
    (
        re.compile(r"\brm\s+(-[a-zA-Z]*r[a-zA-Z]*f|--recursive\s+--force|-[a-zA-Z]*f[a-zA-Z]*r)\b", re.I),
        "Recursive force-delete: destructive operation.",
    ),
    (
        re.compile(r"\bnc\b.*-[a-zA-Z]*e\b", re.I),
        "Netcat with execute flag: potential reverse shell.",
    ),
    (
        re.compile(r"\bpython[23]?\s+-c\b", re.I),
        "Inline Python execution: potential arbitrary code execution.",
    ),
    (
        re.compile(r"\bperl\s+-e\b", re.I),
        "Inline Perl execution: potential arbitrary code execution.",
    ),
    (
        re.compile(r"\bruby\s+-e\b", re.I),
        "Inline Ruby execution: potential arbitrary code execution.",
    ),
    (
        re.compile(r"\bnode\s+-e\b", re.I),
        "Inline Node.js execution: potential arbitrary code execution.",
    ),
    (
        re.compile(r"\$\(.*\)"),
        "Command substitution: embedded command may execute arbitrary code.",
    ),
    (
        re.compile(r"`[^`]+`"),
        "Backtick command substitution: embedded command may execute arbitrary code.",
    ),
    (re.compile(r"\beval\b", re.I), "eval: executes an arbitrary string as code."),
    (re.compile(r"\bexec\b", re.I), "exec: replaces the current process with another command."),
    (
        re.compile(r"\b(bash|sh|zsh)\s+-[a-zA-Z]*c\b", re.I),
        "Shell with -c flag: executes an inline command string.",
    ),
    (
        re.compile(r"/dev/(tcp|udp)/", re.I),
        "Bash /dev/tcp or /dev/udp: potential reverse shell.",
    ),
    (
        re.compile(r"\bmkfifo\b", re.I),
        "Named pipe creation: often part of a reverse shell.",
    ),
    (
        re.compile(r"\bchmod\s+[0-7]*[4-7][0-7]{2}\b", re.I),
        "Broad file permission change: potential security issue.",
    ),
    (re.compile(r"\bchown\b", re.I), "Changing file ownership: potential privilege escalation."),
    (re.compile(r">\s*/etc/", re.I), "Writing to /etc/: modifies system configuration."),
    (re.compile(r"\bsudo\b", re.I), "sudo: elevated privilege execution."),
    (re.compile(r"\bsu\s+-?\s*\w", re.I), "su: switching user context."),
    (re.compile(r"\bcrontab\b", re.I), "crontab: schedules persistent tasks."),
    (
        re.compile(r"(>>?\s*\S*\.(?:bashrc|zshrc|bash_profile|profile)\b|\bsystemctl\s+enable\b)", re.I),
        "Startup file or service change: potential persistence mechanism.",
    ),
    (
        re.compile(r"&&\s*(curl|wget)\b", re.I),
        "Chained remote download: may be part of a multi-stage attack.",
    ),
)

TRUSTED_REGISTRIES = (
    "docker.io/library/",
    "docker.io/",
    "library/",
    "ghcr.io/",
    "gcr.io/",
    "mcr.microsoft.com/",
    "public.ecr.aws/",
)


def validate_command(command: str) -> CommandCheck:
    """Match ``command`` against the pattern table; first hit wins."""
    if not command or not isinstance(command, str) or not command.strip():
        return CommandCheck()

    trimmed = command.strip()
    for pattern, reason in SUSPICIOUS_PATTERNS:
        if pattern.search(trimmed):
            return CommandCheck(suspicious=True, reason=reason)
    return CommandCheck()


def validate_docker_image(image: str) -> CommandCheck:
    """Flag images pulled from outside the trusted registry list.

    Bare official names (``postgres:15``) pass. Anything with a path
    component (``evil.com/postgres``, ``someone/redis``) must start with
    a trusted registry prefix.
    """
    if not image or not isinstance(image, str) or not image.strip():
        return CommandCheck()

    trimmed = image.strip()
    if "/" in trimmed and not trimmed.startswith(TRUSTED_REGISTRIES):
        return CommandCheck(
            suspicious=True,
            reason=f"Non-official Docker image registry: {trimmed}. Verify this image is trusted.",
        )
    return CommandCheck()


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------

_BOX_WIDTH = 46


def format_commands_for_display(commands: list[PendingCommand]) -> str:
    """Box listing of ``commands`` grouped by label, with warnings inline."""
    if not commands:
        return ""

    groups: dict[str, list[PendingCommand]] = {}
    for cmd in commands:
        groups.setdefault(cmd.label, []).append(cmd)

    lines = ["┌" + "─" * _BOX_WIDTH + "┐"]
    index = 1
    for label, group in groups.items():
        lines.append(f"│ {label}:")
        for cmd in group:
            lines.append(f"│   {index}. {cmd.command}")
            if cmd.image:
                lines.append(f"│      Image: {cmd.image}")
            if cmd.port:
                lines.append(f"│      Port: {cmd.port}")
            if cmd.cwd:
                lines.append(f"│      Working dir: {cmd.cwd}")

            check = validate_command(cmd.command)
            if check.suspicious:
                lines.append(f"│      WARNING: {check.reason}")
            if cmd.image:
                image_check = validate_docker_image(cmd.image)
                if image_check.suspicious:
                    lines.append(f"│      WARNING: {image_check.reason}")
            lines.append("│")
            index += 1

    lines.append("│ Review each command carefully!".ljust(_BOX_WIDTH + 1) + "│")
    lines.append("└" + "─" * _BOX_WIDTH + "┘")
    return "\n".join(lines)


def present_for_approval(
    commands: list[PendingCommand],
    interactive: bool,
    prompt_fn: Optional[PromptFn] = None,
    select_fn: Optional[SelectFn] = None,
) -> ApprovalResult:
    """Ask a human which commands may run.

    Without a human (``interactive`` false, or no ``prompt_fn``) every
    command is rejected and ``skipped_all`` is set. An unrecognised
    answer, or SELECT without ``select_fn``, also rejects everything.

    Args:
        commands: Commands to decide on.
        interactive: Whether a human is at the terminal.
        prompt_fn: Asked once with all commands; returns an ApprovalChoice.
        select_fn: Asked per command (with its 1-based index) under SELECT.

    Returns:
        ApprovalResult partitioning ``commands`` into approved and rejected.
    """
    result = ApprovalResult()
    if not commands:
        return result

    if not interactive or prompt_fn is None:
        result.skipped_all = True
        result.rejected = list(commands)
        logger.info("%d command(s) shown but not run (non-interactive)", len(commands))
        return result

    try:
        choice = ApprovalChoice(prompt_fn(list(commands)))
    except ValueError:
        logger.warning("Unrecognised approval answer, rejecting all commands")
        choice = ApprovalChoice.NONE

    if choice == ApprovalChoice.ALL:
        result.approved = list(commands)
    elif choice == ApprovalChoice.SELECT and select_fn is not None:
        for index, cmd in enumerate(commands, start=1):
            if select_fn(cmd, index) is True:
                result.approved.append(cmd)
            else:
                result.rejected.append(cmd)
    else:
        result.rejected = list(commands)

    logger.info(
        "Approval: %d approved, %d rejected", len(result.approved), len(result.rejected)
    )
    return result
