"""
Security audit trail -- who changed keys, team or sync state, and when.

Format is JSONL (one JSON object per line) in ``<config_dir>/audit.log``,
mode 0600. The log is local-only and never enters the sync repo.
Details go through the log sanitizer before they are written.
"""

from __future__ import annotations

import json
import os
import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as ModelValidationError

from .log_sanitizer import sanitize_for_log

AUDIT_LOG_NAME = "audit.log"
AUDIT_LOG_PERMS = 0o600


class AuditEntry(BaseModel):
    """A single structured audit log entry."""

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    event_type: str
    detail: str
    host: str = Field(default_factory=socket.gethostname)
    metadata: Optional[dict] = None


def audit_event(
    config_dir: Path,
    event_type: str,
    detail: str,
    metadata: Optional[dict] = None,
) -> AuditEntry:
    """Append a structured event to the audit log.

    Args:
        config_dir: Local-only config directory.
        event_type: Event category (KEY_GENERATE, KEY_ROTATE, KEY_UPDATE,
            TEAM_ADD, TEAM_REMOVE, TEAM_REVOKE, SYNC_PUSH, SYNC_PULL,
            RESTORE, ...).
        detail: Human-readable event description.
        metadata: Optional dict of extra structured data.

    Returns:
        AuditEntry: The entry that was written.
    """
    config_dir = Path(config_dir)
    config_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
    audit_log = config_dir / AUDIT_LOG_NAME

    entry = AuditEntry(
        event_type=event_type,
        detail=sanitize_for_log(detail),
        metadata=metadata,
    )

    fd = os.open(audit_log, os.O_WRONLY | os.O_CREAT | os.O_APPEND, AUDIT_LOG_PERMS)
    with os.fdopen(fd, "a", encoding="utf-8") as f:
        f.write(entry.model_dump_json() + "\n")

    return entry


def read_audit_log(config_dir: Path, limit: int = 0) -> list[AuditEntry]:
    """Read and parse the audit log.

    Lines that are not JSON entries are wrapped in an AuditEntry with
    event_type="LEGACY".

    Args:
        config_dir: Local-only config directory.
        limit: Maximum entries to return (0 = all, newest last).

    Returns:
        list[AuditEntry]: Parsed audit entries.
    """
    audit_log = Path(config_dir) / AUDIT_LOG_NAME
    if not audit_log.exists():
        return []

    entries: list[AuditEntry] = []
    for line in audit_log.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entries.append(AuditEntry.model_validate(json.loads(line)))
        except (json.JSONDecodeError, ModelValidationError):
            entries.append(AuditEntry(event_type="LEGACY", detail=line))

    if limit > 0:
        entries = entries[-limit:]

    return entries
