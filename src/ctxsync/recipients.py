"""
Recipient registry -- who may decrypt the synced state.

The owner's key is always a recipient and cannot be removed. Team
members are added by name and public key. The registry file sits in
the local config directory at 0600 and never enters the sync repo.

Membership changes do not touch any state file by themselves. Every
add or remove must be followed by a full re-encryption pass for the
new ``all_keys()`` set (see ``Vault.add_member`` and friends); the
envelope format has no way to strip a single recipient in place.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as ModelValidationError

from .errors import (
    ConfigError,
    DuplicateKeyError,
    DuplicateNameError,
    InsecurePermissionError,
    InvalidInputError,
    NotFoundError,
)
from .identity import decode_public_key
from .models import Recipient, RecipientsConfig

logger = logging.getLogger("ctxsync.recipients")

RECIPIENTS_FILE = "recipients.json"
RECIPIENTS_FILE_PERMS = 0o600


def compute_fingerprint(public_key: str) -> str:
    """Short, human-comparable digest for out-of-band key checks.

    First 16 bytes of SHA-256 over the key text, as colon-separated
    uppercase hex pairs (``A3:F2:9C:...``).
    """
    digest = hashlib.sha256(public_key.encode("utf-8")).hexdigest()[:32]
    return ":".join(digest[i:i + 2] for i in range(0, 32, 2)).upper()


def _write_private(path: Path, text: str) -> None:
    """Atomically replace ``path`` with owner-only content."""
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        os.fchmod(fd, RECIPIENTS_FILE_PERMS)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class RecipientRegistry:
    """Owner key plus named team member keys.

    Args:
        config_dir: Local-only config directory (``~/.config/ctx-sync``).
    """

    fingerprint = staticmethod(compute_fingerprint)

    def __init__(self, config_dir: Path):
        self.config_dir = Path(config_dir)
        self.path = self.config_dir / RECIPIENTS_FILE

    def load(self) -> Optional[RecipientsConfig]:
        """Read the registry, or None if it was never initialised.

        Raises:
            InsecurePermissionError: If the file is not owner-only.
            ConfigError: If the file is not a valid registry.
        """
        if not self.path.exists():
            return None

        mode = stat.S_IMODE(self.path.stat().st_mode)
        if mode & 0o077:
            raise InsecurePermissionError(
                f"Recipients file has insecure permissions ({mode:o}). Expected 600.",
                suggestion=f"chmod 600 {self.path}",
            )

        content = self.path.read_text(encoding="utf-8")
        if not content.strip():
            return None
        try:
            return RecipientsConfig.model_validate(json.loads(content))
        except (json.JSONDecodeError, ModelValidationError) as exc:
            raise ConfigError(
                f"Recipients file is corrupted: {self.path}",
                suggestion=f"Restore {self.path} from a backup or re-run `ctx-sync init`.",
            ) from exc

    def save(self, config: RecipientsConfig) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        _write_private(self.path, config.model_dump_json(indent=2))

    def _require(self) -> RecipientsConfig:
        config = self.load()
        if config is None:
            raise ConfigError("Recipients configuration not initialised.")
        return config

    def init(self, owner_public_key: str) -> RecipientsConfig:
        """Create the registry with ``owner_public_key`` as sole recipient.

        An existing registry is returned untouched.
        """
        existing = self.load()
        if existing is not None:
            return existing

        decode_public_key(owner_public_key)
        config = RecipientsConfig(owner_public_key=owner_public_key)
        self.save(config)
        logger.info("Recipient registry created at %s", self.path)
        return config

    def set_owner(self, owner_public_key: str) -> RecipientsConfig:
        """Replace the owner key (used by key rotation)."""
        decode_public_key(owner_public_key)
        config = self.load() or RecipientsConfig(owner_public_key=owner_public_key)
        config.owner_public_key = owner_public_key
        config.members = [m for m in config.members if m.public_key != owner_public_key]
        self.save(config)
        return config

    def add(self, name: str, public_key: str) -> Recipient:
        """Register a team member.

        Names are unique case-insensitively and keys are unique across
        the registry; a clash is rejected, never merged.

        Raises:
            InvalidInputError: If ``name`` is blank.
            InvalidKeyError: If ``public_key`` is malformed.
            ConfigError: If the registry was never initialised.
            DuplicateKeyError: If the key is the owner's or already registered.
            DuplicateNameError: If another member already uses ``name``.
        """
        name = (name or "").strip()
        if not name:
            raise InvalidInputError("Team member name must not be empty.")
        public_key = (public_key or "").strip()
        decode_public_key(public_key)

        config = self._require()
        if public_key == config.owner_public_key:
            raise DuplicateKeyError(
                "Cannot add your own key as a team member. "
                "The owner key is always a recipient.",
                suggestion="Add the other person's public key instead (`ctx-sync key show` on their machine).",
            )
        for member in config.members:
            if member.public_key == public_key:
                raise DuplicateKeyError(
                    f'Public key already registered for team member "{member.name}".'
                )
            if member.name.lower() == name.lower():
                raise DuplicateNameError(
                    f'Team member with name "{name}" already exists. Use a unique name.',
                    suggestion=f"Remove the old entry first: ctx-sync team remove {member.name}",
                )

        recipient = Recipient(
            name=name,
            public_key=public_key,
            fingerprint=compute_fingerprint(public_key),
        )
        config.members.append(recipient)
        self.save(config)
        logger.info("Added recipient %s (%s)", name, recipient.fingerprint)
        return recipient

    def remove_by_name(self, name: str) -> Recipient:
        """Remove a member by name (case-insensitive).

        Raises:
            NotFoundError: If no member has that name.
        """
        config = self._require()
        for index, member in enumerate(config.members):
            if member.name.lower() == (name or "").strip().lower():
                del config.members[index]
                self.save(config)
                logger.info("Removed recipient %s", member.name)
                return member
        raise NotFoundError(f'No team member found with name "{name}".')

    def remove_by_key(self, public_key: str) -> Recipient:
        """Remove (revoke) a member by public key.

        Raises:
            NotFoundError: If no member holds that key. The owner key is
                never a member, so it can never be removed this way.
        """
        config = self._require()
        for index, member in enumerate(config.members):
            if member.public_key == (public_key or "").strip():
                del config.members[index]
                self.save(config)
                logger.info("Revoked recipient %s", member.name)
                return member
        raise NotFoundError(f'No team member found with public key "{public_key}".')

    def members(self) -> list[Recipient]:
        config = self.load()
        return list(config.members) if config else []

    def all_keys(self, owner_public_key: Optional[str] = None) -> list[str]:
        """Owner key first, then every member key.

        Falls back to ``[owner_public_key]`` when no registry exists.
        """
        config = self.load()
        if config is None:
            if owner_public_key is None:
                raise ConfigError("Recipients configuration not initialised.")
            return [owner_public_key]
        return [config.owner_public_key] + [m.public_key for m in config.members]
