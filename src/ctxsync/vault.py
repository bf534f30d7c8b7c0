"""
The Vault -- the CLI-facing API over keys, team and encrypted state.

Every team change and every key rotation ends with a full
re-encryption pass: the envelope format cannot drop one recipient
in place, so a revoked key only loses access once every file has
been rewritten without it.

Hardening guarantees:
    - State is encrypted for the owner plus every registered member
    - Add / remove / revoke re-encrypt all state before returning
    - Key rotation stages the next key on disk first, so an
      interrupted rotation can simply be rerun
    - Rotation can squash sync history so old ciphertexts are gone
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from .audit import audit_event
from .config import SyncContext, ensure_config_dir
from .identity import (
    NEXT_KEY_FILE_NAME,
    SecretKey,
    generate_identity,
    key_path,
    load_key,
    load_optional_key,
    parse_private_key,
    save_key,
)
from .models import Recipient, StateType
from .recipients import RecipientRegistry
from .state import StateStore
from .sync.engine import SyncEngine
from .transport import validate_remote_url

logger = logging.getLogger("ctxsync.vault")


class SetupResult(BaseModel):
    public_key: str
    key_created: bool = False
    repo_created: bool = False
    remote_url: Optional[str] = None


class TeamChange(BaseModel):
    """A membership change and the files re-encrypted because of it."""

    member: Recipient
    reencrypted: list[str] = Field(default_factory=list)


class KeyRotation(BaseModel):
    old_public_key: str
    new_public_key: str
    reencrypted: list[str] = Field(default_factory=list)
    history_rewritten: bool = False


class Vault:
    """Keys, team and encrypted state for one context.

    Args:
        context: Runtime context.
        engine: Sync engine; defaults to one built from ``context``.
    """

    def __init__(self, context: SyncContext, engine: Optional[SyncEngine] = None):
        self.context = context
        self.registry = RecipientRegistry(context.config_dir)
        self.store = StateStore(context.sync_dir)
        self.engine = engine or SyncEngine(context)

    # ------------------------------------------------------------------
    # setup and keys
    # ------------------------------------------------------------------

    def setup(self, remote_url: Optional[str] = None) -> SetupResult:
        """Create the key (if absent), the registry and the sync repo.

        A remote URL is validated before anything is created.
        """
        if remote_url:
            validate_remote_url(remote_url)
        ensure_config_dir(self.context)

        key_created = not key_path(self.context.config_dir).exists()
        if key_created:
            with generate_identity() as secret:
                save_key(self.context.config_dir, secret)
                public_key = secret.public_key()
            self._audit("KEY_GENERATE", "Encryption key generated")
        else:
            public_key = self.public_key

        self.registry.init(public_key)
        repo_created = self.engine.init_repo(remote_url)
        return SetupResult(
            public_key=public_key,
            key_created=key_created,
            repo_created=repo_created,
            remote_url=remote_url,
        )

    def identity(self) -> SecretKey:
        """The local private key. Use it as a context manager."""
        return load_key(self.context.config_dir)

    @property
    def public_key(self) -> str:
        with self.identity() as secret:
            return secret.public_key()

    def recipient_keys(self) -> list[str]:
        """Owner key first, then every team member."""
        return self.registry.all_keys(self.public_key)

    def restore_key(self, private_key_text: str) -> str:
        """Install an existing private key (e.g. from a backup).

        Returns:
            The public key of the installed identity.
        """
        with parse_private_key(private_key_text) as secret:
            ensure_config_dir(self.context)
            save_key(self.context.config_dir, secret)
            public_key = secret.public_key()

        key_path(self.context.config_dir, NEXT_KEY_FILE_NAME).unlink(missing_ok=True)
        if self.registry.load() is None:
            self.registry.init(public_key)
        else:
            self.registry.set_owner(public_key)
        self._audit("KEY_UPDATE", "Encryption key restored from backup")
        return public_key

    def rotate_key(self, rewrite_history: bool = True) -> KeyRotation:
        """Replace the key pair and re-encrypt all state for it.

        The next key is written to ``key.next`` before any file changes
        and only replaces ``key.txt`` after every file is rewritten.
        Until then both keys can open the state, so a failed rotation
        can be rerun and picks up the same staged key.

        Args:
            rewrite_history: Squash the sync repo history afterwards so
                ciphertexts readable by the old key leave the history.

        Returns:
            KeyRotation with both public keys and the files rewritten.
        """
        config_dir = self.context.config_dir
        with self.identity() as old_key:
            staged = load_optional_key(config_dir, NEXT_KEY_FILE_NAME)
            resumed = staged is not None
            with staged if resumed else generate_identity() as next_key:
                if resumed:
                    logger.info("Resuming key rotation with the staged key")
                else:
                    save_key(config_dir, next_key, NEXT_KEY_FILE_NAME)
                old_public = old_key.public_key()
                new_public = next_key.public_key()
                keys = [new_public] + [m.public_key for m in self.registry.members()]
                reencrypted = self.store.reencrypt_all([next_key, old_key], keys)

        if self.registry.load() is None:
            self.registry.init(new_public)
        else:
            self.registry.set_owner(new_public)
        os.replace(key_path(config_dir, NEXT_KEY_FILE_NAME), key_path(config_dir))

        history_rewritten = False
        if rewrite_history and self.engine.git.is_repo():
            history_rewritten = self.engine.rewrite_history()

        self._audit(
            "KEY_ROTATE",
            f"Encryption key rotated, {len(reencrypted)} file(s) re-encrypted",
            {"history_rewritten": history_rewritten},
        )
        return KeyRotation(
            old_public_key=old_public,
            new_public_key=new_public,
            reencrypted=reencrypted,
            history_rewritten=history_rewritten,
        )

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------

    def read(self, state_type: StateType) -> Optional[BaseModel]:
        with self.identity() as secret:
            return self.store.read(state_type, secret)

    def write(self, state_type: StateType, value: Any) -> Path:
        return self.store.write(state_type, value, self.recipient_keys())

    def reencrypt_all(self) -> list[str]:
        """Rewrite every state file for the current recipient set."""
        keys = self.recipient_keys()
        with self.identity() as secret:
            return self.store.reencrypt_all([secret], keys)

    # ------------------------------------------------------------------
    # team
    # ------------------------------------------------------------------

    def _ensure_registry(self) -> None:
        if self.registry.load() is None:
            self.registry.init(self.public_key)

    def add_member(self, name: str, public_key: str) -> TeamChange:
        self._ensure_registry()
        member = self.registry.add(name, public_key)
        change = TeamChange(member=member, reencrypted=self.reencrypt_all())
        self._audit(
            "TEAM_ADD",
            f"Added team member {member.name}",
            {"fingerprint": member.fingerprint, "files": len(change.reencrypted)},
        )
        return change

    def remove_member(self, name: str) -> TeamChange:
        self._ensure_registry()
        member = self.registry.remove_by_name(name)
        change = TeamChange(member=member, reencrypted=self.reencrypt_all())
        self._audit(
            "TEAM_REMOVE",
            f"Removed team member {member.name}",
            {"fingerprint": member.fingerprint, "files": len(change.reencrypted)},
        )
        return change

    def revoke_member(self, public_key: str) -> TeamChange:
        """Remove a member by key; none of the state stays readable to it."""
        self._ensure_registry()
        member = self.registry.remove_by_key(public_key)
        change = TeamChange(member=member, reencrypted=self.reencrypt_all())
        self._audit(
            "TEAM_REVOKE",
            f"Revoked key of {member.name}",
            {"fingerprint": member.fingerprint, "files": len(change.reencrypted)},
        )
        return change

    def list_members(self) -> list[Recipient]:
        return self.registry.members()

    def _audit(self, event_type: str, detail: str, metadata: Optional[dict] = None) -> None:
        audit_event(self.context.config_dir, event_type, detail, metadata)
