"""
State store -- typed records in, ciphertext files out.

Each StateType maps to one ``.enc`` file in the sync directory. Every
write serialises in memory, encrypts for the current recipient set,
replaces the file atomically and stamps the manifest. The manifest is
the only plaintext file and carries timestamps only.

Refuses to write a state type to anything but an ``.enc`` target.
There is no flag to turn that off.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from . import MANIFEST_VERSION
from .crypto import decrypt_state, encrypt_state
from .errors import DecryptionError, InvalidInputError, PolicyViolation
from .identity import SecretKey
from .models import (
    ENCRYPTED_EXTENSION,
    MANIFEST_FILENAME,
    STATE_MODELS,
    Manifest,
    ManifestFileEntry,
    StateType,
)

logger = logging.getLogger("ctxsync.state")

T = TypeVar("T", bound=BaseModel)


def _atomic_write(path: Path, text: str) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class StateStore:
    """Encrypted state files plus the plaintext manifest.

    Args:
        sync_dir: The Git working tree holding the state files.
        filenames: Override of the StateType -> filename mapping. Any
            override must still be an ``.enc`` name or writes fail.
    """

    def __init__(
        self,
        sync_dir: Path,
        filenames: Optional[dict[StateType, str]] = None,
    ):
        self.sync_dir = Path(sync_dir)
        self._filenames = {t: t.filename for t in StateType}
        if filenames:
            self._filenames.update(filenames)

    def filename(self, state_type: StateType) -> str:
        return self._filenames[StateType(state_type)]

    def path_for(self, state_type: StateType) -> Path:
        return self.sync_dir / self.filename(state_type)

    @property
    def manifest_path(self) -> Path:
        return self.sync_dir / MANIFEST_FILENAME

    # ------------------------------------------------------------------
    # Encrypted state
    # ------------------------------------------------------------------

    def read(self, state_type: StateType, identity: SecretKey) -> Optional[BaseModel]:
        """Decrypt and parse one state file.

        Returns:
            The typed record for ``state_type``, or None when the file is
            missing or empty.

        Raises:
            DecryptionError: Wrong key, corrupted or tampered ciphertext,
                or a payload that no longer matches the record shape.
        """
        path = self.path_for(state_type)
        if not path.exists():
            return None
        ciphertext = path.read_text(encoding="utf-8")
        if not ciphertext.strip():
            return None

        data = decrypt_state(identity, ciphertext)
        model = STATE_MODELS[StateType(state_type)]
        try:
            return model.model_validate(data)
        except ModelValidationError as exc:
            raise DecryptionError(
                f"Decrypted {path.name} does not match the expected record shape.",
                suggestion="The file may come from an incompatible version of ctx-sync.",
            ) from exc

    def write(
        self,
        state_type: StateType,
        value: Any,
        recipient_keys: list[str],
    ) -> Path:
        """Encrypt ``value`` for ``recipient_keys`` and write it.

        Args:
            state_type: Which state file to write.
            value: The record (or a dict of its fields).
            recipient_keys: Public keys allowed to decrypt.

        Returns:
            Path of the written ciphertext file.

        Raises:
            PolicyViolation: If the target is not an ``.enc`` file.
            InvalidInputError: If ``value`` does not fit the record shape.
        """
        state_type = StateType(state_type)
        filename = self.filename(state_type)
        self._ensure_encrypted_target(filename)

        model = STATE_MODELS[state_type]
        try:
            record = value if isinstance(value, model) else model.model_validate(
                value.model_dump() if isinstance(value, BaseModel) else value
            )
        except ModelValidationError as exc:
            raise InvalidInputError(
                f"Invalid {state_type.value} record: {exc.error_count()} validation error(s)."
            ) from exc

        ciphertext = encrypt_state(record, recipient_keys)
        self.sync_dir.mkdir(parents=True, exist_ok=True)
        path = self.sync_dir / filename
        _atomic_write(path, ciphertext)
        self._stamp([filename])
        logger.debug("Wrote %s for %d recipient(s)", filename, len(recipient_keys))
        return path

    def exists(self, state_type: StateType) -> bool:
        return self.path_for(state_type).exists()

    def list_existing(self) -> list[str]:
        """Names of every encrypted state file present, sorted."""
        if not self.sync_dir.exists():
            return []
        return sorted(
            p.name
            for p in self.sync_dir.iterdir()
            if p.is_file() and p.name.endswith(ENCRYPTED_EXTENSION)
        )

    def remove(self, state_type: StateType) -> bool:
        """Delete one state file and its manifest entry."""
        path = self.path_for(state_type)
        if not path.exists():
            return False
        path.unlink()
        manifest = self.read_manifest()
        if manifest is not None:
            manifest.files.pop(path.name, None)
            manifest.last_sync = datetime.now(timezone.utc)
            self.write_manifest(manifest)
        return True

    def reencrypt_all(
        self,
        identities: Iterable[SecretKey],
        recipient_keys: list[str],
    ) -> list[str]:
        """Re-encrypt every existing state file for ``recipient_keys``.

        Each file is opened with the first identity that can decrypt it,
        so a pass interrupted midway (some files already under the new
        key set) can be rerun as-is.

        Returns:
            Filenames that were rewritten.

        Raises:
            DecryptionError: If no identity can open a file. Files already
                rewritten stay rewritten; rerunning is safe.
        """
        identities = list(identities)
        rewritten: list[str] = []

        for filename in self.list_existing():
            path = self.sync_dir / filename
            ciphertext = path.read_text(encoding="utf-8")
            if not ciphertext.strip():
                continue
            data = self._decrypt_any(identities, ciphertext, filename)
            _atomic_write(path, encrypt_state(data, recipient_keys))
            rewritten.append(filename)

        if rewritten:
            self._stamp(rewritten)
        logger.info(
            "Re-encrypted %d state file(s) for %d recipient(s)",
            len(rewritten),
            len(recipient_keys),
        )
        return rewritten

    @staticmethod
    def _decrypt_any(identities: list[SecretKey], ciphertext: str, filename: str) -> Any:
        last_error: Optional[DecryptionError] = None
        for identity in identities:
            try:
                return decrypt_state(identity, ciphertext)
            except DecryptionError as exc:
                last_error = exc
        raise DecryptionError(
            f"Cannot decrypt {filename} with the local key.",
            suggestion=last_error.suggestion if last_error else None,
        )

    @staticmethod
    def _ensure_encrypted_target(filename: str) -> None:
        if filename == MANIFEST_FILENAME or not filename.endswith(ENCRYPTED_EXTENSION):
            raise PolicyViolation(
                f"Cannot write unencrypted state file: {filename}. "
                f"State files must be encrypted as {ENCRYPTED_EXTENSION} files."
            )

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def read_manifest(self) -> Optional[Manifest]:
        """Parse ``manifest.json``; None when absent or empty."""
        path = self.manifest_path
        if not path.exists():
            return None
        content = path.read_text(encoding="utf-8")
        if not content.strip():
            return None
        try:
            return Manifest.model_validate(json.loads(content))
        except (json.JSONDecodeError, ModelValidationError) as exc:
            logger.warning("Ignoring unreadable manifest %s: %s", path, exc)
            return None

    def write_manifest(self, manifest: Manifest) -> Path:
        self.sync_dir.mkdir(parents=True, exist_ok=True)
        _atomic_write(self.manifest_path, manifest.to_json() + "\n")
        return self.manifest_path

    def touch_last_sync(self) -> Manifest:
        """Bump ``lastSync``, creating the manifest if needed."""
        manifest = self.read_manifest() or Manifest(version=MANIFEST_VERSION)
        manifest.last_sync = datetime.now(timezone.utc)
        self.write_manifest(manifest)
        return manifest

    def _stamp(self, filenames: list[str]) -> None:
        now = datetime.now(timezone.utc)
        manifest = self.read_manifest() or Manifest(version=MANIFEST_VERSION)
        for filename in filenames:
            manifest.files[filename] = ManifestFileEntry(last_modified=now)
        manifest.last_sync = now
        self.write_manifest(manifest)
