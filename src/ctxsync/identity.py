"""
Identity store -- the local private key and nothing else.

One X25519 key pair per user-machine account. The private half lives
in ``<config_dir>/key.txt`` at mode 0600 and is refused outright if
anyone has loosened those bits. The public half (the recipient key)
is freely shareable.

Text formats:
    public:  ctx1<52 lowercase base32 chars>
    private: CTX-SECRET-KEY-<52 uppercase base32 chars>

In memory the private key is held in a SecretKey, a zeroable
bytearray that is wiped when its ``with`` block exits.
"""

from __future__ import annotations

import base64
import logging
import os
import stat
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from pydantic import BaseModel, Field

from .errors import ConfigError, InsecurePermissionError, InvalidKeyError

logger = logging.getLogger("ctxsync.identity")

PUBLIC_KEY_PREFIX = "ctx1"
PRIVATE_KEY_PREFIX = "CTX-SECRET-KEY-"
KEY_BYTES = 32

KEY_FILE_NAME = "key.txt"
NEXT_KEY_FILE_NAME = "key.next"
KEY_FILE_PERMS = 0o600
CONFIG_DIR_PERMS = 0o700


def _b32encode(raw: bytes) -> str:
    return base64.b32encode(raw).decode("ascii").rstrip("=")


def _b32decode(text: str) -> bytes:
    padded = text.upper() + "=" * (-len(text) % 8)
    return base64.b32decode(padded)


class SecretKey:
    """Private key material in a buffer that can be zeroed.

    Use as a context manager so the bytes are wiped on every exit
    path::

        with load_key(config_dir) as secret:
            plaintext = decrypt(secret, ciphertext)
    """

    __slots__ = ("_buf",)

    def __init__(self, raw: bytes | bytearray):
        if len(raw) != KEY_BYTES:
            raise InvalidKeyError(
                f"Private key must be {KEY_BYTES} bytes, got {len(raw)}."
            )
        self._buf = bytearray(raw)

    def __enter__(self) -> "SecretKey":
        return self

    def __exit__(self, *exc_info) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return "SecretKey(<redacted>)"

    @property
    def wiped(self) -> bool:
        return not any(self._buf)

    def wipe(self) -> None:
        for i in range(len(self._buf)):
            self._buf[i] = 0

    def x25519(self) -> X25519PrivateKey:
        """Materialise the primitive key object for a single operation."""
        if self.wiped:
            raise InvalidKeyError("Secret key has already been wiped.")
        return X25519PrivateKey.from_private_bytes(bytes(self._buf))

    def public_key(self) -> str:
        return identity_to_recipient(self)

    def export(self) -> str:
        """Render as ``CTX-SECRET-KEY-...`` text (for the key file only)."""
        return PRIVATE_KEY_PREFIX + _b32encode(bytes(self._buf))


def generate_identity() -> SecretKey:
    """Generate a fresh key pair and return its private half."""
    private_key = X25519PrivateKey.generate()
    raw = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return SecretKey(raw)


def identity_to_recipient(secret: SecretKey) -> str:
    """Derive the shareable recipient (public) key for ``secret``."""
    public_raw = secret.x25519().public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return encode_public_key(public_raw)


def encode_public_key(raw: bytes) -> str:
    return PUBLIC_KEY_PREFIX + _b32encode(raw).lower()


def decode_public_key(public_key: str) -> bytes:
    """Parse ``ctx1...`` text into raw key bytes.

    Raises:
        InvalidKeyError: If the text is not a well-formed public key.
    """
    if not isinstance(public_key, str) or not public_key.startswith(PUBLIC_KEY_PREFIX):
        shown = (public_key or "")[:10] if isinstance(public_key, str) else public_key
        raise InvalidKeyError(
            "Invalid public key format. Expected key starting with "
            f'"{PUBLIC_KEY_PREFIX}", got: {shown!r}'
        )
    body = public_key[len(PUBLIC_KEY_PREFIX):]
    if body != body.lower():
        raise InvalidKeyError("Invalid public key: must be lowercase.")
    try:
        raw = _b32decode(body)
    except (ValueError, TypeError) as exc:
        raise InvalidKeyError(f"Invalid public key encoding: {exc}") from exc
    if len(raw) != KEY_BYTES:
        raise InvalidKeyError(
            f"Invalid public key length: expected {KEY_BYTES} bytes, got {len(raw)}."
        )
    # 52 base32 chars carry 260 bits; the 4 spare bits must be zero so
    # each key has exactly one text form.
    if encode_public_key(raw) != public_key:
        raise InvalidKeyError("Invalid public key: non-canonical encoding.")
    return raw


def is_valid_public_key(public_key: str) -> bool:
    try:
        decode_public_key(public_key)
    except InvalidKeyError:
        return False
    return True


def parse_private_key(text: str) -> SecretKey:
    """Parse ``CTX-SECRET-KEY-...`` text into a SecretKey.

    Raises:
        InvalidKeyError: If the text is not a private key.
    """
    trimmed = (text or "").strip()
    if not trimmed.startswith(PRIVATE_KEY_PREFIX):
        raise InvalidKeyError(
            f"Invalid key format. Expected a private key starting with {PRIVATE_KEY_PREFIX}"
        )
    try:
        raw = _b32decode(trimmed[len(PRIVATE_KEY_PREFIX):])
    except (ValueError, TypeError) as exc:
        raise InvalidKeyError(f"Invalid private key encoding: {exc}") from exc
    return SecretKey(raw)


def key_path(config_dir: Path, name: str = KEY_FILE_NAME) -> Path:
    return Path(config_dir) / name


def _file_mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


def save_key(config_dir: Path, secret: SecretKey, name: str = KEY_FILE_NAME) -> Path:
    """Write ``secret`` to disk at 0600 inside a 0700 directory.

    Args:
        config_dir: Local-only config directory.
        secret: The private key to persist.
        name: File name inside ``config_dir``.

    Returns:
        Path of the written key file.
    """
    config_dir = Path(config_dir)
    config_dir.mkdir(parents=True, exist_ok=True, mode=CONFIG_DIR_PERMS)
    os.chmod(config_dir, CONFIG_DIR_PERMS)

    path = key_path(config_dir, name)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, KEY_FILE_PERMS)
    try:
        os.fchmod(fd, KEY_FILE_PERMS)
        os.write(fd, (secret.export() + "\n").encode("ascii"))
    finally:
        os.close(fd)
    logger.info("Private key written to %s", path)
    return path


def load_key(config_dir: Path, name: str = KEY_FILE_NAME) -> SecretKey:
    """Load the private key, refusing any file that is not exactly 0600.

    Raises:
        ConfigError: If the key file does not exist.
        InsecurePermissionError: If the file mode is anything but 0600.
        InvalidKeyError: If the file does not hold a private key.
    """
    path = key_path(config_dir, name)
    if not path.exists():
        raise ConfigError(
            f"Key file not found: {path}",
            suggestion=(
                "Run `ctx-sync init` to generate an encryption key, or "
                "`ctx-sync key update` to restore one from a backup."
            ),
        )

    mode = _file_mode(path)
    if mode != KEY_FILE_PERMS:
        raise InsecurePermissionError(
            f"Key file has insecure permissions ({mode:o}). Expected 600.",
            suggestion=f"chmod 600 {path}",
        )

    return parse_private_key(path.read_text(encoding="ascii"))


def load_optional_key(config_dir: Path, name: str) -> Optional[SecretKey]:
    if not key_path(config_dir, name).exists():
        return None
    return load_key(config_dir, name)


class PermissionReport(BaseModel):
    """Outcome of ``verify_permissions``."""

    valid: bool
    key_file_exists: bool
    key_file_mode: Optional[int] = None
    config_dir_mode: Optional[int] = None
    issues: list[str] = Field(default_factory=list)


def verify_permissions(config_dir: Path) -> PermissionReport:
    """Check key file and config directory modes without changing them."""
    config_dir = Path(config_dir)
    path = key_path(config_dir)
    issues: list[str] = []
    dir_mode: Optional[int] = None
    file_mode: Optional[int] = None

    if config_dir.exists():
        dir_mode = _file_mode(config_dir)
        if dir_mode != CONFIG_DIR_PERMS:
            issues.append(
                f"Config directory has permissions {dir_mode:o}, expected 700. "
                f"Fix with: chmod 700 {config_dir}"
            )
    else:
        issues.append(f"Config directory does not exist: {config_dir}")

    exists = path.exists()
    if exists:
        file_mode = _file_mode(path)
        if file_mode != KEY_FILE_PERMS:
            issues.append(
                f"Key file has permissions {file_mode:o}, expected 600. "
                f"Fix with: chmod 600 {path}"
            )
    else:
        issues.append(f"Key file not found: {path}")

    return PermissionReport(
        valid=not issues,
        key_file_exists=exists,
        key_file_mode=file_mode,
        config_dir_mode=dir_mode,
        issues=issues,
    )
