"""
Envelope encryption -- one payload, many recipients.

A fresh content key seals the payload with ChaCha20-Poly1305. That
content key is then wrapped once per recipient: an ephemeral X25519
exchange with the recipient's public key, HKDF-SHA256 down to a wrap
key, and another ChaCha20-Poly1305 seal. Any listed recipient can
unwrap it on their own; anyone else gets an authentication failure.

Stanzas do not name their recipient, so the artifact does not leak
who the team is. Every call draws new randomness, so two encryptions
of the same plaintext never match.

On disk the envelope is compact JSON, base64 encoded and armored::

    -----BEGIN CTX-SYNC ENCRYPTED FILE-----
    eyJ2IjoxLCJhbGciOiJ4MjU1MTktaGtkZi1zaGEyNTYtY2hhY2hhMjBwb2x5MTMw
    ...
    -----END CTX-SYNC ENCRYPTED FILE-----
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from pydantic import BaseModel

from .errors import DecryptionError, InvalidInputError
from .identity import SecretKey, decode_public_key, is_valid_public_key

ARMOR_BEGIN = "-----BEGIN CTX-SYNC ENCRYPTED FILE-----"
ARMOR_END = "-----END CTX-SYNC ENCRYPTED FILE-----"
ARMOR_WIDTH = 64

ENVELOPE_VERSION = 1
ALGORITHM = "x25519-hkdf-sha256-chacha20poly1305"
WRAP_INFO = b"ctx-sync/v1/key-wrap"

__all__ = [
    "ARMOR_BEGIN",
    "ARMOR_END",
    "decrypt",
    "decrypt_state",
    "encrypt_for",
    "encrypt_state",
    "is_encrypted_artifact",
    "is_valid_public_key",
]


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


def _raw_public(key: X25519PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def _derive_wrap_key(shared: bytes, ephemeral_public: bytes, recipient_public: bytes) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=ephemeral_public + recipient_public,
        info=WRAP_INFO,
    )
    return hkdf.derive(shared)


def _armor(payload: bytes) -> str:
    body = _b64(payload)
    lines = [body[i:i + ARMOR_WIDTH] for i in range(0, len(body), ARMOR_WIDTH)]
    return "\n".join([ARMOR_BEGIN, *lines, ARMOR_END]) + "\n"


def _dearmor(text: str) -> bytes:
    lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
    if len(lines) < 2 or lines[0] != ARMOR_BEGIN or lines[-1] != ARMOR_END:
        raise DecryptionError("Not an encrypted artifact: armor markers missing.")
    try:
        return _unb64("".join(lines[1:-1]))
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError("Encrypted artifact is corrupted (bad base64).") from exc


def is_encrypted_artifact(text: str) -> bool:
    """True if ``text`` carries the armor markers. Does not decrypt."""
    stripped = text.strip()
    return stripped.startswith(ARMOR_BEGIN) and stripped.endswith(ARMOR_END)


def encrypt_for(recipients: list[str], plaintext: bytes) -> str:
    """Encrypt ``plaintext`` so every key in ``recipients`` can open it.

    Args:
        recipients: Public keys (``ctx1...``). Duplicates are collapsed.
        plaintext: Bytes to protect.

    Returns:
        Armored ciphertext text.

    Raises:
        InvalidInputError: If ``recipients`` is empty.
        InvalidKeyError: If any recipient key is malformed.
    """
    if not recipients:
        raise InvalidInputError("At least one recipient public key is required.")

    unique = list(dict.fromkeys(recipients))
    recipient_keys = [
        X25519PublicKey.from_public_bytes(decode_public_key(k)) for k in unique
    ]

    content_key = ChaCha20Poly1305.generate_key()
    nonce = os.urandom(12)
    sealed = ChaCha20Poly1305(content_key).encrypt(nonce, bytes(plaintext), None)

    stanzas = []
    for recipient in recipient_keys:
        ephemeral = X25519PrivateKey.generate()
        ephemeral_public = _raw_public(ephemeral.public_key())
        wrap_key = _derive_wrap_key(
            ephemeral.exchange(recipient), ephemeral_public, _raw_public(recipient)
        )
        wrap_nonce = os.urandom(12)
        stanzas.append(
            {
                "eph": _b64(ephemeral_public),
                "wn": _b64(wrap_nonce),
                "ek": _b64(ChaCha20Poly1305(wrap_key).encrypt(wrap_nonce, content_key, None)),
            }
        )

    envelope = {
        "v": ENVELOPE_VERSION,
        "alg": ALGORITHM,
        "recipients": stanzas,
        "nonce": _b64(nonce),
        "ct": _b64(sealed),
    }
    return _armor(json.dumps(envelope, separators=(",", ":")).encode("utf-8"))


def _unwrap(stanza: dict[str, Any], secret: X25519PrivateKey, own_public: bytes) -> bytes | None:
    try:
        ephemeral_public = _unb64(stanza["eph"])
        wrap_nonce = _unb64(stanza["wn"])
        wrapped = _unb64(stanza["ek"])
        shared = secret.exchange(X25519PublicKey.from_public_bytes(ephemeral_public))
        wrap_key = _derive_wrap_key(shared, ephemeral_public, own_public)
        return ChaCha20Poly1305(wrap_key).decrypt(wrap_nonce, wrapped, None)
    except (InvalidTag, AttributeError, KeyError, TypeError, ValueError):
        return None


def decrypt(identity: SecretKey, ciphertext: str) -> bytes:
    """Open an armored envelope with the local identity.

    Raises:
        DecryptionError: If the artifact is malformed, was not encrypted
            for this identity, or fails authentication.
    """
    try:
        envelope = json.loads(_dearmor(ciphertext).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecryptionError("Encrypted artifact is corrupted (bad header).") from exc

    if not isinstance(envelope, dict) or envelope.get("v") != ENVELOPE_VERSION:
        raise DecryptionError("Unsupported encrypted artifact version.")
    if envelope.get("alg") != ALGORITHM:
        raise DecryptionError(
            f"Unsupported encrypted artifact algorithm: {envelope.get('alg')!r}."
        )
    stanzas = envelope.get("recipients")
    if not isinstance(stanzas, list) or not stanzas:
        raise DecryptionError("Encrypted artifact lists no recipients.")

    secret = identity.x25519()
    own_public = _raw_public(secret.public_key())

    content_key = None
    for stanza in stanzas:
        if isinstance(stanza, dict):
            content_key = _unwrap(stanza, secret, own_public)
            if content_key is not None:
                break
    if content_key is None:
        raise DecryptionError(
            "No matching recipient: this file was not encrypted for your key.",
            suggestion=(
                "Ask a team member to add your public key "
                "(`ctx-sync key show`) and re-encrypt."
            ),
        )

    try:
        return ChaCha20Poly1305(content_key).decrypt(
            _unb64(envelope["nonce"]), _unb64(envelope["ct"]), None
        )
    except (InvalidTag, AttributeError, KeyError, TypeError, ValueError) as exc:
        raise DecryptionError(
            "Encrypted payload failed authentication (corrupted or tampered)."
        ) from exc


def _to_jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    return data


def encrypt_state(data: Any, recipients: list[str]) -> str:
    """JSON-serialise ``data`` in memory and encrypt it for ``recipients``."""
    payload = json.dumps(_to_jsonable(data), separators=(",", ":"), ensure_ascii=False)
    return encrypt_for(recipients, payload.encode("utf-8"))


def decrypt_state(identity: SecretKey, ciphertext: str) -> Any:
    """Decrypt and parse a payload produced by ``encrypt_state``."""
    plaintext = decrypt(identity, ciphertext)
    try:
        return json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecryptionError("Decrypted payload is not valid JSON.") from exc
