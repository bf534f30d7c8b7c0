"""
Tests for envelope encryption -- multi-recipient, non-deterministic, armored.
"""

from __future__ import annotations

import base64
import json

import pytest


def _tamper_payload(armored: str) -> str:
    from ctxsync.crypto import ARMOR_BEGIN, ARMOR_END

    body = "".join(armored.strip().splitlines()[1:-1])
    envelope = json.loads(base64.b64decode(body))
    ct = bytearray(base64.b64decode(envelope["ct"]))
    ct[0] ^= 0x01
    envelope["ct"] = base64.b64encode(bytes(ct)).decode("ascii")
    rebuilt = base64.b64encode(json.dumps(envelope).encode("utf-8")).decode("ascii")
    return f"{ARMOR_BEGIN}\n{rebuilt}\n{ARMOR_END}\n"


def _rewrite_envelope(armored: str, **fields) -> str:
    from ctxsync.crypto import ARMOR_BEGIN, ARMOR_END

    body = "".join(armored.strip().splitlines()[1:-1])
    envelope = json.loads(base64.b64decode(body))
    envelope.update(fields)
    rebuilt = base64.b64encode(json.dumps(envelope).encode("utf-8")).decode("ascii")
    return f"{ARMOR_BEGIN}\n{rebuilt}\n{ARMOR_END}\n"


class TestEncryptFor:
    """Tests for encrypt_for / decrypt."""

    def test_every_recipient_can_decrypt(self, keypair):
        """Each listed key opens the same envelope on its own."""
        from ctxsync.crypto import decrypt, encrypt_for

        pairs = [keypair() for _ in range(3)]
        ciphertext = encrypt_for([pub for _, pub in pairs], b"shared context")

        for secret, _ in pairs:
            assert decrypt(secret, ciphertext) == b"shared context"

    def test_outsider_gets_decryption_error(self, keypair):
        """A key that is not a recipient fails cleanly, not with a crash."""
        from ctxsync.crypto import decrypt, encrypt_for
        from ctxsync.errors import DecryptionError

        _, alice = keypair()
        mallory, _ = keypair()
        ciphertext = encrypt_for([alice], b"secret")

        with pytest.raises(DecryptionError) as exc_info:
            decrypt(mallory, ciphertext)
        assert "ctx-sync key show" in exc_info.value.suggestion

    def test_same_input_encrypts_differently(self, keypair):
        from ctxsync.crypto import encrypt_for

        _, pub = keypair()
        assert encrypt_for([pub], b"same") != encrypt_for([pub], b"same")

    def test_empty_recipients_rejected(self):
        from ctxsync.crypto import encrypt_for
        from ctxsync.errors import InvalidInputError

        with pytest.raises(InvalidInputError):
            encrypt_for([], b"data")

    def test_malformed_recipient_rejected(self):
        from ctxsync.crypto import encrypt_for
        from ctxsync.errors import InvalidKeyError

        with pytest.raises(InvalidKeyError):
            encrypt_for(["age1notakey"], b"data")

    def test_duplicate_recipients_collapse(self, keypair):
        """Repeating a key yields a single stanza for it."""
        from ctxsync.crypto import decrypt, encrypt_for

        secret, pub = keypair()
        ciphertext = encrypt_for([pub, pub], b"once")
        body = "".join(ciphertext.strip().splitlines()[1:-1])
        envelope = json.loads(base64.b64decode(body))

        assert len(envelope["recipients"]) == 1
        assert decrypt(secret, ciphertext) == b"once"

    def test_tampered_payload_fails_authentication(self, keypair):
        from ctxsync.crypto import decrypt, encrypt_for
        from ctxsync.errors import DecryptionError

        secret, pub = keypair()
        ciphertext = encrypt_for([pub], b"do not touch")

        with pytest.raises(DecryptionError, match="authentication"):
            decrypt(secret, _tamper_payload(ciphertext))

    def test_unknown_algorithm_rejected(self, keypair):
        from ctxsync.crypto import decrypt, encrypt_for
        from ctxsync.errors import DecryptionError

        secret, pub = keypair()
        ciphertext = _rewrite_envelope(encrypt_for([pub], b"x"), alg="rot13")

        with pytest.raises(DecryptionError, match="algorithm"):
            decrypt(secret, ciphertext)

    def test_garbage_input_is_decryption_error(self, keypair):
        from ctxsync.crypto import ARMOR_BEGIN, ARMOR_END, decrypt
        from ctxsync.errors import DecryptionError

        secret, _ = keypair()
        for garbage in ("plain text", f"{ARMOR_BEGIN}\n!!!\n{ARMOR_END}", ""):
            with pytest.raises(DecryptionError):
                decrypt(secret, garbage)


class TestArmor:
    """Tests for the textual envelope."""

    def test_markers_and_line_width(self, keypair):
        from ctxsync.crypto import ARMOR_BEGIN, ARMOR_END, encrypt_for

        _, pub = keypair()
        lines = encrypt_for([pub], b"x" * 500).strip().splitlines()

        assert lines[0] == ARMOR_BEGIN == "-----BEGIN CTX-SYNC ENCRYPTED FILE-----"
        assert lines[-1] == ARMOR_END == "-----END CTX-SYNC ENCRYPTED FILE-----"
        assert all(len(line) <= 64 for line in lines[1:-1])

    def test_is_encrypted_artifact(self, keypair):
        from ctxsync.crypto import encrypt_for, is_encrypted_artifact

        _, pub = keypair()
        assert is_encrypted_artifact(encrypt_for([pub], b"data"))
        assert not is_encrypted_artifact('{"projects": []}')

    def test_plaintext_does_not_appear(self, keypair):
        from ctxsync.crypto import encrypt_for

        _, pub = keypair()
        assert "sk_live_abc123" not in encrypt_for([pub], b"STRIPE_KEY=sk_live_abc123")


class TestStateHelpers:
    """Tests for encrypt_state / decrypt_state."""

    def test_structured_round_trip(self, keypair):
        from ctxsync.crypto import decrypt_state, encrypt_state

        secret, pub = keypair()
        data = {"my-app": {"API_KEY": {"value": "xyz", "added_at": "2025-01-01T00:00:00Z"}}}
        assert decrypt_state(secret, encrypt_state(data, [pub])) == data

    def test_pydantic_models_are_serialised(self, keypair):
        from ctxsync.crypto import decrypt_state, encrypt_state
        from ctxsync.models import DirectoryState

        secret, pub = keypair()
        state = DirectoryState(pinned_dirs=["/home/me/code"])
        result = decrypt_state(secret, encrypt_state(state, [pub]))

        assert result["pinned_dirs"] == ["/home/me/code"]
