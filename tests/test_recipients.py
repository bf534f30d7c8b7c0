"""
Tests for the recipient registry -- owner, members, fingerprints.
"""

from __future__ import annotations

import os
import re
import stat
from pathlib import Path

import pytest


@pytest.fixture
def registry(tmp_path: Path, keypair):
    from ctxsync.recipients import RecipientRegistry

    _, owner = keypair()
    reg = RecipientRegistry(tmp_path / "config")
    reg.init(owner)
    return reg


class TestInit:
    def test_init_writes_owner_only_file(self, registry):
        assert stat.S_IMODE(registry.path.stat().st_mode) == 0o600
        assert registry.load().members == []

    def test_init_keeps_existing_registry(self, registry, keypair):
        owner = registry.load().owner_public_key
        _, other = keypair()
        assert registry.init(other).owner_public_key == owner

    def test_loose_permissions_refused(self, registry):
        from ctxsync.errors import InsecurePermissionError

        os.chmod(registry.path, 0o644)
        with pytest.raises(InsecurePermissionError):
            registry.load()

    def test_corrupted_file_is_config_error(self, registry):
        from ctxsync.errors import ConfigError

        registry.path.write_text("{not json")
        with pytest.raises(ConfigError, match="corrupted"):
            registry.load()


class TestAdd:
    def test_add_member(self, registry, keypair):
        _, bob = keypair()
        member = registry.add("Bob", bob)

        assert member.name == "Bob"
        assert member.public_key == bob
        assert registry.all_keys() == [registry.load().owner_public_key, bob]

    def test_self_add_rejected(self, registry):
        from ctxsync.errors import DuplicateKeyError

        owner = registry.load().owner_public_key
        with pytest.raises(DuplicateKeyError, match="own key"):
            registry.add("Me", owner)
        assert registry.members() == []

    def test_duplicate_key_rejected(self, registry, keypair):
        from ctxsync.errors import DuplicateKeyError

        _, bob = keypair()
        registry.add("Bob", bob)
        with pytest.raises(DuplicateKeyError, match="Bob"):
            registry.add("Robert", bob)

    def test_duplicate_name_rejected_case_insensitive(self, registry, keypair):
        from ctxsync.errors import DuplicateNameError

        _, bob = keypair()
        _, other = keypair()
        registry.add("Bob", bob)
        with pytest.raises(DuplicateNameError):
            registry.add("bob", other)
        assert [m.public_key for m in registry.members()] == [bob]

    def test_owner_key_alias_rejected(self, registry, alias_of):
        from ctxsync.errors import InvalidKeyError

        owner = registry.load().owner_public_key
        with pytest.raises(InvalidKeyError):
            registry.add("me-again", alias_of(owner))
        assert registry.members() == []

    def test_member_key_alias_rejected(self, registry, keypair, alias_of):
        from ctxsync.errors import InvalidKeyError

        _, bob = keypair()
        registry.add("Bob", bob)
        with pytest.raises(InvalidKeyError):
            registry.add("Bobby", alias_of(bob))
        assert [m.name for m in registry.members()] == ["Bob"]

    def test_invalid_key_rejected(self, registry):
        from ctxsync.errors import InvalidKeyError, ValidationError

        with pytest.raises(InvalidKeyError) as exc_info:
            registry.add("Bob", "ctx1nope")
        assert isinstance(exc_info.value, ValidationError)

    def test_blank_name_rejected(self, registry, keypair):
        from ctxsync.errors import InvalidInputError

        _, bob = keypair()
        with pytest.raises(InvalidInputError):
            registry.add("  ", bob)

    def test_add_without_registry(self, tmp_path: Path, keypair):
        from ctxsync.errors import ConfigError
        from ctxsync.recipients import RecipientRegistry

        _, bob = keypair()
        with pytest.raises(ConfigError):
            RecipientRegistry(tmp_path).add("Bob", bob)


class TestRemove:
    def test_remove_by_name(self, registry, keypair):
        _, bob = keypair()
        registry.add("Bob", bob)

        removed = registry.remove_by_name("BOB")
        assert removed.public_key == bob
        assert registry.members() == []

    def test_remove_by_key(self, registry, keypair):
        _, bob = keypair()
        registry.add("Bob", bob)

        assert registry.remove_by_key(bob).name == "Bob"
        assert bob not in registry.all_keys()

    def test_remove_unknown_is_not_found(self, registry, keypair):
        from ctxsync.errors import NotFoundError

        _, stranger = keypair()
        with pytest.raises(NotFoundError):
            registry.remove_by_name("Nobody")
        with pytest.raises(NotFoundError):
            registry.remove_by_key(stranger)

    def test_owner_cannot_be_removed(self, registry):
        from ctxsync.errors import NotFoundError

        owner = registry.load().owner_public_key
        with pytest.raises(NotFoundError):
            registry.remove_by_key(owner)
        assert registry.all_keys() == [owner]


class TestFingerprint:
    def test_format(self, keypair):
        from ctxsync.recipients import compute_fingerprint

        _, pub = keypair()
        assert re.fullmatch(r"([0-9A-F]{2}:){15}[0-9A-F]{2}", compute_fingerprint(pub))

    def test_stable_and_distinct(self, keypair):
        from ctxsync.recipients import RecipientRegistry

        _, a = keypair()
        _, b = keypair()
        assert RecipientRegistry.fingerprint(a) == RecipientRegistry.fingerprint(a)
        assert RecipientRegistry.fingerprint(a) != RecipientRegistry.fingerprint(b)


class TestAllKeys:
    def test_fallback_to_owner_when_uninitialised(self, tmp_path: Path, keypair):
        from ctxsync.recipients import RecipientRegistry

        _, owner = keypair()
        assert RecipientRegistry(tmp_path).all_keys(owner) == [owner]

    def test_set_owner_replaces_key(self, registry, keypair):
        _, new_owner = keypair()
        registry.set_owner(new_owner)
        assert registry.all_keys()[0] == new_owner
