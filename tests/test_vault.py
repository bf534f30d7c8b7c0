"""
Tests for the Vault -- team changes and key rotation re-encrypt state.
"""

from __future__ import annotations

import stat

import pytest


def _seed(vault):
    from ctxsync.models import StateType

    vault.write(StateType.ENV_VARS, {"app": {"API_KEY": {"value": "s3cret"}}})
    vault.write(StateType.DIRECTORIES, {"pinned_dirs": ["/srv/app"]})
    vault.write(StateType.SERVICES, {"services": []})


class TestTeam:
    def test_member_can_read_then_loses_access_on_revoke(self, vault, keypair):
        """Bob decrypts while a member and nothing at all after revocation."""
        from ctxsync.errors import DecryptionError
        from ctxsync.models import StateType

        bob, bob_pub = keypair()
        _seed(vault)

        change = vault.add_member("Bob", bob_pub)
        assert len(change.reencrypted) == 3
        env = vault.store.read(StateType.ENV_VARS, bob)
        assert env.root["app"]["API_KEY"].value == "s3cret"

        revoked = vault.revoke_member(bob_pub)
        assert revoked.member.name == "Bob"
        assert len(revoked.reencrypted) == len(vault.store.list_existing())

        for state_type in (StateType.ENV_VARS, StateType.DIRECTORIES, StateType.SERVICES):
            with pytest.raises(DecryptionError):
                vault.store.read(state_type, bob)
        assert vault.read(StateType.DIRECTORIES).pinned_dirs == ["/srv/app"]

    def test_revoke_cannot_be_dodged_with_key_alias(self, vault, keypair, alias_of):
        from ctxsync.errors import DecryptionError, InvalidKeyError
        from ctxsync.models import StateType

        bob, bob_pub = keypair()
        _seed(vault)
        vault.add_member("Bob", bob_pub)
        with pytest.raises(InvalidKeyError):
            vault.add_member("Bobby", alias_of(bob_pub))

        vault.revoke_member(bob_pub)

        assert vault.list_members() == []
        with pytest.raises(DecryptionError):
            vault.store.read(StateType.DIRECTORIES, bob)

    def test_remove_by_name(self, vault, keypair):
        from ctxsync.errors import DecryptionError
        from ctxsync.models import StateType

        bob, bob_pub = keypair()
        _seed(vault)
        vault.add_member("Bob", bob_pub)

        vault.remove_member("bob")

        assert vault.list_members() == []
        with pytest.raises(DecryptionError):
            vault.store.read(StateType.ENV_VARS, bob)

    def test_new_writes_include_members(self, vault, keypair):
        from ctxsync.models import StateType

        bob, bob_pub = keypair()
        vault.add_member("Bob", bob_pub)
        vault.write(StateType.DIRECTORIES, {"pinned_dirs": ["/x"]})

        assert vault.store.read(StateType.DIRECTORIES, bob).pinned_dirs == ["/x"]

    def test_failed_add_changes_nothing(self, vault, keypair):
        from ctxsync.errors import DuplicateKeyError

        _seed(vault)
        before = {
            name: (vault.store.sync_dir / name).read_text()
            for name in vault.store.list_existing()
        }
        with pytest.raises(DuplicateKeyError):
            vault.add_member("Me", vault.public_key)

        after = {
            name: (vault.store.sync_dir / name).read_text()
            for name in vault.store.list_existing()
        }
        assert before == after

    def test_team_changes_are_audited(self, vault, keypair):
        from ctxsync.audit import read_audit_log

        _, bob_pub = keypair()
        vault.add_member("Bob", bob_pub)
        vault.revoke_member(bob_pub)

        events = [e.event_type for e in read_audit_log(vault.context.config_dir)]
        assert events == ["TEAM_ADD", "TEAM_REVOKE"]


class TestRotation:
    def test_old_key_fails_new_key_works(self, vault):
        from ctxsync.errors import DecryptionError
        from ctxsync.models import StateType

        _seed(vault)
        old = vault.identity()
        old_pub = old.public_key()

        rotation = vault.rotate_key()

        assert rotation.old_public_key == old_pub
        assert rotation.new_public_key == vault.public_key != old_pub
        assert len(rotation.reencrypted) == 3
        assert not rotation.history_rewritten
        assert vault.read(StateType.ENV_VARS).root["app"]["API_KEY"].value == "s3cret"
        with pytest.raises(DecryptionError):
            vault.store.read(StateType.ENV_VARS, old)
        old.wipe()

    def test_rotation_keeps_members_and_updates_owner(self, vault, keypair):
        from ctxsync.models import StateType

        bob, bob_pub = keypair()
        _seed(vault)
        vault.add_member("Bob", bob_pub)

        rotation = vault.rotate_key()

        assert vault.registry.all_keys() == [rotation.new_public_key, bob_pub]
        assert vault.store.read(StateType.DIRECTORIES, bob).pinned_dirs == ["/srv/app"]

    def test_new_key_file_is_owner_only(self, vault):
        from ctxsync.identity import key_path

        vault.rotate_key()

        path = key_path(vault.context.config_dir)
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert not key_path(vault.context.config_dir, "key.next").exists()

    def test_keys_wiped_when_staging_fails(self, vault, monkeypatch):
        import ctxsync.vault as vault_module
        from ctxsync.identity import load_key

        loaded = []

        def tracking_load_key(*args, **kwargs):
            secret = load_key(*args, **kwargs)
            loaded.append(secret)
            return secret

        def failing_save_key(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(vault_module, "load_key", tracking_load_key)
        monkeypatch.setattr(vault_module, "save_key", failing_save_key)

        with pytest.raises(OSError, match="disk full"):
            vault.rotate_key()
        assert loaded and all(secret.wiped for secret in loaded)

    def test_interrupted_rotation_resumes_with_staged_key(self, vault):
        """A key.next left from a failed run is reused, not replaced."""
        from ctxsync.identity import NEXT_KEY_FILE_NAME, generate_identity, save_key

        _seed(vault)
        with generate_identity() as staged:
            save_key(vault.context.config_dir, staged, NEXT_KEY_FILE_NAME)
            staged_pub = staged.public_key()

        assert vault.rotate_key().new_public_key == staged_pub


class TestRestoreKey:
    def test_restore_installs_key(self, context, keypair):
        from ctxsync.vault import Vault

        secret, pub = keypair()
        vault = Vault(context)

        assert vault.restore_key(secret.export()) == pub
        assert vault.public_key == pub
        assert vault.registry.all_keys() == [pub]

    def test_restore_replaces_owner(self, vault, keypair):
        secret, pub = keypair()
        vault.restore_key(secret.export())
        assert vault.registry.load().owner_public_key == pub

    def test_restore_rejects_garbage(self, vault):
        from ctxsync.errors import InvalidKeyError

        before = vault.public_key
        with pytest.raises(InvalidKeyError):
            vault.restore_key("not-a-key")
        assert vault.public_key == before
