"""Shared test fixtures for ctx-sync."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from ctxsync.config import SyncContext


@pytest.fixture(autouse=True)
def _reset_cli_logging():
    """Drop handlers the CLI installs so they never outlive a test."""
    yield
    root = logging.getLogger("ctxsync")
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.NOTSET)


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """An isolated home directory."""
    home = tmp_path / "home"
    home.mkdir()
    return home


@pytest.fixture
def context(home: Path) -> SyncContext:
    return SyncContext.from_home(home)


@pytest.fixture
def git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """A git identity and an empty global config for subprocess git."""
    gitconfig = tmp_path / "gitconfig"
    gitconfig.write_text("")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(gitconfig))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")


@pytest.fixture
def keypair():
    """Factory returning (SecretKey, public_key) pairs."""
    from ctxsync.identity import generate_identity

    def make():
        secret = generate_identity()
        return secret, secret.public_key()

    return make


@pytest.fixture
def vault(context: SyncContext):
    """A Vault with a key and an initialised registry, but no git repo."""
    from ctxsync.config import ensure_config_dir
    from ctxsync.identity import generate_identity, save_key
    from ctxsync.vault import Vault

    ensure_config_dir(context)
    v = Vault(context)
    with generate_identity() as secret:
        save_key(context.config_dir, secret)
        v.registry.init(secret.public_key())
    return v


@pytest.fixture
def alias_of():
    """Re-spell a public key by setting the unused low bits of its last char.

    52 base32 characters carry 260 bits for a 256-bit key, so the last
    character has four bits that a lax decoder would ignore.
    """
    alphabet = "abcdefghijklmnopqrstuvwxyz234567"

    def make(public_key: str) -> str:
        index = alphabet.index(public_key[-1])
        return public_key[:-1] + alphabet[index | 0b0001]

    return make
