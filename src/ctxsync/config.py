"""
Runtime context -- where everything lives for one invocation.

The context is built once at the edge (CLI or test) and handed to
every core component. Nothing inside the core looks up the home
directory or the environment on its own.

Layout under ``home``:
    .config/ctx-sync/      local-only, 0700 (key, recipients, settings, audit)
    .context-sync/         the Git working tree that gets synced
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel

from .errors import ConfigError

logger = logging.getLogger("ctxsync.config")

CONFIG_DIR_NAME = Path(".config") / "ctx-sync"
SYNC_DIR_NAME = ".context-sync"
SETTINGS_FILE = "config.yaml"
CONFIG_DIR_PERMS = 0o700

_SETTINGS_KEYS = ("remote_name", "branch", "sync_dir")


class SyncContext(BaseModel):
    """Explicit configuration threaded through every entry point."""

    home: Path
    config_dir: Path
    sync_dir: Path
    remote_name: str = "origin"
    branch: str = "main"

    @classmethod
    def from_home(cls, home: Path) -> "SyncContext":
        home = Path(home).expanduser()
        return cls(
            home=home,
            config_dir=home / CONFIG_DIR_NAME,
            sync_dir=home / SYNC_DIR_NAME,
        )

    @property
    def settings_file(self) -> Path:
        return self.config_dir / SETTINGS_FILE


def load_context(home: Path) -> SyncContext:
    """Build the context for ``home`` and overlay local settings.

    Args:
        home: The user's home directory (or a test stand-in).

    Returns:
        SyncContext with any overrides from ``config.yaml`` applied.

    Raises:
        ConfigError: If the settings file exists but is not valid YAML.
    """
    context = SyncContext.from_home(home)
    settings_file = context.settings_file
    if not settings_file.exists():
        return context

    try:
        data = yaml.safe_load(settings_file.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(
            f"Settings file is not valid YAML: {settings_file} ({exc})",
            suggestion=f"Fix or delete {settings_file}",
        ) from exc
    if not isinstance(data, dict):
        raise ConfigError(
            f"Settings file must be a mapping: {settings_file}",
            suggestion=f"Fix or delete {settings_file}",
        )

    overrides = {k: v for k, v in data.items() if k in _SETTINGS_KEYS and v}
    if "sync_dir" in overrides:
        overrides["sync_dir"] = Path(overrides["sync_dir"]).expanduser()
    ignored = sorted(set(data) - set(_SETTINGS_KEYS))
    if ignored:
        logger.debug("Ignoring unknown settings keys: %s", ", ".join(ignored))

    return context.model_copy(update=overrides)


def ensure_config_dir(context: SyncContext) -> Path:
    """Create the local config directory with owner-only permissions."""
    context.config_dir.mkdir(parents=True, exist_ok=True, mode=CONFIG_DIR_PERMS)
    os.chmod(context.config_dir, CONFIG_DIR_PERMS)
    return context.config_dir


def save_settings(context: SyncContext) -> Path:
    """Persist the overridable parts of ``context`` to ``config.yaml``."""
    ensure_config_dir(context)
    data = {
        "remote_name": context.remote_name,
        "branch": context.branch,
        "sync_dir": str(context.sync_dir),
    }
    settings_file = context.settings_file
    settings_file.write_text(
        yaml.dump(data, default_flow_style=False), encoding="utf-8"
    )
    os.chmod(settings_file, 0o600)
    return settings_file


def set_setting(context: SyncContext, key: str, value: str) -> SyncContext:
    """Change one overridable setting and persist it.

    Raises:
        ConfigError: If ``key`` is not an overridable setting or
            ``value`` is empty.
    """
    if key not in _SETTINGS_KEYS:
        raise ConfigError(
            f"Unknown setting: {key}",
            suggestion=f"Settable keys: {', '.join(_SETTINGS_KEYS)}",
        )
    value = value.strip()
    if not value or value.startswith("-"):
        raise ConfigError(f"Invalid value for {key}: {value!r}", suggestion="")
    updated = context.model_copy(
        update={key: Path(value).expanduser() if key == "sync_dir" else value}
    )
    save_settings(updated)
    logger.info("Setting %s changed", key)
    return updated
