"""Shared utilities for all CLI command modules.

Provides the Rich console, logging setup, the error handler that
turns CtxSyncError into a friendly message, and context loading.
"""

from __future__ import annotations

import functools
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.markup import escape

from ..config import SyncContext, load_context
from ..errors import CtxSyncError
from ..log_sanitizer import RedactingFilter
from ..vault import Vault

console = Console()
logger = logging.getLogger("ctxsync.cli")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def setup_logging(verbose: bool) -> None:
    """Send ctxsync logs to stderr through the redacting filter."""
    root = logging.getLogger("ctxsync")
    for handler in list(root.handlers):
        if getattr(handler, "_ctxsync_cli", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler._ctxsync_cli = True
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RedactingFilter())
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)


def handle_errors(func):
    """Render CtxSyncError as a message plus fix, exit status 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CtxSyncError as exc:
            logger.debug("Command failed", exc_info=True)
            console.print(f"[bold red]Error:[/] {escape(exc.message)}", highlight=False)
            if exc.suggestion:
                console.print(
                    f"  [dim]Suggested fix:[/] {escape(exc.suggestion)}",
                    highlight=False,
                    soft_wrap=True,
                )
            sys.exit(1)

    return wrapper


def get_context(obj: dict) -> SyncContext:
    return load_context(Path(obj["home"]))


def get_vault(obj: dict) -> Vault:
    return Vault(get_context(obj))


def is_interactive(no_interactive: bool) -> bool:
    return not no_interactive and sys.stdin.isatty()


def confirm_or_abort(message: str, yes: bool) -> None:
    if not yes:
        click.confirm(message, abort=True)
