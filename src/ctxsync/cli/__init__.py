"""
ctx-sync CLI -- thin click + rich glue over the core.

The main Click group is defined here and the command groups are
registered from their own modules. Commands only parse arguments,
call the core and render its results.

Entry point: ctxsync.cli:main
"""

from __future__ import annotations

import click

from .. import __version__
from ._common import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="ctx-sync")
@click.option(
    "--home",
    envvar="CTX_SYNC_HOME",
    default="~",
    type=click.Path(file_okay=False),
    help="Home directory holding .config/ctx-sync and .context-sync.",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
@click.pass_context
def main(ctx, home, verbose):
    """ctx-sync -- encrypted development context, everywhere.

    Projects, env vars and notes travel between machines as
    ciphertext. Git is only the pipe.
    """
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["home"] = home


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .init_cmd import register_init_commands
from .key import register_key_commands
from .team import register_team_commands
from .sync_cmd import register_sync_commands
from .restore import register_restore_commands
from .projects_cmd import register_project_commands
from .workspace_cmd import register_workspace_commands
from .config_cmd import register_config_commands

register_init_commands(main)
register_key_commands(main)
register_team_commands(main)
register_sync_commands(main)
register_restore_commands(main)
register_project_commands(main)
register_workspace_commands(main)
register_config_commands(main)
