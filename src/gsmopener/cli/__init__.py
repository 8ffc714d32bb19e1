"""
GSM Opener CLI.

This package organizes the CLI into modular command groups. Each group
lives in its own module and is attached to the main Click group by a
register function.

Entry point: gsmopener.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="gsmopener")
@click.option("--verbose", "-v", count=True, help="More log output (-v info, -vv debug).")
def main(verbose: int):
    """GSM Opener: devices, authorized numbers and audit logs for GSM gate relays."""
    level = {0: logging.WARNING, 1: logging.INFO}.get(verbose, logging.DEBUG)
    logging.basicConfig(level=level, format="%(name)s: %(message)s")


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .device import register_device_commands
from .user import register_user_commands
from .logs import register_logs_commands
from .command import register_command_commands
from .settings import register_settings_commands
from .backup import register_backup_commands

register_device_commands(main)
register_user_commands(main)
register_logs_commands(main)
register_command_commands(main)
register_settings_commands(main)
register_backup_commands(main)
