"""Shared utilities for all CLI command modules.

Provides the Rich console, the ``--home`` option, and the helper that
opens a runtime, runs one async operation and reports library errors.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import click
from rich.console import Console

from .. import OPENER_HOME
from ..config import load_config
from ..exceptions import GsmOpenerError, NotFoundError
from ..models import Device, User
from ..runtime import OpenerRuntime

console = Console()

T = TypeVar("T")

home_option = click.option(
    "--home", default=OPENER_HOME, type=click.Path(), help="GSM Opener data directory.",
)


def run_with_runtime(home: str, operation: Callable[[OpenerRuntime], Awaitable[T]]) -> T:
    """Open a runtime on home, await operation(runtime), close it.

    Library errors are printed and turned into exit status 1.
    """
    home_path = Path(home).expanduser()
    config = load_config(home_path)
    root = logging.getLogger()
    level = logging.getLevelName(config.log_level.upper())
    if isinstance(level, int) and level < root.level:
        root.setLevel(level)

    async def _run() -> T:
        async with OpenerRuntime(home_path, config=config) as rt:
            return await operation(rt)

    try:
        return asyncio.run(_run())
    except GsmOpenerError as exc:
        console.print(f"[red]{exc}[/]")
        raise SystemExit(1)


def resolve_device(rt: OpenerRuntime, ref: str) -> Device:
    """Find a device by id, unique id prefix, or name (case-insensitive)."""
    devices = rt.repository.devices
    for device in devices:
        if device.id == ref:
            return device
    prefixed = [d for d in devices if d.id.startswith(ref)]
    if len(prefixed) == 1:
        return prefixed[0]
    named = [d for d in devices if d.name.lower() == ref.lower()]
    if len(named) == 1:
        return named[0]
    raise NotFoundError(f"Device not found: {ref}")


def resolve_user(rt: OpenerRuntime, ref: str) -> User:
    """Find a user by id, unique id prefix, name, or phone number."""
    users = rt.repository.users
    for user in users:
        if user.id == ref or user.phone == ref:
            return user
    prefixed = [u for u in users if u.id.startswith(ref)]
    if len(prefixed) == 1:
        return prefixed[0]
    named = [u for u in users if u.name.lower() == ref.lower()]
    if len(named) == 1:
        return named[0]
    raise NotFoundError(f"User not found: {ref}")


def short_id(record_id: str) -> str:
    return record_id[:8]


def yes_no(value: Any) -> str:
    return "[green]yes[/]" if value else "[dim]no[/]"
