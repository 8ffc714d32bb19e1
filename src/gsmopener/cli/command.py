"""SMS command commands: build, log, classify.

GSM Opener never sends SMS itself. ``build`` prints the exact body to
send to the unit; ``--log`` (or ``log`` afterwards) records it in the
device's audit trail.
"""

from __future__ import annotations

import click

from .. import commands as sms
from ..models import AccessControl
from ._common import console, home_option, resolve_device, run_with_runtime

KINDS = {
    "open": 0,
    "close": 0,
    "status": 0,
    "allow-all": 0,
    "authorized-only": 0,
    "latch": 1,
    "admin": 1,
    "password": 1,
    "add-user": 2,
    "remove-user": 1,
}


def _build(kind: str, password: str, values: tuple[str, ...]) -> str:
    if kind == "open":
        return sms.open_gate(password)
    if kind == "close":
        return sms.close_gate(password)
    if kind == "status":
        return sms.status_check(password)
    if kind == "allow-all":
        return sms.access_control(password, AccessControl.ALLOW_ALL)
    if kind == "authorized-only":
        return sms.access_control(password, AccessControl.AUTHORIZED_ONLY)
    if kind == "latch":
        return sms.latch_time(password, values[0])
    if kind == "admin":
        return sms.register_admin(password, values[0])
    if kind == "password":
        return sms.change_password(password, values[0])
    if kind == "add-user":
        return sms.add_authorized_user(password, int(values[0]), values[1])
    return sms.remove_authorized_user(password, int(values[0]))


def _device_changes(kind: str, values: tuple[str, ...]) -> dict:
    """Device fields that change once a settings command was sent."""
    if kind == "password":
        return {"password": values[0]}
    if kind == "latch":
        return {"relay_settings": {"latch_time": f"{int(values[0]):03d}"}}
    if kind == "allow-all":
        return {"relay_settings": {"access_control": AccessControl.ALLOW_ALL.value}}
    if kind == "authorized-only":
        return {"relay_settings": {"access_control": AccessControl.AUTHORIZED_ONLY.value}}
    return {}


def register_command_commands(main: click.Group) -> None:
    """Register the command group."""

    @main.group()
    def command():
        """Build and record SMS commands for your devices."""

    @command.command("build")
    @home_option
    @click.argument("kind", type=click.Choice(sorted(KINDS)))
    @click.argument("device_ref")
    @click.argument("values", nargs=-1)
    @click.option("--log", "record", is_flag=True, help="Record as sent and apply settings.")
    def command_build(home, kind, device_ref, values, record):
        """Print the SMS body for a command.

        Examples:

            gsmopener command build open "Home Gate"

            gsmopener command build latch "Home Gate" 30 --log

            gsmopener command build add-user "Home Gate" 1 +441234000111
        """
        if len(values) != KINDS[kind]:
            raise click.UsageError(f"'{kind}' takes {KINDS[kind]} value(s), got {len(values)}")

        async def _run(rt):
            d = resolve_device(rt, device_ref)
            try:
                body = _build(kind, d.password, values)
            except ValueError as exc:
                raise click.BadParameter(str(exc))
            entry = None
            if record:
                entry = await rt.log_command(d.id, body)
                changes = _device_changes(kind, values)
                if changes:
                    await rt.update_device(d.id, changes)
                if "relay_settings" in changes:
                    await rt.mark_step_completed("step4")
            return d, body, entry

        d, body, entry = run_with_runtime(home, _run)
        console.print(f"\n  To: [cyan]{d.unit_number}[/]")
        console.print(f"  Body: [bold]{body}[/]")
        if entry is not None:
            console.print(f"  [green]Logged:[/] {entry.action} ({entry.category.value})")
        console.print()

    @command.command("log")
    @home_option
    @click.argument("device_ref")
    @click.argument("body")
    @click.option("--failed", is_flag=True, help="The send failed.")
    def command_log(home, device_ref, body, failed):
        """Record a command that was sent to a device."""

        async def _log(rt):
            d = resolve_device(rt, device_ref)
            return await rt.log_command(d.id, body, success=not failed)

        entry = run_with_runtime(home, _log)
        console.print(f"\n  [green]Logged:[/] {entry.action} ({entry.category.value})")
        console.print(f"  [dim]{entry.details}[/]\n")

    @command.command("classify")
    @click.argument("body")
    def command_classify(body):
        """Show how a command would appear in the audit log."""
        result = sms.classify_command(body)
        console.print(f"\n  Action: [bold]{result.action}[/]")
        console.print(f"  Category: {result.category.value}")
        console.print(f"  Details: {result.details}\n")

    main.add_command(command)
