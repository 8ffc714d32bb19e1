"""Device commands: add, list, show, update, delete, activate."""

from __future__ import annotations

from typing import Optional

import click

from ._common import console, home_option, resolve_device, run_with_runtime, short_id, yes_no

from rich.panel import Panel
from rich.table import Table


def register_device_commands(main: click.Group) -> None:
    """Register the device command group."""

    @main.group()
    def device():
        """GSM relay units you control.

        Each device is addressed by its SIM phone number and protected
        by a 4-digit password that prefixes every SMS command.
        """

    @device.command("add")
    @home_option
    @click.argument("name")
    @click.argument("unit_number")
    @click.option("--password", "-p", default=None, help="Device password (defaults to config).")
    @click.option("--type", "device_type", default=None, help="Device family tag.")
    @click.option("--activate/--no-activate", default=True, help="Make it the active device.")
    def device_add(home, name, unit_number, password, device_type, activate):
        """Add a new device.

        Examples:

            gsmopener device add "Home Gate" +441234567890

            gsmopener device add Office 0612345678 -p 4321 --no-activate
        """

        async def _add(rt):
            fields = {
                "name": name,
                "unit_number": unit_number,
                "password": password or rt.config.default_password,
            }
            if device_type:
                fields["type"] = device_type
            return await rt.add_device(fields, activate=activate)

        new = run_with_runtime(home, _add)
        console.print(Panel(
            f"[bold green]Device added[/]\n"
            f"ID: {new.id}\n"
            f"Name: {new.name}\n"
            f"Unit: {new.unit_number}\n"
            f"Active: {yes_no(activate)}",
            title="Device", border_style="green",
        ))

    @device.command("list")
    @home_option
    def device_list(home):
        """List all devices."""

        async def _list(rt):
            return rt.sync.snapshot

        snapshot = run_with_runtime(home, _list)
        if not snapshot.devices:
            console.print("\n[dim]No devices yet.[/] Add one with [cyan]gsmopener device add[/]\n")
            return

        active_id = snapshot.global_settings.active_device_id
        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("", width=1)
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Unit")
        table.add_column("Access")
        table.add_column("Latch")
        table.add_column("Users", justify="right")

        for d in snapshot.devices:
            relay = d.relay_settings
            table.add_row(
                "[green]*[/]" if d.id == active_id else "",
                short_id(d.id),
                d.name,
                d.unit_number,
                relay.access_control.value,
                "toggle" if relay.is_toggle else f"{int(relay.latch_time)}s",
                str(len(d.authorized_users)),
            )

        console.print(f"\n[bold]{len(snapshot.devices)}[/] device(s):\n")
        console.print(table)
        console.print()

    @device.command("show")
    @home_option
    @click.argument("ref")
    def device_show(home, ref):
        """Show one device and its authorized users."""

        async def _show(rt):
            d = resolve_device(rt, ref)
            return d, rt.repository.get_device_users(d.id), rt.repository.global_settings

        d, users, settings = run_with_runtime(home, _show)
        relay = d.relay_settings
        lines = [
            f"ID: {d.id}",
            f"Type: {d.type}",
            f"Unit: {d.unit_number}",
            f"Active: {yes_no(settings.active_device_id == d.id)}",
            f"Access: {relay.access_control.value}",
            f"Latch: {'toggle mode' if relay.is_toggle else f'{int(relay.latch_time)} seconds'}",
            f"Created: {d.created_at.isoformat()[:19]}",
            f"Updated: {d.updated_at.isoformat()[:19]}",
            "",
            f"[bold]Authorized users ({len(users)}):[/]",
        ]
        lines.extend(f"  {u.name} [dim]{u.phone}[/]" for u in users)
        console.print(Panel("\n".join(lines), title=d.name, border_style="cyan"))

    @device.command("update")
    @home_option
    @click.argument("ref")
    @click.option("--name", default=None)
    @click.option("--unit-number", default=None)
    @click.option("--password", "-p", default=None)
    @click.option("--access-control", type=click.Choice(["AUT", "ALL"]), default=None)
    @click.option("--latch-time", type=click.IntRange(0, 999), default=None,
                  help="Seconds, 0 for toggle mode.")
    def device_update(home, ref, name, unit_number, password, access_control, latch_time):
        """Change device fields. Only the given options are updated."""
        changes: dict = {}
        if name:
            changes["name"] = name
        if unit_number:
            changes["unit_number"] = unit_number
        if password:
            changes["password"] = password
        relay: dict = {}
        if access_control:
            relay["access_control"] = access_control
        if latch_time is not None:
            relay["latch_time"] = f"{latch_time:03d}"
        if relay:
            changes["relay_settings"] = relay

        if not changes:
            console.print("[yellow]Nothing to update.[/]")
            return

        async def _update(rt):
            return await rt.update_device(resolve_device(rt, ref).id, changes)

        d = run_with_runtime(home, _update)
        console.print(f"\n  [green]Updated:[/] {d.name} ({short_id(d.id)})\n")

    @device.command("delete")
    @home_option
    @click.argument("ref")
    @click.option("--yes", "-y", is_flag=True, help="Skip confirmation.")
    def device_delete(home, ref, yes):
        """Delete a device together with its logs."""

        async def _find(rt):
            return resolve_device(rt, ref)

        d = run_with_runtime(home, _find)
        if not yes:
            click.confirm(
                f"Delete '{d.name}'? This permanently removes all its data.", abort=True,
            )

        async def _delete(rt):
            return await rt.delete_device(d.id)

        if run_with_runtime(home, _delete):
            console.print(f"\n  [green]Deleted:[/] {d.name}\n")
        else:
            console.print(f"[red]Failed to delete {d.name}[/]")
            raise SystemExit(1)

    @device.command("activate")
    @home_option
    @click.argument("ref", required=False)
    @click.option("--clear", is_flag=True, help="Unset the active device.")
    def device_activate(home, ref: Optional[str], clear):
        """Make a device the active one."""
        if not ref and not clear:
            raise click.UsageError("Give a device or --clear")

        async def _activate(rt):
            device_id = None if clear else resolve_device(rt, ref).id
            await rt.set_active_device(device_id)
            return rt.repository.get_active_device()

        active = run_with_runtime(home, _activate)
        if active is None:
            console.print("\n  [dim]No active device.[/]\n")
        else:
            console.print(f"\n  [green]Active:[/] {active.name}\n")

    main.add_command(device)
