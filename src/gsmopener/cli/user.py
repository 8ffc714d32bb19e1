"""User commands: add, list, delete, authorize, deauthorize."""

from __future__ import annotations

import click

from ._common import (
    console,
    home_option,
    resolve_device,
    resolve_user,
    run_with_runtime,
    short_id,
)

from rich.table import Table


def register_user_commands(main: click.Group) -> None:
    """Register the user command group."""

    @main.group()
    def user():
        """Phone numbers allowed to operate your devices."""

    @user.command("add")
    @home_option
    @click.argument("name")
    @click.argument("phone")
    @click.option("--device", "-d", "device_ref", default=None, help="Also authorize for this device.")
    def user_add(home, name, phone, device_ref):
        """Add a user.

        Examples:

            gsmopener user add Alice +441234000111

            gsmopener user add Bob 0611122233 -d "Home Gate"
        """

        async def _add(rt):
            new = await rt.add_user({"name": name, "phone": phone})
            if device_ref:
                await rt.authorize_user_for_device(resolve_device(rt, device_ref).id, new.id)
            return new

        new = run_with_runtime(home, _add)
        console.print(f"\n  [green]Added:[/] {new.name} [dim]{new.phone}[/] ({short_id(new.id)})\n")

    @user.command("list")
    @home_option
    @click.option("--device", "-d", "device_ref", default=None, help="Only users of this device.")
    def user_list(home, device_ref):
        """List users."""

        async def _list(rt):
            if device_ref:
                return rt.repository.get_device_users(resolve_device(rt, device_ref).id), rt.sync.snapshot
            return rt.repository.users, rt.sync.snapshot

        users, snapshot = run_with_runtime(home, _list)
        if not users:
            console.print("\n[dim]No users.[/]\n")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("ID", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Phone")
        table.add_column("Devices")

        for u in users:
            names = [d.name for d in snapshot.devices if u.id in d.authorized_users]
            table.add_row(short_id(u.id), u.name, u.phone, ", ".join(names) or "[dim]none[/]")

        console.print(f"\n[bold]{len(users)}[/] user(s):\n")
        console.print(table)
        console.print()

    @user.command("delete")
    @home_option
    @click.argument("ref")
    def user_delete(home, ref):
        """Delete a user and revoke it from every device."""

        async def _delete(rt):
            u = resolve_user(rt, ref)
            return u, await rt.delete_user(u.id)

        u, ok = run_with_runtime(home, _delete)
        if not ok:
            console.print(f"[red]Failed to delete {u.name}[/]")
            raise SystemExit(1)
        console.print(f"\n  [green]Deleted:[/] {u.name}\n")

    @user.command("authorize")
    @home_option
    @click.argument("user_ref")
    @click.argument("device_ref")
    def user_authorize(home, user_ref, device_ref):
        """Authorize a user for a device."""

        async def _authorize(rt):
            u = resolve_user(rt, user_ref)
            d = await rt.authorize_user_for_device(resolve_device(rt, device_ref).id, u.id)
            return u, d

        u, d = run_with_runtime(home, _authorize)
        console.print(f"\n  [green]Authorized:[/] {u.name} -> {d.name}\n")

    @user.command("deauthorize")
    @home_option
    @click.argument("user_ref")
    @click.argument("device_ref")
    def user_deauthorize(home, user_ref, device_ref):
        """Revoke a user's authorization for a device."""

        async def _deauthorize(rt):
            u = resolve_user(rt, user_ref)
            d = await rt.deauthorize_user_for_device(resolve_device(rt, device_ref).id, u.id)
            return u, d

        u, d = run_with_runtime(home, _deauthorize)
        console.print(f"\n  [yellow]Revoked:[/] {u.name} -x- {d.name}\n")

    main.add_command(user)
