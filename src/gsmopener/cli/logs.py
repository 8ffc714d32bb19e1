"""Audit log commands: show, clear."""

from __future__ import annotations

import json

import click

from ._common import console, home_option, resolve_device, run_with_runtime

from rich.table import Table

_CATEGORY_STYLE = {
    "relay": "cyan",
    "settings": "magenta",
    "user": "green",
    "system": "blue",
}


def register_logs_commands(main: click.Group) -> None:
    """Register the logs command group."""

    @main.group()
    def logs():
        """Per-device audit trail of sent commands and changes."""

    @logs.command("show")
    @home_option
    @click.argument("device_ref")
    @click.option("--category", "-c", type=click.Choice(sorted(_CATEGORY_STYLE)), default=None)
    @click.option("--limit", "-n", default=50, help="Newest N entries.")
    @click.option("--json-out", is_flag=True, help="Print entries as JSON.")
    def logs_show(home, device_ref, category, limit, json_out):
        """Show the audit log of a device, newest last."""

        async def _show(rt):
            d = resolve_device(rt, device_ref)
            return d, rt.repository.get_logs_for_device(d.id)

        d, entries = run_with_runtime(home, _show)
        if category:
            entries = [e for e in entries if e.category.value == category]
        entries = entries[-limit:] if limit > 0 else entries

        if json_out:
            click.echo(json.dumps([e.to_store() for e in entries], indent=2))
            return

        if not entries:
            console.print(f"\n[dim]No log entries for {d.name}.[/]\n")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Time", style="dim")
        table.add_column("Category")
        table.add_column("Action")
        table.add_column("OK")
        table.add_column("Details")

        for e in entries:
            style = _CATEGORY_STYLE.get(e.category.value, "white")
            table.add_row(
                e.timestamp.isoformat()[:19],
                f"[{style}]{e.category.value}[/]",
                e.action,
                "[green]ok[/]" if e.success else "[red]fail[/]",
                e.details,
            )

        console.print(f"\n[bold]{d.name}[/]: {len(entries)} entr{'y' if len(entries) == 1 else 'ies'}\n")
        console.print(table)
        console.print()

    @logs.command("clear")
    @home_option
    @click.argument("device_ref")
    @click.option("--yes", "-y", is_flag=True, help="Skip confirmation.")
    def logs_clear(home, device_ref, yes):
        """Remove every log entry of a device."""
        if not yes:
            click.confirm(f"Clear all logs of '{device_ref}'?", abort=True)

        async def _clear(rt):
            d = resolve_device(rt, device_ref)
            count = len(rt.repository.get_logs_for_device(d.id))
            await rt.clear_logs_for_device(d.id)
            return d, count

        d, count = run_with_runtime(home, _clear)
        console.print(f"\n  [green]Cleared[/] {count} entries for {d.name}\n")

    main.add_command(logs)
