"""Backup and restore commands: create, restore, list."""

from __future__ import annotations

from pathlib import Path

import click

from ._common import console, home_option, run_with_runtime

from rich.panel import Panel
from rich.table import Table


def register_backup_commands(main: click.Group) -> None:
    """Register the backup command group."""

    @main.group()
    def backup():
        """Backup and restore: your whole GSM Opener store in one file.

        Backups are plain JSON and compatible with the GSM Opener
        mobile app in both directions.
        """

    @backup.command("create")
    @home_option
    @click.option("--output", "-o", default=None, type=click.Path(), help="Output directory.")
    @click.option("--envelope", is_flag=True, help="Wrap data with version and timestamp.")
    @click.option("--stdout", "to_stdout", is_flag=True, help="Print the backup instead of saving.")
    def backup_create(home, output, envelope, to_stdout):
        """Create a backup of every stored key.

        Examples:

            gsmopener backup create

            gsmopener backup create -o /mnt/usb/backups --envelope
        """
        if to_stdout:

            async def _dump(rt):
                return await rt.create_backup(envelope=envelope)

            click.echo(run_with_runtime(home, _dump))
            return

        async def _save(rt):
            return await rt.save_backup(
                Path(output).expanduser() if output else None, envelope=envelope,
            )

        result = run_with_runtime(home, _save)
        console.print(Panel(
            f"[bold green]Backup created[/]\n"
            f"Keys: {result['key_count']}\n"
            f"Size: {result['size']} bytes\n"
            f"Path: [cyan]{result['filepath']}[/]",
            title="Backup Complete",
            border_style="green",
        ))

    @backup.command("restore")
    @home_option
    @click.argument("backup_file", type=click.Path(exists=True, dir_okay=False))
    @click.option("--yes", "-y", is_flag=True, help="Skip confirmation.")
    def backup_restore(home, backup_file, yes):
        """Replace all data with the content of a backup file.

        Damaged files (log noise around the JSON, trailing commas,
        truncation) are repaired as far as possible.

        Examples:

            gsmopener backup restore gsm-opener-backup-2026-10-17.json
        """
        from ..backup import read_backup_file

        if not yes:
            click.confirm("This replaces ALL current data. Continue?", abort=True)

        text = read_backup_file(Path(backup_file))

        async def _restore(rt):
            return await rt.restore_from_backup(text), rt.sync.snapshot

        console.print(f"\n[cyan]Restoring from {backup_file}...[/]")
        report, snapshot = run_with_runtime(home, _restore)

        status = "[yellow]PARTIAL[/]" if report.partial else "[green]COMPLETE[/]"
        console.print(Panel(
            f"[bold green]Restore finished[/] {status}\n"
            f"Parse: {report.strategy} ({report.shape})\n"
            f"Keys written: {len(report.keys_written)}\n"
            f"Devices: {len(snapshot.devices)}  Users: {len(snapshot.users)}",
            title="Restore Complete",
            border_style="green",
        ))
        if report.trimmed_prefix or report.trimmed_suffix:
            console.print(
                f"[yellow]Ignored {report.trimmed_prefix} leading and "
                f"{report.trimmed_suffix} trailing characters around the backup.[/]"
            )
        if report.keys_failed:
            console.print("[yellow]Keys that could not be written:[/]")
            for key in report.keys_failed:
                console.print(f"  [red]{key}[/]")
        if not report.cleared:
            console.print("[yellow]Old data could not be cleared first; leftovers may remain.[/]")

    @backup.command("list")
    @home_option
    def backup_list(home):
        """List available backups."""
        from ..backup import list_backups
        from ..config import load_config

        home_path = Path(home).expanduser()
        backups = list_backups(home_path / load_config(home_path).backup_dir)

        if not backups:
            console.print("\n[dim]No backups found.[/]\n")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Filename", style="cyan")
        table.add_column("Size", justify="right")
        table.add_column("Created", style="dim")

        for b in backups:
            table.add_row(b["filename"], f"{b['size']} B", b["created"][:19])

        console.print(f"\n[bold]{len(backups)}[/] backup(s):\n")
        console.print(table)
        console.print()

    main.add_command(backup)
