"""Global settings commands: show, set."""

from __future__ import annotations

import click

from ._common import console, home_option, resolve_device, run_with_runtime

from rich.panel import Panel


def register_settings_commands(main: click.Group) -> None:
    """Register the settings command group."""

    @main.group()
    def settings():
        """Global settings: admin number, active device, setup progress."""

    @settings.command("show")
    @home_option
    def settings_show(home):
        """Show global settings."""

        async def _show(rt):
            return rt.repository.global_settings, rt.repository.get_active_device()

        current, active = run_with_runtime(home, _show)
        steps = ", ".join(current.completed_steps) or "[dim]none[/]"
        console.print(Panel(
            f"Admin number: {current.admin_number or '[dim]not set[/]'}\n"
            f"Active device: {active.name if active else '[dim]none[/]'}\n"
            f"Completed steps: {steps}",
            title="Settings", border_style="bright_blue",
        ))

    @settings.command("set")
    @home_option
    @click.option("--admin-number", default=None, help="Administrator phone number.")
    @click.option("--active-device", default=None, help="Device to make active.")
    @click.option("--complete-step", multiple=True, help="Mark a setup step as done.")
    def settings_set(home, admin_number, active_device, complete_step):
        """Update global settings."""
        if admin_number is None and active_device is None and not complete_step:
            console.print("[yellow]Nothing to update.[/]")
            return

        async def _set(rt):
            changes = {}
            if admin_number is not None:
                changes["admin_number"] = admin_number
            if active_device is not None:
                changes["active_device_id"] = resolve_device(rt, active_device).id
            result = rt.repository.global_settings
            if changes:
                result = await rt.update_global_settings(changes)
            for step in complete_step:
                result = await rt.mark_step_completed(step)
            return result

        run_with_runtime(home, _set)
        console.print("\n  [green]Settings updated.[/]\n")

    main.add_command(settings)
