"""
Command line interface for vc-status.

    vc-status watch            follow the current voice channel live
    vc-status status           show who is in the channel right now
    vc-status mute | deafen    toggle voice settings
    vc-status leave            leave the voice channel
    vc-status activity set     set rich presence
    vc-status logout           forget the stored refresh token
"""

import asyncio
import json
import logging

import click
from rich.console import Console
from rich.table import Table

from vc_status import config
from vc_status.client import VoiceStatusClient, get_client
from vc_status.credential_store import get_credential_store
from vc_status.errors import VcStatusError
from vc_status.ipc.notifications import Notification, NotificationName
from vc_status.ipc.types import Activity
from vc_status.version import __version__

logger = logging.getLogger("vcstatus")

console = Console()


def _client() -> VoiceStatusClient:
    try:
        return get_client()
    except VcStatusError as e:
        raise click.ClickException(e.message)


def _run(coro):
    try:
        return asyncio.run(coro)
    except VcStatusError as e:
        raise click.ClickException(f"{e.error_type.value}: {e.message}")


def _flag(value: bool) -> str:
    return "[red]yes[/red]" if value else "no"


def render_users(name: str, users: list[dict]) -> Table:
    """Build a table of voice channel members."""
    table = Table(title=name or "Voice channel")
    table.add_column("User")
    table.add_column("Muted")
    table.add_column("Deafened")
    for user in users:
        mute = user.get("mute") or user.get("self_mute") or user.get("deaf") or user.get("self_deaf")
        deaf = user.get("deaf") or user.get("self_deaf")
        table.add_row(
            user.get("nick") or user.get("username") or str(user.get("id")),
            _flag(bool(mute)),
            _flag(bool(deaf)),
        )
    return table


def print_notification(notification: Notification, as_json: bool = False) -> None:
    """Print one notification to the console."""
    name = notification.name
    payload = notification.payload
    if as_json:
        click.echo(json.dumps({"name": name.value, "payload": payload}))
        return

    if name == NotificationName.VC_INFO:
        console.print(render_users(payload.get("name", ""), payload.get("users", [])))
    elif name == NotificationName.VC_SELECT:
        console.print("Joined a voice channel" if payload.get("in_vc") else "Not in a voice channel")
    elif name == NotificationName.VC_USER:
        data = payload.get("data", {})
        who = data.get("nick") or data.get("username") or data.get("id")
        console.print(f"{payload.get('event', '').lower()}: {who}")
    elif name == NotificationName.VC_SPEAK:
        who = "you" if payload.get("is_me") else payload.get("user_id")
        state = "started" if payload.get("speaking") else "stopped"
        console.print(f"[dim]{who} {state} speaking[/dim]")
    elif name == NotificationName.VC_MUTE_UPDATE:
        console.print(f"mute: {payload.get('mute')}  deaf: {payload.get('deaf')}")
    elif name == NotificationName.CRITICAL_ERROR:
        console.print(f"[bold red]{payload.get('error_type')}: {payload.get('message')}[/bold red]")
    else:
        console.print(f"[yellow]{payload.get('error_type')}: {payload.get('message')}[/yellow]")


@click.group()
@click.version_option(__version__, prog_name="vc-status")
@click.help_option('-h', '--help', help='Show this message and exit')
@click.option('--debug', is_flag=True, default=config.DEBUG, help='Enable debug logging')
def cli(debug):
    """Voice channel status for the desktop chat client."""
    config.setup_logging(debug)


@cli.command()
@click.help_option('-h', '--help', help='Show this message and exit')
@click.option('--json', 'as_json', is_flag=True, help='Print notifications as JSON lines')
def watch(as_json):
    """Follow the current voice channel until interrupted.

    The first run asks the chat client to approve the app; later runs reuse
    the stored refresh token.
    """
    client = _client()
    client.notifier.add_listener(lambda n: print_notification(n, as_json))

    async def _watch():
        await client.connect()
        try:
            await client.wait_closed()
        finally:
            await client.disconnect()

    try:
        _run(_watch())
    except KeyboardInterrupt:
        pass


async def _one_shot(client: VoiceStatusClient, action):
    await client.connect_commands()
    try:
        return await action(client.controls)
    finally:
        await client.close_commands()


@cli.command()
@click.help_option('-h', '--help', help='Show this message and exit')
@click.option('--json', 'as_json', is_flag=True, help='Print raw JSON')
def status(as_json):
    """Show the voice channel you are in."""
    info = _run(_one_shot(_client(), lambda c: c.get_voice_channel()))
    if as_json:
        click.echo(json.dumps(info))
    elif not info.get("in_vc"):
        console.print("Not in a voice channel")
    else:
        console.print(render_users(info.get("name", ""), info.get("users", [])))


@cli.command()
@click.help_option('-h', '--help', help='Show this message and exit')
def mute():
    """Toggle microphone mute."""
    settings = _run(_one_shot(_client(), lambda c: c.toggle_mute()))
    click.echo("Muted" if settings.mute else "Unmuted")


@cli.command()
@click.help_option('-h', '--help', help='Show this message and exit')
def deafen():
    """Toggle deafen."""
    settings = _run(_one_shot(_client(), lambda c: c.toggle_deafen()))
    click.echo("Deafened" if settings.deaf else "Undeafened")


@cli.command()
@click.help_option('-h', '--help', help='Show this message and exit')
def leave():
    """Leave the current voice channel."""
    _run(_one_shot(_client(), lambda c: c.leave_channel()))
    click.echo("Left voice channel")


@cli.group()
@click.help_option('-h', '--help', help='Show this message and exit')
def activity():
    """Manage rich presence."""
    pass


@activity.command('set')
@click.help_option('-h', '--help', help='Show this message and exit')
@click.option('--name', help='Activity name')
@click.option('--details', help='First line of the activity')
@click.option('--state', help='Second line of the activity')
@click.option('--type', 'activity_type', type=int, default=0, help='Activity type (0 = playing)')
def activity_set(name, details, state, activity_type):
    """Set the rich presence activity."""
    if not (name or details or state):
        raise click.UsageError("Give at least one of --name, --details or --state")
    new_activity = Activity(name=name, type=activity_type, details=details, state=state)
    client = _client()

    # The host clears the activity when this connection goes away
    async def _hold():
        await client.connect_commands()
        try:
            await client.controls.set_activity(new_activity)
            click.echo("Activity set. Press Ctrl+C to clear it.")
            await client.command_channel.wait_closed()
            click.echo("The chat client closed the connection")
        finally:
            await client.close_commands()

    try:
        _run(_hold())
    except KeyboardInterrupt:
        pass


@activity.command('clear')
@click.help_option('-h', '--help', help='Show this message and exit')
def activity_clear():
    """Clear the rich presence activity."""
    _run(_one_shot(_client(), lambda c: c.clear_activity()))
    click.echo("Activity cleared")


@cli.command()
@click.help_option('-h', '--help', help='Show this message and exit')
def logout():
    """Forget the stored refresh token."""
    store = get_credential_store()
    if store.clear():
        click.echo(f"Removed stored credentials ({store.name})")
    else:
        click.echo("No stored credentials")


def main():
    cli()


if __name__ == "__main__":
    main()
