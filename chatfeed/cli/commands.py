"""
chatfeed CLI

Commands:
    onboard  write a default config
    login    persist the chat username
    script   show the bot script
    demo     run the feed against the in-memory backend and print it
"""

from __future__ import annotations

import asyncio
import colorsys
from typing import Final, Optional

import typer
from rich.console import Console
from rich.table import Table

from chatfeed import __logo__, __version__
from chatfeed.errors import IdentityError
from chatfeed.feed.parts import string_to_hue


# ============================================================================
# CLI App
# ============================================================================

APP_NAME: Final[str] = "chatfeed"

app = typer.Typer(
    name=APP_NAME,
    help=f"{__logo__} chatfeed - real-time chat feed reconciliation",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} chatfeed v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """chatfeed - real-time chat feed reconciliation."""
    pass


# ============================================================================
# Rendering helpers
# ============================================================================


def _author_style(username: str) -> str:
    """Same hue as user_color(), as a hex colour rich understands."""
    r, g, b = colorsys.hls_to_rgb(string_to_hue(username) / 360, 0.6, 0.5)
    return f"#{int(r * 255):02x}{int(g * 255):02x}{int(b * 255):02x}"


def _feed_table(messages, username: str) -> Table:
    from chatfeed.feed.reactions import summarize
    from chatfeed.utils.helpers import format_time

    table = Table(show_header=True, header_style="bold")
    table.add_column("Time", style="dim")
    table.add_column("Author", no_wrap=True)
    table.add_column("Message")
    table.add_column("Reactions")

    for m in messages:
        reactions = " ".join(
            f"{s.type}×{s.count}{'*' if s.mine else ''}"
            for s in summarize(m, username).values()
        )
        text = m.text + (" [dim](edited)[/dim]" if m.is_edited else "")
        table.add_row(
            format_time(m.created_at),
            f"[{_author_style(m.created_by)}]{m.created_by}[/]",
            text,
            reactions,
        )
    return table


# ============================================================================
# Onboard / Login
# ============================================================================


@app.command()
def onboard():
    """Initialize chatfeed configuration."""
    from chatfeed.config.loader import get_config_path, save_config
    from chatfeed.config.schema import Config

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    save_config(Config(), config_path)
    console.print(f"[green]✓[/green] Created config at {config_path}")
    console.print("\nNext steps:")
    console.print("  1. Log in: [cyan]chatfeed login <username>[/cyan]")
    console.print("  2. Try it: [cyan]chatfeed demo --bots[/cyan]")


@app.command()
def login(username: str = typer.Argument(..., help="Chat username / client id")):
    """Persist the username used as chat client id."""
    from chatfeed.session.manager import SessionManager

    try:
        session = SessionManager().login(username)
    except IdentityError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Logged in as [bold]{session.username}[/bold]")


# ============================================================================
# Script
# ============================================================================


@app.command()
def script():
    """Show the configured bot script."""
    from chatfeed.config.loader import load_config

    config = load_config()
    bots = config.bots

    table = Table(title=f"Bot script ({bots.channel_name})")
    table.add_column("Offset", justify="right")
    table.add_column("Author", no_wrap=True)
    table.add_column("Body")
    table.add_column("Reactions")

    for entry in sorted(bots.script, key=lambda e: e.offset_s):
        author = f"{bots.username_prefix}{entry.author}"
        table.add_row(
            f"+{entry.offset_s:g}s",
            f"[{_author_style(author)}]{author}[/]",
            entry.body,
            ", ".join(r.type for r in entry.reactions),
        )

    console.print(table)


# ============================================================================
# Demo
# ============================================================================


@app.command()
def demo(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Override session username"),
    channel: Optional[str] = typer.Option(None, "--channel", "-c"),
    bots: Optional[bool] = typer.Option(None, "--bots/--no-bots"),
    seconds: float = typer.Option(5.0, "--seconds", "-s", help="How long to let bots talk"),
):
    """Run a feed against the in-memory backend and print the result."""
    from chatfeed.config.loader import load_config
    from chatfeed.session.manager import SessionManager, validate_username

    config = load_config()
    if bots is not None:
        config.feed.with_bots = bots

    try:
        username = validate_username(user) if user else SessionManager().require(config).username
    except IdentityError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    channel_name = channel or config.chat.channel_name
    messages = asyncio.run(_run_demo(config, username, channel_name, seconds))

    console.print(f"{__logo__} [bold]#{channel_name}[/bold] as {username}")
    console.print(_feed_table(messages, username))


async def _run_demo(config, username: str, channel_name: str, seconds: float):
    from chatfeed.backend.memory import InMemoryChatClient, InMemoryServer
    from chatfeed.feed.compositor import FeedCompositor

    async with InMemoryServer() as server:
        peer = InMemoryChatClient("sam", server).get_conversation(channel_name)
        await peer.send("morning! agenda is in https://example.com/agenda")

        client = InMemoryChatClient(username, server)
        async with FeedCompositor.from_config(client, config, username) as feed:
            with console.status("Loading conversation..."):
                await feed.open(channel_name)

            await feed.send(f"hi @sam, {username} here")
            await server.drain()

            first = feed.conversation.messages[0]
            await feed.add_reaction(first.id, "emoji")
            await server.drain()

            if feed.bots_enabled:
                with console.status(f"Letting bots talk for {seconds:g}s..."):
                    await asyncio.sleep(seconds)

            return feed.messages
