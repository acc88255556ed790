"""Command-line interface for pixo-sync.

A Typer-based CLI for inspecting and exercising the reconciliation layer
against the bundled seed dataset, the local override store and, when
configured, the remote backend.

Commands:
- status: Show configuration and override store contents
- classify: Tell canonical from seed identifiers
- note: Load and print a merged note view
- feed: Print the feed with the viewer's likes and collects
- like / collect: Toggle an interaction on a note
- conversations: List conversations for a signed-in user
- overrides: Inspect or clear local override keys
- listen: Print incoming messages until interrupted

Example:
    $ pixo-sync classify n1 3f2a9c1e-8b7d-4e6f-9a0b-1c2d3e4f5a6b
    $ pixo-sync like n1 --user-id me
    $ pixo-sync note n1 --user-id me
    $ pixo-sync listen --email mia@example.com --password secret
"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from pixo_sync.config import settings
from pixo_sync.conversations import ConversationListController
from pixo_sync.errors import PixoSyncError
from pixo_sync.gateway import SupabaseGateway
from pixo_sync.identifiers import RemoteRef, SeedRef, classify
from pixo_sync.logging import setup_logging as configure_logging
from pixo_sync.models import Message, MutationOutcome, Notice
from pixo_sync.realtime import RealtimeListener
from pixo_sync.reconcile import FeedController, NoteDetailController
from pixo_sync.seed import SeedCatalog
from pixo_sync.session import UserSession
from pixo_sync.store import (
    COLLECTED_NOTES_PREFIX,
    COMMENTS_PREFIX,
    FOLLOWED_PREFIX,
    LIKED_NOTES_PREFIX,
    OverrideStore,
)

# Initialize CLI app
app     = typer.Typer(
    name="pixo-sync",
    help="Interaction reconciliation for Pixo notes, profiles and chat",
    add_completion=False,
)
console = Console()


# =============================================================================
# Helper Functions
# =============================================================================


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: If True, set DEBUG level; otherwise the configured level
    """
    configure_logging(
        level="DEBUG" if verbose else settings.log_level,
        json_logs=settings.log_json,
        colorize=not settings.log_json,
    )


def run_async(coro):
    """Run async coroutine in event loop."""
    return asyncio.run(coro)


def print_notice(notice: Notice) -> None:
    """Notifier that prints notices to the console."""
    style = {"info": "cyan", "warning": "yellow", "error": "red"}.get(notice.level, "white")
    console.print(f"[{style}]• {notice.message}[/{style}]")


def open_store() -> OverrideStore:
    store = OverrideStore()
    store.initialize()
    return store


def open_gateway() -> Optional[SupabaseGateway]:
    """Gateway for the configured backend, or None when not configured."""
    if not settings.is_configured:
        return None
    return SupabaseGateway()


async def sign_in(
    gateway: Optional[SupabaseGateway], email: Optional[str], password: Optional[str]
) -> UserSession:
    if gateway is None:
        raise PixoSyncError("Set SUPABASE_URL and SUPABASE_ANON_KEY to use the backend")
    if not email or not password:
        raise PixoSyncError("--email and --password are required for remote entities")
    return await UserSession.sign_in(gateway, email, password)


async def resolve_session(
    ref_id: str,
    gateway: Optional[SupabaseGateway],
    user_id: Optional[str],
    email: Optional[str],
    password: Optional[str],
) -> UserSession:
    """Seed entities only need a local user id; remote ones need a sign-in."""
    if email or password or isinstance(classify(ref_id), RemoteRef):
        return await sign_in(gateway, email, password)
    if user_id:
        return UserSession(user_id=user_id)
    return UserSession.anonymous()


def render_note(controller: NoteDetailController) -> None:
    view = controller.view
    note = view.note

    table = Table(title=f"Note {note.id}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="yellow")

    table.add_row("Title", note.title)
    table.add_row("Author", note.author.username if note.author else note.user_id)
    table.add_row("Source", type(controller.ref).__name__)
    table.add_row("Likes", f"{view.likes_count:,}" + (" ♥" if view.is_liked else ""))
    table.add_row("Collects", f"{view.collects_count:,}" + (" ★" if view.is_collected else ""))
    table.add_row("Comments", f"{view.comments_count:,}")
    table.add_row("Following author", "yes" if view.is_following else "no")

    console.print(table)

    for comment in view.comments:
        who = comment.author.username if comment.author else comment.user_id
        console.print(f"  💬 [cyan]{who}[/cyan]: {comment.text}")


# =============================================================================
# CLI Commands
# =============================================================================


@app.command()
def status(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Show configuration and override store statistics.

    Examples:
        $ pixo-sync status
    """
    setup_logging(verbose)

    console.print("📊 [bold cyan]Pixo Sync Status[/bold cyan]\n")

    try:
        config_table = Table(title="Configuration", show_header=False)
        config_table.add_column("Key", style="cyan")
        config_table.add_column("Value", style="yellow")

        config_table.add_row("Environment", str(settings.environment))
        config_table.add_row("Backend URL", settings.supabase_url or "not set")
        config_table.add_row("Anon Key", settings.redact_key())
        config_table.add_row("Override Store", str(settings.override_store_path))
        config_table.add_row("Max Retries", str(settings.max_retries))
        config_table.add_row("Heartbeat", f"{settings.realtime_heartbeat_seconds}s")

        console.print(config_table)
        console.print()

        async def _counts() -> dict[str, int]:
            with open_store() as store:
                return {
                    "Liked notes": len(await store.keys(LIKED_NOTES_PREFIX)),
                    "Collected notes": len(await store.keys(COLLECTED_NOTES_PREFIX)),
                    "Follows": len(await store.keys(FOLLOWED_PREFIX)),
                    "Comment threads": len(await store.keys(COMMENTS_PREFIX)),
                }

        stats_table = Table(title="Override Store")
        stats_table.add_column("Keys", style="cyan")
        stats_table.add_column("Count", justify="right", style="green")
        for name, count in run_async(_counts()).items():
            stats_table.add_row(name, f"{count:,}")

        console.print(stats_table)

    except PixoSyncError as e:
        console.print(f"\n❌ [bold red]Status failed: {e}[/bold red]")
        raise typer.Exit(code=1)


@app.command("classify")
def classify_ids(
    ids: list[str] = typer.Argument(..., help="Identifiers to classify"),
) -> None:
    """Classify identifiers as remote (canonical) or seed.

    Examples:
        $ pixo-sync classify n1 3f2a9c1e-8b7d-4e6f-9a0b-1c2d3e4f5a6b
    """
    table = Table(title="Identifiers")
    table.add_column("ID", style="cyan")
    table.add_column("Source", style="yellow")

    for entity_id in ids:
        match classify(entity_id):
            case RemoteRef():
                table.add_row(entity_id, "remote")
            case SeedRef():
                table.add_row(entity_id, "seed")

    console.print(table)


@app.command()
def note(
    note_id: str = typer.Argument(..., help="Note ID"),
    user_id: Optional[str] = typer.Option(None, "--user-id", "-u", help="Local user id"),
    email: Optional[str] = typer.Option(None, "--email", help="Sign-in email"),
    password: Optional[str] = typer.Option(None, "--password", help="Sign-in password"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Load a note and print its merged view.

    Examples:
        $ pixo-sync note n1 --user-id me
    """
    setup_logging(verbose)

    async def _note() -> None:
        gateway = open_gateway()
        try:
            if email or password:
                session = await sign_in(gateway, email, password)
            else:
                session = UserSession(user_id=user_id) if user_id else UserSession.anonymous()
            with open_store() as store:
                controller = NoteDetailController(
                    note_id, session, gateway, store, SeedCatalog.default(), print_notice
                )
                state = await controller.load()
                if controller.view is None:
                    console.print(f"❌ [bold red]Note {note_id}: {state}[/bold red]")
                    raise typer.Exit(code=1)
                render_note(controller)
        finally:
            if gateway is not None:
                await gateway.close()

    try:
        run_async(_note())
    except PixoSyncError as e:
        console.print(f"\n❌ [bold red]{e}[/bold red]")
        raise typer.Exit(code=1)


@app.command()
def feed(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of notes"),
    user_id: Optional[str] = typer.Option(None, "--user-id", "-u", help="Local user id"),
    email: Optional[str] = typer.Option(None, "--email", help="Sign-in email"),
    password: Optional[str] = typer.Option(None, "--password", help="Sign-in password"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Print the feed with the viewer's likes and collects."""
    setup_logging(verbose)

    async def _feed() -> None:
        gateway = open_gateway()
        try:
            if email or password:
                session = await sign_in(gateway, email, password)
            else:
                session = UserSession(user_id=user_id) if user_id else UserSession.anonymous()
            with open_store() as store:
                controller = FeedController(
                    session, gateway, store, SeedCatalog.default(), print_notice, limit=limit
                )
                await controller.load()
        finally:
            if gateway is not None:
                await gateway.close()

        table = Table(title="Feed")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Title")
        table.add_column("Likes", justify="right", style="yellow", no_wrap=True)
        table.add_column("Collects", justify="right", style="yellow", no_wrap=True)
        for item in controller.items:
            table.add_row(
                item.note.id,
                item.note.title,
                f"{item.likes_count:,}" + (" ♥" if item.is_liked else ""),
                f"{item.collects_count:,}" + (" ★" if item.is_collected else ""),
            )
        console.print(table)

    try:
        run_async(_feed())
    except PixoSyncError as e:
        console.print(f"\n❌ [bold red]{e}[/bold red]")
        raise typer.Exit(code=1)


def _toggle(action: str, note_id: str, user_id, email, password) -> None:
    async def _run() -> None:
        gateway = open_gateway()
        try:
            session = await resolve_session(note_id, gateway, user_id, email, password)
            with open_store() as store:
                controller = NoteDetailController(
                    note_id, session, gateway, store, SeedCatalog.default(), print_notice
                )
                await controller.load()
                if action == "like":
                    result = await controller.toggle_like()
                else:
                    result = await controller.toggle_collect()

                if result.outcome != MutationOutcome.APPLIED:
                    console.print(f"❌ [bold red]{action} {result.outcome}[/bold red]")
                    raise typer.Exit(code=1)

                verb = action if result.value else f"un{action}"
                console.print(f"✅ [bold green]{verb}d {note_id}[/bold green]")
                render_note(controller)
        finally:
            if gateway is not None:
                await gateway.close()

    try:
        run_async(_run())
    except PixoSyncError as e:
        console.print(f"\n❌ [bold red]{e}[/bold red]")
        raise typer.Exit(code=1)


@app.command()
def like(
    note_id: str = typer.Argument(..., help="Note ID"),
    user_id: Optional[str] = typer.Option(None, "--user-id", "-u", help="Local user id"),
    email: Optional[str] = typer.Option(None, "--email", help="Sign-in email"),
    password: Optional[str] = typer.Option(None, "--password", help="Sign-in password"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Like or unlike a note.

    Seed notes are toggled in the local override store; remote notes need a
    sign-in.

    Examples:
        $ pixo-sync like n1 --user-id me
    """
    setup_logging(verbose)
    _toggle("like", note_id, user_id, email, password)


@app.command()
def collect(
    note_id: str = typer.Argument(..., help="Note ID"),
    user_id: Optional[str] = typer.Option(None, "--user-id", "-u", help="Local user id"),
    email: Optional[str] = typer.Option(None, "--email", help="Sign-in email"),
    password: Optional[str] = typer.Option(None, "--password", help="Sign-in password"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Collect or uncollect a note."""
    setup_logging(verbose)
    _toggle("collect", note_id, user_id, email, password)


@app.command()
def conversations(
    email: str = typer.Option(..., "--email", help="Sign-in email"),
    password: str = typer.Option(..., "--password", help="Sign-in password"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """List conversations, most recent first."""
    setup_logging(verbose)

    async def _list() -> None:
        gateway = open_gateway()
        try:
            session = await sign_in(gateway, email, password)
            controller = ConversationListController(session, gateway, print_notice)
            items = await controller.load()
        finally:
            if gateway is not None:
                await gateway.close()

        table = Table(title="Conversations")
        table.add_column("With", style="cyan")
        table.add_column("Last message")
        table.add_column("When", style="yellow")
        for item in items:
            prefix = "You: " if item.last_sender_is_me else ""
            when = item.last_message_time.isoformat() if item.last_message_time else ""
            table.add_row(item.counterpart.username, prefix + item.last_message_text, when)
        console.print(table)

    try:
        run_async(_list())
    except PixoSyncError as e:
        console.print(f"\n❌ [bold red]{e}[/bold red]")
        raise typer.Exit(code=1)


@app.command()
def overrides(
    prefix: str = typer.Option("", "--prefix", "-p", help="Only keys with this prefix"),
    clear: bool = typer.Option(False, "--clear", help="Delete the matching keys"),
) -> None:
    """List (or clear) local override keys.

    Examples:
        $ pixo-sync overrides --prefix liked_mock_notes_
        $ pixo-sync overrides --clear
    """

    async def _run() -> None:
        with open_store() as store:
            if clear:
                removed = await store.clear(prefix)
                console.print(f"🧹 Removed [bold]{removed}[/bold] key(s)")
                return

            table = Table(title="Overrides")
            table.add_column("Key", style="cyan")
            table.add_column("Value", style="yellow")
            for key in await store.keys(prefix):
                table.add_row(key, await store.raw(key) or "")
            console.print(table)

    try:
        run_async(_run())
    except PixoSyncError as e:
        console.print(f"\n❌ [bold red]{e}[/bold red]")
        raise typer.Exit(code=1)


@app.command()
def listen(
    email: str = typer.Option(..., "--email", help="Sign-in email"),
    password: str = typer.Option(..., "--password", help="Sign-in password"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Print incoming messages until interrupted (Ctrl-C)."""
    setup_logging(verbose)

    def _print(message: Message) -> None:
        sender = message.sender.username if message.sender else message.sender_id
        console.print(f"📨 [cyan]{sender}[/cyan]: {message.content}")

    async def _listen() -> None:
        gateway = open_gateway()
        try:
            session = await sign_in(gateway, email, password)
        finally:
            if gateway is not None:
                await gateway.close()

        listener = RealtimeListener(session)
        listener.add_handler(_print)
        async with listener:
            console.print(f"👂 Listening on [yellow]{listener.topic}[/yellow]")
            await listener.wait_closed()
        if listener.closed_reason:
            console.print(f"⚠️  Connection closed: {listener.closed_reason}")

    try:
        run_async(_listen())
    except KeyboardInterrupt:
        console.print("\n👋 Stopped")
    except (PixoSyncError, OSError) as e:
        console.print(f"\n❌ [bold red]{e}[/bold red]")
        raise typer.Exit(code=1)


def main() -> None:
    """Entry point for the ``pixo-sync`` script."""
    app()


if __name__ == "__main__":
    main()
