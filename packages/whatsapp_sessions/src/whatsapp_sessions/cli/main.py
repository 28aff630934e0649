"""
WhatsApp Sessions CLI

Command-line interface for WhatsApp session administration.

Commands:
- init-db: Create the session engine tables
- add-account: Provision a WhatsApp account for a user
- accounts: List accounts and their connection status
- connect: Start a session (prints pairing status, optionally waits for ready)
- disconnect: Stop a session and mark the account DISCONNECTED
- sync: Connect and reconcile all chats into conversations
- send: Send a text message
- conversations: List conversations for an account
- messages: Show the latest messages of a conversation
- mark-read: Reset a conversation's unread counter
"""

import asyncio
from typing import Optional
from uuid import UUID

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="whatsapp-sessions",
    help="WhatsApp Session Engine CLI",
)

console = Console()


def get_db():
    """Get database session."""
    from basecore.db import get_db as _get_db
    return next(_get_db())


def get_manager():
    """Build a session manager from the environment."""
    from basecore.logging import setup_logging
    from whatsapp_sessions.manager import WhatsAppManager

    setup_logging()
    return WhatsAppManager.from_env()


def parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        rprint(f"[red]Invalid {label}: {value}[/red]")
        raise typer.Exit(1)


def load_account(account_id: str):
    """Load an account or exit."""
    from whatsapp_sessions.persistence.repo import WhatsAppRepository

    account_uuid = parse_uuid(account_id, "account ID")
    db = get_db()
    try:
        account = WhatsAppRepository(db).get_account(account_uuid)
    finally:
        db.close()

    if not account:
        rprint(f"[red]Account not found: {account_id}[/red]")
        raise typer.Exit(1)
    return account


async def wait_until_ready(manager, account_id: str, timeout: int) -> bool:
    for _ in range(timeout):
        handle = manager.get_handle(account_id)
        if handle is not None and handle.is_ready:
            return True
        await asyncio.sleep(1)
    return False


@app.command()
def init_db():
    """
    Create the session engine tables.

    Uses DATABASE_URL; intended for development databases.
    """
    from basecore.db import init_db as _init_db
    from whatsapp_sessions.persistence.models import WhatsAppBase

    _init_db(WhatsAppBase.metadata)
    rprint("[green]Tables created[/green]")


@app.command()
def add_account(
    user_id: str = typer.Argument(..., help="Owning user UUID"),
    phone_number: Optional[str] = typer.Option(None, help="Phone number (informational)"),
):
    """
    Provision a WhatsApp account for a user.
    """
    from whatsapp_sessions.persistence.models import WhatsAppAccount

    user_uuid = parse_uuid(user_id, "user ID")
    db = get_db()

    try:
        account = WhatsAppAccount(user_id=user_uuid, phone_number=phone_number)
        db.add(account)
        db.commit()

        rprint("[green]Account created:[/green]")
        rprint(f"  ID: {account.id}")
        rprint(f"  User: {account.user_id}")
        rprint(f"  Status: {account.status}")
    finally:
        db.close()


@app.command()
def accounts(
    status: Optional[str] = typer.Option(None, help="Filter by status (CONNECTED, DISCONNECTED, ...)"),
):
    """
    List WhatsApp accounts.
    """
    from whatsapp_sessions.persistence.models import AccountStatus
    from whatsapp_sessions.persistence.repo import WhatsAppRepository

    status_filter = None
    if status:
        try:
            status_filter = AccountStatus(status.upper())
        except ValueError:
            rprint(f"[yellow]Unknown status: {status}[/yellow]")

    db = get_db()
    try:
        rows = WhatsAppRepository(db).list_accounts(status=status_filter)
    finally:
        db.close()

    if not rows:
        rprint("[yellow]No accounts found[/yellow]")
        raise typer.Exit(0)

    table = Table(title="WhatsApp Accounts")
    table.add_column("ID", style="dim")
    table.add_column("User", style="dim")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Last Heartbeat")

    for account in rows:
        table.add_row(
            str(account.id),
            str(account.user_id)[:8] + "...",
            account.display_name or account.phone_number or "-",
            account.status,
            account.last_heartbeat.strftime("%Y-%m-%d %H:%M") if account.last_heartbeat else "-",
        )

    console.print(table)


@app.command()
def connect(
    account_id: str = typer.Argument(..., help="Account UUID"),
    wait: int = typer.Option(0, help="Seconds to wait for the device to be linked"),
):
    """
    Start a session for an account.

    The pairing QR code is stored on the account. With --wait the command
    keeps the session open until it is ready (or the timeout expires).
    """
    account = load_account(account_id)
    manager = get_manager()

    async def run():
        result = await manager.start_session(str(account.id), str(account.user_id))
        if not result.success:
            return result, False
        ready = await wait_until_ready(manager, str(account.id), wait) if wait else False
        if ready:
            task = manager.lifecycle.sync_task(str(account.id))
            if task is not None:
                await task
        await manager.shutdown()
        return result, ready

    result, ready = asyncio.run(run())

    if not result.success:
        rprint("[red]Failed to start session[/red]")
        rprint(f"  Error: {result.error}")
        raise typer.Exit(1)

    rprint("[green]Session started[/green]")
    if result.qr_code:
        rprint(f"  QR code saved to account ({len(result.qr_code)} chars)")
    if wait:
        rprint(f"  Ready: {'Yes' if ready else 'No'}")


@app.command()
def disconnect(
    account_id: str = typer.Argument(..., help="Account UUID"),
):
    """
    Stop a session and mark the account DISCONNECTED.
    """
    account = load_account(account_id)
    manager = get_manager()

    if asyncio.run(manager.stop_session(str(account.id))):
        rprint("[green]Account disconnected[/green]")
    else:
        rprint("[red]Failed to update account status[/red]")
        raise typer.Exit(1)


@app.command()
def sync(
    account_id: str = typer.Argument(..., help="Account UUID"),
    wait: int = typer.Option(30, help="Seconds to wait for the session to be ready"),
):
    """
    Reconcile all chats of a connected account into conversations.
    """
    account = load_account(account_id)
    manager = get_manager()

    async def run():
        await manager.start_session(str(account.id), str(account.user_id))
        await wait_until_ready(manager, str(account.id), wait)
        result = await manager.sync_all(str(account.id))
        await manager.shutdown()
        return result

    result = asyncio.run(run())

    if result.success:
        rprint("[green]Sync completed[/green]")
        rprint(f"  New conversations: {result.total_synced}")
    else:
        rprint("[red]Sync failed[/red]")
        rprint(f"  Error: {result.error}")
        raise typer.Exit(1)


@app.command()
def send(
    account_id: str = typer.Argument(..., help="Account UUID"),
    to: str = typer.Argument(..., help="Recipient phone number or chat id"),
    text: str = typer.Option("Hello from WhatsApp Sessions!", help="Message text"),
):
    """
    Send a text message.
    """
    account = load_account(account_id)
    manager = get_manager()

    async def run():
        result = await manager.send(str(account.id), to, text)
        await manager.shutdown()
        return result

    result = asyncio.run(run())

    if result.success:
        rprint("[green]Message sent successfully![/green]")
        rprint(f"  Message ID: {result.message_id}")
    else:
        rprint("[red]Failed to send message[/red]")
        rprint(f"  Error: {result.error}")
        raise typer.Exit(1)


@app.command()
def conversations(
    account_id: str = typer.Argument(..., help="Account UUID"),
    status: Optional[str] = typer.Option(None, help="Filter by status (ACTIVE, ARCHIVED, BLOCKED)"),
    limit: int = typer.Option(20, help="Maximum number of conversations to show"),
):
    """
    List conversations for an account.
    """
    from whatsapp_sessions.persistence.models import ConversationStatus
    from whatsapp_sessions.persistence.repo import WhatsAppRepository

    account_uuid = parse_uuid(account_id, "account ID")

    status_filter = None
    if status:
        try:
            status_filter = ConversationStatus(status.upper())
        except ValueError:
            rprint(f"[yellow]Unknown status: {status}[/yellow]")

    db = get_db()
    try:
        rows = WhatsAppRepository(db).list_conversations(account_uuid, status=status_filter, limit=limit)
    finally:
        db.close()

    if not rows:
        rprint("[yellow]No conversations found[/yellow]")
        raise typer.Exit(0)

    table = Table(title=f"Conversations for account {account_id[:8]}...")
    table.add_column("ID", style="dim")
    table.add_column("Contact")
    table.add_column("Name")
    table.add_column("Group")
    table.add_column("Unread")
    table.add_column("Last Message")

    for conv in rows:
        table.add_row(
            str(conv.id)[:8] + "...",
            conv.contact_number,
            conv.contact_name or "-",
            "Yes" if conv.is_group else "No",
            str(conv.unread_count),
            conv.last_message_at.strftime("%Y-%m-%d %H:%M") if conv.last_message_at else "-",
        )

    console.print(table)


@app.command()
def messages(
    conversation_id: str = typer.Argument(..., help="Conversation UUID"),
    limit: int = typer.Option(20, help="Number of most recent messages to show"),
):
    """
    Show the latest messages of a conversation, oldest first.
    """
    from whatsapp_sessions.persistence.repo import WhatsAppRepository

    conversation_uuid = parse_uuid(conversation_id, "conversation ID")

    db = get_db()
    try:
        repo = WhatsAppRepository(db)
        conversation = repo.get_conversation_by_id(conversation_uuid)
        rows = repo.list_messages(conversation_uuid, limit=limit) if conversation else []
    finally:
        db.close()

    if not conversation:
        rprint(f"[red]Conversation not found: {conversation_id}[/red]")
        raise typer.Exit(1)

    if not rows:
        rprint("[yellow]No messages found[/yellow]")
        raise typer.Exit(0)

    table = Table(title=f"Messages with {conversation.contact_name or conversation.contact_number}")
    table.add_column("Time", style="dim")
    table.add_column("Direction")
    table.add_column("From")
    table.add_column("Content")
    table.add_column("Status")

    for message in rows:
        table.add_row(
            message.timestamp.strftime("%Y-%m-%d %H:%M") if message.timestamp else "-",
            message.direction,
            message.from_number or "-",
            message.content or "",
            message.status,
        )

    console.print(table)


@app.command()
def mark_read(
    conversation_id: str = typer.Argument(..., help="Conversation UUID"),
):
    """
    Reset the unread counter of a conversation.
    """
    from whatsapp_sessions.persistence.repo import WhatsAppRepository

    conversation_uuid = parse_uuid(conversation_id, "conversation ID")

    db = get_db()
    try:
        updated = WhatsAppRepository(db).mark_conversation_read(conversation_uuid)
        db.commit()
    finally:
        db.close()

    if not updated:
        rprint(f"[red]Conversation not found: {conversation_id}[/red]")
        raise typer.Exit(1)

    rprint("[green]Conversation marked as read[/green]")


if __name__ == "__main__":
    app()
