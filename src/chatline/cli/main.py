"""Chatline CLI - Main entry point."""

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

app = typer.Typer(
    name="chatline",
    help="AI chat service with persisted history and live updates",
    add_completion=False,
)
console = Console()


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to listen on"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
):
    """Run the HTTP and WebSocket server."""
    import uvicorn

    console.print(f"[bold]Chatline[/bold] listening on http://{host}:{port}")
    uvicorn.run("chatline.api:app", host=host, port=port, reload=reload)


@app.command("issue-token")
def issue_token(
    user_id: str = typer.Argument(..., help="User id to embed in the token"),
    minutes: Optional[int] = typer.Option(
        None, "--minutes", "-m", help="Lifetime (defaults to ACCESS_TOKEN_EXPIRE_MINUTES)"
    ),
):
    """Print a signed bearer token for development use."""
    from chatline.auth import create_access_token
    from chatline.config import get_settings

    settings = get_settings()
    token = create_access_token(
        user_id,
        settings.secret_key,
        expires_minutes=minutes if minutes is not None else settings.access_token_expire_minutes,
        algorithm=settings.jwt_algorithm,
    )
    typer.echo(token)


@app.command()
def history(
    user_id: str = typer.Argument(..., help="Owner of the transcript"),
    limit: int = typer.Option(50, "--limit", "-n", help="Show at most the last N messages"),
):
    """Show a user's stored messages."""
    from chatline.chat import MessageStore
    from chatline.config import get_settings
    from chatline.errors import ChatlineError
    from chatline.state import create_backend

    backend = create_backend(get_settings().database_url)
    try:
        messages = MessageStore(backend).list_by_user(user_id)
    except ChatlineError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)
    finally:
        backend.close()

    if not messages:
        console.print(f"[yellow]No messages for user {user_id}[/yellow]")
        return

    table = Table(title=f"History for {user_id}")
    table.add_column("Time", style="dim")
    table.add_column("Sender")
    table.add_column("Text")
    for message in messages[-limit:]:
        sender_style = "cyan" if message.role.value == "user" else "green"
        table.add_row(
            message.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            f"[{sender_style}]{message.role.value}[/{sender_style}]",
            message.text,
        )
    console.print(table)


def main():
    app()


if __name__ == "__main__":
    main()
