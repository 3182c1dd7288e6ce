"""ProjectGate CLI.

Commands:
- init: Initialize database schema
- register-user: Create an account (first account becomes admin)
- seed-admin: Promote the earliest account to admin if none exists
- set-role: Change a user's global role
- issue-token: Issue a contractor/client portal token
- validate-token: Validate a portal token or short code
- revoke-token: Deactivate a portal token
- extend-token: Push a portal token's expiry forward
- renew-tokens: Run the auto-renewal sweep once
- audit: Show the change history of an audited resource
- serve: Run the HTTP API

Every command acts as the service principal.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from projectgate.config import get_config
from projectgate.core.logging import configure_logging
from projectgate.db.connection import close_db, get_session, init_db
from projectgate.identity import register_user, seed_admin, set_role
from projectgate.models import GlobalRole, Principal, TokenClass
from projectgate.mutations.audit import AUDIT_SPECS, audit_report
from projectgate.portal.renewal import renew_expiring_tokens
from projectgate.portal.tokens import (
    extend_portal_token,
    issue_portal_token,
    revoke_portal_token,
    validate_portal_token,
)

app = typer.Typer(
    name="projectgate",
    help="ProjectGate - project-scoped authorization, portal tokens and audit",
    no_args_is_help=True,
)

console = Console()


def _run(coro):
    """Run a coroutine and release the engine afterwards."""

    async def _wrapped():
        try:
            return await coro
        finally:
            await close_db()

    return asyncio.run(_wrapped())


@app.callback()
def _setup() -> None:
    configure_logging()


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")
    if drop:
        console.print("[yellow]Dropping existing tables...[/yellow]")
    _run(init_db(drop=drop))
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command(name="register-user")
def register_user_cmd(
    email: str = typer.Argument(..., help="Account email"),
    name: str | None = typer.Option(None, "--name", help="Display name"),
    confirmed: bool = typer.Option(False, "--confirmed", help="Mark email as confirmed"),
):
    """Create an account with the default user role."""

    async def _register():
        async with get_session() as session:
            user = await register_user(session, email, display_name=name, confirmed=confirmed)
            return user.id

    user_id = _run(_register())
    console.print(f"[bold green]✓[/bold green] Registered {email} ({user_id})")


@app.command(name="seed-admin")
def seed_admin_cmd():
    """Promote the earliest (confirmed) account to admin when there is no admin."""

    async def _seed():
        async with get_session() as session:
            return await seed_admin(session)

    promoted = _run(_seed())
    if promoted is None:
        console.print("[yellow]No change:[/yellow] an admin already exists or there are no accounts")
    else:
        console.print(f"[bold green]✓[/bold green] User {promoted} is now admin")


@app.command(name="set-role")
def set_role_cmd(
    user_id: UUID = typer.Argument(..., help="User ID"),
    role: GlobalRole = typer.Argument(..., help="New global role"),
):
    """Change a user's global role."""

    async def _set():
        async with get_session() as session:
            return await set_role(session, Principal.service(), user_id, role)

    if _run(_set()):
        console.print(f"[bold green]✓[/bold green] {user_id} is now {role.value}")
    else:
        console.print("[red]✗[/red] Role unchanged (last admin cannot be demoted)")
        raise typer.Exit(code=1)


@app.command(name="issue-token")
def issue_token_cmd(
    project_id: UUID = typer.Argument(..., help="Project ID"),
    token_class: TokenClass = typer.Option(TokenClass.CONTRACTOR, "--class", help="Token class"),
    days: int | None = typer.Option(None, "--days", help="Lifetime in days"),
    holder_name: str | None = typer.Option(None, "--name", help="Holder name"),
    holder_email: str | None = typer.Option(None, "--email", help="Holder email"),
    contractor_type: str | None = typer.Option(
        None, "--contractor-type", help="main_contractor or subcontractor"
    ),
    tabs: list[str] = typer.Option([], "--tab", help="Visible document tab (repeatable)"),
    no_auto_renew: bool = typer.Option(False, "--no-auto-renew", help="Disable auto-renewal"),
):
    """Issue a portal token for a project."""

    async def _issue():
        async with get_session() as session:
            token = await issue_portal_token(
                session,
                Principal.service(),
                project_id,
                token_class,
                expires_in=timedelta(days=days) if days else None,
                holder_name=holder_name,
                holder_email=holder_email,
                contractor_type=contractor_type,
                document_tabs=tabs,
                auto_renew=False if no_auto_renew else None,
            )
            return token.token, token.short_code, token.expires_at

    secret, short_code, expires_at = _run(_issue())

    table = Table(title=f"{token_class.value.title()} portal token")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Token", secret)
    table.add_row("Short code", short_code)
    table.add_row("Expires", expires_at.strftime("%Y-%m-%d %H:%M UTC"))
    console.print(table)


@app.command(name="validate-token")
def validate_token_cmd(
    credential: str = typer.Argument(..., help="Token or short code"),
):
    """Validate a portal token (records an access like a real portal visit)."""

    async def _validate():
        async with get_session() as session:
            return await validate_portal_token(session, credential, user_agent="projectgate-cli")

    result = _run(_validate())
    if not result.is_valid:
        console.print(f"[red]✗ Invalid[/red] ({result.reason})")
        raise typer.Exit(code=1)

    console.print("[bold green]✓ Valid[/bold green]")
    console.print(f"  Project: {result.project_id}")
    console.print(f"  Class:   {result.token_class.value}")
    console.print(f"  Expires: {result.expires_at:%Y-%m-%d %H:%M} UTC")
    if result.document_tabs:
        console.print(f"  Tabs:    {', '.join(result.document_tabs)}")


@app.command(name="revoke-token")
def revoke_token_cmd(token_id: UUID = typer.Argument(..., help="Token ID")):
    """Deactivate a portal token."""

    async def _revoke():
        async with get_session() as session:
            return await revoke_portal_token(session, Principal.service(), token_id)

    if not _run(_revoke()):
        console.print(f"[red]✗[/red] Token {token_id} not found")
        raise typer.Exit(code=1)
    console.print(f"[bold green]✓[/bold green] Token {token_id} revoked")


@app.command(name="extend-token")
def extend_token_cmd(
    token_id: UUID = typer.Argument(..., help="Token ID"),
    days: int = typer.Option(30, "--days", help="Days to add"),
):
    """Extend a portal token's expiry."""

    async def _extend():
        async with get_session() as session:
            token = await extend_portal_token(session, Principal.service(), token_id, days=days)
            return token.expires_at if token is not None else None

    expires_at = _run(_extend())
    if expires_at is None:
        console.print(f"[red]✗[/red] Token {token_id} not found")
        raise typer.Exit(code=1)
    console.print(f"[bold green]✓[/bold green] Token now expires {expires_at:%Y-%m-%d %H:%M} UTC")


@app.command(name="renew-tokens")
def renew_tokens_cmd():
    """Run the portal auto-renewal sweep once."""

    async def _renew():
        async with get_session() as session:
            return await renew_expiring_tokens(session)

    report = _run(_renew())
    console.print(f"[bold green]✓[/bold green] Renewed {report.renewed} token(s)")
    for token_id in report.renewed_token_ids:
        console.print(f"  • {token_id}", style="dim")


@app.command()
def audit(
    resource: str = typer.Argument(..., help=f"One of: {', '.join(AUDIT_SPECS)}"),
    project_id: UUID | None = typer.Option(None, "--project", help="Project ID"),
    limit: int = typer.Option(50, "--limit", help="Maximum rows"),
):
    """Show who changed what, and when."""
    if resource not in AUDIT_SPECS:
        console.print(f"[red]✗[/red] {resource} is not audited")
        raise typer.Exit(code=1)

    async def _report():
        async with get_session() as session:
            return await audit_report(session, resource, project_id=project_id, limit=limit)

    entries = _run(_report())
    if not entries:
        console.print("[yellow]No audit records[/yellow]")
        return

    table = Table(title=f"Audit: {resource}")
    table.add_column("When", style="cyan")
    table.add_column("Change")
    table.add_column("Entity", style="dim")
    table.add_column("Fields")
    table.add_column("By")
    for entry in entries:
        table.add_row(
            entry.changed_at.strftime("%Y-%m-%d %H:%M:%S"),
            entry.change_type.value,
            str(entry.entity_id or "-"),
            ", ".join(entry.changed_fields) or "-",
            entry.changed_by or "-",
        )
    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Bind address"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(False, help="Enable autoreload (dev only)"),
):
    """Run the HTTP API."""
    import uvicorn

    typer.echo(f"Starting ProjectGate API on http://{host}:{port}")
    uvicorn.run(
        "projectgate.web.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        workers=1,
    )


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
