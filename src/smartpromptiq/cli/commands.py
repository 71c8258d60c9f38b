"""CLI commands for SmartPromptIQ.

Commands:
- init-db, seed-academy: database setup
- serve: run the Web API
- pricing, optimal-cost: token catalog
- ab-assign, ab-results: A/B test inspection
- tokens-balance, tokens-add, expire-tokens: token administration
- create-user: add an account
"""

import sqlite3
from pathlib import Path

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from smartpromptiq.config.app_config import load_app_config
from smartpromptiq.config.pricing import (
    SUBSCRIPTION_TIERS,
    TOKEN_PACKAGES,
    UNLIMITED,
    PricingError,
    calculate_optimal_token_cost,
    get_tier,
)
from smartpromptiq.core import academy, token_manager
from smartpromptiq.core.ab_testing import get_ab_service
from smartpromptiq.core.security import hash_password
from smartpromptiq.db import users_repository
from smartpromptiq.db.database import init_db, to_db_timestamp

app = typer.Typer(
    name="spiq",
    help="SmartPromptIQ backend administration.",
    no_args_is_help=True,
)

console = Console()

DB_OPTION = typer.Option(None, "--db", help="Database file (default from app config)")


def _open_db(db: Path | None) -> Path:
    path = db or Path(load_app_config().paths["db_path"])
    init_db(path)
    return path


def _cents(value: int) -> str:
    return f"${value / 100:,.2f}"


def _limit(value: int) -> str:
    return "unlimited" if value == UNLIMITED else str(value)


# =============================================================================
# DATABASE
# =============================================================================


@app.command(name="init-db")
def init_db_command(db: Path | None = DB_OPTION) -> None:
    """Create the database schema."""
    path = _open_db(db)
    console.print(f"[green]✓ Database ready:[/green] {path}")


@app.command(name="seed-academy")
def seed_academy(db: Path | None = DB_OPTION) -> None:
    """Replace the course catalog with the built-in courses."""
    _open_db(db)
    count = academy.seed_courses()
    console.print(f"[green]✓ Seeded {count} courses[/green]")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the Web API with uvicorn."""
    console.print(f"[blue]Serving SmartPromptIQ API on http://{host}:{port}[/blue]")
    uvicorn.run(
        "smartpromptiq.web.api:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


# =============================================================================
# PRICING
# =============================================================================


@app.command()
def pricing() -> None:
    """Show token packages and subscription tiers."""
    packages = Table(title="Token packages", show_header=True, header_style="bold")
    packages.add_column("Key", style="cyan")
    packages.add_column("Tokens", justify="right")
    packages.add_column("Price", justify="right")
    packages.add_column("Per token", justify="right")
    for pkg in TOKEN_PACKAGES.values():
        packages.add_row(
            pkg.key, str(pkg.tokens), _cents(pkg.price_in_cents), f"${pkg.price_per_token:.3f}"
        )
    console.print(packages)

    tiers = Table(title="Subscription tiers", show_header=True, header_style="bold")
    tiers.add_column("Tier", style="cyan")
    tiers.add_column("Monthly", justify="right")
    tiers.add_column("Tokens/month", justify="right")
    tiers.add_column("Rollover", justify="right")
    tiers.add_column("Prompts/hour", justify="right")
    tiers.add_column("Prompts/day", justify="right")
    for tier in SUBSCRIPTION_TIERS.values():
        tiers.add_row(
            tier.id,
            _cents(tier.price_in_cents),
            _limit(tier.tokens_per_month),
            _limit(tier.max_token_rollover),
            _limit(tier.prompts_per_hour),
            _limit(tier.prompts_per_day),
        )
    console.print(tiers)


@app.command(name="optimal-cost")
def optimal_cost(
    tokens: int = typer.Argument(..., help="Tokens needed"),
) -> None:
    """Cheapest package combination for a number of tokens."""
    try:
        result = calculate_optimal_token_cost(tokens)
    except PricingError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)

    for line in result["breakdown"]:
        console.print(
            f"  {line['quantity']} × {line['package']}: "
            f"{line['tokens']} tokens, {_cents(line['cost'])}"
        )
    console.print(
        f"[green]Total: {_cents(result['total_cost_in_cents'])} "
        f"for {result['tokens_received']} tokens[/green]"
    )


# =============================================================================
# A/B TESTS
# =============================================================================


@app.command(name="ab-assign")
def ab_assign(
    user_id: str = typer.Argument(..., help="User or visitor ID"),
    test_id: str | None = typer.Argument(None, help="Test ID (all active tests if omitted)"),
) -> None:
    """Show which variant a user gets."""
    service = get_ab_service()
    tests = [test_id] if test_id else [t.id for t in service.list_tests()]

    for tid in tests:
        if service.get_test(tid) is None:
            console.print(f"[red]✗ Unknown test: {tid}[/red]")
            raise typer.Exit(code=1)
        variant = service.assign_user_to_test(user_id, tid)
        if variant is None:
            console.print(f"  {tid}: [dim]not in test[/dim]")
        else:
            console.print(f"  {tid}: [cyan]{variant.id}[/cyan] ({variant.name})")


@app.command(name="ab-results")
def ab_results(
    test_id: str = typer.Argument(..., help="Test ID"),
    db: Path | None = DB_OPTION,
) -> None:
    """Per-variant users and events tracked so far."""
    _open_db(db)
    results = get_ab_service().get_test_results(test_id)
    if results is None:
        console.print(f"[red]✗ Unknown test: {test_id}[/red]")
        raise typer.Exit(code=1)

    table = Table(title=results["test_name"], show_header=True, header_style="bold")
    table.add_column("Variant", style="cyan")
    table.add_column("Users", justify="right")
    table.add_column("Events", justify="right")
    for variant_id, data in results["variants"].items():
        table.add_row(f"{variant_id} ({data['name']})", str(data["users"]), str(data["events"]))
    console.print(table)
    console.print(
        f"[dim]{results['total_users']} users, {results['total_events']} events[/dim]"
    )


# =============================================================================
# TOKENS AND USERS
# =============================================================================


def _resolve_user_or_exit(identifier: str) -> users_repository.UserRecord:
    """Find a user by ID or email."""
    user = users_repository.get_user_by_id(identifier)
    if user is None and "@" in identifier:
        user = users_repository.get_user_by_email(identifier)
    if user is None:
        console.print(f"[red]✗ User not found: {identifier}[/red]")
        raise typer.Exit(code=1)
    return user


@app.command(name="tokens-balance")
def tokens_balance(
    user: str = typer.Argument(..., help="User ID or email"),
    db: Path | None = DB_OPTION,
) -> None:
    """Show a user's token balance."""
    _open_db(db)
    record = _resolve_user_or_exit(user)
    balance = token_manager.get_token_balance(record.user_id)

    monthly = balance["monthly"]
    console.print(f"[bold]{record.email}[/bold] ({balance['subscription_tier']})")
    console.print(f"  [dim]balance:[/dim]  {balance['total_balance']}")
    console.print(
        f"  [dim]monthly:[/dim]  {monthly['used']} used / {_limit(monthly['limit'])}"
    )
    console.print(f"  [dim]lifetime:[/dim] {balance['lifetime']['used']} used")
    for credit in balance["purchased"]["active"]:
        console.print(
            f"  [dim]credit:[/dim]   {credit['tokens']} ({credit['package_type'] or 'bonus'}), "
            f"expires {credit['expires_at'] or 'never'}"
        )


@app.command(name="tokens-add")
def tokens_add(
    user: str = typer.Argument(..., help="User ID or email"),
    tokens: int = typer.Argument(..., help="Tokens to credit"),
    type: str = typer.Option("bonus", "--type", "-t", help="bonus, refund, purchase or rollover"),
    description: str | None = typer.Option(None, "--description", "-d"),
    db: Path | None = DB_OPTION,
) -> None:
    """Credit tokens to a user."""
    _open_db(db)
    record = _resolve_user_or_exit(user)
    try:
        tx = token_manager.add_tokens(record.user_id, tokens, type=type, description=description)
    except token_manager.TokenError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓ Added {tokens} tokens. New balance: {tx.balance_after}[/green]")


@app.command(name="expire-tokens")
def expire_tokens(
    rollover: bool = typer.Option(
        False, "--rollover", help="Also run monthly rollovers that are due"
    ),
    db: Path | None = DB_OPTION,
) -> None:
    """Expire credits past their expiry date."""
    _open_db(db)
    result = token_manager.expire_tokens()
    console.print(
        f"[green]✓ Expired {result['expired_transactions']} credits, "
        f"removed {result['tokens_removed']} tokens[/green]"
    )
    if rollover:
        count = token_manager.run_monthly_rollovers()
        console.print(f"[green]✓ Rolled over {count} users[/green]")


@app.command(name="create-user")
def create_user(
    email: str = typer.Argument(..., help="Login email"),
    password: str = typer.Option(..., "--password", prompt=True, hide_input=True),
    tier: str = typer.Option("free", "--tier", help="Subscription tier"),
    admin: bool = typer.Option(False, "--admin", help="Grant the admin role"),
    first_name: str | None = typer.Option(None, "--first-name"),
    last_name: str | None = typer.Option(None, "--last-name"),
    db: Path | None = DB_OPTION,
) -> None:
    """Create an account with the tier's monthly allowance."""
    if tier not in SUBSCRIPTION_TIERS:
        console.print(f"[red]✗ Unknown tier: {tier}[/red]")
        raise typer.Exit(code=1)

    _open_db(db)
    plan = get_tier(tier)
    try:
        user = users_repository.create_user(
            email=email,
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
            role="admin" if admin else "user",
            subscription_tier=plan.id,
            token_balance=max(0, plan.tokens_per_month),
            monthly_reset_date=to_db_timestamp(token_manager.next_reset_date()),
        )
    except sqlite3.IntegrityError:
        console.print(f"[yellow]⚠ User already exists: {email}[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"[green]✓ Created user {user.email}[/green]")
    console.print(f"  [dim]user_id:[/dim] {user.user_id}")
    console.print(f"  [dim]tier:[/dim]    {user.subscription_tier}")
    console.print(f"  [dim]tokens:[/dim]  {user.token_balance}")


if __name__ == "__main__":
    app()
