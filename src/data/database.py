"""
Database connection and call history management.

Usage:
    python -m src.data.database init    # Create the call_records table
    python -m src.data.database reset   # Drop and recreate it
    python -m src.data.database check   # Verify connection and list recorded calls
"""

import os
import sys

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

# Load environment variables
load_dotenv()

console = Console()

DEFAULT_DATABASE_URL = "sqlite:///reengage.db"


def get_database_url() -> str:
    """Get database URL from the environment, defaulting to a local SQLite file."""
    return os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL


def get_engine(database_url: str | None = None) -> Engine:
    """Create and return a SQLAlchemy engine."""
    return create_engine(database_url or get_database_url(), echo=False)


def init_database(engine: Engine | None = None) -> None:
    """Create the call history table if it does not exist."""
    from src.outreach.call_history import CALL_RECORDS_DDL

    console.print("[bold blue]Initializing database...[/bold blue]")
    try:
        engine = engine or get_engine()
        with engine.begin() as conn:
            conn.execute(text(CALL_RECORDS_DDL))
        console.print("[bold green]✓ Database initialized successfully![/bold green]")
    except SQLAlchemyError as e:
        console.print(f"[bold red]Error initializing database: {e}[/bold red]")
        sys.exit(1)


def reset_database(engine: Engine | None = None) -> None:
    """Drop the call history table and recreate it."""
    from src.outreach.call_history import CALL_RECORDS_TABLE

    console.print("[bold yellow]Resetting database...[/bold yellow]")
    try:
        engine = engine or get_engine()
        with engine.begin() as conn:
            conn.execute(text(f"DROP TABLE IF EXISTS {CALL_RECORDS_TABLE}"))
        console.print("[yellow]Tables dropped.[/yellow]")
    except SQLAlchemyError as e:
        console.print(f"[bold red]Error resetting database: {e}[/bold red]")
        sys.exit(1)
    init_database(engine)


def check_database(engine: Engine | None = None, limit: int = 20) -> None:
    """Check the connection and show the most recent call records."""
    from src.outreach.call_history import CALL_RECORDS_TABLE

    console.print("[bold blue]Checking database connection...[/bold blue]")
    try:
        engine = engine or get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
            console.print("[green]✓ Connection successful![/green]")

            try:
                rows = conn.execute(
                    text(
                        f"SELECT user_id, created_at, dispatch_id, destination "
                        f"FROM {CALL_RECORDS_TABLE} ORDER BY created_at DESC LIMIT :limit"
                    ),
                    {"limit": limit},
                ).fetchall()
                total = conn.execute(text(f"SELECT COUNT(*) FROM {CALL_RECORDS_TABLE}")).scalar_one()
            except SQLAlchemyError:
                console.print(f"[red]Table {CALL_RECORDS_TABLE} not found. Run `init` first.[/red]")
                return

        table = Table(title=f"Call Records ({total:,} total)")
        table.add_column("User", style="cyan")
        table.add_column("Created", style="green")
        table.add_column("Dispatch ID")
        table.add_column("Destination")
        for row in rows:
            table.add_row(str(row[0]), str(row[1]), row[2] or "-", row[3] or "-")
        console.print(table)

    except SQLAlchemyError as e:
        console.print(f"[bold red]Error connecting to database: {e}[/bold red]")
        console.print("\n[yellow]Troubleshooting tips:[/yellow]")
        console.print("  1. Check DATABASE_URL in your .env file")
        console.print("  2. Ensure the database server is running and reachable")
        sys.exit(1)


# =============================================================================
# CLI
# =============================================================================

@click.group()
def cli():
    """Database management commands."""
    pass


@cli.command()
def init():
    """Create the call history table."""
    init_database()


@cli.command()
def reset():
    """Drop and recreate the call history table."""
    reset_database()


@cli.command()
@click.option("--limit", default=20, show_default=True, help="Records to show")
def check(limit: int):
    """Check database connection and show recent call records."""
    check_database(limit=limit)


if __name__ == "__main__":
    cli()
