"""Command-line interface for Puros.

This module provides a Typer-based operator CLI for the Puros backend.

Commands:
- init: Create the database and show the configuration
- status: Show database statistics and settings
- feed: Print one page of the review feed with filters applied
- serve: Run the HTTP API with uvicorn

Example:
    $ puros init
    $ puros status
    $ puros feed --rating 4 --sort rating_high --page 2
    $ puros serve --port 8080
"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from puros.config import DateRange, SortKey, settings
from puros.database import DatabaseManager
from puros.errors import PurosError
from puros.feed import FeedView
from puros.rating import StarFill, stars
from puros.reviews import CommentService, LikeService, ReviewService

# Initialize CLI app
app = typer.Typer(
    name="puros",
    help="Puros cigar review backend",
    add_completion=False,
)
console = Console()

_STAR_GLYPHS = {StarFill.FULL: "★", StarFill.HALF: "½", StarFill.EMPTY: "☆"}


# =============================================================================
# Helper Functions
# =============================================================================


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbose: If True, set DEBUG level; otherwise WARNING
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        colorize=True,
        format="<green>{time:HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
        "{message}",
    )


def run_async(coro):
    """Run async coroutine in event loop."""
    return asyncio.run(coro)


def render_stars(rating: float) -> str:
    return "".join(_STAR_GLYPHS[fill] for fill in stars(rating))


# =============================================================================
# CLI Commands
# =============================================================================


@app.command()
def init(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Initialize even if the database file already exists",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Initialize the database and verify setup.

    Creates the SQLite database with all tables and indexes. Existing tables
    are kept; ``--force`` only skips the "already exists" guard.

    Examples:
        $ puros init
        $ puros init --force
    """
    setup_logging(verbose)

    console.print("🏗️  [bold cyan]Puros Initialization[/bold cyan]\n")

    try:
        db_path = Path(str(settings.database_path))
        if db_path.exists() and not force:
            console.print(
                f"⚠️  Database already exists at {settings.database_path}\n"
                "Use --force to initialize it anyway."
            )
            return

        db = DatabaseManager()
        db.initialize()

        console.print(f"✅ Database ready at [yellow]{settings.database_path}[/yellow]")

        console.print("\n📋 Configuration:")
        console.print(f"  • Environment: {settings.environment.value}")
        console.print(f"  • Site URL: {settings.base_url}")
        console.print(f"  • Feed Page Size: {settings.default_page_size}")
        console.print(f"  • Rating Filter: {settings.rating_filter_mode.value}")
        console.print(f"  • E-mail Key: {settings.redact_api_key()}")

        db.close()

        console.print("\n✅ [bold green]Initialization complete![/bold green]")
        if not settings.has_email_credentials:
            console.print("\nNext steps:")
            console.print("  1. Set RESEND_API_KEY to enable e-mail notifications")
            console.print("  2. Run: puros serve")

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"\n❌ [bold red]Initialization failed: {e}[/bold red]")
        raise typer.Exit(code=1)


@app.command()
def status(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Show database statistics and status.

    Example:
        $ puros status
    """
    setup_logging(verbose)

    console.print("📊 [bold cyan]Puros Status[/bold cyan]\n")

    try:
        db = DatabaseManager()
        db.initialize()

        stats = db.get_statistics()

        table = Table(title="Database Statistics")
        table.add_column("Collection", style="cyan")
        table.add_column("Rows", justify="right", style="green")

        for collection, count in stats.items():
            table.add_row(collection.capitalize(), f"{count:,}")

        console.print(table)

        console.print(f"\n📍 Database: [yellow]{settings.database_path}[/yellow]")
        console.print(f"🌍 Environment: [yellow]{settings.environment.value}[/yellow]")
        console.print(f"🔑 E-mail Key: [yellow]{settings.redact_api_key()}[/yellow]")
        console.print(f"⭐ Rating Filter: [yellow]{settings.rating_filter_mode.value}[/yellow]")

        db.close()

    except Exception as e:
        console.print(f"\n❌ [bold red]Status failed: {e}[/bold red]")
        raise typer.Exit(code=1)


@app.command()
def feed(
    rating: Optional[int] = typer.Option(
        None,
        "--rating",
        "-r",
        min=1,
        max=4,
        help="Rating floor (1-4)",
    ),
    date_range: Optional[DateRange] = typer.Option(
        None,
        "--date-range",
        "-d",
        help="Only reviews from the last week, month or year",
    ),
    name: str = typer.Option(
        "",
        "--name",
        "-n",
        help="Case-insensitive cigar name search",
    ),
    sort: SortKey = typer.Option(
        SortKey.NEWEST,
        "--sort",
        "-s",
        help="Sort order",
    ),
    user_id: Optional[str] = typer.Option(
        None,
        "--user",
        "-u",
        help="Only show reviews by this member",
    ),
    page: int = typer.Option(
        1,
        "--page",
        "-p",
        min=1,
        help="Page number (clamped to the last page)",
    ),
    page_size: Optional[int] = typer.Option(
        None,
        "--page-size",
        min=1,
        help="Reviews per page",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Print one page of the review feed.

    Examples:
        # Newest reviews
        $ puros feed

        # Four-star reviews, best first
        $ puros feed --rating 4 --sort rating_high

        # Search one member's reviews
        $ puros feed --user 0b7f... --name padron
    """
    setup_logging(verbose)

    async def _feed() -> FeedView:
        db = DatabaseManager()
        db.initialize()
        view = FeedView(
            ReviewService(db),
            lambda: None,
            likes=LikeService(db),
            comments=CommentService(db),
            subject_user_id=user_id,
            page_size=page_size,
        )
        try:
            view.panel.open_panel()
            view.panel.edit_pending("rating_floor", rating)
            view.panel.edit_pending("date_range", date_range)
            view.panel.edit_pending("name_substring", name)
            view.panel.edit_pending("sort_key", sort)
            await view.apply_filters()
            if page > 1 and not view.load_failed:
                await view.go_to(page)
            return view
        finally:
            view.close()
            db.close()

    try:
        view = run_async(_feed())
    except PurosError as e:
        console.print(f"\n❌ [bold red]Feed failed: {e}[/bold red]")
        raise typer.Exit(code=1)

    if view.load_failed:
        for notice in view.notices.notices:
            console.print(f"❌ [bold red]{notice.message}[/bold red]")
        raise typer.Exit(code=1)

    paginator = view.paginator
    table = Table(
        title=f"Reviews (page {paginator.page_number} of {paginator.page_count()}, "
        f"{paginator.total_count:,} total)"
    )
    table.add_column("Cigar", style="cyan")
    table.add_column("Rating", style="yellow")
    table.add_column("Date", style="green")
    table.add_column("Likes", justify="right")
    table.add_column("Comments", justify="right")
    table.add_column("ID", style="dim")

    for review in view.rows:
        toggle = view.like_toggles.get(review.id)
        table.add_row(
            review.cigar_name,
            f"{render_stars(review.rating)} {review.rating:.1f}",
            review.review_date.isoformat(),
            str(toggle.count if toggle else 0),
            str(view.comment_counts.get(review.id, 0)),
            review.id,
        )

    console.print(table)

    active = view.active_filters.active_count()
    if active:
        console.print(f"\n🔎 {active} filter(s) active")
    if not view.rows:
        console.print("\nNo reviews match these filters.")


@app.command()
def serve(
    host: Optional[str] = typer.Option(
        None,
        "--host",
        help="Bind address (defaults to settings)",
    ),
    port: Optional[int] = typer.Option(
        None,
        "--port",
        "-p",
        help="Port (defaults to settings)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
) -> None:
    """Run the HTTP API.

    Examples:
        $ puros serve
        $ puros serve --host 0.0.0.0 --port 8080
    """
    import uvicorn

    from puros.server import create_app

    setup_logging(verbose)

    bind_host = host or settings.server_host
    bind_port = port or settings.server_port

    console.print("🚀 [bold cyan]Puros API[/bold cyan]\n")
    console.print(f"📍 Database: [yellow]{settings.database_path}[/yellow]")
    console.print(f"🌐 Listening on [yellow]http://{bind_host}:{bind_port}[/yellow]")
    console.print(f"🔑 E-mail Key: [yellow]{settings.redact_api_key()}[/yellow]\n")

    try:
        uvicorn.run(create_app(), host=bind_host, port=bind_port, log_level="debug" if verbose else "info")
    except Exception as e:
        console.print(f"\n❌ [bold red]Server failed: {e}[/bold red]")
        raise typer.Exit(code=1)


def main() -> None:
    """Main entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
