import typer
from rich.console import Console
from rich.table import Table
from typing import Optional

from cpc.commands import session_from
from cpc.core import Freshness

app = typer.Typer(help="Inspect and clear cached lookups.")
console = Console()

STATUS_STYLE = {
    Freshness.FRESH: "green",
    Freshness.STALE: "yellow",
    Freshness.MISSING: "red",
}


@app.command("list")
def cache_list(
    ctx: typer.Context,
    ttl: Optional[float] = typer.Option(None, help="Maximum age in seconds used for the status column"),
):
    """List cpc cache files with their age and freshness."""
    cache = session_from(ctx).cache
    keys = cache.keys()
    if not keys:
        console.print(f"ℹ️  No cache entries in {cache.cache_dir}")
        return

    table = Table(title=f"Cache: {cache.cache_dir}")
    table.add_column("Key")
    table.add_column("Age", justify="right")
    table.add_column("Status")
    for key in keys:
        freshness = cache.freshness(key, ttl=ttl)
        age = cache.age(key)
        table.add_row(
            key,
            "-" if age is None else f"{int(age)}s",
            f"[{STATUS_STYLE[freshness]}]{freshness.value}[/]",
        )
    console.print(table)


@app.command("status")
def cache_status(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Cache key (file name in the cache directory)"),
    source: Optional[str] = typer.Option(None, help="File the cached value was derived from"),
    ttl: Optional[float] = typer.Option(None, help="Maximum age in seconds"),
):
    """Show whether a cache entry is fresh, stale or missing."""
    cache = session_from(ctx).cache
    freshness = cache.freshness(key, source=source, ttl=ttl)
    age = cache.age(key)
    if age is None:
        typer.echo(f"{key}: {freshness.value}")
    else:
        typer.echo(f"{key}: {freshness.value} (age: {int(age)}s)")
    if freshness is not Freshness.FRESH:
        raise typer.Exit(code=1)


@app.command("show")
def cache_show(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Cache key"),
):
    """Print a cached value."""
    value = session_from(ctx).cache.read(key)
    if value is None:
        typer.echo(f"❌ No cache entry for '{key}'", err=True)
        raise typer.Exit(code=1)
    typer.echo(value)


@app.command("clear")
def cache_clear(
    ctx: typer.Context,
    pattern: Optional[str] = typer.Argument(None, help="Key or glob pattern; omit with --all"),
    clear_all: bool = typer.Option(False, "--all", help="Remove every cpc cache file"),
):
    """Remove cache entries."""
    cache = session_from(ctx).cache
    if clear_all:
        removed = cache.clear_all()
    elif pattern:
        try:
            removed = cache.clear(pattern)
        except ValueError as e:
            typer.echo(f"❌ {e}", err=True)
            raise typer.Exit(code=2)
    else:
        typer.echo("❌ Give a key/pattern or --all", err=True)
        raise typer.Exit(code=2)
    typer.echo(f"🧹 Removed {removed} cache file(s)")
