"""
Command line interface for atomcache.

Exposes the cache operations and scripted counters against the Valkey
server configured through the environment or a .env file.
"""

import logging
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table
from rich import box

from .cache import AtomCacheError, CacheManager
from .scripts import ScriptRegistry
from .utils.config import AtomCacheSettings, load_config

app = typer.Typer(help="Valkey cache client with scripted atomic counters")
console = Console()


class _State:
    settings: Optional[AtomCacheSettings] = None
    manager: Optional[CacheManager] = None


state = _State()


def get_manager() -> CacheManager:
    """Create the cache manager for this invocation on first use."""
    if state.manager is None:
        settings = state.settings or load_config()
        state.manager = CacheManager.from_config(
            settings.to_valkey_config(), **settings.manager_kwargs()
        )
    return state.manager


def parse_entries(pairs: List[str]) -> dict:
    entries = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {pair!r}")
        entries[key] = value
    return entries


def print_result(label: str, value) -> None:
    color = "green" if value not in (None, False) else "yellow"
    console.print(f"[bold]{label}[/bold]: [{color}]{value}[/{color}]")


@app.callback()
def main(
    env_file: Optional[str] = typer.Option(
        None,
        "--env-file",
        "-e",
        help="Path to a .env file with VALKEY_* / ATOMCACHE_* settings"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging"
    )
):
    """Configure logging and load settings."""
    try:
        state.settings = load_config(env_file)
    except ValueError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(code=2)

    level = "DEBUG" if verbose else state.settings.log_level
    logging.basicConfig(level=getattr(logging, level))


@app.command()
def get(key: str = typer.Argument(..., help="Cache key")):
    """Get a value."""
    print_result(key, get_manager().get(key))


@app.command()
def mget(keys: List[str] = typer.Argument(..., help="Cache keys")):
    """Get several values."""
    table = Table(box=box.ROUNDED)
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for key, value in get_manager().mget(keys).items():
        table.add_row(key, "[dim]None[/dim]" if value is None else str(value))
    console.print(table)


@app.command("set")
def set_value(
    key: str = typer.Argument(..., help="Cache key"),
    value: str = typer.Argument(..., help="Value to store"),
    ttl: Optional[float] = typer.Option(None, "--ttl", "-t", help="TTL in seconds (fractions allowed)")
):
    """Store a value."""
    print_result("stored", get_manager().set(key, value, ttl))


@app.command()
def add(
    key: str = typer.Argument(..., help="Cache key"),
    value: str = typer.Argument(..., help="Value to store"),
    ttl: Optional[float] = typer.Option(None, "--ttl", "-t", help="TTL in seconds (fractions allowed)")
):
    """Store a value only if the key is absent."""
    print_result("added", get_manager().add(key, value, ttl))


@app.command()
def mset(
    pairs: List[str] = typer.Argument(..., help="KEY=VALUE pairs"),
    ttl: Optional[float] = typer.Option(None, "--ttl", "-t", help="TTL in seconds (fractions allowed)")
):
    """Store several values with one TTL."""
    failed = get_manager().mset(parse_entries(pairs), ttl)
    if failed:
        console.print(f"[yellow]⚠ Expiration failed for: {', '.join(sorted(failed))}[/yellow]")
    else:
        console.print(f"[green]✓[/green] Stored {len(pairs)} keys")


@app.command()
def madd(
    pairs: List[str] = typer.Argument(..., help="KEY=VALUE pairs"),
    ttl: Optional[float] = typer.Option(None, "--ttl", "-t", help="TTL in seconds (fractions allowed)")
):
    """Add several values, skipping keys that already exist."""
    skipped = get_manager().madd(parse_entries(pairs), ttl)
    if skipped:
        console.print(f"[yellow]⚠ Not added: {', '.join(sorted(skipped))}[/yellow]")
    else:
        console.print(f"[green]✓[/green] Added {len(pairs)} keys")


@app.command()
def delete(key: str = typer.Argument(..., help="Cache key")):
    """Delete a key."""
    print_result("deleted", get_manager().delete(key))


@app.command()
def exists(key: str = typer.Argument(..., help="Cache key")):
    """Check whether a key exists."""
    print_result(key, get_manager().exists(key))


@app.command()
def flush(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation")
):
    """Delete every key (disabled unless ATOMCACHE_ALLOW_FLUSH is set)."""
    if not yes and not typer.confirm("Flush the whole store?"):
        raise typer.Abort()
    print_result("flushed", get_manager().flush())


@app.command()
def run(
    script: str = typer.Argument(..., help="Script name, see the 'scripts' command"),
    keys: List[str] = typer.Argument(..., help="Keys passed to the script"),
    arg: List[str] = typer.Option([], "--arg", "-a", help="Script argument (repeatable)")
):
    """Run a scripted atomic operation."""
    try:
        result = get_manager().execute_atomic_operation(script, keys, arg)
    except AtomCacheError as e:
        console.print(f"[red]❌ {e}[/red]")
        raise typer.Exit(code=1)
    print_result(script, result)


@app.command()
def scripts():
    """List registered scripts with their fingerprints."""
    table = Table(title="Registered scripts", box=box.ROUNDED)
    table.add_column("Name", style="cyan")
    table.add_column("Keys", justify="right")
    table.add_column("Args", justify="right")
    table.add_column("SHA1", style="dim")
    for entry in ScriptRegistry().describe():
        table.add_row(entry["name"], str(entry["num_keys"]), str(entry["num_args"]), entry["fingerprint"])
    console.print(table)


@app.command()
def ping(key: Optional[str] = typer.Option(None, "--key", "-k", help="Ping the node owning this key")):
    """Check the connection to the store."""
    manager = get_manager()
    ok = manager.store.ping(key)
    console.print("[green]✓ PONG[/green]" if ok else "[red]❌ No response[/red]")
    if not ok:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
