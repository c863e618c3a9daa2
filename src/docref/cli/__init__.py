"""CLI module for store profiles and referential-integrity checks.

Usage:
    DOCREF_PROFILE=local docref connect
    docref status
    docref profiles
    docref check --schema schema.json
    docref scan --schema schema.json --batch-size 500 --limit 100

Commands:
    connect   - Test the connection of a profile and remember it
    status    - Show the connected profile, its store and the schema in use
    profiles  - List available profiles
    check     - Compile a schema and print its foreign-key graph
    scan      - Report foreign-key values without a target document
"""

import argparse
import asyncio
import sys
from pathlib import Path
from urllib.parse import urlsplit

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from docref.config.loader import load_schema_file, load_store_config
from docref.config.models import StoreProfile
from docref.errors import ProfileNotFoundError, SchemaError
from docref.factory import (
    create_adapter,
    get_active_profile,
    read_profile_lock,
    write_profile_lock,
)
from docref.graph.compiler import compile_graph
from docref.graph.models import Graph
from docref.integrity.dangling import find_dangling_keys

console = Console()


# ============================================================================
# Helpers
# ============================================================================


def _load_graph(schema_file: str | None) -> Graph:
    """Compile the schema named on the command line or in docref.toml.

    Raises:
        FileNotFoundError: If no schema file is given or found.
        SchemaError: If the schema does not compile.
    """
    if schema_file is None:
        schema_file = load_store_config().schema_file
    if schema_file is None:
        raise FileNotFoundError(
            "No schema file given. Pass --schema or set [schema] file in docref.toml."
        )
    return compile_graph(load_schema_file(Path(schema_file)))


def _store_location(profile: StoreProfile) -> str:
    """Hosts and database of a profile's URL, without credentials."""
    if profile.provider == "memory":
        return "in-process"
    parts = urlsplit(profile.url)
    hosts = parts.netloc.rpartition("@")[2]
    return f"{parts.scheme}://{hosts}{parts.path}" if hosts else "[yellow]no url[/yellow]"


def _schema_summary(schema_file: str | None) -> str:
    """One-line description of the configured schema file."""
    if schema_file is None:
        return "[dim]not configured[/dim]"
    try:
        graph = _load_graph(schema_file)
    except FileNotFoundError:
        return f"{schema_file} [yellow](missing)[/yellow]"
    except SchemaError as e:
        reason = str(e).splitlines()[0] if str(e) else type(e).__name__
        return f"{schema_file} [red](invalid: {escape(reason)})[/red]"
    foreign_keys = sum(len(graph.config(name).foreign_keys) for name in graph.names)
    return f"{schema_file} ({len(graph.names)} collections, {foreign_keys} foreign keys)"


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_connect(args: argparse.Namespace) -> int:
    """Async implementation for connect command.

    Returns:
        0 on success, 1 on failure.
    """
    env_prefix = getattr(args, "env_prefix", "")
    previous_profile = read_profile_lock()

    try:
        profile_name, profile = get_active_profile(env_prefix=env_prefix)
        store = create_adapter(profile)
    except (ProfileNotFoundError, KeyError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1

    console.print("Connecting to store...", style="dim")
    try:
        await store.test_connection()
    except Exception as e:
        console.print(f"[bold red]x[/bold red] Failed to connect to store: {e}")
        return 1
    finally:
        await store.close()

    write_profile_lock(profile_name)
    console.print(
        f"[bold green]v[/bold green] Connected to profile: "
        f"[bold cyan]{profile_name}[/bold cyan]"
    )
    if previous_profile and previous_profile != profile_name:
        console.print(
            f"\n[dim]Switched from[/dim] [bold]{previous_profile}[/bold] "
            f"[dim]to[/dim] [bold cyan]{profile_name}[/bold cyan]"
        )
    return 0


async def _async_scan(args: argparse.Namespace) -> int:
    """Async implementation for scan command.

    Returns:
        0 when no dangling key is found, 1 otherwise (or on error).
    """
    env_prefix = getattr(args, "env_prefix", "")
    try:
        graph = _load_graph(args.schema)
        _, profile = get_active_profile(env_prefix=env_prefix)
        store = create_adapter(profile)
    except (SchemaError, ProfileNotFoundError, KeyError, FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    table = Table(title="Dangling Keys", show_header=True, header_style="bold")
    table.add_column("Collection")
    table.add_column("Path")
    table.add_column("Key")
    table.add_column("Target")

    found = 0
    try:
        async for finding in find_dangling_keys(
            store, graph, batch_size=args.batch_size, limit=args.limit
        ):
            found += 1
            table.add_row(
                finding.collection,
                finding.path,
                repr(finding.key),
                finding.target_collection,
            )
    finally:
        await store.close()

    if not found:
        console.print("[green]No dangling keys found[/green]")
        return 0

    console.print(table)
    console.print(f"\n[bold red]{found}[/bold red] dangling keys")
    return 1


# ============================================================================
# Command handlers
# ============================================================================


def cmd_connect(args: argparse.Namespace) -> int:
    """Test the active profile's connection and write the lock file.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_connect(args))


def cmd_status(args: argparse.Namespace) -> int:
    """Show the connected profile, where its store lives and the schema in use.

    Reads only local files (lock file, docref.toml, schema file); the
    store itself is never contacted.

    Returns:
        0 always (informational command).
    """
    profile_name = read_profile_lock()
    try:
        config = load_store_config()
    except FileNotFoundError:
        config = None

    table = Table(title="docref Status", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")

    if profile_name:
        table.add_row("Connected profile", f"[bold cyan]{profile_name}[/bold cyan]")
        profile = config.profiles.get(profile_name) if config else None
        if profile is not None:
            table.add_row("Store", _store_location(profile))
        else:
            table.add_row("Store", "[yellow]profile not in docref.toml[/yellow]")
    else:
        table.add_row("Connected profile", "[yellow]none[/yellow]")

    if config is None:
        table.add_row("Config", "[yellow]docref.toml not found[/yellow]")
    else:
        table.add_row("Schema", _schema_summary(config.schema_file))

    console.print(table)
    if not profile_name:
        console.print("[yellow]No connected profile.[/yellow]")
        console.print("[dim]Run:[/dim] [cyan]DOCREF_PROFILE=<name> docref connect[/cyan]")
    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List the profiles of docref.toml with their store location.

    Returns:
        0 on success, 1 if docref.toml not found.
    """
    try:
        config = load_store_config()
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = read_profile_lock()

    table = Table(title="Store Profiles", show_header=True, header_style="bold")
    table.add_column("Profile")
    table.add_column("Store")
    table.add_column("Description")
    table.add_column("Status")

    for name, profile in config.profiles.items():
        table.add_row(
            f"[bold cyan]{name}[/bold cyan]" if name == current else name,
            _store_location(profile),
            profile.description or "",
            "[bold green]connected[/bold green]" if name == current else "",
        )

    console.print(table)
    if current and current not in config.profiles:
        console.print(f"\n[yellow]Connected profile {current!r} is not in docref.toml[/yellow]")
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Compile a schema file and print its foreign keys.

    Returns:
        0 if the schema compiles, 1 otherwise.
    """
    try:
        graph = _load_graph(args.schema)
    except (SchemaError, FileNotFoundError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1

    table = Table(title="Foreign Keys", show_header=True, header_style="bold")
    table.add_column("Collection")
    table.add_column("Key")
    table.add_column("Path")
    table.add_column("Target")
    table.add_column("On delete")

    count = 0
    for name in graph.names:
        config = graph.config(name)
        for path in sorted(config.foreign_keys):
            foreign_key = config.foreign_keys[path]
            table.add_row(
                name, config.key, path, foreign_key.collection, foreign_key.on_delete.value
            )
            count += 1

    console.print(table)
    console.print(
        f"\n[bold green]v[/bold green] Schema valid: "
        f"{len(graph.names)} collections, {count} foreign keys"
    )
    return 0


def cmd_scan(args: argparse.Namespace) -> int:
    """Scan the active profile's store for dangling foreign keys.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_scan(args))


# ============================================================================
# Main entry point
# ============================================================================


def main() -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="docref",
        description="Referential integrity for document stores",
    )

    # Global option: --env-prefix
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DOCREF_PROFILE)"
        ),
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # connect command
    p_connect = subparsers.add_parser(
        "connect",
        help="Test the active profile's connection and remember it",
    )
    p_connect.set_defaults(func=cmd_connect)

    # status command
    p_status = subparsers.add_parser(
        "status",
        help="Show current connection status",
    )
    p_status.set_defaults(func=cmd_status)

    # profiles command
    p_profiles = subparsers.add_parser(
        "profiles",
        help="List available profiles",
    )
    p_profiles.set_defaults(func=cmd_profiles)

    # check command
    p_check = subparsers.add_parser(
        "check",
        help="Compile a schema and print its foreign-key graph",
    )
    p_check.add_argument(
        "--schema",
        default=None,
        help="Path to a JSON or TOML schema file (default: [schema] file in docref.toml)",
    )
    p_check.set_defaults(func=cmd_check)

    # scan command
    p_scan = subparsers.add_parser(
        "scan",
        help="Report foreign-key values without a target document",
    )
    p_scan.add_argument(
        "--schema",
        default=None,
        help="Path to a JSON or TOML schema file (default: [schema] file in docref.toml)",
    )
    p_scan.add_argument(
        "--batch-size",
        type=int,
        default=100,
        help="Documents fetched per page",
    )
    p_scan.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Stop after this many findings",
    )
    p_scan.set_defaults(func=cmd_scan)

    args = parser.parse_args()
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
