"""CLI module for primary key integrity checks and resequencing.

Provides commands for database profile management, schema validation,
integrity checks, and resequencing.

Usage:
    DB_PROFILE=local db-resequencer connect
    db-resequencer status
    db-resequencer profiles
    db-resequencer validate
    db-resequencer check
    db-resequencer check stores --ordering-key name
    db-resequencer fix stores --dry-run
    db-resequencer fix stores --dependents users.store_id,sales.store_id --backup --confirm

Commands:
    connect   - Connect to database and validate the configured tables
    status    - Show current connection status
    profiles  - List available profiles
    validate  - Re-validate current profile schema
    check     - Report primary keys that are out of sequence
    fix       - Renumber primary keys to 1..N by ordering key
"""

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.table import Table

from db_resequencer.backup.snapshot import backup_tables
from db_resequencer.config.loader import load_db_config
from db_resequencer.config.models import DatabaseConfig
from db_resequencer.errors import ResequenceError, StorageError
from db_resequencer.factory import (
    ProfileNotFoundError,
    connect_and_validate,
    get_active_profile,
    get_adapter,
    read_profile_lock,
    resolve_url,
)
from db_resequencer.resequence.models import (
    Dependent,
    IntegrityReport,
    ResequenceResult,
    SequencedTable,
)
from db_resequencer.resequence.service import IdIntegrityService
from db_resequencer.schema.introspector import introspector_for

console = Console()


# ============================================================================
# Table resolution (CLI-internal helpers)
# ============================================================================


def _load_config_or_none() -> DatabaseConfig | None:
    try:
        return load_db_config()
    except FileNotFoundError:
        return None


def _resolve_tables(
    names: list[str],
    ordering_key: str | None,
    config: DatabaseConfig | None,
) -> list[SequencedTable]:
    """Turn CLI table names into ``SequencedTable`` definitions.

    Names found under ``[tables]`` in db.toml use their configuration;
    ``--ordering-key`` overrides it.  Unknown names need ``--ordering-key``.
    No names means every configured table.

    Raises:
        ValueError: If a table cannot be resolved.
    """
    configured = config.tables if config else {}

    if not names:
        if not configured:
            raise ValueError(
                "No tables given and no [tables] section in db.toml"
            )
        return list(configured.values())

    tables: list[SequencedTable] = []
    for name in names:
        if name in configured:
            seq_table = configured[name]
            if ordering_key:
                seq_table = seq_table.model_copy(update={"ordering_key": ordering_key})
        elif ordering_key:
            seq_table = SequencedTable(name=name, ordering_key=ordering_key)
        else:
            raise ValueError(
                f"Table '{name}' is not configured in db.toml; pass --ordering-key"
            )
        tables.append(seq_table)
    return tables


def _parse_dependents(value: str) -> list[Dependent]:
    """Parse ``--dependents users.store_id,sales.store_id``."""
    return [Dependent.parse(item) for item in value.split(",") if item.strip()]


async def _discover_dependents(seq_table: SequencedTable, env_prefix: str) -> list[Dependent]:
    """Read foreign keys referencing *seq_table* from the active profile."""
    _, profile = get_active_profile(env_prefix)
    async with introspector_for(resolve_url(profile)) as introspector:
        return await introspector.get_dependents(seq_table.name, seq_table.pk)


# ============================================================================
# Rendering
# ============================================================================


def _print_report(report: IntegrityReport) -> None:
    if report.is_integrity_ok:
        console.print(
            f"[bold green]v[/bold green] [bold]{report.table}[/bold]: "
            f"{report.total_rows} rows in sequence "
            f"[dim](ordered by {report.ordering_key})[/dim]"
        )
        return

    console.print(
        f"[bold red]x[/bold red] [bold]{report.table}[/bold]: "
        f"{len(report.issues)} of {report.total_rows} rows out of sequence "
        f"[dim](ordered by {report.ordering_key})[/dim]"
    )
    table = Table(show_header=True, header_style="bold")
    table.add_column("Current id", justify="right")
    table.add_column("Expected id", justify="right")
    table.add_column(report.ordering_key)
    for issue in report.issues:
        table.add_row(
            str(issue.current_id),
            f"[green]{issue.expected_id}[/green]",
            str(issue.ordering_value),
        )
    console.print(table)


def _print_result(result: ResequenceResult) -> None:
    if result.skipped:
        console.print(
            f"[bold green]v[/bold green] [bold]{result.table}[/bold]: "
            f"already in sequence ({result.total_rows} rows), nothing to do"
        )
        return

    title = "Planned renumbering" if result.dry_run else "Renumbered"
    table = Table(title=f"{title}: {result.table}", show_header=True, header_style="bold")
    table.add_column("Old id", justify="right")
    table.add_column("New id", justify="right")
    for old_id, new_id in result.id_map.items():
        table.add_row(str(old_id), f"[green]{new_id}[/green]")
    console.print(table)

    if result.dry_run:
        return

    for key, count in result.dependents_updated.items():
        console.print(f"  {key}: [cyan]{count}[/cyan] references updated")
    if result.backup_path:
        console.print(f"  Backup: [dim]{result.backup_path}[/dim]")
    if result.counter_reset:
        console.print(f"  Counter reset to {result.total_rows}")
    if result.warning:
        console.print(f"  [yellow]Warning: {result.warning}[/yellow]")
    console.print(
        f"[bold green]v[/bold green] {result.rows_renumbered} of "
        f"{result.total_rows} rows renumbered"
    )


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

    console.print("Connecting to database...", style="dim")

    result = await connect_and_validate(
        profile_name=getattr(args, "profile", None), env_prefix=env_prefix
    )

    if result.success:
        console.print()
        console.print(
            f"[bold green]v[/bold green] Connected to profile: "
            f"[bold cyan]{result.profile_name}[/bold cyan]"
        )
        if result.schema_report:
            console.print("  Schema validation: [green]PASSED[/green]")
            if result.schema_report.undeclared_dependents:
                console.print(
                    f"  Undeclared dependents: [yellow]"
                    f"{', '.join(result.schema_report.undeclared_dependents)}[/yellow]"
                )

        # Show profile switch notice
        if previous_profile and previous_profile != result.profile_name:
            console.print(
                f"\n[dim]Switched from[/dim] [bold]{previous_profile}[/bold] "
                f"[dim]to[/dim] [bold cyan]{result.profile_name}[/bold cyan]"
            )

        return 0
    else:
        console.print()
        console.print(f"[bold red]x[/bold red] {result.error}")

        if result.schema_report:
            console.print("\n[bold]Schema validation report:[/bold]")
            console.print(result.schema_report.format_report())

        return 1


async def _async_validate(args: argparse.Namespace) -> int:
    """Async implementation for validate command.

    Returns:
        0 on valid schema, 1 on invalid or no profile.
    """
    env_prefix = getattr(args, "env_prefix", "")

    profile = read_profile_lock()

    if not profile:
        console.print("[yellow]No validated profile.[/yellow]")
        console.print(
            "[dim]Run[/dim] [cyan]db-resequencer connect[/cyan] [dim]first.[/dim]"
        )
        return 1

    console.print(
        f"Validating schema for profile: [bold cyan]{profile}[/bold cyan]"
    )

    result = await connect_and_validate(
        profile_name=profile, env_prefix=env_prefix, validate_only=True
    )

    if result.success:
        console.print()
        console.print("[bold green]v[/bold green] Schema is valid")
        if result.schema_report and result.schema_report.undeclared_dependents:
            console.print(
                f"  Undeclared dependents: [yellow]"
                f"{', '.join(result.schema_report.undeclared_dependents)}[/yellow]"
            )
        return 0
    else:
        console.print()
        console.print("[bold red]x[/bold red] Schema has drifted")
        if result.schema_report:
            console.print(result.schema_report.format_report())
        elif result.error:
            console.print(result.error)
        return 1


async def _async_check(args: argparse.Namespace) -> int:
    """Async implementation for check command.

    Returns:
        0 if every table is in sequence, 1 otherwise or on error.
    """
    env_prefix = getattr(args, "env_prefix", "")

    try:
        tables = _resolve_tables(args.tables, args.ordering_key, _load_config_or_none())
        adapter = await get_adapter(env_prefix=env_prefix)
    except (ProfileNotFoundError, KeyError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    try:
        service = IdIntegrityService(adapter)
        all_ok = True
        for seq_table in tables:
            report = await service.check_integrity(
                seq_table.name, seq_table.ordering_key, seq_table.pk
            )
            _print_report(report)
            all_ok = all_ok and report.is_integrity_ok
    except StorageError as e:
        console.print(f"\n[red]Error: {e}[/red]")
        return 1
    finally:
        await adapter.close()

    return 0 if all_ok else 1


async def _async_fix(args: argparse.Namespace) -> int:
    """Async implementation for fix command.

    Without ``--confirm`` the run is a dry run: the plan is shown and
    nothing is written.

    Returns:
        0 on success, 1 on failure.
    """
    env_prefix = getattr(args, "env_prefix", "")
    dry_run = args.dry_run or not args.confirm

    try:
        (seq_table,) = _resolve_tables([args.table], args.ordering_key, _load_config_or_none())
        if args.dependents is not None:
            seq_table = seq_table.model_copy(
                update={"dependents": _parse_dependents(args.dependents)}
            )
        if args.discover:
            discovered = await _discover_dependents(seq_table, env_prefix)
            merged = list(seq_table.dependents)
            merged.extend(d for d in discovered if d not in merged)
            seq_table = seq_table.model_copy(update={"dependents": merged})
        adapter = await get_adapter(env_prefix=env_prefix)
    except (ProfileNotFoundError, KeyError, ValueError, ImportError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    except Exception as e:
        console.print(f"[red]Error discovering dependents: {e}[/red]")
        return 1

    deps = ", ".join(d.key for d in seq_table.dependents) or "none"
    console.print(
        f"Resequencing [bold cyan]{seq_table.name}[/bold cyan] "
        f"[dim](ordered by {seq_table.ordering_key}, dependents: {deps})[/dim]"
    )

    try:
        service = IdIntegrityService(adapter)
        result = await service.fix_table(
            seq_table,
            timeout=args.timeout,
            backup_fn=backup_tables if args.backup else None,
            dry_run=dry_run,
        )
    except ResequenceError as e:
        console.print(f"\n[bold red]x[/bold red] {e}")
        console.print("[dim]No changes were committed.[/dim]")
        return 1
    except RuntimeError as e:
        console.print(f"\n[red]Error: {e}[/red]")
        return 1
    finally:
        await adapter.close()

    console.print()
    _print_result(result)

    if dry_run and not result.skipped:
        if not args.dry_run:
            console.print()
            console.print(
                "[yellow]Dry run.[/yellow] Re-run with [cyan]--confirm[/cyan] to apply."
            )
    return 0


# ============================================================================
# Sync command wrappers (cmd_status, cmd_profiles read local files only)
# ============================================================================


def cmd_connect(args: argparse.Namespace) -> int:
    """Connect to database and validate schema.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_connect(args))


def cmd_status(args: argparse.Namespace) -> int:
    """Show current connection status.

    Reads only local files (lock file and TOML config) -- no database calls.

    Returns:
        0 always (informational command).
    """
    profile = read_profile_lock()

    if profile:
        table = Table(title="Connection Status", show_header=False)
        table.add_column("Key", style="dim")
        table.add_column("Value")

        table.add_row(
            "Current profile", f"[bold cyan]{profile}[/bold cyan]"
        )
        table.add_row("Profile source", ".db-profile (validated)")

        try:
            config = load_db_config()
            if profile in config.profiles:
                p = config.profiles[profile]
                table.add_row("Provider", p.provider)
                if p.description:
                    table.add_row("Description", p.description)
            if config.tables:
                table.add_row("Sequenced tables", ", ".join(config.tables))
        except FileNotFoundError:
            table.add_row("Warning", "[yellow]db.toml not found[/yellow]")

        console.print(table)
    else:
        console.print("[yellow]No validated profile.[/yellow]")
        console.print(
            "[dim]Run:[/dim] [cyan]DB_PROFILE=<name> db-resequencer connect[/cyan]"
        )

    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if db.toml not found.
    """
    try:
        config = load_db_config()
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = read_profile_lock()

    table = Table(
        title="Database Profiles", show_header=True, header_style="bold"
    )
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        name_style = "bold cyan" if name == current else ""
        table.add_row(
            marker,
            f"[{name_style}]{name}[/{name_style}]" if name_style else name,
            profile.provider,
            profile.description or "",
        )

    console.print(table)

    if current:
        console.print("\n[bold green]*[/bold green] = current profile")

    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Re-validate current profile schema."""
    return asyncio.run(_async_validate(args))


def cmd_check(args: argparse.Namespace) -> int:
    """Report primary keys that are out of sequence."""
    return asyncio.run(_async_check(args))


def cmd_fix(args: argparse.Namespace) -> int:
    """Renumber primary keys to 1..N by ordering key."""
    return asyncio.run(_async_fix(args))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all commands."""
    parser = argparse.ArgumentParser(
        prog="db-resequencer",
        description="Primary key integrity checks and resequencing",
    )

    # Global options
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="count",
        default=0,
        help="Log progress (-v) or per-row detail (-vv)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # connect command
    p_connect = subparsers.add_parser(
        "connect",
        help="Connect to database and validate the configured tables",
    )
    p_connect.add_argument(
        "--profile",
        "-p",
        default=None,
        help="Profile from db.toml (default: DB_PROFILE or .db-profile)",
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

    # validate command
    p_validate = subparsers.add_parser(
        "validate",
        help="Re-validate current profile schema",
    )
    p_validate.set_defaults(func=cmd_validate)

    # check command
    p_check = subparsers.add_parser(
        "check",
        help="Report primary keys that are out of sequence",
    )
    p_check.add_argument(
        "tables",
        nargs="*",
        help="Tables to check (default: every table in db.toml)",
    )
    p_check.add_argument(
        "--ordering-key",
        default=None,
        help="Column defining the canonical order",
    )
    p_check.set_defaults(func=cmd_check)

    # fix command
    p_fix = subparsers.add_parser(
        "fix",
        help="Renumber primary keys to 1..N by ordering key",
    )
    p_fix.add_argument("table", help="Table to resequence")
    p_fix.add_argument(
        "--ordering-key",
        default=None,
        help="Column defining the canonical order",
    )
    p_fix.add_argument(
        "--dependents",
        default=None,
        help="Comma-separated foreign key columns (e.g., users.store_id,sales.store_id)",
    )
    p_fix.add_argument(
        "--discover",
        action="store_true",
        help="Add foreign keys found in the database to the dependents",
    )
    p_fix.add_argument(
        "--backup",
        action="store_true",
        help="Write a JSON backup of the affected tables first",
    )
    p_fix.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the renumbering without making changes",
    )
    p_fix.add_argument(
        "--confirm",
        action="store_true",
        help="Actually renumber (required for non-dry-run)",
    )
    p_fix.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Abort and roll back after this many seconds",
    )
    p_fix.set_defaults(func=cmd_fix)

    return parser


def _configure_logging(verbosity: int) -> None:
    if verbosity <= 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main() -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = build_parser()
    args = parser.parse_args()
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
