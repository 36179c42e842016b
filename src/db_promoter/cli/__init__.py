"""CLI for packaging data and promoting it between environments.

Usage:
    DB_PROFILE=dev db-promoter connect
    db-promoter status
    db-promoter profiles
    db-promoter package --type database --name orders --version 1.0.0 --tables orders --include-related
    db-promoter validate packages/orders-1.0.0.json
    db-promoter check packages/orders-1.0.0.json --profile staging
    db-promoter deploy packages/orders-1.0.0.json --profile staging --skip-existing
    db-promoter rollback deployments/<id>.json --profile staging

Commands:
    connect   - Check the active profile's store and remember the profile
    status    - Show current connection status
    profiles  - List available profiles
    package   - Build a package from the profile's store
    validate  - Validate a package file without touching any store
    check     - Compare a database package with the target schema
    deploy    - Deploy a package file into the profile's store
    rollback  - Delete what a recorded deployment inserted
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from db_promoter.config.loader import load_db_config
from db_promoter.config.models import DatabaseConfig
from db_promoter.deploy.document import DocumentDeployer
from db_promoter.deploy.models import DeploymentOptions, DeploymentRecord
from db_promoter.deploy.relational import RelationalDeployer
from db_promoter.errors import PromoterError
from db_promoter.factory import (
    ProfileNotFoundError,
    connect_profile,
    get_adapter,
    get_document_adapter,
    read_profile_lock,
    resolve_profile,
    resolve_url,
)
from db_promoter.packaging.document import DocumentPackager
from db_promoter.packaging.io import read_package, validate_package_file, write_package
from db_promoter.packaging.models import PackageFilter
from db_promoter.packaging.relational import RelationalPackager
from db_promoter.packaging.store import PackageStore
from db_promoter.schema.comparator import expected_columns_for, validate_schema
from db_promoter.schema.introspector import SchemaIntrospector

console = Console()
logger = logging.getLogger(__name__)


class _DeployAborted(Exception):
    """Raised inside a transaction block to roll back a non-completed deploy."""

    def __init__(self, record: DeploymentRecord):
        super().__init__(record.status)
        self.record = record


# ============================================================================
# Argument helpers
# ============================================================================


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_assignments(values: list[str] | None, flag: str) -> dict[str, str]:
    """Parse repeated ``ENTITY=VALUE`` options into a dict.

    Raises:
        ValueError: If an item has no ``=`` or an empty entity name.

    Example:
        >>> _parse_assignments(["orders=total > 10"], "--where")
        {'orders': 'total > 10'}
    """
    parsed: dict[str, str] = {}
    for item in values or []:
        entity, sep, value = item.partition("=")
        if not sep or not entity.strip():
            raise ValueError(f"{flag} expects ENTITY=VALUE, got {item!r}")
        parsed[entity.strip()] = value.strip()
    return parsed


def _parse_excludes(values: list[str] | None) -> dict[str, list[str]]:
    """Parse repeated ``ENTITY.FIELD`` options into ``{entity: [fields]}``.

    Only the first dot separates the entity, so nested document fields
    keep their path (``Workflow.meta.owner``).
    """
    parsed: dict[str, list[str]] = {}
    for item in values or []:
        entity, sep, field = item.partition(".")
        if not sep or not entity or not field:
            raise ValueError(f"--exclude expects ENTITY.FIELD, got {item!r}")
        parsed.setdefault(entity, []).append(field)
    return parsed


def _load_config() -> DatabaseConfig | None:
    try:
        return load_db_config()
    except FileNotFoundError:
        return None


def _store(config: DatabaseConfig | None) -> PackageStore:
    return PackageStore(config.store.directory if config else "packages")


def _build_options(args: argparse.Namespace, config: DatabaseConfig | None) -> DeploymentOptions:
    """Merge db.toml ``[deploy]`` defaults with command line flags."""
    defaults = config.deploy.model_dump() if config else {}
    if args.skip_existing or args.update_existing:
        defaults["skip_existing"] = args.skip_existing
        defaults["update_existing"] = args.update_existing
    if args.continue_on_error:
        defaults["continue_on_error"] = True
    if args.rebuild_indexes:
        defaults["rebuild_indexes"] = True
    if args.no_validate_references:
        defaults["validate_references"] = False
    if args.batch_size is not None:
        defaults["batch_size"] = args.batch_size
    return DeploymentOptions(dry_run=args.dry_run, **defaults)


def _print_record(record: DeploymentRecord) -> None:
    counts: dict[str, dict[str, int]] = record.metadata.get("counts", {})
    if counts:
        table = Table(title=f"Deployment {record.id}", show_header=True, header_style="bold")
        table.add_column("Entity")
        table.add_column("Inserted", justify="right")
        table.add_column("Updated", justify="right")
        table.add_column("Skipped", justify="right")
        table.add_column("Failed", justify="right")
        for entity, c in counts.items():
            table.add_row(
                entity, str(c["inserted"]), str(c["updated"]), str(c["skipped"]), str(c["failed"])
            )
        console.print(table)

    style = "green" if record.status in ("completed", "validated") else "red"
    console.print(f"Status: [bold {style}]{record.status}[/bold {style}]")
    for warning in record.warnings:
        console.print(f"  [yellow]! {warning}[/yellow]")
    for error in record.error_log:
        console.print(f"  [red]x {error}[/red]")


def _write_record(record: DeploymentRecord, output: str | None, config: DatabaseConfig | None) -> Path:
    if output:
        path = Path(output)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(record.model_dump_json(indent=2), encoding="utf-8")
        return path
    return _store(config).save_record(record)


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_connect(args: argparse.Namespace) -> int:
    """Async implementation for connect command.

    Returns:
        0 on success, 1 on failure.
    """
    previous_profile = read_profile_lock()

    console.print("Connecting...", style="dim")

    result = await connect_profile(profile_name=args.profile, env_prefix=args.env_prefix)

    if not result.success:
        console.print()
        console.print(f"[bold red]x[/bold red] {result.error}")
        return 1

    console.print()
    console.print(
        f"[bold green]v[/bold green] Connected to profile: "
        f"[bold cyan]{result.profile_name}[/bold cyan] ({result.provider})"
    )
    if previous_profile and previous_profile != result.profile_name:
        console.print(
            f"\n[dim]Switched from[/dim] [bold]{previous_profile}[/bold] "
            f"[dim]to[/dim] [bold cyan]{result.profile_name}[/bold cyan]"
        )
    return 0


async def _async_package(args: argparse.Namespace) -> int:
    """Async implementation for package command.

    Returns:
        0 on success, 1 on failure.
    """
    config = _load_config()
    try:
        package_filter = PackageFilter(
            tables=_split_csv(args.tables),
            collections=_split_csv(args.collections),
            where=_parse_assignments(args.where, "--where"),
            include_related=args.include_related,
            max_depth=args.max_depth,
            allow_unbounded=args.unbounded,
            exclude_columns=_parse_excludes(args.exclude) if args.type == "database" else {},
            exclude_fields=_parse_excludes(args.exclude) if args.type == "document" else {},
            skip_ids=args.skip_ids,
            pk_strategies=_parse_assignments(args.strategy, "--strategy") if args.type == "database" else {},
            id_strategies=_parse_assignments(args.strategy, "--strategy") if args.type == "document" else {},
        )
    except (ValueError, ValidationError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    try:
        profile_name, profile = resolve_profile(args.profile, args.env_prefix)
        if args.type == "database":
            adapter = await get_adapter(profile_name)
            try:
                async with SchemaIntrospector(resolve_url(profile)) as introspector:
                    packager = RelationalPackager(adapter, introspector, adapter.dialect)
                    package = await packager.package_tables(
                        args.name, args.version, package_filter,
                        created_by=args.created_by, description=args.description,
                    )
            finally:
                await adapter.close()
        else:
            documents = await get_document_adapter(profile_name)
            try:
                packager = DocumentPackager(documents)
                ids = _split_csv(args.ids)
                if ids:
                    if len(package_filter.collections) != 1:
                        console.print("[red]Error: --ids needs exactly one collection[/red]")
                        return 1
                    package = await packager.package_objects(
                        package_filter.collections[0], ids, args.name, args.version,
                        created_by=args.created_by, description=args.description,
                        skip_ids=args.skip_ids,
                    )
                else:
                    package = await packager.package_collections(
                        args.name, args.version, package_filter,
                        created_by=args.created_by, description=args.description,
                    )
            finally:
                await documents.close()
    except (ProfileNotFoundError, FileNotFoundError, ValueError, PromoterError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    if args.output:
        path = write_package(package, args.output)
        console.print(f"[bold green]v[/bold green] Package written to [cyan]{path}[/cyan]")
    else:
        stored = _store(config).save(package)
        console.print(
            f"[bold green]v[/bold green] Package [bold]{stored.id}[/bold] saved to "
            f"[cyan]{stored.path}[/cyan] ({stored.size_bytes} bytes, sha256 {stored.checksum[:12]})"
        )
    for key, value in package.metadata.items():
        console.print(f"  {key}: {value}", style="dim")
    return 0


async def _async_check(args: argparse.Namespace) -> int:
    """Async implementation for check command.

    Returns:
        0 when every packaged table and column exists in the target.
    """
    try:
        package = read_package(args.file)
        if package.kind != "database":
            console.print("[red]Error: check only applies to database packages[/red]")
            return 1
        profile_name, profile = resolve_profile(args.profile, args.env_prefix)
        async with SchemaIntrospector(resolve_url(profile)) as introspector:
            actual_columns = await introspector.get_column_names()
    except (ProfileNotFoundError, FileNotFoundError, PromoterError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    result = validate_schema(actual_columns, expected_columns_for(package))
    console.print(f"Target profile: [bold cyan]{profile_name}[/bold cyan]")
    if result.valid:
        console.print("[bold green]v[/bold green] Target schema accepts the package")
        return 0
    console.print(f"[bold red]x[/bold red] {result.format_report()}")
    return 1


async def _async_deploy(args: argparse.Namespace) -> int:
    """Async implementation for deploy command.

    Relational deploys run in one transaction that is rolled back unless
    the deploy completes.

    Returns:
        0 when the deploy completed (or validated, for a dry run).
    """
    config = _load_config()
    try:
        package = read_package(args.file)
        options = _build_options(args, config)
        profile_name, _ = resolve_profile(args.profile, args.env_prefix)
    except (ProfileNotFoundError, FileNotFoundError, ValidationError, PromoterError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    console.print(
        f"Deploying [bold]{package.name}[/bold] {package.version} to "
        f"[bold cyan]{profile_name}[/bold cyan]"
        + (" [dim](dry run)[/dim]" if options.dry_run else "")
    )

    try:
        if package.kind == "database":
            adapter = await get_adapter(profile_name)
            try:
                async with adapter.transaction():
                    deployer = RelationalDeployer(adapter, target=profile_name, deployed_by=args.deployed_by)
                    record = await deployer.deploy(package, options)
                    if record.status not in ("completed", "validated"):
                        raise _DeployAborted(record)
            except _DeployAborted as e:
                record = e.record
                record.warnings.append("Transaction rolled back; no rows were kept")
            finally:
                await adapter.close()
        else:
            timeouts = config.timeouts if config else None
            documents = await get_document_adapter(profile_name)
            try:
                deployer = DocumentDeployer(
                    documents,
                    target=profile_name,
                    deployed_by=args.deployed_by,
                    **(
                        {
                            "batch_timeout": timeouts.batch,
                            "reference_timeout": timeouts.references,
                            "index_timeout": timeouts.indexes,
                            "rollback_timeout": timeouts.rollback,
                        }
                        if timeouts
                        else {}
                    ),
                )
                record = await deployer.deploy(package, options)
            finally:
                await documents.close()
    except (ProfileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    _print_record(record)
    if not options.dry_run:
        path = _write_record(record, args.record_output, config)
        console.print(f"Record written to [cyan]{path}[/cyan]", style="dim")
    return 0 if record.status in ("completed", "validated") else 1


async def _async_rollback(args: argparse.Namespace) -> int:
    """Async implementation for rollback command.

    Returns:
        0 on success, 1 on failure.
    """
    try:
        record = DeploymentRecord.model_validate_json(Path(args.record_file).read_bytes())
        profile_name, _ = resolve_profile(args.profile, args.env_prefix)
    except (ProfileNotFoundError, FileNotFoundError, ValidationError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    if record.target and record.target != profile_name:
        console.print(
            f"[yellow]Warning: record targets '{record.target}', "
            f"rolling back on '{profile_name}'[/yellow]"
        )

    try:
        if record.pk_mapping_result:
            adapter = await get_adapter(profile_name)
            try:
                async with adapter.transaction():
                    deleted = await RelationalDeployer(adapter, target=profile_name).rollback(record)
            finally:
                await adapter.close()
        elif record.id_mapping_result:
            config = _load_config()
            documents = await get_document_adapter(profile_name)
            try:
                deployer = DocumentDeployer(
                    documents,
                    target=profile_name,
                    rollback_timeout=config.timeouts.rollback if config else 60.0,
                )
                deleted = await deployer.rollback(record)
            finally:
                await documents.close()
        else:
            console.print("[yellow]Record has no mapping result; nothing to roll back.[/yellow]")
            return 0
    except Exception as e:
        console.print(f"[bold red]x[/bold red] Rollback failed: {e}")
        return 1

    table = Table(title="Rolled back", show_header=True, header_style="bold")
    table.add_column("Entity")
    table.add_column("Deleted", justify="right")
    for entity, count in deleted.items():
        table.add_row(entity, str(count))
    console.print(table)

    Path(args.record_file).write_text(record.model_dump_json(indent=2), encoding="utf-8")
    return 0


# ============================================================================
# Sync command wrappers (status, profiles, validate read local files only)
# ============================================================================


def cmd_connect(args: argparse.Namespace) -> int:
    """Check the profile's store and write the lock file."""
    return asyncio.run(_async_connect(args))


def cmd_status(args: argparse.Namespace) -> int:
    """Show current connection status.

    Reads only local files (lock file and TOML config) -- no store calls.

    Returns:
        0 always (informational command).
    """
    profile = read_profile_lock()

    if profile:
        table = Table(title="Connection Status", show_header=False)
        table.add_column("Key", style="dim")
        table.add_column("Value")

        table.add_row("Current profile", f"[bold cyan]{profile}[/bold cyan]")
        table.add_row("Profile source", ".db-profile (connected)")

        try:
            config = load_db_config()
            if profile in config.profiles:
                p = config.profiles[profile]
                table.add_row("Provider", p.provider)
                if p.database:
                    table.add_row("Database", p.database)
                if p.description:
                    table.add_row("Description", p.description)
            table.add_row("Package store", config.store.directory)
        except FileNotFoundError:
            table.add_row("Warning", "[yellow]db.toml not found[/yellow]")

        console.print(table)
    else:
        console.print("[yellow]No connected profile.[/yellow]")
        console.print("[dim]Run:[/dim] [cyan]DB_PROFILE=<name> db-promoter connect[/cyan]")

    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml.

    Returns:
        0 on success, 1 if db.toml not found.
    """
    try:
        config = load_db_config()
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = read_profile_lock()

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
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


def cmd_package(args: argparse.Namespace) -> int:
    """Build a package from the profile's store."""
    return asyncio.run(_async_package(args))


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a package file.

    Returns:
        0 when the file is valid, 1 otherwise.
    """
    report = validate_package_file(args.file)

    for warning in report["warnings"]:
        console.print(f"  [yellow]! {warning}[/yellow]")
    for error in report["errors"]:
        console.print(f"  [red]x {error}[/red]")

    if report["valid"]:
        console.print(f"[bold green]v[/bold green] {args.file} is a valid package")
        return 0
    console.print(f"[bold red]x[/bold red] {args.file}: {len(report['errors'])} errors")
    return 1


def cmd_check(args: argparse.Namespace) -> int:
    """Compare a database package with the target schema."""
    return asyncio.run(_async_check(args))


def cmd_deploy(args: argparse.Namespace) -> int:
    """Deploy a package file."""
    return asyncio.run(_async_deploy(args))


def cmd_rollback(args: argparse.Namespace) -> int:
    """Roll back a recorded deployment."""
    return asyncio.run(_async_rollback(args))


# ============================================================================
# Main entry point
# ============================================================================


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all commands."""
    parser = argparse.ArgumentParser(
        prog="db-promoter",
        description="Package data and promote it between environments",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_PROFILE)"
        ),
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # connect command
    p_connect = subparsers.add_parser("connect", help="Check a profile's store and remember it")
    p_connect.add_argument("--profile", help="Profile name (default: active profile)")
    p_connect.set_defaults(func=cmd_connect)

    # status command
    p_status = subparsers.add_parser("status", help="Show current connection status")
    p_status.set_defaults(func=cmd_status)

    # profiles command
    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    # package command
    p_package = subparsers.add_parser("package", help="Build a package from a store")
    p_package.add_argument("--type", choices=["database", "document"], default="database")
    p_package.add_argument("--name", required=True, help="Package name")
    p_package.add_argument("--version", required=True, help="Package version")
    p_package.add_argument("--description", default="")
    p_package.add_argument("--created-by", default="")
    p_package.add_argument("--tables", help="Comma-separated tables (database packages)")
    p_package.add_argument("--collections", help="Comma-separated collections (document packages)")
    p_package.add_argument("--ids", help="Comma-separated document ids (one collection only)")
    p_package.add_argument(
        "--where",
        action="append",
        metavar="ENTITY=CLAUSE",
        help="SQL WHERE fragment per table, or JSON query per collection",
    )
    p_package.add_argument(
        "--exclude", action="append", metavar="ENTITY.FIELD", help="Column or field to leave out"
    )
    p_package.add_argument("--include-related", action="store_true", help="Follow foreign keys")
    p_package.add_argument("--max-depth", type=int, default=0, help="Foreign-key traversal depth")
    p_package.add_argument(
        "--unbounded", action="store_true", help="With --max-depth 0, follow foreign keys without limit"
    )
    p_package.add_argument("--skip-ids", action="store_true", help="Strip document ids")
    p_package.add_argument(
        "--strategy", action="append", metavar="ENTITY=STRATEGY", help="Key strategy override"
    )
    p_package.add_argument("--output", "-o", help="Write to this file instead of the package store")
    p_package.add_argument("--profile", help="Source profile (default: active profile)")
    p_package.set_defaults(func=cmd_package)

    # validate command
    p_validate = subparsers.add_parser("validate", help="Validate a package file")
    p_validate.add_argument("file", help="Package file")
    p_validate.set_defaults(func=cmd_validate)

    # check command
    p_check = subparsers.add_parser("check", help="Compare a database package with the target schema")
    p_check.add_argument("file", help="Package file")
    p_check.add_argument("--profile", help="Target profile (default: active profile)")
    p_check.set_defaults(func=cmd_check)

    # deploy command
    p_deploy = subparsers.add_parser("deploy", help="Deploy a package file")
    p_deploy.add_argument("file", help="Package file")
    p_deploy.add_argument("--profile", help="Target profile (default: active profile)")
    policy = p_deploy.add_mutually_exclusive_group()
    policy.add_argument("--skip-existing", action="store_true", help="Leave existing records alone")
    policy.add_argument("--update-existing", action="store_true", help="Overwrite existing records")
    p_deploy.add_argument("--dry-run", action="store_true", help="Validate without writing")
    p_deploy.add_argument("--continue-on-error", action="store_true")
    p_deploy.add_argument("--batch-size", type=int, default=None)
    p_deploy.add_argument("--rebuild-indexes", action="store_true")
    p_deploy.add_argument("--no-validate-references", action="store_true")
    p_deploy.add_argument("--deployed-by", default="")
    p_deploy.add_argument("--record-output", help="Write the deployment record to this file")
    p_deploy.set_defaults(func=cmd_deploy)

    # rollback command
    p_rollback = subparsers.add_parser("rollback", help="Roll back a recorded deployment")
    p_rollback.add_argument("record_file", help="Deployment record file")
    p_rollback.add_argument("--profile", help="Target profile (default: active profile)")
    p_rollback.set_defaults(func=cmd_rollback)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
