"""
Command-line interface for auditvault.

Provides commands to create, list, inspect, restore, import and delete
backups of the application data, and to inspect or recover the state of the
backup engine.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, NoReturn

from auditvault import __version__
from auditvault.backup.categories import ALL_CATEGORY_NAMES
from auditvault.backup.errors import BackupError, PartialRestoreError
from auditvault.config.settings import (
    ConfigurationError,
    Settings,
    load_config,
)

# Set up logging
logger = logging.getLogger(__name__)

PASSWORD_ENV_VAR = "AUDITVAULT_BACKUP_PASSWORD"

# Global verbosity settings (set during main() based on args)
_quiet_mode = False
_verbose_level = 0


def set_output_mode(quiet: bool = False, verbose: int = 0) -> None:
    """
    Set the output mode for the CLI.

    Args:
        quiet: If True, suppress non-essential output.
        verbose: Verbosity level (0=normal, 1+=verbose).
    """
    global _quiet_mode, _verbose_level
    _quiet_mode = quiet
    _verbose_level = verbose


def output(message: str = "", force: bool = False) -> None:
    """
    Print a message to stdout, respecting quiet mode.

    Args:
        message: The message to print.
        force: If True, print even in quiet mode (for essential output like JSON).
    """
    if force or not _quiet_mode:
        print(message)


def output_error(message: str) -> None:
    """Print an error message (always shown, even in quiet mode)."""
    print(message, file=sys.stderr)


def output_json(data: Any) -> None:
    output(json.dumps(data, indent=2, default=str), force=True)


def format_size(size: int) -> str:
    """Human-readable byte count."""
    if size < 1024:
        return f"{size} B"
    value = size / 1024
    for unit in ("KB", "MB"):
        if value < 1024:
            return f"{value:,.2f} {unit}"
        value /= 1024
    return f"{value:,.2f} GB"


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the auditvault CLI."""
    parser = argparse.ArgumentParser(
        prog="auditvault",
        description="Backup and restore for audit-management data",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"auditvault {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.auditvault/config.yaml)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase output verbosity (can be repeated)",
    )

    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        metavar="<command>",
    )

    # list command
    list_parser = subparsers.add_parser(
        "list",
        help="List backups",
        description="List backups in the backup directory, newest first.",
    )
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    list_parser.set_defaults(func=cmd_list)

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Show one backup's manifest",
        description="Show the manifest, file name and size of a backup.",
    )
    info_parser.add_argument("slug", metavar="SLUG", help="Backup slug")
    info_parser.add_argument("--json", action="store_true", help="Output as JSON")
    info_parser.set_defaults(func=cmd_info)

    # create command
    create_parser_ = subparsers.add_parser(
        "create",
        help="Create a backup",
        description=(
            "Create a backup archive. Languages are always included. "
            f"Categories: {', '.join(ALL_CATEGORY_NAMES)}."
        ),
    )
    create_parser_.add_argument("--name", "-n", help="Backup name")
    create_parser_.add_argument(
        "--category",
        "-c",
        action="append",
        dest="categories",
        metavar="NAME",
        help="Category to include (repeatable, default: all)",
    )
    create_parser_.add_argument(
        "--password",
        "-p",
        action="store_true",
        help=f"Protect the backup with a password (prompted, or read from {PASSWORD_ENV_VAR})",
    )
    create_parser_.add_argument("--json", action="store_true", help="Output as JSON")
    create_parser_.set_defaults(func=cmd_create)

    # restore command
    restore_parser = subparsers.add_parser(
        "restore",
        help="Restore a backup",
        description="Restore data from a backup archive.",
    )
    restore_parser.add_argument("slug", metavar="SLUG", help="Backup slug")
    restore_parser.add_argument(
        "--mode",
        "-m",
        choices=["upsert", "revert"],
        help="upsert merges into existing data, revert replaces it (default: from config)",
    )
    restore_parser.add_argument(
        "--category",
        "-c",
        action="append",
        dest="categories",
        metavar="NAME",
        help="Category to restore (repeatable, default: all in the backup)",
    )
    restore_parser.add_argument(
        "--password",
        "-p",
        action="store_true",
        help=f"Prompt for the backup password (or read it from {PASSWORD_ENV_VAR})",
    )
    restore_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompts",
    )
    restore_parser.add_argument("--json", action="store_true", help="Output as JSON")
    restore_parser.set_defaults(func=cmd_restore)

    # delete command
    delete_parser = subparsers.add_parser(
        "delete",
        help="Delete a backup",
        description="Delete a backup archive.",
    )
    delete_parser.add_argument("slug", metavar="SLUG", help="Backup slug")
    delete_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompts",
    )
    delete_parser.set_defaults(func=cmd_delete)

    # status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show the current operation status",
        description="Show whether a backup or restore is running and its phase.",
    )
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")
    status_parser.set_defaults(func=cmd_status)

    # import command
    import_parser = subparsers.add_parser(
        "import",
        help="Import a backup archive file",
        description="Copy a .tar backup archive into the backup directory after validating it.",
    )
    import_parser.add_argument("file", metavar="FILE", help="Path to backup archive (.tar)")
    import_parser.add_argument(
        "--filename",
        metavar="NAME",
        help="Store the archive under this file name",
    )
    import_parser.set_defaults(func=cmd_import)

    # recover command
    recover_parser = subparsers.add_parser(
        "recover",
        help="Recover after an interrupted operation",
        description=(
            "Mark an operation left running by a stopped process as failed "
            "and remove its temporary files."
        ),
    )
    recover_parser.set_defaults(func=cmd_recover)

    # disk-usage command
    disk_parser = subparsers.add_parser(
        "disk-usage",
        help="Show free space in the backup directory",
        description="Show total, used and free space of the volume holding backups.",
    )
    disk_parser.add_argument("--json", action="store_true", help="Output as JSON")
    disk_parser.set_defaults(func=cmd_disk_usage)

    return parser


def setup_logging(verbose: int, quiet: bool) -> None:
    """Configure logging based on verbosity level."""
    if quiet:
        level = logging.WARNING
    elif verbose == 0:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_settings(args: argparse.Namespace) -> Settings:
    """
    Load configuration for a command.

    The configured log_level applies unless -v or -q was given.
    """
    config_path = Path(args.config) if args.config else None
    settings = load_config(config_path)
    if not args.verbose and not args.quiet:
        logging.getLogger().setLevel(settings.log_level)
    return settings


def get_manager(args: argparse.Namespace):
    """Build a BackupManager from configuration."""
    from auditvault.backup import BackupManager

    return BackupManager.from_settings(load_settings(args))


def read_password(confirm: bool = False) -> str | None:
    """
    Read a backup password from the environment or the terminal.

    Args:
        confirm: Ask twice and require both entries to match.

    Returns:
        The password, or None if none was entered.
    """
    password = os.environ.get(PASSWORD_ENV_VAR)
    if password:
        return password

    password = getpass.getpass("Backup password: ")
    if confirm and password:
        again = getpass.getpass("Confirm password: ")
        if again != password:
            raise ValueError("Passwords do not match")
    return password or None


def cmd_list(args: argparse.Namespace) -> int:
    """List backups."""
    manager = get_manager(args)
    listing = manager.list_backups()

    if args.json:
        output_json(listing.to_dict())
        return 0

    if not listing.backups:
        output("No backups found.")
    else:
        output(f"{'SLUG':<16} {'DATE':<25} {'SIZE':>12}  {'PROT':<4}  NAME")
        for info in listing.backups:
            manifest = info.manifest
            output(
                f"{info.slug:<16} {manifest.date:<25} {format_size(info.size):>12}  "
                f"{'yes' if manifest.protected else 'no':<4}  {manifest.name}"
            )

    for warning in listing.warnings:
        output_error(f"Warning: skipped {warning}")
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    """Show one backup's manifest."""
    manager = get_manager(args)
    info = manager.get_backup_info(args.slug)

    if args.json:
        output_json(info.to_dict())
        return 0

    manifest = info.manifest
    output(f"Name:       {manifest.name}")
    output(f"Slug:       {manifest.slug}")
    output(f"Date:       {manifest.date}")
    output(f"Type:       {manifest.type}")
    output(f"Protected:  {'yes' if manifest.protected else 'no'}")
    output(f"File:       {info.filename}")
    output(f"Size:       {format_size(info.size)}")
    output("Categories:")
    for name in manifest.data:
        output(f"  - {name}")
    return 0


def cmd_create(args: argparse.Namespace) -> int:
    """Create a backup."""
    manager = get_manager(args)

    password = None
    if args.password:
        try:
            password = read_password(confirm=True)
        except ValueError as e:
            output_error(f"Error: {e}")
            return 1
        if not password:
            output_error("Error: Password cannot be empty")
            return 1

    if not args.json:
        output("Creating backup...")
    result = manager.create_backup(
        name=args.name,
        password=password,
        categories=args.categories,
    )

    if args.json:
        output_json(result.to_dict())
        return 0

    output()
    output("Backup created successfully!")
    output()
    output(f"  Slug: {result.slug}")
    output(f"  File: {result.path}")
    output(f"  Size: {format_size(result.size_bytes)}")
    output(f"  Protected: {'yes' if result.manifest.protected else 'no'}")
    output(f"  Categories: {', '.join(result.manifest.data) or '(languages only)'}")
    output()
    output("To restore from this backup, run:")
    output(f"  auditvault restore {result.slug}")
    return 0


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a backup."""
    manager = get_manager(args)
    info = manager.get_backup_info(args.slug)

    password = None
    if args.password or info.manifest.protected:
        password = read_password()

    mode = args.mode or manager.default_mode.value

    if not args.force and not args.json:
        output(f"Backup: {info.manifest.name} ({info.slug}, {info.manifest.date})")
        if mode == "revert":
            output("WARNING: revert deletes existing records of every restored category.")
        else:
            output("Records will be merged into existing data.")
        output()
        response = input("Proceed with restore? [y/N]: ").strip().lower()
        if response not in ("y", "yes"):
            output("Restore cancelled.")
            return 0

    if not args.json:
        output("Restoring...")
    try:
        result = manager.restore_backup(
            args.slug,
            password=password,
            categories=args.categories,
            mode=mode,
        )
    except PartialRestoreError as e:
        if args.json:
            output_json(e.to_dict())
        output_error("Restore finished with errors:")
        for name, error in e.failures.items():
            output_error(f"  - {name}: {error}")
        if e.restored:
            output_error(f"Restored before failure: {', '.join(sorted(e.restored))}")
        return 1

    if args.json:
        output_json(result.to_dict())
        return 0

    output()
    output("Restore completed successfully!")
    output()
    for name, count in result.restored.items():
        output(f"  {name}: {count}")
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a backup."""
    manager = get_manager(args)
    info = manager.get_backup_info(args.slug)

    if not args.force:
        output(f"Backup: {info.manifest.name} ({info.slug}, {info.filename})")
        response = input("Delete this backup? [y/N]: ").strip().lower()
        if response not in ("y", "yes"):
            output("Delete cancelled.")
            return 0

    manager.delete_backup(args.slug)
    output(f"Deleted backup {args.slug}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show the current operation status."""
    manager = get_manager(args)
    status = manager.get_operation_status()

    if args.json:
        output_json(status.to_dict())
        return 0

    output(f"Operation: {status.operation.value}")
    output(f"Phase:     {status.phase.value}")
    if status.detail:
        output(f"Detail:    {status.detail}")
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Import a backup archive file."""
    source = Path(args.file)
    if not source.is_file():
        output_error(f"Error: File not found: {source}")
        return 1

    manager = get_manager(args)
    info = manager.import_backup(source, filename=args.filename)
    output(f"Imported backup {info.slug} ({info.manifest.name}) as {info.filename}")
    return 0


def cmd_recover(args: argparse.Namespace) -> int:
    """Recover after an interrupted operation."""
    manager = get_manager(args)
    state = manager.recover()
    output(f"Phase: {state.phase.value}")
    if state.detail:
        output(f"Detail: {state.detail}")
    return 0


def cmd_disk_usage(args: argparse.Namespace) -> int:
    """Show free space in the backup directory."""
    manager = get_manager(args)
    usage = manager.get_disk_usage()

    if args.json:
        output_json(usage)
        return 0

    output(f"Backup directory: {manager.backup_dir}")
    output(f"  Total: {format_size(usage['total'])}")
    output(f"  Used:  {format_size(usage['used'])}")
    output(f"  Free:  {format_size(usage['free'])}")
    return 0


def main() -> NoReturn:
    """Main entry point for the auditvault CLI."""
    parser = create_parser()
    args = parser.parse_args()

    # Set up logging and output mode
    setup_logging(args.verbose, args.quiet)
    set_output_mode(args.quiet, args.verbose)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        output("\nOperation cancelled.")
        sys.exit(130)
    except ConfigurationError as e:
        output_error(f"Configuration error: {e}")
        sys.exit(2)
    except BackupError as e:
        output_error(f"Error: {e.message}")
        sys.exit(1)
    except Exception as e:
        if args.verbose > 0:
            raise
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
