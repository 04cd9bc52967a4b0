"""
Command-line interface for NihongoPro backups.

Provides commands to create, list, restore, import, export, inspect and
delete backups, and to manage the backup reminder.

Uses Python's argparse module (no external CLI libraries).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn

from nihongopro_backup import __version__
from nihongopro_backup.backup import BackupError, BackupManager, BackupVersion
from nihongopro_backup.backup.factory import build_backup_manager
from nihongopro_backup.config.settings import (
    ConfigurationError,
    Settings,
    get_config_path,
    load_config,
)

# Set up logging
logger = logging.getLogger(__name__)

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


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the backup CLI."""
    parser = argparse.ArgumentParser(
        prog="nihongopro-backup",
        description="Versioned backups for NihongoPro learner data",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"nihongopro-backup {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Override config file location (default: ~/.nihongopro/config.yaml)",
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

    # info command
    info_parser = subparsers.add_parser(
        "info",
        help="Show configuration and catalog information",
        description="Display version, configuration paths, storage settings and catalog statistics.",
    )
    info_parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )
    info_parser.set_defaults(func=cmd_info)

    # create command
    create_cmd_parser = subparsers.add_parser(
        "create",
        help="Create a new backup",
        description="Create a versioned backup from a JSON payload with user, logs and settings.",
    )
    create_cmd_parser.add_argument(
        "--payload",
        metavar="FILE",
        required=True,
        help="JSON file holding {\"user\": ..., \"logs\": [...], \"settings\": ...}",
    )
    create_cmd_parser.add_argument(
        "--description",
        "-d",
        metavar="TEXT",
        help="Optional note stored with the backup",
    )
    create_cmd_parser.set_defaults(func=cmd_create)

    # history command
    history_parser = subparsers.add_parser(
        "history",
        help="List backup versions",
        description="List cataloged backup versions, newest first.",
    )
    history_parser.add_argument(
        "--format",
        choices=["table", "json"],
        default="table",
        help="Output format (default: table)",
    )
    history_parser.set_defaults(func=cmd_history)

    # restore command
    restore_parser = subparsers.add_parser(
        "restore",
        help="Restore a backup version",
        description="Read back a backup's payload (user, logs, settings) as JSON.",
    )
    restore_parser.add_argument(
        "version_id",
        metavar="VERSION_ID",
        help="Id of the version to restore",
    )
    restore_parser.add_argument(
        "--archive",
        metavar="FILE",
        help="Archive to read instead of the cached copy",
    )
    restore_parser.add_argument(
        "--output",
        "-o",
        metavar="FILE",
        help="Write the payload to FILE (default: stdout)",
    )
    restore_parser.set_defaults(func=cmd_restore)

    # import command
    import_parser = subparsers.add_parser(
        "import",
        help="Import a backup file",
        description="Import a backup archive exported from this or another device.",
    )
    import_parser.add_argument(
        "file",
        metavar="FILE",
        help="Backup archive (.zip or .tar.gz)",
    )
    import_parser.set_defaults(func=cmd_import)

    # export command
    export_parser = subparsers.add_parser(
        "export",
        help="Export a backup file",
        description="Save a backup archive to the export directory or share endpoint.",
    )
    export_parser.add_argument(
        "version_id",
        metavar="VERSION_ID",
        help="Id of the version to export",
    )
    export_parser.set_defaults(func=cmd_export)

    # delete command
    delete_parser = subparsers.add_parser(
        "delete",
        help="Delete a backup version",
        description="Remove a version from the catalog and drop its cached archive.",
    )
    delete_parser.add_argument(
        "version_id",
        metavar="VERSION_ID",
        help="Id of the version to delete",
    )
    delete_parser.add_argument(
        "--force",
        action="store_true",
        help="Skip confirmation prompt",
    )
    delete_parser.set_defaults(func=cmd_delete)

    # inspect command
    inspect_parser = subparsers.add_parser(
        "inspect",
        help="Validate and preview a backup file",
        description="Parse and validate a backup archive without importing it.",
    )
    inspect_parser.add_argument(
        "file",
        metavar="FILE",
        help="Backup archive to inspect",
    )
    inspect_parser.add_argument(
        "--json",
        action="store_true",
        help="Output the backup version record as JSON",
    )
    inspect_parser.set_defaults(func=cmd_inspect)

    # reminder command
    reminder_parser = subparsers.add_parser(
        "reminder",
        help="Manage the backup reminder",
        description="Check, dismiss or clear the backup reminder.",
    )
    reminder_parser.add_argument(
        "action",
        choices=["status", "dismiss", "clear"],
        nargs="?",
        default="status",
        help="Reminder action (default: status)",
    )
    reminder_parser.set_defaults(func=cmd_reminder)

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
    Load settings for a command.

    The configured log_level applies unless -v or -q was given.

    Raises:
        ConfigurationError: If the configuration is invalid.
    """
    config_path = Path(args.config) if args.config else None
    settings = load_config(config_path)
    if not args.verbose and not args.quiet:
        logging.getLogger().setLevel(settings.log_level)
    return settings


def get_manager(args: argparse.Namespace) -> BackupManager:
    """Build the backup manager from configuration."""
    return build_backup_manager(load_settings(args))


def format_size(size: int) -> str:
    """Format a byte count for display."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / 1024 / 1024:.2f} MB"


def _read_bytes(path: Path) -> bytes | None:
    if not path.exists():
        output_error(f"Error: File not found: {path}")
        return None
    try:
        return path.read_bytes()
    except OSError as e:
        output_error(f"Error: Cannot read {path}: {e}")
        return None


def _report_backup_error(action: str, error: BackupError) -> int:
    output_error(f"{action} failed ({error.kind.value}): {error.message}")
    if len(error.errors) > 1:
        for problem in error.errors:
            output_error(f"  - {problem}")
    return 1


def cmd_info(args: argparse.Namespace) -> int:
    """Show configuration and catalog information."""
    import platform as platform_module

    settings = load_settings(args)
    manager = build_backup_manager(settings)
    history = manager.get_backup_history()
    last_backup = manager.metadata_store.get_last_backup_date()

    info: dict[str, Any] = {
        "version": __version__,
        "python_version": platform_module.python_version(),
        "config_file": str(Path(args.config) if args.config else get_config_path()),
        "data_dir": settings.data_dir,
        "storage_backend": settings.storage.backend,
        "quota_bytes": settings.storage.quota_bytes,
        "archive_format": settings.backup.archive_format,
        "strict_checksum": settings.backup.strict_checksum,
        "export_target": settings.backup.share_url or settings.backup.export_dir,
        "catalog": {
            "versions": len(history),
            "archives_available": sum(1 for v in history if manager.has_archive(v.id)),
            "last_backup": last_backup.isoformat() if last_backup else None,
            "reminder_due": manager.should_show_backup_reminder(),
        },
    }

    if args.json:
        output(json.dumps(info, indent=2, default=str), force=True)
        return 0

    output("NihongoPro Backup Information")
    output("=" * 50)
    output()
    output(f"Version: {info['version']}")
    output(f"Python: {info['python_version']}")
    output()
    output("Paths:")
    output(f"  Config file: {info['config_file']}")
    output(f"  Data directory: {info['data_dir']}")
    output(f"  Export target: {info['export_target']}")
    output()
    output("Settings:")
    output(f"  Storage backend: {info['storage_backend']}")
    quota = info["quota_bytes"]
    output(f"  Storage quota: {format_size(quota) if quota else 'unlimited'}")
    output(f"  Archive format: {info['archive_format']}")
    output(f"  Strict checksum: {'Yes' if info['strict_checksum'] else 'No'}")
    output()
    catalog = info["catalog"]
    output("Catalog:")
    output(f"  Versions: {catalog['versions']}")
    output(f"  Archives available: {catalog['archives_available']}")
    output(f"  Last backup: {catalog['last_backup'] or 'never'}")
    output(f"  Reminder due: {'Yes' if catalog['reminder_due'] else 'No'}")
    return 0


def cmd_create(args: argparse.Namespace) -> int:
    """Create a new backup from a payload file."""
    payload_path = Path(args.payload)
    raw = _read_bytes(payload_path)
    if raw is None:
        return 1

    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        output_error(f"Error: Payload is not valid JSON: {e}")
        return 1
    if not isinstance(payload, dict) or "user" not in payload:
        output_error("Error: Payload must be a JSON object with a 'user' key")
        return 1

    manager = get_manager(args)

    output("Creating backup...")
    try:
        created = manager.create_backup(payload, description=args.description)
    except BackupError as e:
        return _report_backup_error("Backup", e)

    version = created.version
    output()
    output("Backup created successfully!")
    output()
    output(f"  Version: {manager.allocator.format_version_label(version)}")
    output(f"  Id: {version.id}")
    output(f"  Size: {format_size(version.data_size)} ({len(created.archive):,} bytes archived)")
    output(f"  Checksum: {version.checksum}")
    if version.description:
        output(f"  Description: {version.description}")
    output()
    output("To export this backup, run:")
    output(f"  nihongopro-backup export {version.id}")
    return 0


def _history_row(manager: BackupManager, version: BackupVersion) -> dict[str, Any]:
    return {
        **version.to_dict(),
        "label": manager.allocator.format_version_label(version),
        "archiveAvailable": manager.has_archive(version.id),
    }


def cmd_history(args: argparse.Namespace) -> int:
    """List backup versions, newest first."""
    manager = get_manager(args)
    history = manager.get_backup_history()

    if args.format == "json":
        rows = [_history_row(manager, v) for v in history]
        output(json.dumps(rows, indent=2, ensure_ascii=False), force=True)
        return 0

    if not history:
        output("No backups yet. Create one with: nihongopro-backup create --payload FILE")
        return 0

    output(f"{'Version':<24} {'Source':<9} {'Size':>10}  {'Archive':<7}  Id")
    output("-" * 90)
    for version in history:
        label = manager.allocator.format_version_label(version)
        archive = "yes" if manager.has_archive(version.id) else "no"
        output(
            f"{label:<24} {version.source:<9} {format_size(version.data_size):>10}  "
            f"{archive:<7}  {version.id}"
        )
        if version.description:
            output(f"{'':<24} {version.description}")
    output()
    output(f"{len(history)} backup(s)")
    return 0


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a backup version's payload."""
    archive_bytes = None
    if args.archive:
        archive_bytes = _read_bytes(Path(args.archive))
        if archive_bytes is None:
            return 1

    manager = get_manager(args)
    try:
        envelope = manager.restore_backup(args.version_id, archive_bytes)
    except BackupError as e:
        return _report_backup_error("Restore", e)

    payload_json = json.dumps(envelope.payload.to_dict(), indent=2, ensure_ascii=False)

    if args.output:
        output_path = Path(args.output)
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(payload_json + "\n", encoding="utf-8")
        except OSError as e:
            output_error(f"Error: Cannot write {output_path}: {e}")
            return 1
        output(f"Restored {manager.allocator.format_version_label(envelope.backup_version)}")
        output(f"  User: {envelope.user.get('name', '')}")
        output(f"  Study logs: {len(envelope.logs)}")
        output(f"  Written to: {output_path}")
    else:
        output(payload_json, force=True)
    return 0


def cmd_import(args: argparse.Namespace) -> int:
    """Import a backup archive."""
    path = Path(args.file)
    file_bytes = _read_bytes(path)
    if file_bytes is None:
        return 1

    manager = get_manager(args)
    try:
        version = manager.import_backup(file_bytes, path.name)
    except BackupError as e:
        return _report_backup_error("Import", e)

    output("Backup imported successfully!")
    output()
    output(f"  Version: {manager.allocator.format_version_label(version)}")
    output(f"  Id: {version.id}")
    output(f"  Size: {format_size(version.data_size)}")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export a backup archive."""
    manager = get_manager(args)
    try:
        filename = manager.export_backup_file(args.version_id)
    except BackupError as e:
        return _report_backup_error("Export", e)

    last_path = getattr(manager.sink, "last_path", None)
    output(f"Exported {filename}")
    if last_path is not None:
        output(f"  Saved to: {last_path}")
    return 0


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a backup version."""
    manager = get_manager(args)

    if not args.force:
        response = input(f"Delete backup {args.version_id}? [y/N]: ").strip().lower()
        if response not in ("y", "yes"):
            output("Delete cancelled.")
            return 0

    try:
        manager.delete_backup(args.version_id)
    except BackupError as e:
        return _report_backup_error("Delete", e)

    output(f"Deleted backup {args.version_id}")
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    """Validate and preview a backup archive."""
    path = Path(args.file)
    file_bytes = _read_bytes(path)
    if file_bytes is None:
        return 1

    manager = get_manager(args)
    try:
        envelope = manager.parse_backup_file(file_bytes)
    except BackupError as e:
        return _report_backup_error("Inspect", e)

    version = envelope.backup_version
    if args.json:
        output(json.dumps(version.to_dict(), indent=2, ensure_ascii=False), force=True)
        return 0

    existing = manager.metadata_store.get_backup_metadata().find(version.id)
    output(f"Backup file: {path}")
    output(f"  Format: {envelope.version}")
    output(f"  Version: {manager.allocator.format_version_label(version)}")
    output(f"  Id: {version.id}")
    output(f"  Exported: {envelope.export_date}")
    output(f"  User: {envelope.user.get('name', '')}")
    output(f"  Study logs: {len(envelope.logs)}")
    output(f"  Checksum: {version.checksum}")
    if existing is not None:
        output(f"  Already in catalog as v{existing.version_number}")
    return 0


def cmd_reminder(args: argparse.Namespace) -> int:
    """Check, dismiss or clear the backup reminder."""
    manager = get_manager(args)

    if args.action == "dismiss":
        manager.dismiss_backup_reminder()
        output("Backup reminder dismissed.")
        return 0

    if args.action == "clear":
        manager.clear_backup_reminder()
        output("Backup reminder dismissal cleared.")
        return 0

    if manager.should_show_backup_reminder():
        last_backup = manager.metadata_store.get_last_backup_date()
        if last_backup is None:
            output("No backup yet. It's a good time to create one.", force=True)
        else:
            output(
                f"Last backup was {last_backup.astimezone():%Y-%m-%d %H:%M}. "
                f"It's time for a new one.",
                force=True,
            )
    else:
        output("No backup reminder due.", force=True)
    return 0


def main() -> NoReturn:
    """Main entry point for the backup CLI."""
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
    except Exception as e:
        if args.verbose > 0:
            raise
        logger.exception("Unexpected error")
        output_error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
