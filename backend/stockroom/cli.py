# Overview: Flask CLI command groups for store bootstrap, backups, migration and maintenance.

# backend/stockroom/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Store:
# - python -m flask store init-db
#   Create any missing tables (idempotent).
# - python -m flask store info
#   Print collection counts, storage size and last backup.
# - python -m flask store export --output export.json
#   Write the full store as a JSON export (stdout when --output is omitted).
# - python -m flask store import export.json --yes
#   Replace products, sales and settings from an export (takes a pre_import backup first).
# - python -m flask store compact
#   Snapshot, then VACUUM the SQLite file.
#
# Backups:
# - python -m flask backups list [--type auto]
# - python -m flask backups create [--type manual]
# - python -m flask backups restore <timestamp> --yes
#
# Legacy migration:
# - python -m flask migration run [--force]
#   Merge the flat-storage blob into the collections.
# - python -m flask migration finalize [--output final-export.json] --yes
#   Merge one last time, snapshot, then delete the flat-storage blob.
#
# Maintenance:
# - python -m flask maintenance sync | quick-sync | cleanup | integrity
# - python -m flask maintenance prune-audit --retention-days 90
# - python -m flask maintenance archive-sales --older-than-years 2
#
# Audit:
# - python -m flask audit list [--action add] [--user-id 7] [--limit 20]

import json
from pathlib import Path

import click
from flask.cli import with_appcontext

from .context import get_store_context
from .errors import MigrationError, StoreError
from .extensions import db
from .services import (
    audit_service,
    backup_service,
    import_service,
    integrity_service,
    maintenance_service,
    migration_service,
    store_service,
)


def _fail(message: str) -> None:
    click.echo(f"FAIL {message}")
    click.get_current_context().exit(1)


def _scheduler():
    return get_store_context().scheduler


@click.group('store')
def store_group():
    """Store bootstrap, inspection and import/export."""


@store_group.command('init-db')
@with_appcontext
def init_db_cli():
    """Create any missing tables."""
    db.create_all()
    ctx = get_store_context()
    ctx.available = True
    click.echo("PASS Store schema is in place")


@store_group.command('info')
@with_appcontext
def info_cli():
    info = store_service.get_database_info(get_store_context())
    if info is None:
        _fail("Could not collect store info")
        return
    click.echo(f"Degraded:    {info['degraded']}")
    click.echo(f"Last backup: {info['last_backup'] or '-'}")
    for name, total in info["counts"].items():
        click.echo(f"  {name:<12} {total}")


@store_group.command('export')
@click.option('--output', type=click.Path(dir_okay=False), help='File to write (default: stdout)')
@with_appcontext
def export_cli(output):
    body = import_service.export_database(get_store_context())
    if output:
        Path(output).write_text(body, encoding="utf-8")
        click.echo(f"PASS Exported store to {output}")
    else:
        click.echo(body)


@store_group.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--yes', is_flag=True, help='Confirm replacing current data')
@with_appcontext
def import_cli(path, yes):
    """Replace products, sales and settings with an export file."""
    if not yes:
        _fail("Import replaces all current data; re-run with --yes")
        return
    try:
        result = import_service.import_database(get_store_context(), Path(path).read_text(encoding="utf-8"))
    except StoreError as e:
        _fail(f"Import failed: {e}")
        return
    click.echo(
        f"PASS Imported {result['products']} products, {result['sales']} sales "
        f"(safety backup: {result['pre_import_backup'] or 'none'})"
    )


@store_group.command('compact')
@with_appcontext
def compact_cli():
    try:
        store_service.compact_database(get_store_context())
    except StoreError as e:
        _fail(str(e))
        return
    click.echo("PASS Store compacted")


@click.group('backups')
def backups_group():
    """Snapshot listing, creation and restore."""


@backups_group.command('list')
@click.option('--type', 'backup_type', help='Only this backup type')
@with_appcontext
def list_backups_cli(backup_type):
    backups = backup_service.list_backups(get_store_context(), backup_type)
    if not backups:
        click.echo("No backups found.")
        return
    click.echo(f"{'Timestamp':<30} {'Type':<16} {'Schema'}")
    for b in backups:
        click.echo(f"{b['timestamp']:<30} {b['type']:<16} {b.get('schemaVersion')}")


@backups_group.command('create')
@click.option('--type', 'backup_type', default='manual', show_default=True)
@with_appcontext
def create_backup_cli(backup_type):
    timestamp = backup_service.create_backup(get_store_context(), backup_type)
    if timestamp is None:
        _fail("Backup failed (see log)")
        return
    click.echo(f"PASS Backup created: {timestamp}")


@backups_group.command('restore')
@click.argument('timestamp')
@click.option('--yes', is_flag=True, help='Confirm replacing current data')
@with_appcontext
def restore_backup_cli(timestamp, yes):
    if not yes:
        _fail("Restore replaces all current data; re-run with --yes")
        return
    try:
        backup_service.restore_backup(get_store_context(), timestamp)
    except StoreError as e:
        _fail(f"Restore failed: {e}")
        return
    click.echo(f"PASS Restored backup {timestamp}")


@click.group('migration')
def migration_group():
    """Legacy flat-storage migration."""


@migration_group.command('run')
@click.option('--force', is_flag=True, help='Merge again even if this payload was already migrated')
@with_appcontext
def migrate_cli(force):
    try:
        result = migration_service.migrate_from_legacy(get_store_context(), force=force)
    except MigrationError as e:
        for collection, reason in e.failures.items():
            click.echo(f"  {collection}: {reason}")
        _fail(str(e))
        return
    except StoreError as e:
        _fail(str(e))
        return
    click.echo(f"PASS Migration {result.mode}: {json.dumps(result.inserted, sort_keys=True)}")


@migration_group.command('finalize')
@click.option('--output', type=click.Path(dir_okay=False), help='Also write the final export to this file')
@click.option('--yes', is_flag=True, help='Confirm deleting the legacy blob')
@with_appcontext
def finalize_cli(output, yes):
    if not yes:
        _fail("Finalizing deletes the legacy data; re-run with --yes")
        return
    try:
        result = migration_service.perform_final_migration(get_store_context(), output_path=output)
    except StoreError as e:
        _fail(str(e))
        return
    click.echo(f"PASS Legacy storage retired (backup {result['backup_timestamp']})")


@click.group('maintenance')
def maintenance_group():
    """Sync, cleanup and integrity commands."""


@maintenance_group.command('sync')
@with_appcontext
def sync_cli():
    result = _scheduler().sync()
    if result is None:
        _fail("Sync skipped or failed (see log)")
        return
    click.echo(
        f"PASS Sync complete: {len(result.issues)} issue(s), "
        f"backup={result.backup_timestamp or 'none'}, archived={result.archived}"
    )


@maintenance_group.command('quick-sync')
@with_appcontext
def quick_sync_cli():
    timestamp = _scheduler().quick_sync()
    if timestamp is None:
        _fail("Quick sync failed (see log)")
        return
    click.echo(f"PASS Quick sync backup: {timestamp}")


@maintenance_group.command('cleanup')
@with_appcontext
def cleanup_cli():
    removed = _scheduler().cleanup()
    if removed is None:
        _fail("Cleanup failed (see log)")
        return
    click.echo(f"PASS Cleanup complete; {removed} audit entries pruned")


@maintenance_group.command('integrity')
@with_appcontext
def integrity_cli():
    issues = integrity_service.check(get_store_context())
    if not issues:
        click.echo("PASS No integrity issues")
        return
    for issue in issues:
        status = "fixed" if issue.repaired else "flagged"
        click.echo(f"WARN  {issue.describe()} ({status})")


@maintenance_group.command('prune-audit')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def prune_audit_cli(retention_days):
    """
    Delete audit entries older than the retention window.

    Default retention: 90 days.
    """
    deleted = maintenance_service.cleanup_audit_log(get_store_context(), retention_days=retention_days)
    click.echo(f"Deleted {deleted} audit entries older than {retention_days} days.")


@maintenance_group.command('archive-sales')
@click.option('--older-than-years', type=int, default=2, show_default=True)
@with_appcontext
def archive_sales_cli(older_than_years):
    archived = maintenance_service.archive_old_sales(get_store_context(), older_than_years=older_than_years)
    click.echo(f"Archived {archived} sales older than {older_than_years} years.")


@click.group('audit')
def audit_group():
    """Audit trail inspection."""


@audit_group.command('list')
@click.option('--action', help='Only this action')
@click.option('--user-id', help='Only this user')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def audit_list_cli(action, user_id, limit):
    entries = audit_service.query(get_store_context(), limit=limit, action=action, user_id=user_id)
    if not entries:
        click.echo("No audit entries found.")
        return
    for e in entries:
        click.echo(f"{e['timestamp']:<22} {e['action']:<20} {e['userName'] or '-':<12} {e['details']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(store_group)
    app.cli.add_command(backups_group)
    app.cli.add_command(migration_group)
    app.cli.add_command(maintenance_group)
    app.cli.add_command(audit_group)
