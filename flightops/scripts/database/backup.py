# flightops/scripts/database/backup.py
"""Database backup script for Azure SQL."""

import datetime
from typing import Dict, List, Optional

from flightops.core.errors import ConfigurationError
from flightops.core.logging import get_logger
from flightops.core.operations import OperationRunner, emit_report, run_operation
from flightops.scripts.azure.storage import get_account_key
from flightops.scripts.context import OperationContext, build_parser, parse_args
from flightops.utils.validators import require_valid, validate_retention_days

logger = get_logger(__name__)

def backup_blob_name(database: str, timestamp: Optional[datetime.datetime] = None) -> str:
    timestamp = timestamp or datetime.datetime.now(datetime.timezone.utc)
    return f"{database}/{database}_{timestamp.strftime('%Y%m%d_%H%M%S')}.bacpac"

def start_export(ctx: OperationContext, blob_name: Optional[str] = None):
    """Start a bacpac export into the backup container.

    Returns the long-running operation poller and the target blob details.
    """
    password = ctx.settings.SQL_ADMIN_PASSWORD
    if not password:
        raise ConfigurationError("SQL_ADMIN_PASSWORD is required to export the database")

    names = ctx.names
    blob_name = blob_name or backup_blob_name(names.sql_database)
    storage_uri = (
        f"https://{names.storage_account}.blob.core.windows.net/"
        f"{ctx.settings.BACKUP_CONTAINER}/{blob_name}"
    )

    poller = ctx.clients.sql.databases.begin_export(
        names.resource_group,
        names.sql_server,
        names.sql_database,
        {
            "storage_key_type": "StorageAccessKey",
            "storage_key": get_account_key(ctx),
            "storage_uri": storage_uri,
            "administrator_login": ctx.settings.SQL_ADMIN_USER,
            "administrator_login_password": password,
            "authentication_type": "Sql"
        }
    )
    logger.info("Database export started", database=names.sql_database, blob=blob_name)
    return poller, {"blob": blob_name, "storage_uri": storage_uri}

def export_database(ctx: OperationContext, blob_name: Optional[str] = None) -> Dict:
    """Export the database as a bacpac and wait for it to finish."""
    poller, export = start_export(ctx, blob_name)
    result = poller.result()
    export["status"] = getattr(result, "status", None)
    logger.info("Database exported", database=ctx.names.sql_database, blob=export["blob"])
    return export

def backup_container(ctx: OperationContext):
    return ctx.clients.blob_service(ctx.names.storage_account).get_container_client(
        ctx.settings.BACKUP_CONTAINER
    )

def list_backups(ctx: OperationContext, prefix: Optional[str] = None) -> List[Dict]:
    """List backup blobs, newest first."""
    container = backup_container(ctx)
    backups = [
        {
            "name": blob.name,
            "last_modified": blob.last_modified,
            "size": blob.size
        }
        for blob in container.list_blobs(name_starts_with=prefix)
    ]
    return sorted(backups, key=lambda backup: backup["last_modified"], reverse=True)

def expired_backups(
    backups: List[Dict],
    retention_days: int,
    now: Optional[datetime.datetime] = None
) -> List[Dict]:
    now = now or datetime.datetime.now(datetime.timezone.utc)
    cutoff = now - datetime.timedelta(days=retention_days)
    return [backup for backup in backups if backup["last_modified"] < cutoff]

def cleanup_backups(
    runner: OperationRunner,
    ctx: OperationContext,
    retention_days: int,
    now: Optional[datetime.datetime] = None
) -> List[str]:
    """Delete backups older than the retention period."""
    require_valid(validate_retention_days(retention_days, maximum=3650), "retention_days")

    backups = runner.run_step("List backups", list_backups, ctx)
    expired = expired_backups(backups or [], retention_days, now)
    if not expired:
        runner.note(f"No backups older than {retention_days} days")
        return []

    container = backup_container(ctx)
    deleted = []
    for backup in expired:
        if runner.check(f"Delete expired backup {backup['name']}", container.delete_blob, backup["name"]):
            deleted.append(backup["name"])
    return deleted

def configure_retention(ctx: OperationContext, retention_days: int):
    """Set the point-in-time restore retention of the database."""
    return ctx.clients.sql.backup_short_term_retention_policies.begin_create_or_update(
        ctx.names.resource_group,
        ctx.names.sql_server,
        ctx.names.sql_database,
        "default",
        {"retention_days": retention_days}
    ).result()

def backup_database(
    runner: OperationRunner,
    ctx: OperationContext,
    retention_days: Optional[int] = None,
    cleanup: bool = False,
    configure_pitr: bool = False
):
    """Create and upload database backup."""
    retention_days = retention_days or ctx.profile.backup_retention_days

    if configure_pitr:
        require_valid(validate_retention_days(retention_days), "retention_days")
        runner.run_step(
            f"Set point-in-time retention to {retention_days} days",
            configure_retention,
            ctx,
            retention_days
        )

    export = runner.run_step(f"Export {ctx.names.sql_database} to bacpac", export_database, ctx)
    if export:
        runner.note(f"Backup completed: {export['blob']}")
        runner.set_output("backup", export)

    if cleanup:
        deleted = cleanup_backups(runner, ctx, retention_days)
        runner.set_output("deleted_backups", deleted)

def main(argv=None) -> int:
    parser = build_parser("Back up the Flight Companion database")
    parser.add_argument("--retention-days", type=int, help="Defaults to the environment retention")
    parser.add_argument("--cleanup", action="store_true", help="Delete backups older than the retention")
    parser.add_argument("--configure-pitr", action="store_true", help="Also set point-in-time retention")
    args = parse_args(parser, argv)

    ctx = OperationContext.create(args.env, args.location)
    report = run_operation(
        "Database Backup",
        ctx.environment,
        backup_database,
        ctx,
        retention_days=args.retention_days,
        cleanup=args.cleanup,
        configure_pitr=args.configure_pitr,
        what_if=args.what_if
    )
    return emit_report(report)

if __name__ == "__main__":
    raise SystemExit(main())
