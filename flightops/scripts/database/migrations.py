# flightops/scripts/database/migrations.py
"""Database migration helpers around dotnet ef."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy import create_engine, text

from flightops.core.commands import DotnetEf
from flightops.core.errors import ConfigurationError, ProductionSafetyError
from flightops.core.logging import get_logger
from flightops.core.operations import OperationRunner, emit_report, run_operation
from flightops.scripts.azure.setup_resources import aspnet_environment
from flightops.scripts.context import OperationContext, build_parser, parse_args
from flightops.utils.connection_strings import (
    build_connection_string,
    mask_connection_string,
    to_sqlalchemy_url,
)
from flightops.utils.validators import (
    require_valid,
    validate_connection_string,
    validate_migration_name,
)

logger = get_logger(__name__)

def resolve_connection_string(ctx: OperationContext, connection_string: Optional[str]) -> str:
    """Use the flag value, falling back to DATABASE_CONNECTION_STRING.

    Without either, connect to the environment's own database as the SQL
    admin when SQL_ADMIN_PASSWORD is set.
    """
    value = connection_string or ctx.settings.DATABASE_CONNECTION_STRING
    if not value and ctx.settings.SQL_ADMIN_PASSWORD:
        value = build_connection_string(
            ctx.names.sql_server_fqdn,
            ctx.names.sql_database,
            ctx.settings.SQL_ADMIN_USER,
            ctx.settings.SQL_ADMIN_PASSWORD
        )
    if not value:
        raise ConfigurationError(
            "No connection string: pass --connection-string, set DATABASE_CONNECTION_STRING "
            "or set SQL_ADMIN_PASSWORD"
        )
    require_valid(validate_connection_string(value), "connection_string")
    return value

def verify_database_connection(connection_string: str) -> str:
    """Open a connection, run SELECT 1 and return the server version."""
    engine = create_engine(to_sqlalchemy_url(connection_string), pool_pre_ping=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).scalar_one()
            version = conn.execute(text("SELECT @@VERSION")).scalar()
    finally:
        engine.dispose()

    logger.info(
        "Database connection verified",
        connection=mask_connection_string(connection_string),
        version=(version or "")[:80]
    )
    return version

def pending_migrations(migrations: List[Dict]) -> List[str]:
    return [migration["id"] for migration in migrations if not migration["applied"]]

def applied_migrations(migrations: List[Dict]) -> List[str]:
    return [migration["id"] for migration in migrations if migration["applied"]]

def generate_migration_script(
    ef: DotnetEf,
    output: str,
    idempotent: bool = True,
    from_migration: Optional[str] = None
) -> str:
    Path(output).parent.mkdir(parents=True, exist_ok=True)
    ef.script(output, idempotent=idempotent, from_migration=from_migration)
    return output

def apply_migrations(
    runner: OperationRunner,
    ctx: OperationContext,
    ef: DotnetEf,
    target: Optional[str] = None
):
    """Run pending database migrations."""
    migrations = runner.run_step("List migrations", ef.list_migrations)
    if migrations is not None:
        pending = pending_migrations(migrations)
        runner.set_output("pending_migrations", pending)
        if not pending and target is None:
            runner.skip("Apply migrations", "database is up to date")
            return
        runner.note(f"Pending migrations: {', '.join(pending) or 'none'}")

    if ctx.is_production:
        # Keep the SQL that production is about to run
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        output = str(Path(ctx.settings.REPORTS_DIR) / f"migration-{ctx.environment}-{stamp}.sql")
        script = runner.run_step("Generate idempotent migration script", generate_migration_script, ef, output)
        runner.set_output("migration_script", script)

    runner.run_step(
        f"Update database{' to ' + target if target else ''}",
        ef.update_database,
        target
    )

    if not runner.what_if:
        remaining = runner.run_step("Verify migrations applied", ef.list_migrations)
        if target is None and pending_migrations(remaining):
            runner.fail(
                "Migrations applied",
                f"still pending: {', '.join(pending_migrations(remaining))}",
                critical=True
            )

def rollback_migration(
    runner: OperationRunner,
    ctx: OperationContext,
    ef: DotnetEf,
    target: str,
    force: bool = False
):
    """Rollback to a specific migration."""
    require_valid(validate_migration_name(target), "target")
    if ctx.is_production and not force:
        raise ProductionSafetyError("Rolling back production migrations requires --force")

    migrations = runner.run_step("List migrations", ef.list_migrations)
    if migrations is not None and target != "0":
        known = {m["id"] for m in migrations} | {m["name"] for m in migrations}
        if target not in known:
            raise ConfigurationError(f"Unknown migration '{target}'")

    runner.run_step(f"Roll back database to {target}", ef.update_database, target)

def create_migration(runner: OperationRunner, ctx: OperationContext, ef: DotnetEf, name: str):
    """Create a new migration."""
    require_valid(validate_migration_name(name), "name")
    if ctx.is_production:
        raise ProductionSafetyError("Create migrations against a development environment")
    runner.run_step(f"Add migration {name}", ef.add_migration, name)

def run_migrations(
    runner: OperationRunner,
    ctx: OperationContext,
    connection_string: Optional[str] = None,
    target: Optional[str] = None,
    rollback: Optional[str] = None,
    script: Optional[str] = None,
    create: Optional[str] = None,
    list_only: bool = False,
    force: bool = False,
    verify_connection: bool = True,
    ef: Optional[DotnetEf] = None
):
    if create:
        ef = ef or DotnetEf(ctx.settings.BACKEND_PROJECT, environment=aspnet_environment(ctx.environment))
        create_migration(runner, ctx, ef, create)
        return

    if target:
        require_valid(validate_migration_name(target), "target")

    connection_string = resolve_connection_string(ctx, connection_string)
    ef = ef or DotnetEf(
        ctx.settings.BACKEND_PROJECT,
        connection_string=connection_string,
        environment=aspnet_environment(ctx.environment)
    )

    if verify_connection:
        runner.run_step("Verify database connection", verify_database_connection, connection_string)

    if list_only:
        migrations = runner.run_step("List migrations", ef.list_migrations)
        for migration in migrations or []:
            runner.note(f"{'[applied]' if migration['applied'] else '[pending]'} {migration['id']}")
        runner.set_output("migrations", migrations or [])
    elif script:
        runner.run_step(f"Generate migration script {script}", generate_migration_script, ef, script)
    elif rollback:
        rollback_migration(runner, ctx, ef, rollback, force=force)
    else:
        apply_migrations(runner, ctx, ef, target=target)

def main(argv=None) -> int:
    parser = build_parser("Apply Entity Framework migrations")
    parser.add_argument("--connection-string", help="ADO.NET connection string (defaults to DATABASE_CONNECTION_STRING)")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--target", help="Migrate up to this migration")
    group.add_argument("--rollback", metavar="MIGRATION", help="Revert to this migration ('0' reverts all)")
    group.add_argument("--script", metavar="OUTPUT", help="Only generate an idempotent SQL script")
    group.add_argument("--create", metavar="NAME", help="Add a new migration")
    group.add_argument("--list", action="store_true", help="List applied and pending migrations")
    parser.add_argument("--force", action="store_true", help="Allow destructive actions in production")
    parser.add_argument("--skip-connection-check", action="store_true")
    args = parse_args(parser, argv)

    ctx = OperationContext.create(args.env, args.location)
    report = run_operation(
        "Database Migration",
        ctx.environment,
        run_migrations,
        ctx,
        connection_string=args.connection_string,
        target=args.target,
        rollback=args.rollback,
        script=args.script,
        create=args.create,
        list_only=args.list,
        force=args.force,
        verify_connection=not args.skip_connection_check,
        what_if=args.what_if
    )
    return emit_report(report)

if __name__ == "__main__":
    raise SystemExit(main())
