# flightops/scripts/database/seed.py
"""Database seeding through the backend's seed entry point."""

from typing import Dict, List, Optional

from sqlalchemy import create_engine, text

from flightops.core.commands import run_command
from flightops.core.errors import ConfigurationError, ProductionSafetyError
from flightops.core.logging import get_logger, monitor_performance
from flightops.core.operations import OperationRunner, emit_report, run_operation
from flightops.scripts.azure.setup_resources import aspnet_environment
from flightops.scripts.context import OperationContext, build_parser, parse_args
from flightops.scripts.database.migrations import resolve_connection_string
from flightops.utils.connection_strings import to_sqlalchemy_url

logger = get_logger(__name__)

# Tables each data set must populate
SEED_TABLES: Dict[str, List[str]] = {
    "sample": [
        "AspNetUsers",
        "FlightCompanionRequests",
        "FlightCompanionOffers",
        "PickupRequests",
        "PickupOffers",
        "Ratings",
        "Payments",
        "Notifications",
        "UserSettings",
    ],
    "configuration": [
        "Emergencies",
        "Messages",
        "Escrows",
    ],
}

def run_seeder(ctx: OperationContext, data_set: str, connection_string: str):
    """Run `dotnet run -- --seed <data set>` against the target database."""
    return run_command(
        [
            "dotnet", "run",
            "--project", ctx.settings.BACKEND_PROJECT,
            "--configuration", "Release",
            "--",
            "--seed", data_set,
        ],
        env={
            "ASPNETCORE_ENVIRONMENT": aspnet_environment(ctx.environment),
            "ConnectionStrings__DefaultConnection": connection_string,
        }
    )

@monitor_performance("count rows")
def count_rows(connection_string: str, tables: List[str]) -> Dict[str, Optional[int]]:
    """Row count per table; None when the table does not exist."""
    counts: Dict[str, Optional[int]] = {}
    engine = create_engine(to_sqlalchemy_url(connection_string))
    try:
        with engine.connect() as conn:
            existing = set(conn.execute(text(
                "SELECT TABLE_NAME FROM INFORMATION_SCHEMA.TABLES WHERE TABLE_TYPE = 'BASE TABLE'"
            )).scalars())
            for table in tables:
                if table not in existing:
                    counts[table] = None
                    continue
                # Names come from SEED_TABLES or INFORMATION_SCHEMA, never from user input
                counts[table] = conn.execute(text(f"SELECT COUNT(*) FROM [{table}]")).scalar_one()
    finally:
        engine.dispose()
    return counts

def verify_seed_data(connection_string: str, data_set: str) -> Dict[str, Optional[int]]:
    """Fail when a table the data set should populate is missing or empty."""
    counts = count_rows(connection_string, SEED_TABLES[data_set])
    empty = [table for table, count in counts.items() if not count]
    if empty:
        raise ConfigurationError(f"Seed verification failed, empty or missing tables: {', '.join(empty)}")
    return counts

def seed_database(
    runner: OperationRunner,
    ctx: OperationContext,
    data_set: str = "sample",
    connection_string: Optional[str] = None,
    verify_only: bool = False
):
    if data_set not in SEED_TABLES:
        raise ConfigurationError(f"Unknown data set '{data_set}'")
    if ctx.is_production and data_set == "sample":
        raise ProductionSafetyError("Sample data cannot be seeded into production")

    connection_string = resolve_connection_string(ctx, connection_string)

    if not verify_only:
        runner.run_step(f"Seed {data_set} data", run_seeder, ctx, data_set, connection_string)

    counts = runner.run_step(f"Verify {data_set} data", verify_seed_data, connection_string, data_set)
    for table, count in (counts or {}).items():
        runner.note(f"{table}: {count} rows")
    runner.set_output("row_counts", counts or {})

def main(argv=None) -> int:
    parser = build_parser("Seed the Flight Companion database")
    parser.add_argument("--connection-string", help="ADO.NET connection string (defaults to DATABASE_CONNECTION_STRING)")
    parser.add_argument("--data-set", choices=sorted(SEED_TABLES), default="sample")
    parser.add_argument("--verify-only", action="store_true", help="Only check the seeded tables")
    args = parse_args(parser, argv)

    ctx = OperationContext.create(args.env, args.location)
    report = run_operation(
        "Database Seeding",
        ctx.environment,
        seed_database,
        ctx,
        data_set=args.data_set,
        connection_string=args.connection_string,
        verify_only=args.verify_only,
        what_if=args.what_if
    )
    return emit_report(report)

if __name__ == "__main__":
    raise SystemExit(main())
