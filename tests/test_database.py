from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from flightops.core.errors import ConfigurationError, ProductionSafetyError, StepFailedError
from flightops.core.operations import run_operation
from flightops.models.operations import StepStatus
from flightops.scripts.database import backup, migrations, seed

from conftest import CONNECTION_STRING

APPLIED = {"id": "20240301100000_InitialCreate", "name": "InitialCreate", "applied": True}
PENDING = {"id": "20240315093000_AddPickupOffers", "name": "AddPickupOffers", "applied": False}

@pytest.fixture
def ef(mocker):
    return mocker.MagicMock(name="DotnetEf")

# Migrations

def test_resolve_connection_string_requires_value(ctx):
    ctx.settings.SQL_ADMIN_PASSWORD = None
    with pytest.raises(ConfigurationError, match="No connection string"):
        migrations.resolve_connection_string(ctx, None)
    assert migrations.resolve_connection_string(ctx, CONNECTION_STRING) == CONNECTION_STRING

def test_resolve_connection_string_falls_back_to_sql_admin(ctx):
    value = migrations.resolve_connection_string(ctx, None)

    assert value.startswith("Server=tcp:sql-flightcompanion-dev-aue.database.windows.net,1433;")
    assert "Initial Catalog=sqldb-flightcompanion-dev;" in value
    assert "User ID=flightcompanionadmin;" in value
    assert "Password=Adm1n!password;" in value

def test_apply_pending_migrations(runner, ctx, ef):
    ef.list_migrations.side_effect = [[APPLIED, PENDING], [APPLIED, {**PENDING, "applied": True}]]

    migrations.run_migrations(runner, ctx, connection_string=CONNECTION_STRING, verify_connection=False, ef=ef)

    ef.update_database.assert_called_once_with(None)
    ef.script.assert_not_called()
    assert runner.report.outputs["pending_migrations"] == [PENDING["id"]]
    assert runner.report.succeeded

def test_up_to_date_database_is_skipped(runner, ctx, ef):
    ef.list_migrations.return_value = [APPLIED]

    migrations.run_migrations(runner, ctx, connection_string=CONNECTION_STRING, verify_connection=False, ef=ef)

    ef.update_database.assert_not_called()
    assert runner.report.steps[-1].status == StepStatus.SKIPPED

def test_production_generates_script_first(prod_runner, prod_ctx, ef):
    ef.list_migrations.side_effect = [[APPLIED, PENDING], [APPLIED, {**PENDING, "applied": True}]]
    calls = []
    ef.script.side_effect = lambda *args, **kwargs: calls.append("script")
    ef.update_database.side_effect = lambda *args: calls.append("update")

    migrations.run_migrations(
        prod_runner, prod_ctx, connection_string=CONNECTION_STRING, verify_connection=False, ef=ef
    )

    assert calls == ["script", "update"]
    script_path = Path(prod_runner.report.outputs["migration_script"])
    assert script_path.parent == Path(prod_ctx.settings.REPORTS_DIR)
    assert script_path.name.startswith("migration-prod-")

def test_still_pending_after_update_fails(runner, ctx, ef):
    ef.list_migrations.return_value = [APPLIED, PENDING]

    with pytest.raises(StepFailedError):
        migrations.run_migrations(runner, ctx, connection_string=CONNECTION_STRING, verify_connection=False, ef=ef)

def test_production_rollback_requires_force(prod_runner, prod_ctx, ef):
    with pytest.raises(ProductionSafetyError):
        migrations.rollback_migration(prod_runner, prod_ctx, ef, "InitialCreate")
    ef.update_database.assert_not_called()

    ef.list_migrations.return_value = [APPLIED, PENDING]
    migrations.rollback_migration(prod_runner, prod_ctx, ef, "InitialCreate", force=True)
    ef.update_database.assert_called_once_with("InitialCreate")

def test_rollback_unknown_migration(runner, ctx, ef):
    ef.list_migrations.return_value = [APPLIED]
    with pytest.raises(ConfigurationError, match="Unknown migration"):
        migrations.rollback_migration(runner, ctx, ef, "DoesNotExist")

def test_create_migration_refused_in_production(prod_runner, prod_ctx, ef):
    with pytest.raises(ProductionSafetyError):
        migrations.run_migrations(prod_runner, prod_ctx, create="AddRatings", ef=ef)

def test_what_if_runs_nothing(make_runner, ctx, ef):
    runner = make_runner("dev", what_if=True)

    migrations.run_migrations(runner, ctx, connection_string=CONNECTION_STRING, ef=ef)

    ef.list_migrations.assert_not_called()
    ef.update_database.assert_not_called()
    assert {step.status for step in runner.report.steps} == {StepStatus.WHAT_IF}

def test_verify_database_connection(mocker):
    engine = mocker.patch("flightops.scripts.database.migrations.create_engine").return_value
    conn = engine.connect.return_value.__enter__.return_value
    conn.execute.return_value.scalar.return_value = "Microsoft SQL Azure (RTM) - 12.0.2000.8"

    version = migrations.verify_database_connection(CONNECTION_STRING)

    assert version.startswith("Microsoft SQL Azure")
    engine.dispose.assert_called_once()

# Seeding

def test_sample_data_refused_in_production(prod_runner, prod_ctx):
    with pytest.raises(ProductionSafetyError):
        seed.seed_database(prod_runner, prod_ctx, data_set="sample", connection_string=CONNECTION_STRING)

def test_seed_runs_backend_entry_point(runner, ctx, mocker):
    run = mocker.patch("flightops.scripts.database.seed.run_command")
    mocker.patch(
        "flightops.scripts.database.seed.count_rows",
        return_value={table: 3 for table in seed.SEED_TABLES["configuration"]}
    )

    seed.seed_database(runner, ctx, data_set="configuration", connection_string=CONNECTION_STRING)

    args = run.call_args.args[0]
    assert args[-2:] == ["--seed", "configuration"]
    env = run.call_args.kwargs["env"]
    assert env["ASPNETCORE_ENVIRONMENT"] == "Development"
    assert env["ConnectionStrings__DefaultConnection"] == CONNECTION_STRING
    assert runner.report.outputs["row_counts"]["Emergencies"] == 3

def test_verify_seed_data_fails_on_empty_tables(mocker):
    counts = {table: 5 for table in seed.SEED_TABLES["sample"]}
    counts["Ratings"] = 0
    counts["Payments"] = None
    mocker.patch("flightops.scripts.database.seed.count_rows", return_value=counts)

    with pytest.raises(ConfigurationError, match="Ratings, Payments"):
        seed.verify_seed_data(CONNECTION_STRING, "sample")

def test_unknown_data_set(runner, ctx):
    with pytest.raises(ConfigurationError):
        seed.seed_database(runner, ctx, data_set="everything", connection_string=CONNECTION_STRING)

# Backups

def test_backup_blob_name():
    stamp = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert backup.backup_blob_name("sqldb-flightcompanion-dev", stamp) == (
        "sqldb-flightcompanion-dev/sqldb-flightcompanion-dev_20250102_030405.bacpac"
    )

def test_export_database(ctx, azure_clients):
    poller = azure_clients.sql.databases.begin_export.return_value
    poller.result.return_value = SimpleNamespace(status="Succeeded")

    export = backup.export_database(ctx, "sqldb-flightcompanion-dev/manual.bacpac")

    assert export["status"] == "Succeeded"
    assert export["storage_uri"] == (
        "https://stflightcompdevaue.blob.core.windows.net/database-backups/sqldb-flightcompanion-dev/manual.bacpac"
    )
    parameters = azure_clients.sql.databases.begin_export.call_args.args[3]
    assert parameters["storage_key"] == "storage-key"
    assert parameters["administrator_login"] == "flightcompanionadmin"

def test_export_requires_admin_password(ctx):
    ctx.settings.SQL_ADMIN_PASSWORD = None
    with pytest.raises(ConfigurationError):
        backup.export_database(ctx)

def test_expired_backups():
    now = datetime(2025, 3, 1, tzinfo=timezone.utc)
    backups = [
        {"name": "new", "last_modified": now - timedelta(days=1), "size": 10},
        {"name": "old", "last_modified": now - timedelta(days=8), "size": 10},
    ]

    assert [b["name"] for b in backup.expired_backups(backups, 7, now)] == ["old"]

def test_cleanup_backups(runner, ctx, blob_container):
    now = datetime(2025, 3, 1, tzinfo=timezone.utc)
    blob_container.list_blobs.return_value = [
        SimpleNamespace(name="db/a.bacpac", last_modified=now - timedelta(days=2), size=1),
        SimpleNamespace(name="db/b.bacpac", last_modified=now - timedelta(days=30), size=1),
        SimpleNamespace(name="db/c.bacpac", last_modified=now - timedelta(days=10), size=1),
    ]

    deleted = backup.cleanup_backups(runner, ctx, 7, now)

    assert deleted == ["db/c.bacpac", "db/b.bacpac"]
    assert blob_container.delete_blob.call_count == 2

def test_backup_database_with_retention(runner, ctx, azure_clients):
    backup.backup_database(runner, ctx, configure_pitr=True)

    policy = azure_clients.sql.backup_short_term_retention_policies.begin_create_or_update
    assert policy.call_args.args[3:] == ("default", {"retention_days": 7})
    assert runner.report.outputs["backup"]["blob"].startswith("sqldb-flightcompanion-dev/")

def test_backup_database_report(ctx, azure_clients, echo_lines):
    azure_clients.sql.databases.begin_export.side_effect = RuntimeError("export quota reached")

    report = run_operation("Database Backup", "dev", backup.backup_database, ctx, echo=echo_lines.append)

    assert report.exit_code == 1
    assert "export quota reached" in report.error
