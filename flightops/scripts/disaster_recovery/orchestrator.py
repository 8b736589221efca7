# flightops/scripts/disaster_recovery/orchestrator.py
"""Backup orchestration across the platform's stateful components.

Each component is backed up into the backup container under
`dr/{timestamp}/`, and a manifest describing the run is written next to
the database exports as `backup-manifest-{timestamp}.json`.
"""

import json
from datetime import datetime, timezone
from typing import Dict, List, Optional

from flightops.core.logging import get_logger
from flightops.core.operations import OperationRunner, emit_report, run_operation, wait_until
from flightops.scripts.context import OperationContext, build_parser, parse_args
from flightops.scripts.database.backup import backup_blob_name, backup_container, start_export
from flightops.utils.validators import require_valid

logger = get_logger(__name__)

COMPONENTS = ["database", "appsettings", "keyvault", "webconfig"]

def backup_timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).strftime("%Y%m%d_%H%M%S")

def manifest_name(stamp: str) -> str:
    return f"backup-manifest-{stamp}.json"

def validate_components(components: List[str]):
    unknown = [component for component in components if component not in COMPONENTS]
    if unknown:
        return False, f"Unknown components: {', '.join(unknown)} (choose from {', '.join(COMPONENTS)})"
    if not components:
        return False, "At least one component is required"
    return True, None

def parse_components(value: Optional[str]) -> List[str]:
    if not value:
        return list(COMPONENTS)
    return [part.strip().lower() for part in value.split(",") if part.strip()]

def upload_json(container, name: str, payload) -> str:
    container.upload_blob(name, json.dumps(payload, indent=2, default=str), overwrite=True)
    return name

def snapshot_app_settings(ctx: OperationContext, container, prefix: str) -> List[str]:
    """Store app settings and connection strings of the web app."""
    web_apps = ctx.clients.web.web_apps
    rg, app = ctx.names.resource_group, ctx.names.web_app

    settings = web_apps.list_application_settings(rg, app).properties or {}
    connection_strings = {
        name: {"value": pair.value, "type": str(getattr(pair.type, "value", pair.type))}
        for name, pair in (web_apps.list_connection_strings(rg, app).properties or {}).items()
    }
    logger.info("App settings captured", settings=len(settings), connection_strings=len(connection_strings))
    return [
        upload_json(container, f"{prefix}/appsettings.json", settings),
        upload_json(container, f"{prefix}/connectionstrings.json", connection_strings),
    ]

def snapshot_web_config(ctx: OperationContext, container, prefix: str) -> List[str]:
    """Store the site configuration (runtime, TLS, restrictions)."""
    config = ctx.clients.web.web_apps.get_configuration(ctx.names.resource_group, ctx.names.web_app)
    return [upload_json(container, f"{prefix}/webconfig.json", config.as_dict())]

def backup_key_vault_secrets(ctx: OperationContext, container, prefix: str) -> List[str]:
    """Back up every enabled secret with Key Vault's own backup format."""
    client = ctx.clients.secret_client(ctx.names.key_vault)
    blobs = []
    for secret in client.list_properties_of_secrets():
        if secret.enabled is False:
            continue
        name = f"{prefix}/keyvault/{secret.name}.bak"
        container.upload_blob(name, client.backup_secret(secret.name), overwrite=True)
        blobs.append(name)
    logger.info("Key Vault secrets backed up", vault=ctx.names.key_vault, count=len(blobs))
    return blobs

def backup_database_component(runner: OperationRunner, ctx: OperationContext, now: datetime) -> List[str]:
    """Export the database and poll the export until it completes."""
    started = runner.run_step(
        f"Start export of {ctx.names.sql_database}",
        start_export,
        ctx,
        backup_blob_name(ctx.names.sql_database, now),
        critical=False
    )
    if started is None:
        return []

    poller, export = started
    completed = runner.check(
        "Wait for database export",
        wait_until,
        poller.done,
        timeout=ctx.settings.OPERATION_TIMEOUT_SECONDS,
        interval=ctx.settings.POLL_INTERVAL_SECONDS,
        description="database export"
    )
    if not completed:
        return []
    runner.check("Confirm database export", poller.result)
    return [export["blob"]]

def orchestrate_backups(
    runner: OperationRunner,
    ctx: OperationContext,
    components: Optional[List[str]] = None,
    now: Optional[datetime] = None
):
    """Back up the selected components and write a manifest."""
    components = components or list(COMPONENTS)
    require_valid(validate_components(components), "components")

    now = now or datetime.now(timezone.utc)
    stamp = backup_timestamp(now)
    prefix = f"dr/{stamp}"
    container = None if runner.what_if else backup_container(ctx)

    snapshots = {
        "appsettings": ("Snapshot app settings", snapshot_app_settings),
        "keyvault": ("Back up Key Vault secrets", backup_key_vault_secrets),
        "webconfig": ("Snapshot web app configuration", snapshot_web_config),
    }

    results: Dict[str, Dict] = {}
    for component in components:
        failures = len(runner.report.failed_steps)
        if component == "database":
            blobs = backup_database_component(runner, ctx, now)
        else:
            label, func = snapshots[component]
            blobs = runner.run_step(label, func, ctx, container, prefix, critical=False) or []

        if runner.what_if:
            status = "what_if"
        elif len(runner.report.failed_steps) > failures:
            status = "failed"
        else:
            status = "succeeded"
        results[component] = {"status": status, "blobs": blobs}

    manifest = {
        "timestamp": now.isoformat(),
        "environment": ctx.environment,
        "correlation_id": runner.report.correlation_id,
        "resources": {
            "web_app": ctx.names.web_app,
            "sql_server": ctx.names.sql_server,
            "sql_database": ctx.names.sql_database,
            "key_vault": ctx.names.key_vault,
        },
        "components": results,
    }
    runner.run_step(
        f"Write manifest {manifest_name(stamp)}",
        upload_json,
        container,
        manifest_name(stamp),
        manifest
    )

    runner.set_output("manifest", manifest_name(stamp))
    runner.set_output("components", results)
    failed = [name for name, result in results.items() if result["status"] == "failed"]
    if failed:
        runner.note(f"Components with failures: {', '.join(failed)}")

def main(argv=None) -> int:
    parser = build_parser("Back up every stateful component of the platform")
    parser.add_argument(
        "--components",
        help=f"Comma separated subset of: {', '.join(COMPONENTS)} (default: all)"
    )
    args = parse_args(parser, argv)

    ctx = OperationContext.create(args.env, args.location)
    report = run_operation(
        "Backup Orchestration",
        ctx.environment,
        orchestrate_backups,
        ctx,
        components=parse_components(args.components),
        what_if=args.what_if
    )
    return emit_report(report)

if __name__ == "__main__":
    raise SystemExit(main())
