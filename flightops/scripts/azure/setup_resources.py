# flightops/scripts/azure/setup_resources.py
"""Azure resource setup and configuration script."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from flightops.core.azure import resource_id, tags_for
from flightops.core.errors import ConfigurationError
from flightops.core.logging import get_logger
from flightops.core.operations import OperationRunner, emit_report, run_operation
from flightops.scripts.azure import keyvault, monitoring, storage
from flightops.scripts.context import OperationContext, build_parser, parse_args
from flightops.utils.naming import STAGING_SLOT

logger = get_logger(__name__)

DOTNET_RUNTIME = "DOTNETCORE|8.0"

SKU_TIERS = {
    "B1": "Basic",
    "S1": "Standard",
    "P1v3": "PremiumV3",
}

def site_config(ctx: OperationContext) -> dict:
    return {
        "linux_fx_version": DOTNET_RUNTIME,
        "always_on": ctx.profile.app_service_sku != "F1",
        "http20_enabled": True,
        "min_tls_version": "1.2",
        "ftps_state": "Disabled",
        "health_check_path": "/health",
        "app_settings": [
            {"name": "ASPNETCORE_ENVIRONMENT", "value": aspnet_environment(ctx.environment)},
            {"name": "KeyVault__VaultUri", "value": f"https://{ctx.names.key_vault}.vault.azure.net/"}
        ]
    }

def aspnet_environment(environment: str) -> str:
    return {
        "dev": "Development",
        "test": "Test",
        "staging": "Staging",
        "prod": "Production",
    }[environment]

def create_resource_group(runner: OperationRunner, ctx: OperationContext):
    runner.run_step(
        f"Create resource group {ctx.names.resource_group}",
        ctx.clients.resource.resource_groups.create_or_update,
        ctx.names.resource_group,
        {"location": ctx.location, "tags": tags_for(ctx.environment)}
    )

def create_app_service(runner: OperationRunner, ctx: OperationContext):
    """Create the App Service plan, web app and (staging/prod) staging slot."""
    web_client = ctx.clients.web
    names = ctx.names
    sku = ctx.profile.app_service_sku

    runner.run_step(
        f"Create App Service plan {names.app_service_plan} ({sku})",
        lambda: web_client.app_service_plans.begin_create_or_update(
            names.resource_group,
            names.app_service_plan,
            {
                "location": ctx.location,
                "sku": {"name": sku, "tier": SKU_TIERS.get(sku)},
                "kind": "linux",
                "reserved": True,
                "tags": tags_for(ctx.environment)
            }
        ).result()
    )

    server_farm_id = resource_id(
        ctx.subscription_id, names.resource_group, "Microsoft.Web/serverfarms", names.app_service_plan
    )
    site = {
        "location": ctx.location,
        "server_farm_id": server_farm_id,
        "https_only": True,
        "identity": {"type": "SystemAssigned"},
        "site_config": site_config(ctx),
        "tags": tags_for(ctx.environment)
    }

    runner.run_step(
        f"Create web app {names.web_app}",
        lambda: web_client.web_apps.begin_create_or_update(
            names.resource_group,
            names.web_app,
            site
        ).result()
    )

    if ctx.profile.use_staging_slot:
        runner.run_step(
            f"Create deployment slot {STAGING_SLOT}",
            lambda: web_client.web_apps.begin_create_or_update_slot(
                resource_group_name=names.resource_group,
                name=names.web_app,
                slot=STAGING_SLOT,
                site_envelope=site
            ).result()
        )
    else:
        runner.skip(f"Create deployment slot {STAGING_SLOT}", f"not used in {ctx.environment}")

def create_sql_database(runner: OperationRunner, ctx: OperationContext):
    """Create the SQL server and the application database."""
    sql_client = ctx.clients.sql
    names = ctx.names
    password = ctx.settings.SQL_ADMIN_PASSWORD
    if not password and not runner.what_if:
        raise ConfigurationError("SQL_ADMIN_PASSWORD is required to create the SQL server")

    runner.run_step(
        f"Create SQL server {names.sql_server}",
        lambda: sql_client.servers.begin_create_or_update(
            names.resource_group,
            names.sql_server,
            {
                "location": ctx.location,
                "administrator_login": ctx.settings.SQL_ADMIN_USER,
                "administrator_login_password": password,
                "version": "12.0",
                "minimal_tls_version": "1.2",
                "public_network_access": "Enabled",
                "tags": tags_for(ctx.environment)
            }
        ).result()
    )

    runner.run_step(
        f"Create SQL database {names.sql_database} ({ctx.profile.sql_sku})",
        lambda: sql_client.databases.begin_create_or_update(
            names.resource_group,
            names.sql_server,
            names.sql_database,
            {
                "location": ctx.location,
                "sku": {"name": ctx.profile.sql_sku},
                "zone_redundant": False,
                "requested_backup_storage_redundancy": "Geo" if ctx.is_production else "Local",
                "tags": tags_for(ctx.environment)
            }
        ).result()
    )

def deploy_bicep(runner: OperationRunner, ctx: OperationContext, template: str):
    """Deploy a Bicep template into the resource group with az."""
    if not Path(template).is_file():
        raise ConfigurationError(f"Bicep template '{template}' not found")

    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    outputs = runner.run_step(
        f"Deploy Bicep template {template}",
        ctx.cli.deploy_bicep,
        ctx.names.resource_group,
        template,
        {
            "environment": ctx.environment,
            "location": ctx.location,
            "sqlAdminLogin": ctx.settings.SQL_ADMIN_USER,
        },
        f"flightops-{ctx.environment}-{stamp}"
    )
    if outputs:
        runner.set_output("deployment", (outputs.get("properties") or {}).get("outputs"))

def setup_azure_resources(
    runner: OperationRunner,
    ctx: OperationContext,
    bicep: Optional[str] = None
):
    """Set up required Azure resources for the application."""
    create_resource_group(runner, ctx)

    if bicep:
        deploy_bicep(runner, ctx, bicep)
        return

    create_app_service(runner, ctx)
    create_sql_database(runner, ctx)
    storage.create_storage_account(runner, ctx)
    storage.create_containers(runner, ctx)
    keyvault.create_key_vault(runner, ctx)
    keyvault.grant_web_app_access(runner, ctx)
    if ctx.profile.use_staging_slot:
        keyvault.grant_web_app_access(runner, ctx, slot=STAGING_SLOT)
    monitoring.setup_monitoring(runner, ctx)

    runner.set_output("app_url", ctx.names.app_url)
    runner.set_output("resource_group", ctx.names.resource_group)

def main(argv=None) -> int:
    parser = build_parser("Deploy Azure resources for the Flight Companion Platform")
    parser.add_argument("--bicep", help="Deploy this Bicep template instead of the SDK sequence")
    args = parse_args(parser, argv)

    ctx = OperationContext.create(args.env, args.location)
    report = run_operation(
        "Deploy Azure Resources",
        ctx.environment,
        setup_azure_resources,
        ctx,
        bicep=args.bicep,
        what_if=args.what_if
    )
    return emit_report(report)

if __name__ == "__main__":
    raise SystemExit(main())
