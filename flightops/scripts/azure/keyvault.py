# flightops/scripts/azure/keyvault.py
"""Key Vault setup and secret management."""

import json
import os
from typing import Dict, List, Mapping, Optional

from flightops.core.azure import tags_for
from flightops.core.errors import ConfigurationError
from flightops.core.logging import get_logger
from flightops.core.operations import OperationRunner, emit_report, run_operation
from flightops.scripts.context import OperationContext, build_parser, parse_args

logger = get_logger(__name__)

SECRET_PERMISSIONS = ["get", "list"]

# Secrets the backend reads at startup
REQUIRED_SECRETS = [
    "ConnectionStrings--DefaultConnection",
    "Jwt--Key",
    "Stripe--SecretKey",
    "Stripe--WebhookSecret",
    "Email--SmtpPassword",
    "BlobStorage--ConnectionString",
]

def create_key_vault(runner: OperationRunner, ctx: OperationContext):
    """Create the vault with soft delete, and purge protection in production."""
    tenant_id = ctx.settings.AZURE.AZURE_TENANT_ID
    if not tenant_id and not runner.what_if:
        raise ConfigurationError("AZURE_TENANT_ID is required to create a Key Vault")

    properties = {
        "tenant_id": tenant_id,
        "sku": {"family": "A", "name": "standard"},
        "access_policies": [],
        "enable_soft_delete": True,
        "soft_delete_retention_in_days": 90 if ctx.is_production else 7,
        "enable_rbac_authorization": False,
        "enabled_for_template_deployment": True
    }
    # Purge protection cannot be disabled once set
    if ctx.is_production:
        properties["enable_purge_protection"] = True

    runner.run_step(
        f"Create Key Vault {ctx.names.key_vault}",
        lambda: ctx.clients.keyvault.vaults.begin_create_or_update(
            ctx.names.resource_group,
            ctx.names.key_vault,
            {
                "location": ctx.location,
                "tags": tags_for(ctx.environment),
                "properties": properties
            }
        ).result()
    )

def grant_web_app_access(runner: OperationRunner, ctx: OperationContext, slot: Optional[str] = None):
    """Give the web app's managed identity read access to secrets."""
    web = ctx.clients.web
    label = f"{ctx.names.web_app}/{slot}" if slot else ctx.names.web_app

    def _principal_id() -> str:
        if slot:
            site = web.web_apps.get_slot(ctx.names.resource_group, ctx.names.web_app, slot)
        else:
            site = web.web_apps.get(ctx.names.resource_group, ctx.names.web_app)
        if not site.identity or not site.identity.principal_id:
            raise ConfigurationError(f"Web app {label} has no system-assigned identity")
        return site.identity.principal_id

    principal_id = runner.run_step(f"Resolve managed identity of {label}", _principal_id)

    runner.run_step(
        f"Grant {label} secret access",
        ctx.clients.keyvault.vaults.update_access_policy,
        ctx.names.resource_group,
        ctx.names.key_vault,
        "add",
        {
            "properties": {
                "access_policies": [
                    {
                        "tenant_id": ctx.settings.AZURE.AZURE_TENANT_ID,
                        "object_id": principal_id,
                        "permissions": {"secrets": SECRET_PERMISSIONS}
                    }
                ]
            }
        }
    )

def set_secrets(runner: OperationRunner, ctx: OperationContext, secrets: Mapping[str, str]):
    """Store secrets. Values are never logged."""
    client = ctx.clients.secret_client(ctx.names.key_vault)
    for name, value in secrets.items():
        runner.run_step(f"Set secret {name}", client.set_secret, name, value)

def list_secret_names(ctx: OperationContext) -> List[str]:
    client = ctx.clients.secret_client(ctx.names.key_vault)
    return sorted(
        properties.name
        for properties in client.list_properties_of_secrets()
        if properties.enabled
    )

def find_missing_secrets(ctx: OperationContext, required: Optional[List[str]] = None) -> List[str]:
    present = set(list_secret_names(ctx))
    return [name for name in (required or REQUIRED_SECRETS) if name not in present]

def load_secrets(ctx: OperationContext, names: List[str]) -> Dict[str, str]:
    """Set environment variables from vault secrets (`-` becomes `_`)."""
    client = ctx.clients.secret_client(ctx.names.key_vault)
    loaded = {}
    for secret_name in names:
        secret = client.get_secret(secret_name)
        variable = secret_name.replace("-", "_")
        os.environ[variable] = secret.value
        loaded[variable] = secret.value

    logger.info("Environment loaded from Key Vault", count=len(loaded), vault=ctx.names.key_vault)
    return loaded

def read_secrets_file(path: str) -> Dict[str, str]:
    """Read a flat JSON object of secret names to values."""
    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict) or not all(isinstance(v, str) for v in data.values()):
        raise ConfigurationError(f"{path} must contain a JSON object of string values")
    return data

def configure_key_vault(
    runner: OperationRunner,
    ctx: OperationContext,
    secrets: Optional[Mapping[str, str]] = None,
    grant_web_app: bool = True
):
    create_key_vault(runner, ctx)
    if grant_web_app:
        grant_web_app_access(runner, ctx)
        if ctx.profile.use_staging_slot:
            grant_web_app_access(runner, ctx, slot="staging")
    if secrets:
        set_secrets(runner, ctx, secrets)

    if not runner.what_if:
        missing = runner.run_step("Check required secrets", find_missing_secrets, ctx, critical=False)
        if missing:
            runner.fail("Required secrets present", f"missing: {', '.join(missing)}")
        runner.set_output("missing_secrets", missing or [])

def main(argv=None) -> int:
    parser = build_parser("Configure Key Vault for the Flight Companion Platform")
    parser.add_argument("--secrets-file", help="JSON file of secret names and values to store")
    parser.add_argument("--skip-access-policy", action="store_true", help="Do not grant the web app access")
    args = parse_args(parser, argv)

    ctx = OperationContext.create(args.env, args.location)
    secrets = read_secrets_file(args.secrets_file) if args.secrets_file else None
    report = run_operation(
        "Configure Key Vault",
        ctx.environment,
        configure_key_vault,
        ctx,
        secrets=secrets,
        grant_web_app=not args.skip_access_policy,
        what_if=args.what_if
    )
    return emit_report(report)

if __name__ == "__main__":
    raise SystemExit(main())
