# flightops/scripts/azure/storage.py
"""Blob Storage account and container setup."""

import mimetypes
from pathlib import Path
from typing import List, Optional

from azure.storage.blob import ContentSettings

from flightops.core.azure import tags_for
from flightops.core.logging import get_logger
from flightops.core.operations import OperationRunner, emit_report, run_operation
from flightops.scripts.context import OperationContext, build_parser, parse_args

logger = get_logger(__name__)

CONTAINERS = [
    "verification-documents",
    "quarantine",
    "database-backups",
    "static-assets",
]

def create_storage_account(runner: OperationRunner, ctx: OperationContext):
    """Create the storage account with TLS 1.2 and no anonymous access."""
    names = ctx.names
    storage = ctx.clients.storage
    sku = "Standard_ZRS" if ctx.profile.use_staging_slot else "Standard_LRS"

    runner.run_step(
        f"Create storage account {names.storage_account}",
        lambda: storage.storage_accounts.begin_create(
            names.resource_group,
            names.storage_account,
            {
                "location": ctx.location,
                "sku": {"name": sku},
                "kind": "StorageV2",
                "tags": tags_for(ctx.environment),
                "minimum_tls_version": "TLS1_2",
                "allow_blob_public_access": False,
                "enable_https_traffic_only": True,
                "access_tier": "Hot"
            }
        ).result()
    )

    retention_days = ctx.profile.backup_retention_days
    runner.run_step(
        f"Enable blob soft delete ({retention_days} days)",
        storage.blob_services.set_service_properties,
        names.resource_group,
        names.storage_account,
        {
            "delete_retention_policy": {"enabled": True, "days": retention_days},
            "container_delete_retention_policy": {"enabled": True, "days": retention_days},
            "is_versioning_enabled": ctx.is_production
        }
    )

def create_containers(
    runner: OperationRunner,
    ctx: OperationContext,
    containers: Optional[List[str]] = None
):
    """Create private blob containers."""
    storage = ctx.clients.storage
    for container in containers or CONTAINERS:
        runner.run_step(
            f"Create container {container}",
            storage.blob_containers.create,
            ctx.names.resource_group,
            ctx.names.storage_account,
            container,
            {"public_access": "None"}
        )

def get_account_key(ctx: OperationContext) -> str:
    keys = ctx.clients.storage.storage_accounts.list_keys(
        ctx.names.resource_group,
        ctx.names.storage_account
    )
    return keys.keys[0].value

def upload_directory(
    ctx: OperationContext,
    source: str,
    container: str = "static-assets",
    prefix: str = ""
) -> int:
    """Upload every file below source, keeping relative paths."""
    root = Path(source)
    if not root.is_dir():
        raise FileNotFoundError(f"Upload source '{source}' is not a directory")

    container_client = ctx.clients.blob_service(ctx.names.storage_account).get_container_client(container)
    uploaded = 0
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        blob_name = f"{prefix}{path.relative_to(root).as_posix()}"
        content_type, _ = mimetypes.guess_type(path.name)
        with open(path, "rb") as data:
            container_client.upload_blob(
                blob_name,
                data,
                overwrite=True,
                content_settings=ContentSettings(
                    content_type=content_type or "application/octet-stream",
                    cache_control="public, max-age=31536000" if "assets/" in blob_name else "no-cache"
                )
            )
        uploaded += 1

    logger.info("Uploaded directory", source=source, container=container, files=uploaded)
    return uploaded

def configure_storage(runner: OperationRunner, ctx: OperationContext, upload: Optional[str] = None):
    create_storage_account(runner, ctx)
    create_containers(runner, ctx)
    if upload:
        count = runner.run_step(f"Upload {upload} to static-assets", upload_directory, ctx, upload)
        runner.set_output("uploaded_files", count)

def main(argv=None) -> int:
    parser = build_parser("Configure Blob Storage for the Flight Companion Platform")
    parser.add_argument("--upload", help="Directory to upload to the static-assets container")
    args = parse_args(parser, argv)

    ctx = OperationContext.create(args.env, args.location)
    report = run_operation(
        "Configure Blob Storage",
        ctx.environment,
        configure_storage,
        ctx,
        upload=args.upload,
        what_if=args.what_if
    )
    return emit_report(report)

if __name__ == "__main__":
    raise SystemExit(main())
