# flightops/scripts/azure/cdn.py
"""CDN profile and endpoint setup, and cache purge."""

from typing import List, Optional

from flightops.core.azure import tags_for
from flightops.core.logging import get_logger
from flightops.core.operations import OperationRunner, emit_report, run_operation
from flightops.scripts.context import OperationContext, build_parser, parse_args

logger = get_logger(__name__)

COMPRESSED_CONTENT_TYPES = [
    "text/plain",
    "text/html",
    "text/css",
    "text/javascript",
    "application/javascript",
    "application/json",
    "application/xml",
    "image/svg+xml",
]

def origin_host(ctx: OperationContext, origin: str) -> str:
    """Host name of the CDN origin: `webapp` or `storage`."""
    if origin == "storage":
        return f"{ctx.names.storage_account}.blob.core.windows.net"
    return f"{ctx.names.web_app}.azurewebsites.net"

def create_cdn(runner: OperationRunner, ctx: OperationContext, origin: str = "webapp"):
    """Create the CDN profile and an HTTPS-only endpoint."""
    cdn = ctx.clients.cdn
    host = origin_host(ctx, origin)

    runner.run_step(
        f"Create CDN profile {ctx.names.cdn_profile}",
        lambda: cdn.profiles.begin_create(
            ctx.names.resource_group,
            ctx.names.cdn_profile,
            {
                "location": "Global",
                "sku": {"name": "Standard_Microsoft"},
                "tags": tags_for(ctx.environment)
            }
        ).result()
    )

    endpoint = {
        "location": "Global",
        "origin_host_header": host,
        "is_http_allowed": False,
        "is_https_allowed": True,
        "is_compression_enabled": True,
        "content_types_to_compress": COMPRESSED_CONTENT_TYPES,
        "query_string_caching_behavior": "IgnoreQueryString",
        "origins": [{"name": f"{origin}-origin", "host_name": host, "https_port": 443}],
        "tags": tags_for(ctx.environment)
    }
    if origin == "storage":
        endpoint["origin_path"] = "/static-assets"

    runner.run_step(
        f"Create CDN endpoint {ctx.names.cdn_endpoint} -> {host}",
        lambda: cdn.endpoints.begin_create(
            ctx.names.resource_group,
            ctx.names.cdn_profile,
            ctx.names.cdn_endpoint,
            endpoint
        ).result()
    )
    runner.set_output("cdn_url", ctx.names.cdn_url)

def purge_cdn(runner: OperationRunner, ctx: OperationContext, paths: Optional[List[str]] = None):
    """Purge cached content from the CDN endpoint."""
    content_paths = paths or ["/*"]
    runner.run_step(
        f"Purge CDN {ctx.names.cdn_endpoint} ({', '.join(content_paths)})",
        lambda: ctx.clients.cdn.endpoints.begin_purge_content(
            ctx.names.resource_group,
            ctx.names.cdn_profile,
            ctx.names.cdn_endpoint,
            {"content_paths": content_paths}
        ).result()
    )

def configure_cdn(
    runner: OperationRunner,
    ctx: OperationContext,
    origin: str = "webapp",
    purge_only: bool = False,
    paths: Optional[List[str]] = None
):
    if not purge_only:
        create_cdn(runner, ctx, origin)
    purge_cdn(runner, ctx, paths)

def main(argv=None) -> int:
    parser = build_parser("Configure the CDN endpoint")
    parser.add_argument("--origin", choices=["webapp", "storage"], default="webapp")
    parser.add_argument("--purge-only", action="store_true", help="Only purge cached content")
    parser.add_argument("--path", action="append", dest="paths", help="Content path to purge (repeatable)")
    args = parse_args(parser, argv)

    ctx = OperationContext.create(args.env, args.location)
    report = run_operation(
        "Configure CDN",
        ctx.environment,
        configure_cdn,
        ctx,
        origin=args.origin,
        purge_only=args.purge_only,
        paths=args.paths,
        what_if=args.what_if
    )
    return emit_report(report)

if __name__ == "__main__":
    raise SystemExit(main())
