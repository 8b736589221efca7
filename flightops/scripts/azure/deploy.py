# flightops/scripts/azure/deploy.py
"""Azure deployment script for the Flight Companion Platform."""

import shutil
from pathlib import Path
from typing import Optional

from flightops.core.commands import run_command
from flightops.core.errors import ConfigurationError, StepFailedError
from flightops.core.logging import get_logger, monitor_performance
from flightops.core.operations import OperationRunner, emit_report, run_operation
from flightops.scripts.azure.cdn import purge_cdn
from flightops.scripts.context import OperationContext, build_parser, parse_args
from flightops.scripts.maintenance.health_check import assert_healthy, run_health_checks
from flightops.utils.naming import STAGING_SLOT

logger = get_logger(__name__)

@monitor_performance("build application")
def build_application(settings, output_dir: str, include_frontend: bool = True) -> str:
    """Publish the backend, build the frontend into wwwroot, and zip the result."""
    publish_dir = Path(output_dir) / "publish"
    if publish_dir.exists():
        shutil.rmtree(publish_dir)

    run_command([
        "dotnet", "publish", settings.BACKEND_PROJECT,
        "-c", "Release",
        "-o", str(publish_dir)
    ])

    if include_frontend:
        frontend = settings.FRONTEND_PROJECT
        run_command(["npm", "ci", "--silent"], cwd=frontend)
        run_command(["npm", "run", "build"], cwd=frontend)
        dist = Path(frontend) / "dist"
        if not dist.is_dir():
            raise ConfigurationError(f"Frontend build output '{dist}' not found")
        shutil.copytree(dist, publish_dir / "wwwroot", dirs_exist_ok=True)

    archive = shutil.make_archive(str(Path(output_dir) / "flightcompanion"), "zip", publish_dir)
    logger.info("Application package built", package=archive)
    return archive

def swap_slots(ctx: OperationContext, slot: str = STAGING_SLOT):
    """Swap slot into production."""
    return ctx.clients.web.web_apps.begin_swap_slot_with_production(
        ctx.names.resource_group,
        ctx.names.web_app,
        {"target_slot": slot, "preserve_vnet": True}
    ).result()

def deploy_to_azure(
    runner: OperationRunner,
    ctx: OperationContext,
    package: Optional[str] = None,
    skip_build: bool = False,
    swap: bool = True,
    purge: bool = False,
    output_dir: str = "artifacts",
    health_attempts: int = 5,
    health_delay: float = 30
):
    """Deploy application to Azure App Service."""
    names = ctx.names

    if package is None:
        if skip_build:
            raise ConfigurationError("--skip-build requires --package")
        package = runner.run_step("Build application package", build_application, ctx.settings, output_dir)
    elif not Path(package).is_file() and not runner.what_if:
        raise ConfigurationError(f"Package '{package}' not found")

    slot = STAGING_SLOT if ctx.profile.use_staging_slot else None
    target = f"{names.web_app}/{slot}" if slot else names.web_app

    runner.run_step(
        f"Deploy package to {target}",
        ctx.cli.webapp_deploy_zip,
        names.resource_group,
        names.web_app,
        package,
        slot
    )

    runner.run_step(
        f"Health check {target}",
        lambda: assert_healthy(run_health_checks(
            ctx, slot=slot, include_cdn=False, attempts=health_attempts, delay=health_delay
        ))
    )

    if slot and swap:
        runner.run_step(f"Swap {slot} into production", swap_slots, ctx, slot)
        try:
            runner.run_step(
                "Health check production",
                lambda: assert_healthy(run_health_checks(
                    ctx, include_cdn=False, attempts=health_attempts, delay=health_delay
                ))
            )
        except StepFailedError:
            # Swapping again puts the previous build back into production
            runner.run_step("Roll back slot swap", swap_slots, ctx, slot, critical=False)
            raise
    elif slot:
        runner.skip("Swap into production", "--no-swap given")

    if purge:
        purge_cdn(runner, ctx)

    runner.set_output("app_url", names.app_url)
    runner.set_output("package", package)

def main(argv=None) -> int:
    parser = build_parser("Deploy the application to Azure App Service")
    parser.add_argument("--package", help="Existing zip package to deploy")
    parser.add_argument("--skip-build", action="store_true", help="Do not build; requires --package")
    parser.add_argument("--no-swap", action="store_true", help="Leave the build in the staging slot")
    parser.add_argument("--purge-cdn", action="store_true", help="Purge the CDN after deployment")
    parser.add_argument("--output-dir", default="artifacts")
    args = parse_args(parser, argv)

    ctx = OperationContext.create(args.env, args.location)
    report = run_operation(
        "Deploy Application",
        ctx.environment,
        deploy_to_azure,
        ctx,
        package=args.package,
        skip_build=args.skip_build,
        swap=not args.no_swap,
        purge=args.purge_cdn,
        output_dir=args.output_dir,
        what_if=args.what_if
    )
    return emit_report(report)

if __name__ == "__main__":
    raise SystemExit(main())
