# flightops/scripts/maintenance/health_check.py
"""System health check script."""

import asyncio
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

from flightops.core.azure import resource_id
from flightops.core.logging import get_logger
from flightops.core.operations import OperationRunner, emit_report, run_operation
from flightops.models.environments import AlertThresholds
from flightops.scripts.context import OperationContext, build_parser, parse_args

logger = get_logger(__name__)

DEFAULT_ATTEMPTS = 5
DEFAULT_DELAY_SECONDS = 30

@dataclass
class EndpointCheck:
    """Outcome of checking one URL."""
    name: str
    url: str
    healthy: bool
    attempts: int
    status_code: Optional[int] = None
    response_time: Optional[float] = None
    reported_status: Optional[str] = None
    error: Optional[str] = None
    slow: bool = False

async def check_endpoint(
    client: httpx.AsyncClient,
    name: str,
    url: str,
    max_response_time: float,
    attempts: int = DEFAULT_ATTEMPTS,
    delay: float = DEFAULT_DELAY_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> EndpointCheck:
    """GET url until it answers 2xx or attempts run out."""
    last_error = None
    last_status = None

    for attempt in range(1, attempts + 1):
        start_time = time.monotonic()
        try:
            response = await client.get(url)
            elapsed = time.monotonic() - start_time
            last_status = response.status_code
            if response.is_success:
                reported = None
                if response.headers.get("content-type", "").startswith("application/json"):
                    try:
                        body = response.json()
                    except ValueError:
                        body = None
                    if isinstance(body, dict):
                        reported = body.get("status") or body.get("Status")
                logger.info(
                    "Health check passed",
                    endpoint=name,
                    url=url,
                    attempt=attempt,
                    response_time=round(elapsed, 3)
                )
                return EndpointCheck(
                    name=name,
                    url=url,
                    healthy=True,
                    attempts=attempt,
                    status_code=response.status_code,
                    response_time=round(elapsed, 3),
                    reported_status=reported,
                    slow=elapsed > max_response_time
                )
            last_error = f"HTTP {response.status_code}"
        except httpx.HTTPError as e:
            last_error = f"{e.__class__.__name__}: {e}"

        logger.warning(
            "Health check attempt failed",
            endpoint=name,
            url=url,
            attempt=attempt,
            error=last_error
        )
        if attempt < attempts:
            await sleep(delay)

    return EndpointCheck(
        name=name,
        url=url,
        healthy=False,
        attempts=attempts,
        status_code=last_status,
        error=last_error
    )

async def check_system_health(
    endpoints: Dict[str, str],
    max_response_time: float,
    attempts: int = DEFAULT_ATTEMPTS,
    delay: float = DEFAULT_DELAY_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> List[EndpointCheck]:
    """Check every endpoint concurrently."""
    async with httpx.AsyncClient(timeout=30.0, follow_redirects=True, transport=transport) as client:
        checks = [
            check_endpoint(client, name, url, max_response_time, attempts, delay, sleep)
            for name, url in endpoints.items()
        ]
        return list(await asyncio.gather(*checks))

def build_endpoints(ctx: OperationContext, slot: Optional[str] = None, include_cdn: bool = True) -> Dict[str, str]:
    base_url = f"https://{ctx.names.web_app}-{slot}.azurewebsites.net" if slot else ctx.names.app_url
    endpoints = {
        "api": f"{base_url}/health",
        "readiness": f"{base_url}/health/ready",
    }
    if include_cdn and not slot:
        endpoints["cdn"] = f"{ctx.names.cdn_url}/"
    return endpoints

def run_health_checks(
    ctx: OperationContext,
    slot: Optional[str] = None,
    include_cdn: bool = True,
    attempts: int = DEFAULT_ATTEMPTS,
    delay: float = DEFAULT_DELAY_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> List[EndpointCheck]:
    """Synchronous entry point used by the deployment scripts."""
    return asyncio.run(check_system_health(
        build_endpoints(ctx, slot, include_cdn),
        ctx.profile.alerts.response_time_seconds,
        attempts=attempts,
        delay=delay,
        transport=transport
    ))

def assert_healthy(checks: List[EndpointCheck], required: Optional[List[str]] = None) -> List[EndpointCheck]:
    """Raise when a required endpoint is unhealthy."""
    required = required or ["api"]
    failed = [check for check in checks if check.name in required and not check.healthy]
    if failed:
        details = ", ".join(f"{check.url} ({check.error})" for check in failed)
        raise RuntimeError(f"Unhealthy endpoints: {details}")
    return checks

# Web app metric name -> (aggregation, threshold attribute)
APP_METRICS = {
    "HttpResponseTime": ("average", "response_time_seconds"),
    "Http5xx": ("total", "http_5xx_count"),
}

def collect_metrics(ctx: OperationContext, hours: int = 1) -> Dict[str, Optional[float]]:
    """Read last-hour web app metrics from Azure Monitor."""
    end = datetime.now(timezone.utc)
    start = end - timedelta(hours=hours)
    web_app_id = resource_id(
        ctx.subscription_id, ctx.names.resource_group, "Microsoft.Web/sites", ctx.names.web_app
    )

    response = ctx.clients.monitor.metrics.list(
        web_app_id,
        timespan=f"{start.isoformat()}/{end.isoformat()}",
        interval="PT5M",
        metricnames=",".join(APP_METRICS),
        aggregation="Average,Total"
    )

    values: Dict[str, Optional[float]] = {}
    for metric in response.value:
        name = metric.name.value
        aggregation, _ = APP_METRICS.get(name, ("average", None))
        points = [
            getattr(point, aggregation)
            for series in metric.timeseries
            for point in series.data
            if getattr(point, aggregation) is not None
        ]
        values[name] = max(points) if points else None
    return values

def evaluate_metrics(values: Dict[str, Optional[float]], thresholds: AlertThresholds) -> List[str]:
    """Describe every metric that exceeded its threshold."""
    breaches = []
    for name, (_, attribute) in APP_METRICS.items():
        value = values.get(name)
        limit = getattr(thresholds, attribute)
        if value is not None and value > limit:
            breaches.append(f"{name} peaked at {value:g} (threshold {limit:g})")
    return breaches

def health_check(
    runner: OperationRunner,
    ctx: OperationContext,
    slot: Optional[str] = None,
    include_cdn: bool = True,
    include_metrics: bool = False,
    attempts: int = DEFAULT_ATTEMPTS,
    delay: float = DEFAULT_DELAY_SECONDS,
    transport: Optional[httpx.AsyncBaseTransport] = None
):
    """Perform comprehensive system health check."""
    checks = runner.run_step(
        "Check HTTP endpoints",
        run_health_checks,
        ctx,
        slot=slot,
        include_cdn=include_cdn,
        attempts=attempts,
        delay=delay,
        transport=transport
    )

    warnings = []
    for check in checks or []:
        if not check.healthy:
            if check.name == "cdn":
                warnings.append(f"CDN check failed: {check.error}")
                runner.note(f"WARNING: CDN health check failed ({check.error})")
            else:
                runner.fail(f"Endpoint {check.name}", f"{check.url} unhealthy: {check.error}")
        elif check.slow:
            warnings.append(f"{check.name} responded in {check.response_time}s")
            runner.note(f"WARNING: {check.name} slow ({check.response_time}s)")
        else:
            runner.note(f"{check.name}: {check.status_code} in {check.response_time}s")

    if include_metrics:
        values = runner.run_step("Collect Azure Monitor metrics", collect_metrics, ctx, critical=False)
        if values:
            runner.set_output("metrics", values)
            for breach in evaluate_metrics(values, ctx.profile.alerts):
                runner.fail("Metric threshold", breach)

    runner.set_output("endpoints", [asdict(check) for check in checks or []])
    runner.set_output("warnings", warnings)

def main(argv=None) -> int:
    parser = build_parser("Check Flight Companion Platform health")
    parser.add_argument("--slot", help="Check a deployment slot instead of production")
    parser.add_argument("--no-cdn", action="store_true", help="Skip the CDN check")
    parser.add_argument("--metrics", action="store_true", help="Also evaluate Azure Monitor metrics")
    parser.add_argument("--attempts", type=int, default=DEFAULT_ATTEMPTS)
    parser.add_argument("--delay", type=float, default=DEFAULT_DELAY_SECONDS)
    args = parse_args(parser, argv)

    ctx = OperationContext.create(args.env, args.location)
    report = run_operation(
        "Health Check",
        ctx.environment,
        health_check,
        ctx,
        slot=args.slot,
        include_cdn=not args.no_cdn,
        include_metrics=args.metrics,
        attempts=args.attempts,
        delay=args.delay,
        what_if=args.what_if
    )
    return emit_report(report)

if __name__ == "__main__":
    raise SystemExit(main())
