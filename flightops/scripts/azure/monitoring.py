# flightops/scripts/azure/monitoring.py
"""Application Insights and metric alert setup."""

from typing import Dict, List, Optional

from flightops.core.azure import resource_id, tags_for
from flightops.core.logging import get_logger
from flightops.core.operations import OperationRunner, emit_report, run_operation
from flightops.scripts.context import OperationContext, build_parser, parse_args

logger = get_logger(__name__)

def build_alert_definitions(ctx: OperationContext) -> List[Dict]:
    """Alert rules for the environment's thresholds."""
    thresholds = ctx.profile.alerts
    names = ctx.names
    web_app_id = resource_id(
        ctx.subscription_id, names.resource_group, "Microsoft.Web/sites", names.web_app
    )
    plan_id = resource_id(
        ctx.subscription_id, names.resource_group, "Microsoft.Web/serverfarms", names.app_service_plan
    )
    database_id = resource_id(
        ctx.subscription_id, names.resource_group, "Microsoft.Sql/servers",
        names.sql_server, "databases", names.sql_database
    )

    return [
        {
            "name": f"high-cpu-alert-{ctx.environment}",
            "description": "Alert when CPU usage is high",
            "scope": plan_id,
            "metric_namespace": "Microsoft.Web/serverfarms",
            "metric_name": "CpuPercentage",
            "threshold": thresholds.cpu_percent,
            "aggregation": "Average",
            "window_size": "PT5M"
        },
        {
            "name": f"response-time-alert-{ctx.environment}",
            "description": "Alert when response time is high",
            "scope": web_app_id,
            "metric_namespace": "Microsoft.Web/sites",
            "metric_name": "HttpResponseTime",
            "threshold": thresholds.response_time_seconds,
            "aggregation": "Average",
            "window_size": "PT5M"
        },
        {
            "name": f"error-rate-alert-{ctx.environment}",
            "description": "Alert when server errors are high",
            "scope": web_app_id,
            "metric_namespace": "Microsoft.Web/sites",
            "metric_name": "Http5xx",
            "threshold": thresholds.http_5xx_count,
            "aggregation": "Total",
            "window_size": "PT5M"
        },
        {
            "name": f"database-dtu-alert-{ctx.environment}",
            "description": "Alert when database DTU consumption is high",
            "scope": database_id,
            "metric_namespace": "Microsoft.Sql/servers/databases",
            "metric_name": "dtu_consumption_percent",
            "threshold": thresholds.dtu_percent,
            "aggregation": "Average",
            "window_size": "PT15M"
        }
    ]

def create_app_insights(runner: OperationRunner, ctx: OperationContext) -> Optional[str]:
    """Create the Application Insights component and return its connection string."""
    component = runner.run_step(
        f"Create Application Insights {ctx.names.app_insights}",
        ctx.clients.appinsights.components.create_or_update,
        ctx.names.resource_group,
        ctx.names.app_insights,
        {
            "location": ctx.location,
            "kind": "web",
            "application_type": "web",
            "flow_type": "Bluefield",
            "request_source": "rest",
            "retention_in_days": ctx.profile.log_retention_days,
            "tags": tags_for(ctx.environment)
        }
    )
    return getattr(component, "connection_string", None)

def connect_web_app(runner: OperationRunner, ctx: OperationContext, connection_string: Optional[str]):
    """Add the Application Insights connection string to the web app settings."""
    web = ctx.clients.web

    def _update_settings():
        current = web.web_apps.list_application_settings(ctx.names.resource_group, ctx.names.web_app)
        settings = dict(current.properties or {})
        settings["APPLICATIONINSIGHTS_CONNECTION_STRING"] = connection_string
        settings["ApplicationInsightsAgent_EXTENSION_VERSION"] = "~3"
        return web.web_apps.update_application_settings(
            ctx.names.resource_group,
            ctx.names.web_app,
            {"properties": settings}
        )

    if connection_string is None and not runner.what_if:
        runner.skip("Connect web app to Application Insights", "no connection string returned")
        return
    runner.run_step("Connect web app to Application Insights", _update_settings)

def create_action_group(runner: OperationRunner, ctx: OperationContext) -> str:
    email = ctx.settings.AZURE.ALERT_EMAIL
    receivers = []
    if email:
        receivers.append({
            "name": "operations-email",
            "email_address": email,
            "use_common_alert_schema": True
        })

    runner.run_step(
        f"Create action group {ctx.names.action_group}",
        ctx.clients.monitor.action_groups.create_or_update,
        ctx.names.resource_group,
        ctx.names.action_group,
        {
            "location": "Global",
            "group_short_name": f"fc{ctx.environment}"[:12],
            "enabled": True,
            "email_receivers": receivers,
            "tags": tags_for(ctx.environment)
        }
    )
    return resource_id(
        ctx.subscription_id, ctx.names.resource_group,
        "microsoft.insights/actionGroups", ctx.names.action_group
    )

def create_metric_alerts(runner: OperationRunner, ctx: OperationContext, action_group_id: str):
    monitor_client = ctx.clients.monitor
    severity = 1 if ctx.is_production else 2

    for alert in build_alert_definitions(ctx):
        runner.run_step(
            f"Create alert {alert['name']} (> {alert['threshold']})",
            monitor_client.metric_alerts.create_or_update,
            ctx.names.resource_group,
            alert["name"],
            {
                "location": "global",
                "description": alert["description"],
                "severity": severity,
                "enabled": True,
                "scopes": [alert["scope"]],
                "evaluation_frequency": "PT1M",
                "window_size": alert["window_size"],
                "criteria": {
                    "odata.type": "Microsoft.Azure.Monitor.SingleResourceMultipleMetricCriteria",
                    "all_of": [
                        {
                            "criterion_type": "StaticThresholdCriterion",
                            "name": alert["metric_name"],
                            "metric_name": alert["metric_name"],
                            "metric_namespace": alert["metric_namespace"],
                            "operator": "GreaterThan",
                            "threshold": alert["threshold"],
                            "time_aggregation": alert["aggregation"]
                        }
                    ]
                },
                "actions": [
                    {
                        "action_group_id": action_group_id
                    }
                ],
                "tags": tags_for(ctx.environment)
            }
        )

def setup_monitoring(runner: OperationRunner, ctx: OperationContext, connect: bool = True):
    """Set up Application Insights and alerts."""
    connection_string = create_app_insights(runner, ctx)
    if connect:
        connect_web_app(runner, ctx, connection_string)
    action_group_id = create_action_group(runner, ctx)
    create_metric_alerts(runner, ctx, action_group_id)

def main(argv=None) -> int:
    parser = build_parser("Configure Application Insights and alerts")
    parser.add_argument("--no-connect", action="store_true", help="Do not update web app settings")
    args = parse_args(parser, argv)

    ctx = OperationContext.create(args.env, args.location)
    report = run_operation(
        "Configure Application Insights",
        ctx.environment,
        setup_monitoring,
        ctx,
        connect=not args.no_connect,
        what_if=args.what_if
    )
    return emit_report(report)

if __name__ == "__main__":
    raise SystemExit(main())
