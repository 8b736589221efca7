# flightops/scripts/azure/network_security.py
"""Network security: WAF policy, SQL firewall and web app access restrictions."""

import ipaddress
from typing import List, Optional, Tuple

from flightops.core.azure import tags_for
from flightops.core.errors import ValidationError
from flightops.core.logging import get_logger
from flightops.core.operations import OperationRunner, emit_report, run_operation
from flightops.scripts.context import OperationContext, build_parser, parse_args

logger = get_logger(__name__)

BLOCKED_USER_AGENTS = ["sqlmap", "nikto", "nessus", "masscan", "zgrab"]
RATE_LIMIT_PER_MINUTE = 600

def parse_ip_range(value: str) -> Tuple[str, str, str]:
    """Return (cidr, first address, last address) for an IP or CIDR."""
    try:
        network = ipaddress.ip_network(value.strip(), strict=False)
    except ValueError as e:
        raise ValidationError(f"Invalid IP range '{value}'", field="allow_ip") from e
    if network.version != 4:
        raise ValidationError(f"Only IPv4 ranges are supported: '{value}'", field="allow_ip")
    return str(network), str(network.network_address), str(network.broadcast_address)

def build_waf_policy(ctx: OperationContext) -> dict:
    return {
        "location": ctx.location,
        "tags": tags_for(ctx.environment),
        "policy_settings": {
            "state": "Enabled",
            "mode": ctx.profile.waf_mode,
            "request_body_check": True,
            "max_request_body_size_in_kb": 128,
            "file_upload_limit_in_mb": 100
        },
        "managed_rules": {
            "managed_rule_sets": [
                {"rule_set_type": "OWASP", "rule_set_version": "3.2"},
                {"rule_set_type": "Microsoft_BotManagerRuleSet", "rule_set_version": "1.0"}
            ]
        },
        "custom_rules": [
            {
                "name": "BlockScannerUserAgents",
                "priority": 10,
                "rule_type": "MatchRule",
                "action": "Block",
                "match_conditions": [
                    {
                        "match_variables": [
                            {"variable_name": "RequestHeaders", "selector": "User-Agent"}
                        ],
                        "operator": "Contains",
                        "match_values": BLOCKED_USER_AGENTS,
                        "transforms": ["Lowercase"]
                    }
                ]
            },
            {
                "name": "RateLimitPerClient",
                "priority": 20,
                "rule_type": "RateLimitRule",
                "action": "Block",
                "rate_limit_duration": "OneMin",
                "rate_limit_threshold": RATE_LIMIT_PER_MINUTE,
                "group_by_user_session": [
                    {"group_by_variables": [{"variable_name": "ClientAddr"}]}
                ],
                # Negated match on an unused address matches every request
                "match_conditions": [
                    {
                        "match_variables": [{"variable_name": "RemoteAddr"}],
                        "operator": "IPMatch",
                        "negation_conditon": True,
                        "match_values": ["255.255.255.255/32"]
                    }
                ]
            }
        ]
    }

def configure_waf_policy(runner: OperationRunner, ctx: OperationContext):
    runner.run_step(
        f"Create WAF policy {ctx.names.waf_policy} ({ctx.profile.waf_mode})",
        ctx.clients.network.web_application_firewall_policies.create_or_update,
        ctx.names.resource_group,
        ctx.names.waf_policy,
        build_waf_policy(ctx)
    )

def configure_sql_firewall(runner: OperationRunner, ctx: OperationContext, allowed: List[str]):
    """Allow only Azure services plus the given ranges to reach the SQL server.

    Rules outside that set, including ranges from earlier runs, are deleted
    once the wanted rules exist.
    """
    sql = ctx.clients.sql
    rules = [("AllowAllWindowsAzureIps", "0.0.0.0", "0.0.0.0")]
    for index, value in enumerate(allowed, start=1):
        _, first, last = parse_ip_range(value)
        rules.append((f"flightops-allow-{index}", first, last))

    for name, start, end in rules:
        runner.run_step(
            f"SQL firewall rule {name} ({start}-{end})",
            sql.firewall_rules.create_or_update,
            ctx.names.resource_group,
            ctx.names.sql_server,
            name,
            {"start_ip_address": start, "end_ip_address": end}
        )

    existing = runner.run_step(
        "List SQL firewall rules",
        lambda: list(sql.firewall_rules.list_by_server(ctx.names.resource_group, ctx.names.sql_server))
    )
    wanted = {name for name, _, _ in rules}
    for rule in existing or []:
        if rule.name in wanted:
            continue
        runner.run_step(
            f"Remove SQL firewall rule {rule.name} ({rule.start_ip_address}-{rule.end_ip_address})",
            sql.firewall_rules.delete,
            ctx.names.resource_group,
            ctx.names.sql_server,
            rule.name
        )

def configure_access_restrictions(runner: OperationRunner, ctx: OperationContext, allowed: List[str]):
    """Restrict the web app to the given ranges; everything else is denied."""
    restrictions = []
    for index, value in enumerate(allowed, start=1):
        cidr, _, _ = parse_ip_range(value)
        restrictions.append({
            "ip_address": cidr,
            "action": "Allow",
            "priority": 100 + index,
            "name": f"allow-{index}"
        })

    runner.run_step(
        f"Web app access restrictions ({len(restrictions)} allowed ranges)",
        ctx.clients.web.web_apps.update_configuration,
        ctx.names.resource_group,
        ctx.names.web_app,
        {
            "ip_security_restrictions": restrictions,
            "scm_ip_security_restrictions_use_main": True
        }
    )

def enforce_https(runner: OperationRunner, ctx: OperationContext):
    web = ctx.clients.web
    runner.run_step(
        "Enforce HTTPS only",
        web.web_apps.update,
        ctx.names.resource_group,
        ctx.names.web_app,
        {"https_only": True}
    )
    runner.run_step(
        "Require TLS 1.2 and disable FTP",
        web.web_apps.update_configuration,
        ctx.names.resource_group,
        ctx.names.web_app,
        {"min_tls_version": "1.2", "ftps_state": "Disabled", "http20_enabled": True}
    )

def configure_network_security(
    runner: OperationRunner,
    ctx: OperationContext,
    allowed: Optional[List[str]] = None
):
    allowed = allowed or []
    # Fail on bad ranges before any change is made
    for value in allowed:
        parse_ip_range(value)

    configure_waf_policy(runner, ctx)
    configure_sql_firewall(runner, ctx, allowed)
    if allowed:
        configure_access_restrictions(runner, ctx, allowed)
    else:
        runner.skip("Web app access restrictions", "no --allow-ip ranges given")
    enforce_https(runner, ctx)

def main(argv=None) -> int:
    parser = build_parser("Configure network security and WAF")
    parser.add_argument(
        "--allow-ip",
        action="append",
        default=[],
        help="IPv4 address or CIDR allowed to reach the web app and SQL server (repeatable)"
    )
    args = parse_args(parser, argv)

    ctx = OperationContext.create(args.env, args.location)
    report = run_operation(
        "Configure Network Security",
        ctx.environment,
        configure_network_security,
        ctx,
        allowed=args.allow_ip,
        what_if=args.what_if
    )
    return emit_report(report)

if __name__ == "__main__":
    raise SystemExit(main())
