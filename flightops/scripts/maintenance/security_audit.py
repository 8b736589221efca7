# flightops/scripts/maintenance/security_audit.py
"""Security audit evidence collection."""

import json
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from flightops.core.commands import run_command
from flightops.core.errors import CommandError
from flightops.core.logging import get_logger
from flightops.core.operations import OperationRunner, emit_report, run_operation
from flightops.scripts.context import OperationContext, build_parser, parse_args

logger = get_logger(__name__)

class FindingStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"

@dataclass
class Finding:
    category: str
    check: str
    status: FindingStatus
    detail: str = ""

def _value(value) -> str:
    return str(getattr(value, "value", value))

def _finding(category: str, check: str, ok: bool, detail: str, severe: bool = True) -> Finding:
    if ok:
        status = FindingStatus.PASS
    else:
        status = FindingStatus.FAIL if severe else FindingStatus.WARN
    return Finding(category, check, status, detail)

# Dependencies

VULNERABLE_SEVERITIES = ("critical", "high")

def parse_dotnet_vulnerabilities(output: str) -> List[Tuple[str, str]]:
    """(package, severity) pairs from `dotnet list package --vulnerable`."""
    found = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 4 and parts[0] == ">":
            severity = next(
                (part for part in parts if part.lower() in ("critical", "high", "moderate", "low")),
                "unknown"
            )
            found.append((parts[1], severity.lower()))
    return found

def audit_dotnet_packages(ctx: OperationContext) -> List[Finding]:
    result = run_command([
        "dotnet", "list", ctx.settings.BACKEND_PROJECT,
        "package", "--vulnerable", "--include-transitive"
    ])
    vulnerable = parse_dotnet_vulnerabilities(result.stdout)
    severe = [name for name, severity in vulnerable if severity in VULNERABLE_SEVERITIES]
    if severe:
        return [Finding("dependencies", "NuGet packages", FindingStatus.FAIL,
                        f"high/critical vulnerabilities in: {', '.join(sorted(set(severe)))}")]
    if vulnerable:
        return [Finding("dependencies", "NuGet packages", FindingStatus.WARN,
                        f"{len(vulnerable)} low/moderate vulnerabilities")]
    return [Finding("dependencies", "NuGet packages", FindingStatus.PASS, "no known vulnerable packages")]

def summarize_npm_audit(report: Dict) -> Dict[str, int]:
    counts = report.get("metadata", {}).get("vulnerabilities", {})
    return {level: int(counts.get(level, 0)) for level in ("low", "moderate", "high", "critical")}

def audit_npm_packages(ctx: OperationContext) -> List[Finding]:
    # npm audit exits non-zero when it finds vulnerabilities
    result = run_command(["npm", "audit", "--json"], cwd=ctx.settings.FRONTEND_PROJECT, check=False)
    try:
        report = json.loads(result.stdout or "{}")
    except json.JSONDecodeError as e:
        raise CommandError(result.args, result.returncode, f"unreadable output: {e}") from e

    counts = summarize_npm_audit(report)
    detail = ", ".join(f"{level}: {count}" for level, count in counts.items())
    if counts["high"] or counts["critical"]:
        status = FindingStatus.FAIL
    elif counts["low"] or counts["moderate"]:
        status = FindingStatus.WARN
    else:
        status = FindingStatus.PASS
    return [Finding("dependencies", "npm packages", status, detail)]

# Azure resources

def audit_web_app(ctx: OperationContext) -> List[Finding]:
    web_apps = ctx.clients.web.web_apps
    site = web_apps.get(ctx.names.resource_group, ctx.names.web_app)
    config = web_apps.get_configuration(ctx.names.resource_group, ctx.names.web_app)

    min_tls = _value(config.min_tls_version)
    ftps = _value(config.ftps_state)
    identity = _value(site.identity.type) if site.identity else "None"
    return [
        _finding("web_app", "HTTPS only", bool(site.https_only), f"https_only={site.https_only}"),
        _finding("web_app", "Minimum TLS 1.2", min_tls in ("1.2", "1.3"), f"min_tls_version={min_tls}"),
        _finding("web_app", "FTP disabled", ftps in ("Disabled", "FtpsOnly"), f"ftps_state={ftps}",
                 severe=ftps == "AllAllowed"),
        _finding("web_app", "Managed identity", "SystemAssigned" in identity, f"identity={identity}",
                 severe=False),
    ]

def audit_sql(ctx: OperationContext) -> List[Finding]:
    sql = ctx.clients.sql
    rg, server, database = ctx.names.resource_group, ctx.names.sql_server, ctx.names.sql_database

    tde = _value(sql.transparent_data_encryptions.get(rg, server, database, "current").state)
    auditing = _value(sql.server_blob_auditing_policies.get(rg, server).state)
    rules = list(sql.firewall_rules.list_by_server(rg, server))
    open_rules = [
        rule.name for rule in rules
        if rule.start_ip_address == "0.0.0.0" and rule.end_ip_address == "255.255.255.255"
    ]
    return [
        _finding("sql", "Transparent data encryption", tde == "Enabled", f"state={tde}"),
        _finding("sql", "Server auditing", auditing == "Enabled", f"state={auditing}",
                 severe=ctx.is_production),
        _finding("sql", "Firewall rules", not open_rules,
                 f"{len(rules)} rules" + (f", open to the internet: {', '.join(open_rules)}" if open_rules else "")),
    ]

def audit_storage(ctx: OperationContext) -> List[Finding]:
    account = ctx.clients.storage.storage_accounts.get_properties(
        ctx.names.resource_group, ctx.names.storage_account
    )
    min_tls = _value(account.minimum_tls_version)
    return [
        _finding("storage", "HTTPS only", bool(account.enable_https_traffic_only),
                 f"enable_https_traffic_only={account.enable_https_traffic_only}"),
        _finding("storage", "Minimum TLS 1.2", min_tls == "TLS1_2", f"minimum_tls_version={min_tls}"),
        _finding("storage", "Public blob access disabled", account.allow_blob_public_access is False,
                 f"allow_blob_public_access={account.allow_blob_public_access}"),
    ]

def audit_key_vault(ctx: OperationContext) -> List[Finding]:
    vault = ctx.clients.keyvault.vaults.get(ctx.names.resource_group, ctx.names.key_vault)
    properties = vault.properties
    return [
        _finding("key_vault", "Soft delete", properties.enable_soft_delete is not False,
                 f"enable_soft_delete={properties.enable_soft_delete}"),
        _finding("key_vault", "Purge protection", bool(properties.enable_purge_protection),
                 f"enable_purge_protection={properties.enable_purge_protection}",
                 severe=ctx.is_production),
    ]

AUDITS = [
    ("Audit NuGet packages", audit_dotnet_packages),
    ("Audit npm packages", audit_npm_packages),
    ("Audit web app", audit_web_app),
    ("Audit SQL server", audit_sql),
    ("Audit storage account", audit_storage),
    ("Audit Key Vault", audit_key_vault),
]

# Reporting

def render_markdown(findings: List[Finding], environment: str, generated_at: datetime) -> str:
    counts = {status: 0 for status in FindingStatus}
    for finding in findings:
        counts[finding.status] += 1

    lines = [
        f"# Security Audit - {environment}",
        "",
        f"Generated: {generated_at.isoformat()}",
        "",
        f"Pass: {counts[FindingStatus.PASS]} | Warn: {counts[FindingStatus.WARN]} | "
        f"Fail: {counts[FindingStatus.FAIL]}",
        "",
        "| Category | Check | Status | Detail |",
        "|---|---|---|---|",
    ]
    for finding in findings:
        lines.append(
            f"| {finding.category} | {finding.check} | {finding.status.value.upper()} | {finding.detail} |"
        )
    return "\n".join(lines) + "\n"

def write_audit_report(
    findings: List[Finding],
    environment: str,
    directory: str,
    generated_at: Optional[datetime] = None
) -> Tuple[Path, Path]:
    generated_at = generated_at or datetime.now(timezone.utc)
    path = Path(directory)
    path.mkdir(parents=True, exist_ok=True)
    stem = f"security-audit-{environment}-{generated_at.strftime('%Y%m%d_%H%M%S')}"

    json_path = path / f"{stem}.json"
    json_path.write_text(json.dumps({
        "environment": environment,
        "generated_at": generated_at.isoformat(),
        "findings": [{**asdict(finding), "status": finding.status.value} for finding in findings],
    }, indent=2))
    markdown_path = path / f"{stem}.md"
    markdown_path.write_text(render_markdown(findings, environment, generated_at))
    return json_path, markdown_path

def security_audit(
    runner: OperationRunner,
    ctx: OperationContext,
    skip_dependencies: bool = False,
    skip_azure: bool = False
):
    """Collect security evidence and fail on any failing finding."""
    findings: List[Finding] = []
    for name, audit in AUDITS:
        dependency_audit = audit in (audit_dotnet_packages, audit_npm_packages)
        if (dependency_audit and skip_dependencies) or (not dependency_audit and skip_azure):
            runner.skip(name, "excluded by flag")
            continue
        findings.extend(runner.run_step(name, audit, ctx, critical=False) or [])

    for finding in findings:
        if finding.status != FindingStatus.PASS:
            runner.note(f"{finding.status.value.upper()}: {finding.category} / {finding.check} ({finding.detail})")

    if not runner.what_if:
        json_path, markdown_path = runner.run_step(
            "Write audit report",
            write_audit_report,
            findings,
            ctx.environment,
            ctx.settings.REPORTS_DIR
        )
        runner.set_output("report", str(json_path))
        runner.set_output("summary", str(markdown_path))

    failed = [finding for finding in findings if finding.status == FindingStatus.FAIL]
    runner.set_output("findings", [{**asdict(f), "status": f.status.value} for f in findings])
    if failed:
        runner.fail("Security findings", f"{len(failed)} failing checks")

def main(argv=None) -> int:
    parser = build_parser("Collect security audit evidence")
    parser.add_argument("--skip-dependencies", action="store_true", help="Skip NuGet and npm audits")
    parser.add_argument("--skip-azure", action="store_true", help="Skip Azure resource checks")
    args = parse_args(parser, argv)

    ctx = OperationContext.create(args.env, args.location)
    report = run_operation(
        "Security Audit",
        ctx.environment,
        security_audit,
        ctx,
        skip_dependencies=args.skip_dependencies,
        skip_azure=args.skip_azure,
        what_if=args.what_if
    )
    return emit_report(report)

if __name__ == "__main__":
    raise SystemExit(main())
