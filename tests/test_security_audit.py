import json
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from flightops.core.commands import CommandResult
from flightops.core.errors import CommandError
from flightops.models.operations import StepStatus
from flightops.scripts.maintenance import security_audit as audit
from flightops.scripts.maintenance.security_audit import Finding, FindingStatus

DOTNET_OUTPUT = """
The following sources were used:
   https://api.nuget.org/v3/index.json

Project `FlightCompanion.Api` has the following vulnerable packages
   [net8.0]:
   Top-level Package      Requested   Resolved   Severity   Advisory URL
   > System.Text.Json     8.0.0       8.0.0      High       https://github.com/advisories/GHSA-1

   Transitive Package     Resolved   Severity   Advisory URL
   > Azure.Identity       1.10.0     Moderate   https://github.com/advisories/GHSA-2
"""

NPM_AUDIT = {
    "auditReportVersion": 2,
    "metadata": {"vulnerabilities": {"info": 0, "low": 2, "moderate": 1, "high": 0, "critical": 0, "total": 3}},
}

def result(stdout="", returncode=0):
    return CommandResult(args=["npm", "audit", "--json"], returncode=returncode, stdout=stdout, stderr="")

@pytest.fixture
def secure_azure(azure_clients):
    """Azure responses for a fully hardened environment."""
    web_apps = azure_clients.web.web_apps
    web_apps.get.return_value = SimpleNamespace(
        https_only=True, identity=SimpleNamespace(type="SystemAssigned")
    )
    web_apps.get_configuration.return_value = SimpleNamespace(min_tls_version="1.2", ftps_state="Disabled")

    sql = azure_clients.sql
    sql.transparent_data_encryptions.get.return_value = SimpleNamespace(state="Enabled")
    sql.server_blob_auditing_policies.get.return_value = SimpleNamespace(state="Enabled")
    sql.firewall_rules.list_by_server.return_value = [
        SimpleNamespace(name="AllowAllWindowsAzureIps", start_ip_address="0.0.0.0", end_ip_address="0.0.0.0")
    ]

    azure_clients.storage.storage_accounts.get_properties.return_value = SimpleNamespace(
        enable_https_traffic_only=True, minimum_tls_version="TLS1_2", allow_blob_public_access=False
    )
    azure_clients.keyvault.vaults.get.return_value = SimpleNamespace(
        properties=SimpleNamespace(enable_soft_delete=True, enable_purge_protection=True)
    )
    return azure_clients

def by_check(findings):
    return {finding.check: finding for finding in findings}

def test_parse_dotnet_vulnerabilities():
    assert audit.parse_dotnet_vulnerabilities(DOTNET_OUTPUT) == [
        ("System.Text.Json", "high"),
        ("Azure.Identity", "moderate"),
    ]
    assert audit.parse_dotnet_vulnerabilities("has no vulnerable packages given the current sources.") == []

def test_audit_dotnet_packages(ctx, mocker):
    run = mocker.patch.object(audit, "run_command", return_value=result(DOTNET_OUTPUT))

    findings = audit.audit_dotnet_packages(ctx)

    assert run.call_args.args[0][:2] == ["dotnet", "list"]
    assert "--include-transitive" in run.call_args.args[0]
    assert findings[0].status == FindingStatus.FAIL
    assert "System.Text.Json" in findings[0].detail

def test_summarize_npm_audit():
    assert audit.summarize_npm_audit(NPM_AUDIT) == {"low": 2, "moderate": 1, "high": 0, "critical": 0}
    assert audit.summarize_npm_audit({}) == {"low": 0, "moderate": 0, "high": 0, "critical": 0}

def test_audit_npm_packages_warns_on_low_severity(ctx, mocker):
    run = mocker.patch.object(audit, "run_command", return_value=result(json.dumps(NPM_AUDIT), returncode=1))

    findings = audit.audit_npm_packages(ctx)

    assert run.call_args.kwargs["check"] is False
    assert findings[0].status == FindingStatus.WARN
    assert findings[0].detail == "low: 2, moderate: 1, high: 0, critical: 0"

def test_audit_npm_packages_unreadable_output(ctx, mocker):
    mocker.patch.object(audit, "run_command", return_value=result("npm ERR! missing lockfile", returncode=1))

    with pytest.raises(CommandError, match="unreadable output"):
        audit.audit_npm_packages(ctx)

def test_hardened_resources_pass(ctx, secure_azure):
    findings = (
        audit.audit_web_app(ctx) + audit.audit_sql(ctx)
        + audit.audit_storage(ctx) + audit.audit_key_vault(ctx)
    )
    assert all(finding.status == FindingStatus.PASS for finding in findings)

def test_open_firewall_rule_fails(ctx, secure_azure):
    secure_azure.sql.firewall_rules.list_by_server.return_value = [
        SimpleNamespace(name="AllowAll", start_ip_address="0.0.0.0", end_ip_address="255.255.255.255")
    ]

    finding = by_check(audit.audit_sql(ctx))["Firewall rules"]

    assert finding.status == FindingStatus.FAIL
    assert "open to the internet: AllowAll" in finding.detail

def test_purge_protection_severity_depends_on_environment(ctx, prod_ctx, secure_azure):
    secure_azure.keyvault.vaults.get.return_value = SimpleNamespace(
        properties=SimpleNamespace(enable_soft_delete=True, enable_purge_protection=None)
    )

    assert by_check(audit.audit_key_vault(ctx))["Purge protection"].status == FindingStatus.WARN
    assert by_check(audit.audit_key_vault(prod_ctx))["Purge protection"].status == FindingStatus.FAIL

def test_render_markdown():
    findings = [
        Finding("storage", "HTTPS only", FindingStatus.PASS, "enable_https_traffic_only=True"),
        Finding("sql", "Server auditing", FindingStatus.WARN, "state=Disabled"),
    ]
    text = audit.render_markdown(findings, "dev", datetime(2025, 1, 1, tzinfo=timezone.utc))

    assert text.startswith("# Security Audit - dev")
    assert "Pass: 1 | Warn: 1 | Fail: 0" in text
    assert "| sql | Server auditing | WARN | state=Disabled |" in text

def test_security_audit_writes_reports(runner, ctx, secure_azure, settings, mocker):
    secure_azure.storage.storage_accounts.get_properties.return_value = SimpleNamespace(
        enable_https_traffic_only=True, minimum_tls_version="TLS1_2", allow_blob_public_access=True
    )
    mocker.patch.object(audit, "run_command", return_value=result(json.dumps({"metadata": {}})))

    audit.security_audit(runner, ctx)

    assert runner.report.exit_code == 1
    assert [step.name for step in runner.report.failed_steps] == ["Security findings"]

    json_path = runner.report.outputs["report"]
    data = json.loads(Path(json_path).read_text())
    public_access = [f for f in data["findings"] if f["check"] == "Public blob access disabled"][0]
    assert public_access["status"] == "fail"
    assert runner.report.outputs["summary"].endswith(".md")
    assert json_path.startswith(settings.REPORTS_DIR)

def test_security_audit_skips_dependencies(runner, ctx, secure_azure, mocker):
    run = mocker.patch.object(audit, "run_command")

    audit.security_audit(runner, ctx, skip_dependencies=True)

    run.assert_not_called()
    skipped = [step.name for step in runner.report.steps if step.status == StepStatus.SKIPPED]
    assert skipped == ["Audit NuGet packages", "Audit npm packages"]
    assert runner.report.succeeded

def test_security_audit_what_if_writes_nothing(make_runner, ctx, settings, mocker):
    runner = make_runner("dev", what_if=True)
    mocker.patch.object(audit, "run_command")

    audit.security_audit(runner, ctx)

    assert "report" not in runner.report.outputs
    assert runner.report.succeeded
