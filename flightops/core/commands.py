"""External command execution: az, dotnet, npm."""

import json
import os
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from flightops.core.errors import CommandError
from flightops.core.logging import get_logger

logger = get_logger(__name__)

@dataclass
class CommandResult:
    args: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

def run_command(
    args: Sequence[str],
    cwd: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    check: bool = True,
    redact: Sequence[str] = ()
) -> CommandResult:
    """Run a command and capture its output.

    Values listed in redact are replaced in the logged command line.
    """
    args = [str(arg) for arg in args]
    logged = [("***" if arg in redact else arg) for arg in args]
    logger.debug("Running command", command=" ".join(logged), cwd=cwd)

    merged_env = None
    if env:
        merged_env = {**os.environ, **env}

    try:
        completed = subprocess.run(
            args,
            cwd=cwd,
            env=merged_env,
            capture_output=True,
            text=True
        )
    except FileNotFoundError as e:
        raise CommandError(logged, 127, f"{args[0]} not found on PATH") from e

    result = CommandResult(
        args=args,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or ""
    )
    if check and not result.ok:
        raise CommandError(logged, result.returncode, result.stderr)
    return result

class AzureCli:
    """Thin wrapper over the az command line."""

    def __init__(self, subscription_id: Optional[str] = None, runner=run_command):
        self.subscription_id = subscription_id
        self._run = runner

    def run(self, *args: str, redact: Sequence[str] = ()) -> Any:
        """Run an az command and return its parsed JSON output."""
        command = ["az", *args]
        if self.subscription_id and "--subscription" not in args:
            command += ["--subscription", self.subscription_id]
        command += ["--output", "json"]

        result = self._run(command, redact=redact)
        output = result.stdout.strip()
        if not output:
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError:
            return output

    def ensure_logged_in(self) -> Dict[str, Any]:
        """Verify the CLI is installed and has an active login."""
        account = self.run("account", "show")
        if not account:
            raise CommandError(["az", "account", "show"], 1, "Not logged in. Run: az login")
        logger.info(
            "Azure CLI session found",
            subscription=account.get("id"),
            user=(account.get("user") or {}).get("name")
        )
        return account

    def deploy_bicep(
        self,
        resource_group: str,
        template_file: str,
        parameters: Dict[str, Any],
        deployment_name: str
    ) -> Any:
        args = [
            "deployment", "group", "create",
            "--resource-group", resource_group,
            "--name", deployment_name,
            "--template-file", template_file,
        ]
        if parameters:
            args.append("--parameters")
            args += [f"{key}={value}" for key, value in parameters.items()]
        return self.run(*args)

    def webapp_deploy_zip(
        self,
        resource_group: str,
        app_name: str,
        package: str,
        slot: Optional[str] = None
    ) -> Any:
        args = [
            "webapp", "deploy",
            "--resource-group", resource_group,
            "--name", app_name,
            "--src-path", package,
            "--type", "zip",
        ]
        if slot:
            args += ["--slot", slot]
        return self.run(*args)

class DotnetEf:
    """Builds and runs dotnet ef commands against the backend project."""

    def __init__(
        self,
        project: str,
        connection_string: Optional[str] = None,
        environment: Optional[str] = None,
        runner=run_command
    ):
        self.project = project
        self.connection_string = connection_string
        self.environment = environment
        self._run = runner

    def _command(self, *args: str) -> CommandResult:
        command = ["dotnet", "ef", *args, "--project", self.project]
        redact: List[str] = []
        if self.connection_string and args[:2] == ("database", "update"):
            command += ["--connection", self.connection_string]
            redact.append(self.connection_string)
        env = {"ASPNETCORE_ENVIRONMENT": self.environment} if self.environment else None
        return self._run(command, env=env, redact=redact)

    def list_migrations(self) -> List[Dict[str, Any]]:
        result = self._command("migrations", "list", "--json", "--prefix-output")
        return parse_migration_list(result.stdout)

    def update_database(self, target: Optional[str] = None) -> CommandResult:
        if target:
            return self._command("database", "update", target)
        return self._command("database", "update")

    def add_migration(self, name: str) -> CommandResult:
        return self._command("migrations", "add", name)

    def script(self, output: str, idempotent: bool = True, from_migration: Optional[str] = None) -> CommandResult:
        args = ["migrations", "script"]
        if from_migration:
            args.append(from_migration)
        args += ["--output", output]
        if idempotent:
            args.append("--idempotent")
        return self._command(*args)

def parse_migration_list(output: str) -> List[Dict[str, Any]]:
    """Parse `dotnet ef migrations list --json --prefix-output` output.

    With --prefix-output every line carries a `data:`/`info:` prefix; the
    JSON payload is spread over the `data:` lines.
    """
    data_lines = []
    for line in output.splitlines():
        if line.startswith("data:"):
            data_lines.append(line[len("data:"):].strip())
    payload = "\n".join(data_lines) if data_lines else output.strip()
    if not payload:
        return []

    migrations = json.loads(payload)
    return [
        {
            "id": item.get("id"),
            "name": item.get("name"),
            "applied": bool(item.get("applied")),
        }
        for item in migrations
    ]
