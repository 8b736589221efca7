"""Shared pytest fixtures for the operations tooling tests.

This module provides fixtures used across all test files, including:
- Settings pointing at a fake subscription and a temporary reports folder
- A mocked AzureClients so no test reaches Azure
- A fake command runner standing in for subprocess
- Operation runners that collect their console output
"""

from types import SimpleNamespace
from typing import Callable, List

import pytest

from flightops.core.commands import CommandResult
from flightops.core.config import AzureSettings, Settings
from flightops.core.operations import OperationRunner
from flightops.scripts.context import OperationContext

SUBSCRIPTION_ID = "00000000-0000-0000-0000-000000000001"
TENANT_ID = "00000000-0000-0000-0000-0000000000aa"

CONNECTION_STRING = (
    "Server=tcp:sql-flightcompanion-dev-aue.database.windows.net,1433;"
    "Initial Catalog=sqldb-flightcompanion-dev;User ID=flightcompanionadmin;"
    "Password=S3cret!pass;Encrypt=True;TrustServerCertificate=False;"
)

class FakeCommandRunner:
    """Records commands instead of running them."""

    def __init__(self):
        self.calls: List[dict] = []
        self.responses: List[CommandResult] = []

    def queue(self, stdout: str = "", returncode: int = 0, stderr: str = ""):
        self.responses.append(CommandResult(args=[], returncode=returncode, stdout=stdout, stderr=stderr))

    def __call__(self, args, cwd=None, env=None, check=True, redact=()):
        self.calls.append({
            "args": list(args),
            "cwd": cwd,
            "env": env,
            "redact": list(redact),
        })
        if self.responses:
            result = self.responses.pop(0)
            result.args = list(args)
            return result
        return CommandResult(args=list(args), returncode=0, stdout="", stderr="")

# Settings fixtures
@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings for a fake subscription."""
    return Settings(
        SQL_ADMIN_PASSWORD="Adm1n!password",
        REPORTS_DIR=str(tmp_path / "reports"),
        POLL_INTERVAL_SECONDS=0,
        OPERATION_TIMEOUT_SECONDS=5,
        AZURE=AzureSettings(
            AZURE_SUBSCRIPTION_ID=SUBSCRIPTION_ID,
            AZURE_TENANT_ID=TENANT_ID,
            ALERT_EMAIL="ops@flightcompanion.example"
        )
    )

# Azure fixtures
@pytest.fixture
def azure_clients(mocker):
    """Mocked AzureClients; every client call returns a MagicMock."""
    clients = mocker.MagicMock(name="AzureClients")
    clients.subscription_id = SUBSCRIPTION_ID
    clients.storage.storage_accounts.list_keys.return_value = SimpleNamespace(
        keys=[SimpleNamespace(value="storage-key")]
    )
    return clients

@pytest.fixture
def blob_container(azure_clients):
    """Container client returned for every blob container."""
    return azure_clients.blob_service.return_value.get_container_client.return_value

@pytest.fixture
def az_cli(mocker):
    return mocker.MagicMock(name="AzureCli")

@pytest.fixture
def command_runner() -> FakeCommandRunner:
    return FakeCommandRunner()

# Context fixtures
@pytest.fixture
def make_ctx(settings, azure_clients, az_cli) -> Callable[..., OperationContext]:
    def _make(environment: str = "dev") -> OperationContext:
        return OperationContext.create(
            environment,
            settings=settings,
            clients=azure_clients,
            cli=az_cli
        )
    return _make

@pytest.fixture
def ctx(make_ctx) -> OperationContext:
    return make_ctx("dev")

@pytest.fixture
def prod_ctx(make_ctx) -> OperationContext:
    return make_ctx("prod")

# Runner fixtures
@pytest.fixture
def echo_lines() -> List[str]:
    return []

@pytest.fixture
def make_runner(echo_lines) -> Callable[..., OperationRunner]:
    def _make(environment: str = "dev", what_if: bool = False) -> OperationRunner:
        return OperationRunner("Test Operation", environment, what_if=what_if, echo=echo_lines.append)
    return _make

@pytest.fixture
def runner(make_runner) -> OperationRunner:
    return make_runner("dev")

@pytest.fixture
def prod_runner(make_runner) -> OperationRunner:
    return make_runner("prod")
