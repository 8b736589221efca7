# flightops/scripts/context.py
"""Shared setup for the operations scripts."""

import argparse
from typing import List, Optional

from flightops.core.azure import AzureClients
from flightops.core.commands import AzureCli
from flightops.core.config import EnvironmentType, Settings, get_settings
from flightops.core.logging import setup_logging
from flightops.models.environments import EnvironmentProfile, get_environment_profile
from flightops.utils.naming import ResourceNames
from flightops.utils.validators import require_valid, validate_environment, validate_resource_name

VALIDATED_NAMES = (
    "resource_group", "web_app", "sql_server", "sql_database",
    "storage_account", "key_vault", "cdn_endpoint", "waf_policy",
)

class OperationContext:
    """Everything a script needs to address one environment."""

    def __init__(
        self,
        settings: Settings,
        clients: Optional[AzureClients] = None,
        cli: Optional[AzureCli] = None
    ):
        self.settings = settings
        self.environment = settings.ENVIRONMENT.value
        self.names = ResourceNames.for_environment(self.environment, settings)
        for kind in VALIDATED_NAMES:
            require_valid(validate_resource_name(getattr(self.names, kind), kind), kind)
        self.profile: EnvironmentProfile = get_environment_profile(self.environment)
        self._clients = clients
        self._cli = cli

    @classmethod
    def create(
        cls,
        environment: str,
        location: Optional[str] = None,
        settings: Optional[Settings] = None,
        clients: Optional[AzureClients] = None,
        cli: Optional[AzureCli] = None
    ) -> "OperationContext":
        environment = require_valid(validate_environment(environment), "environment")
        settings = (settings or get_settings()).for_environment(environment, location)
        return cls(settings, clients=clients, cli=cli)

    @property
    def clients(self) -> AzureClients:
        if self._clients is None:
            self._clients = AzureClients.from_settings(self.settings)
        return self._clients

    @property
    def cli(self) -> AzureCli:
        if self._cli is None:
            self._cli = AzureCli(self.settings.AZURE.AZURE_SUBSCRIPTION_ID)
        return self._cli

    @property
    def subscription_id(self) -> str:
        return self.settings.require_subscription()

    @property
    def location(self) -> str:
        return self.settings.AZURE.AZURE_LOCATION

    @property
    def is_production(self) -> bool:
        return self.settings.PROD

def build_parser(description: str) -> argparse.ArgumentParser:
    """Create an argument parser with the flags every script accepts."""
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument(
        "--env", "--environment",
        dest="env",
        required=True,
        choices=EnvironmentType.values(),
        help="Target environment"
    )
    parser.add_argument("--location", help="Azure region override")
    parser.add_argument(
        "--what-if",
        action="store_true",
        help="Show the steps that would run without calling Azure"
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser

def parse_args(parser: argparse.ArgumentParser, argv: Optional[List[str]] = None) -> argparse.Namespace:
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug)
    return args
