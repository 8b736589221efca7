"""Configuration management for the Flight Companion operations tooling.

This module handles configuration for every operations script:
- Environment variable loading and validation using Pydantic
- Azure subscription, tenant and region settings
- Database and backup settings shared by the database scripts
- Polling and timeout settings for long-running Azure operations

Settings are read once per process and cached; scripts override individual
values (environment, location) from their command-line flags.
"""

from functools import lru_cache
from typing import Optional
from enum import Enum
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from flightops.core.errors import ConfigurationError

# Configure logging
logger = logging.getLogger(__name__)

# Short region codes used in resource names
LOCATION_CODES = {
    "australiaeast": "aue",
    "australiasoutheast": "ause",
    "australiacentral": "auc",
    "eastasia": "ea",
    "southeastasia": "sea",
    "japaneast": "jpe",
    "eastus": "eus",
    "eastus2": "eus2",
    "westus2": "wus2",
    "centralus": "cus",
    "northeurope": "ne",
    "westeurope": "we",
    "uksouth": "uks",
}

def location_code(location: str) -> str:
    """Short code for an Azure region name."""
    key = location.replace(" ", "").lower()
    if key not in LOCATION_CODES:
        raise ConfigurationError(
            f"No resource name code for region '{location}'. "
            f"Expected one of: {', '.join(LOCATION_CODES)}"
        )
    return LOCATION_CODES[key]

class EnvironmentType(str, Enum):
    """Deployment environments of the platform"""
    DEV = "dev"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"

    @classmethod
    def values(cls) -> list:
        return [member.value for member in cls]

class AzureSettings(BaseSettings):
    """Azure-specific configurations"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    AZURE_SUBSCRIPTION_ID: Optional[str] = None
    AZURE_TENANT_ID: Optional[str] = None

    # Region used for new resources and the short code used in resource names
    AZURE_LOCATION: str = "australiaeast"
    AZURE_LOCATION_CODE: str = "aue"

    # Application Insights used for the tooling's own logs
    APPLICATIONINSIGHTS_CONNECTION_STRING: Optional[str] = None

    # Alert recipients for metric alerts
    ALERT_EMAIL: Optional[str] = None

class Settings(BaseSettings):
    """Main settings for the operations scripts"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # Basic settings
    APP_NAME: str = "flightcompanion"
    ENVIRONMENT: EnvironmentType = EnvironmentType.DEV
    DEBUG: bool = False

    # Source tree locations used by dotnet / npm
    BACKEND_PROJECT: str = "backend"
    FRONTEND_PROJECT: str = "frontend"

    # Database settings
    DATABASE_CONNECTION_STRING: Optional[str] = None
    SQL_ADMIN_USER: str = "flightcompanionadmin"
    SQL_ADMIN_PASSWORD: Optional[str] = None

    # Backup and reporting
    BACKUP_CONTAINER: str = "database-backups"
    REPORTS_DIR: str = "reports"

    # Long-running operation polling
    POLL_INTERVAL_SECONDS: int = 15
    OPERATION_TIMEOUT_SECONDS: int = 3600

    # Azure settings
    AZURE: AzureSettings = Field(default_factory=AzureSettings)

    @property
    def PROD(self) -> bool:
        """Check if environment is production"""
        return self.ENVIRONMENT == EnvironmentType.PROD

    def for_environment(self, environment: str, location: Optional[str] = None) -> "Settings":
        """Return a copy of the settings targeting another environment."""
        azure = self.AZURE
        if location:
            azure = azure.model_copy(update={
                "AZURE_LOCATION": location.replace(" ", "").lower(),
                "AZURE_LOCATION_CODE": location_code(location)
            })
        return self.model_copy(
            update={"ENVIRONMENT": EnvironmentType(environment), "AZURE": azure}
        )

    def require_subscription(self) -> str:
        """Get the subscription id or fail with a configuration error."""
        if not self.AZURE.AZURE_SUBSCRIPTION_ID:
            raise ConfigurationError("AZURE_SUBSCRIPTION_ID is not set")
        return self.AZURE.AZURE_SUBSCRIPTION_ID

@lru_cache()
def get_settings() -> Settings:
    """Get cached settings"""
    return Settings()
