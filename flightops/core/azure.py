"""Azure SDK client construction.

All management clients share one DefaultAzureCredential and are created on
first use, so a script only authenticates against the services it touches.
"""

from functools import cached_property
from typing import Optional

from azure.identity import DefaultAzureCredential
from azure.keyvault.secrets import SecretClient
from azure.mgmt.applicationinsights import ApplicationInsightsManagementClient
from azure.mgmt.cdn import CdnManagementClient
from azure.mgmt.keyvault import KeyVaultManagementClient
from azure.mgmt.monitor import MonitorManagementClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.sql import SqlManagementClient
from azure.mgmt.storage import StorageManagementClient
from azure.mgmt.web import WebSiteManagementClient
from azure.storage.blob import BlobServiceClient

from flightops.core.config import Settings

class AzureClients:
    """Lazily-built Azure clients for one subscription."""

    def __init__(self, subscription_id: str, credential=None):
        self.subscription_id = subscription_id
        self.credential = credential or DefaultAzureCredential()

    @classmethod
    def from_settings(cls, settings: Settings) -> "AzureClients":
        return cls(settings.require_subscription())

    @cached_property
    def resource(self) -> ResourceManagementClient:
        return ResourceManagementClient(self.credential, self.subscription_id)

    @cached_property
    def web(self) -> WebSiteManagementClient:
        return WebSiteManagementClient(self.credential, self.subscription_id)

    @cached_property
    def sql(self) -> SqlManagementClient:
        return SqlManagementClient(self.credential, self.subscription_id)

    @cached_property
    def storage(self) -> StorageManagementClient:
        return StorageManagementClient(self.credential, self.subscription_id)

    @cached_property
    def network(self) -> NetworkManagementClient:
        return NetworkManagementClient(self.credential, self.subscription_id)

    @cached_property
    def monitor(self) -> MonitorManagementClient:
        return MonitorManagementClient(self.credential, self.subscription_id)

    @cached_property
    def keyvault(self) -> KeyVaultManagementClient:
        return KeyVaultManagementClient(self.credential, self.subscription_id)

    @cached_property
    def cdn(self) -> CdnManagementClient:
        return CdnManagementClient(self.credential, self.subscription_id)

    @cached_property
    def appinsights(self) -> ApplicationInsightsManagementClient:
        return ApplicationInsightsManagementClient(self.credential, self.subscription_id)

    def secret_client(self, vault_name: str) -> SecretClient:
        vault_url = f"https://{vault_name}.vault.azure.net"
        return SecretClient(vault_url=vault_url, credential=self.credential)

    def blob_service(self, account_name: str) -> BlobServiceClient:
        account_url = f"https://{account_name}.blob.core.windows.net"
        return BlobServiceClient(account_url, credential=self.credential)

def resource_id(
    subscription_id: str,
    resource_group: str,
    provider: str,
    *segments: str
) -> str:
    """Format an ARM resource id.

    resource_id(sub, rg, "Microsoft.Web/sites", "app") ->
    /subscriptions/sub/resourceGroups/rg/providers/Microsoft.Web/sites/app
    """
    path = "/".join(segments)
    return (
        f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"
        f"/providers/{provider}/{path}"
    )

def tags_for(environment: str, extra: Optional[dict] = None) -> dict:
    tags = {"application": "flightcompanion", "environment": environment, "managedBy": "flightops"}
    if extra:
        tags.update(extra)
    return tags
