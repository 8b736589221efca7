# flightops/utils/naming.py
"""Resource naming conventions for the platform.

Names follow `{type}-flightcompanion-{environment}-{location code}`, except
where Azure restricts the charset or length (storage accounts, Key Vaults,
WAF policies).
"""

import re
from typing import Optional
from pydantic import BaseModel

from flightops.core.config import Settings, get_settings

APP = "flightcompanion"
STAGING_SLOT = "staging"

def _alnum(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())

class ResourceNames(BaseModel):
    """Names and URLs of every resource in one environment."""
    environment: str
    location: str
    resource_group: str
    app_service_plan: str
    web_app: str
    sql_server: str
    sql_database: str
    storage_account: str
    key_vault: str
    app_insights: str
    action_group: str
    cdn_profile: str
    cdn_endpoint: str
    waf_policy: str

    @property
    def app_url(self) -> str:
        return f"https://{self.web_app}.azurewebsites.net"

    @property
    def staging_url(self) -> str:
        return f"https://{self.web_app}-{STAGING_SLOT}.azurewebsites.net"

    @property
    def cdn_url(self) -> str:
        return f"https://{self.cdn_endpoint}.azureedge.net"

    @property
    def sql_server_fqdn(self) -> str:
        return f"{self.sql_server}.database.windows.net"

    @classmethod
    def for_environment(
        cls,
        environment: str,
        settings: Optional[Settings] = None
    ) -> "ResourceNames":
        settings = settings or get_settings()
        env = str(getattr(environment, "value", environment)).lower()
        loc = settings.AZURE.AZURE_LOCATION_CODE.lower()

        return cls(
            environment=env,
            location=settings.AZURE.AZURE_LOCATION,
            resource_group=f"rg-{APP}-{env}-{loc}",
            app_service_plan=f"plan-{APP}-{env}-{loc}",
            web_app=f"app-{APP}-{env}-{loc}",
            sql_server=f"sql-{APP}-{env}-{loc}",
            sql_database=f"sqldb-{APP}-{env}",
            storage_account=_alnum(f"stflightcomp{env}{loc}")[:24],
            key_vault=f"kv-flightco-{env}-{loc}"[:24],
            app_insights=f"appi-{APP}-{env}-{loc}",
            action_group=f"ag-{APP}-{env}",
            cdn_profile=f"cdnp-{APP}-{env}",
            cdn_endpoint=f"cdn-{APP}-{env}",
            waf_policy=_alnum(f"waf{APP}{env}")[:128]
        )
