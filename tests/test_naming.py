import pytest

from flightops.core.config import EnvironmentType
from flightops.utils.naming import ResourceNames
from flightops.utils.validators import validate_resource_name

def test_dev_names(settings):
    names = ResourceNames.for_environment("dev", settings)

    assert names.resource_group == "rg-flightcompanion-dev-aue"
    assert names.app_service_plan == "plan-flightcompanion-dev-aue"
    assert names.web_app == "app-flightcompanion-dev-aue"
    assert names.sql_server == "sql-flightcompanion-dev-aue"
    assert names.sql_database == "sqldb-flightcompanion-dev"
    assert names.storage_account == "stflightcompdevaue"
    assert names.key_vault == "kv-flightco-dev-aue"
    assert names.waf_policy == "wafflightcompaniondev"

def test_urls(settings):
    names = ResourceNames.for_environment("prod", settings)

    assert names.app_url == "https://app-flightcompanion-prod-aue.azurewebsites.net"
    assert names.staging_url == "https://app-flightcompanion-prod-aue-staging.azurewebsites.net"
    assert names.cdn_url == "https://cdn-flightcompanion-prod.azureedge.net"
    assert names.sql_server_fqdn == "sql-flightcompanion-prod-aue.database.windows.net"

@pytest.mark.parametrize("environment", EnvironmentType.values())
def test_names_satisfy_azure_rules(settings, environment):
    names = ResourceNames.for_environment(environment, settings)

    for kind in ("resource_group", "web_app", "sql_server", "sql_database",
                 "storage_account", "key_vault", "cdn_endpoint", "waf_policy"):
        ok, message = validate_resource_name(getattr(names, kind), kind)
        assert ok, message
