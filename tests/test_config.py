import json
import logging

import pytest

from flightops.core.config import EnvironmentType, location_code
from flightops.core.errors import ConfigurationError, ValidationError
from flightops.core.logging import get_logger, monitor_performance, new_correlation_id
from flightops.scripts.context import OperationContext, build_parser

def test_for_environment_copies_settings(settings):
    prod = settings.for_environment("prod", location="australiasoutheast")

    assert prod.PROD
    assert prod.AZURE.AZURE_LOCATION == "australiasoutheast"
    assert prod.AZURE.AZURE_LOCATION_CODE == "ause"
    assert settings.ENVIRONMENT == EnvironmentType.DEV
    assert settings.AZURE.AZURE_LOCATION == "australiaeast"

def test_location_override_renames_resources(settings, azure_clients):
    ctx = OperationContext.create("dev", "West Europe", settings=settings, clients=azure_clients)

    assert ctx.location == "westeurope"
    assert ctx.names.resource_group == "rg-flightcompanion-dev-we"
    assert ctx.names.key_vault == "kv-flightco-dev-we"

def test_context_rejects_invalid_resource_names(settings, azure_clients):
    long_code = settings.model_copy(
        update={"AZURE": settings.AZURE.model_copy(update={"AZURE_LOCATION_CODE": "x" * 40})}
    )

    with pytest.raises(ValidationError, match="web_app name must be 2-60 characters"):
        OperationContext.create("dev", settings=long_code, clients=azure_clients)

def test_unknown_location_is_rejected(settings):
    assert location_code("EastUS2") == "eus2"
    with pytest.raises(ConfigurationError, match="marsnorth"):
        settings.for_environment("dev", location="marsnorth")

def test_require_subscription(settings):
    assert settings.require_subscription() == settings.AZURE.AZURE_SUBSCRIPTION_ID

    missing = settings.model_copy(
        update={"AZURE": settings.AZURE.model_copy(update={"AZURE_SUBSCRIPTION_ID": None})}
    )
    with pytest.raises(ConfigurationError):
        missing.require_subscription()

def test_context_normalises_environment(settings, azure_clients):
    ctx = OperationContext.create(" PROD", settings=settings, clients=azure_clients)

    assert ctx.environment == "prod"
    assert ctx.is_production
    assert ctx.profile.recovery.rto_minutes == 30
    assert ctx.names.web_app == "app-flightcompanion-prod-aue"

def test_context_rejects_unknown_environment(settings):
    with pytest.raises(ValidationError) as exc_info:
        OperationContext.create("qa", settings=settings)
    assert exc_info.value.field == "environment"

def test_parser_common_flags():
    parser = build_parser("test")
    args = parser.parse_args(["--environment", "staging", "--what-if"])

    assert args.env == "staging"
    assert args.what_if
    assert not args.debug

    with pytest.raises(SystemExit):
        parser.parse_args(["--env", "qa"])

def test_structured_logger_includes_correlation_id(caplog):
    caplog.set_level(logging.INFO)
    run_id = new_correlation_id()

    get_logger("flightops.tests").info("Step completed", step="Create vault")

    entry = json.loads(caplog.records[-1].getMessage())
    assert entry["message"] == "Step completed"
    assert entry["correlation_id"] == run_id
    assert entry["step"] == "Create vault"
    assert entry["level"] == "INFO"

def test_structured_logger_error_details(caplog):
    caplog.set_level(logging.ERROR)

    get_logger("flightops.tests").error("Step failed", error=RuntimeError("denied"))

    entry = json.loads(caplog.records[-1].getMessage())
    assert entry["error_type"] == "RuntimeError"
    assert entry["error_message"] == "denied"

def test_monitor_performance_reraises(caplog):
    caplog.set_level(logging.INFO)

    @monitor_performance("export")
    def failing():
        raise ValueError("nope")

    with pytest.raises(ValueError):
        failing()
    assert "Function export failed" in caplog.records[-1].getMessage()
