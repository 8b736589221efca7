import pytest

from flightops.core.errors import ConfigurationError
from flightops.models.environments import get_environment_profile

def test_production_profile():
    profile = get_environment_profile("prod")

    assert profile.app_service_sku == "P1v3"
    assert profile.sql_sku == "S2"
    assert profile.backup_retention_days == 35
    assert profile.use_staging_slot
    assert profile.waf_mode == "Prevention"
    assert profile.alerts.cpu_percent == 75
    assert profile.recovery.rto_minutes == 30
    assert profile.recovery.rpo_minutes == 15

def test_dev_has_no_staging_slot():
    profile = get_environment_profile("dev")

    assert not profile.use_staging_slot
    assert profile.waf_mode == "Detection"

def test_thresholds_tighten_towards_production():
    order = ["dev", "test", "staging", "prod"]
    cpu = [get_environment_profile(env).alerts.cpu_percent for env in order]
    rto = [get_environment_profile(env).recovery.rto_minutes for env in order]

    assert cpu == sorted(cpu, reverse=True)
    assert rto == sorted(rto, reverse=True)

def test_unknown_environment():
    with pytest.raises(ConfigurationError, match="Unknown environment"):
        get_environment_profile("qa")
