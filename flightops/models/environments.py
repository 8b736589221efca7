# flightops/models/environments.py
"""Per-environment thresholds, SKUs and recovery objectives."""

from typing import Dict
from pydantic import BaseModel, Field

from flightops.core.errors import ConfigurationError

class AlertThresholds(BaseModel):
    """Metric alert thresholds."""
    cpu_percent: float = Field(ge=0, le=100)
    response_time_seconds: float = Field(gt=0)
    http_5xx_count: int = Field(ge=0)
    dtu_percent: float = Field(ge=0, le=100)

class RecoveryObjectives(BaseModel):
    """Disaster-recovery targets in minutes."""
    rto_minutes: int = Field(gt=0)
    rpo_minutes: int = Field(gt=0)

class EnvironmentProfile(BaseModel):
    """Static settings that differ between environments."""
    name: str
    app_service_sku: str
    sql_sku: str
    backup_retention_days: int = Field(ge=1, le=35)
    log_retention_days: int
    use_staging_slot: bool
    waf_mode: str
    alerts: AlertThresholds
    recovery: RecoveryObjectives

ENVIRONMENT_THRESHOLDS: Dict[str, dict] = {
    "dev": {
        "cpu_percent": 90, "response_time_seconds": 5, "http_5xx_count": 25, "dtu_percent": 95,
    },
    "test": {
        "cpu_percent": 85, "response_time_seconds": 3, "http_5xx_count": 15, "dtu_percent": 90,
    },
    "staging": {
        "cpu_percent": 80, "response_time_seconds": 2, "http_5xx_count": 10, "dtu_percent": 85,
    },
    "prod": {
        "cpu_percent": 75, "response_time_seconds": 2, "http_5xx_count": 5, "dtu_percent": 80,
    },
}

RECOVERY_OBJECTIVES: Dict[str, dict] = {
    "dev": {"rto_minutes": 240, "rpo_minutes": 1440},
    "test": {"rto_minutes": 120, "rpo_minutes": 240},
    "staging": {"rto_minutes": 60, "rpo_minutes": 60},
    "prod": {"rto_minutes": 30, "rpo_minutes": 15},
}

ENVIRONMENT_SETTINGS: Dict[str, dict] = {
    "dev": {
        "app_service_sku": "B1", "sql_sku": "Basic", "backup_retention_days": 7,
        "log_retention_days": 30, "use_staging_slot": False, "waf_mode": "Detection",
    },
    "test": {
        "app_service_sku": "S1", "sql_sku": "S0", "backup_retention_days": 7,
        "log_retention_days": 30, "use_staging_slot": False, "waf_mode": "Detection",
    },
    "staging": {
        "app_service_sku": "P1v3", "sql_sku": "S1", "backup_retention_days": 14,
        "log_retention_days": 60, "use_staging_slot": True, "waf_mode": "Prevention",
    },
    "prod": {
        "app_service_sku": "P1v3", "sql_sku": "S2", "backup_retention_days": 35,
        "log_retention_days": 90, "use_staging_slot": True, "waf_mode": "Prevention",
    },
}

def get_environment_profile(environment: str) -> EnvironmentProfile:
    """Look up the profile for an environment name."""
    key = str(getattr(environment, "value", environment)).lower()
    if key not in ENVIRONMENT_SETTINGS:
        raise ConfigurationError(
            f"Unknown environment '{environment}'. "
            f"Expected one of: {', '.join(ENVIRONMENT_SETTINGS)}"
        )

    return EnvironmentProfile(
        name=key,
        alerts=AlertThresholds(**ENVIRONMENT_THRESHOLDS[key]),
        recovery=RecoveryObjectives(**RECOVERY_OBJECTIVES[key]),
        **ENVIRONMENT_SETTINGS[key]
    )
