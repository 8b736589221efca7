# flightops/models/__init__.py
"""Environment profiles and operation reports."""

from .environments import (
    AlertThresholds,
    EnvironmentProfile,
    RecoveryObjectives,
    get_environment_profile,
)
from .operations import OperationReport, StepResult, StepStatus

__all__ = [
    'AlertThresholds',
    'EnvironmentProfile',
    'RecoveryObjectives',
    'get_environment_profile',
    'OperationReport',
    'StepResult',
    'StepStatus'
]
