"""Parameter validation for the operations scripts.

This module provides the checks every script runs on its flags before
touching Azure:
- Environment names
- Azure resource names (per-type length and charset rules)
- SQL connection strings
- Entity Framework migration names
- Backup retention periods

Validators return a ValidationResult tuple of (ok, message_or_value);
require_valid turns a failed result into a ValidationError.
"""

from typing import Optional
import re

from flightops.core.config import EnvironmentType
from flightops.core.errors import ValidationError
from flightops.core.logging import get_logger
from flightops.utils.connection_strings import parse_connection_string, split_server

logger = get_logger(__name__)

# Type definitions
ValidationResult = tuple[bool, Optional[str]]

# (min length, max length, pattern) per resource kind
RESOURCE_NAME_RULES = {
    "resource_group": (1, 90, r'^[A-Za-z0-9._()-]*[A-Za-z0-9_()-]$'),
    "web_app": (2, 60, r'^[A-Za-z0-9][A-Za-z0-9-]*[A-Za-z0-9]$'),
    "sql_server": (1, 63, r'^[a-z0-9][a-z0-9-]*[a-z0-9]$|^[a-z0-9]$'),
    "sql_database": (1, 128, r'^[^<>*%&:\\/?]*[^<>*%&:\\/?. ]$'),
    "storage_account": (3, 24, r'^[a-z0-9]+$'),
    "key_vault": (3, 24, r'^[A-Za-z][A-Za-z0-9-]*[A-Za-z0-9]$'),
    "cdn_endpoint": (1, 50, r'^[A-Za-z0-9][A-Za-z0-9-]*[A-Za-z0-9]$|^[A-Za-z0-9]$'),
    "waf_policy": (1, 128, r'^[A-Za-z][A-Za-z0-9]*$'),
}

def validate_environment(environment: str) -> ValidationResult:
    """Validate an environment name."""
    value = (environment or "").strip().lower()
    if value not in EnvironmentType.values():
        return False, f"Invalid environment '{environment}'. Allowed: {', '.join(EnvironmentType.values())}"
    return True, value

def validate_resource_name(name: str, kind: str) -> ValidationResult:
    """Validate an Azure resource name for its resource kind."""
    if kind not in RESOURCE_NAME_RULES:
        return False, f"Unknown resource kind '{kind}'"

    min_length, max_length, pattern = RESOURCE_NAME_RULES[kind]
    if not name or not (min_length <= len(name) <= max_length):
        return False, f"{kind} name must be {min_length}-{max_length} characters"
    if "--" in name and kind in ("key_vault", "sql_server"):
        return False, f"{kind} name cannot contain consecutive hyphens"
    if not re.match(pattern, name):
        return False, f"Invalid {kind} name '{name}'"
    return True, name

def validate_connection_string(connection_string: str) -> ValidationResult:
    """Validate an ADO.NET SQL connection string."""
    if not connection_string or not connection_string.strip():
        return False, "Connection string is empty"

    try:
        parts = parse_connection_string(connection_string)
    except ValueError as e:
        return False, str(e)

    if "server" not in parts:
        return False, "Connection string has no Server/Data Source"
    if "database" not in parts:
        return False, "Connection string has no Database/Initial Catalog"

    try:
        split_server(parts["server"])
    except ValueError:
        return False, "Connection string has an invalid server port"

    integrated = parts.get("integrated security", "").lower() in ("true", "sspi", "yes")
    if not integrated and "authentication" not in parts:
        if "user" not in parts or "password" not in parts:
            return False, "Connection string needs User ID and Password, Authentication, or Integrated Security"

    return True, None

def validate_migration_name(name: str) -> ValidationResult:
    """Validate an Entity Framework migration name (a C# identifier)."""
    if not name:
        return False, "Migration name is empty"
    if name == "0":
        # `dotnet ef database update 0` reverts every migration
        return True, name
    if not re.match(r'^(\d{14}_)?[A-Za-z_][A-Za-z0-9_]*$', name):
        return False, f"Invalid migration name '{name}'"
    return True, name

def validate_retention_days(days: int, maximum: int = 35) -> ValidationResult:
    """Validate a backup retention period in days."""
    if days < 1 or days > maximum:
        return False, f"Retention must be between 1 and {maximum} days"
    return True, None

def require_valid(result: ValidationResult, field: str) -> Optional[str]:
    """Raise ValidationError for a failed result, else return its value."""
    ok, message = result
    if not ok:
        logger.warning("Parameter validation failed", field=field, reason=message)
        raise ValidationError(message, field=field)
    return message
