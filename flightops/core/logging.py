"""Logging configuration for the operations scripts.

This module provides the logging used by every script:
- Structured logging with JSON formatting
- Azure Application Insights export when a connection string is configured
- Correlation (run) ID tracking across the steps of one operation
- Duration logging for individual functions

Log records go to stderr as JSON; human-readable status output is printed
to stdout by the scripts themselves.
"""

import logging
import json
import sys
import time
import traceback
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from contextvars import ContextVar
from functools import wraps
from opencensus.ext.azure.log_exporter import AzureLogHandler
from pythonjsonlogger import jsonlogger

from flightops.core.config import get_settings

SERVICE_NAME = "flightops"

# Context variables for the current operation run
correlation_id: ContextVar[str] = ContextVar('correlation_id', default='')
current_environment: ContextVar[str] = ContextVar('current_environment', default='')

class StructuredLogger:
    """Custom logger that ensures consistent structured logging."""

    def __init__(self, name: str):
        """Initialize structured logger with given name."""
        self.logger = logging.getLogger(name)
        self.service_name = SERVICE_NAME

    def _build_log_dict(
        self,
        message: str,
        level: str,
        additional_fields: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Build structured log dictionary with common fields."""
        log_dict = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'service': self.service_name,
            'environment': current_environment.get() or get_settings().ENVIRONMENT.value,
            'level': level,
            'message': message,
            'correlation_id': correlation_id.get(),
        }

        if additional_fields:
            log_dict.update(additional_fields)

        return log_dict

    def _emit(self, level: int, log_dict: Dict[str, Any]):
        self.logger.log(level, json.dumps(log_dict, default=str))

    def info(self, message: str, **kwargs):
        """Log info level message with structured data."""
        self._emit(logging.INFO, self._build_log_dict(message, 'INFO', kwargs))

    def error(self, message: str, error: Optional[Exception] = None, **kwargs):
        """Log error level message with structured data and optional exception."""
        log_dict = self._build_log_dict(message, 'ERROR', kwargs)

        if error:
            log_dict.update({
                'error_type': error.__class__.__name__,
                'error_message': str(error),
                'error_trace': self._get_traceback(error)
            })

        self._emit(logging.ERROR, log_dict)

    def warning(self, message: str, **kwargs):
        """Log warning level message with structured data."""
        self._emit(logging.WARNING, self._build_log_dict(message, 'WARNING', kwargs))

    def debug(self, message: str, **kwargs):
        """Log debug level message with structured data."""
        self._emit(logging.DEBUG, self._build_log_dict(message, 'DEBUG', kwargs))

    @staticmethod
    def _get_traceback(error: Exception) -> str:
        """Get formatted traceback from exception."""
        return ''.join(traceback.format_exception(
            type(error),
            error,
            error.__traceback__
        ))

class CustomJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['timestamp'] = record.created
        log_record['level'] = record.levelname
        log_record['logger'] = record.name

def setup_logging(debug: bool = False):
    """Configure logging for the operations scripts."""
    settings = get_settings()
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug or settings.DEBUG else logging.INFO)

    # Scripts may be invoked several times in one process (tests, orchestration)
    for handler in list(root.handlers):
        if getattr(handler, '_flightops', False):
            root.removeHandler(handler)

    # JSON handler
    json_handler = logging.StreamHandler(sys.stderr)
    json_handler.setFormatter(CustomJsonFormatter())
    json_handler._flightops = True
    root.addHandler(json_handler)

    # Azure Application Insights if available
    connection_string = settings.AZURE.APPLICATIONINSIGHTS_CONNECTION_STRING
    if connection_string:
        azure_handler = AzureLogHandler(connection_string=connection_string)
        azure_handler.setFormatter(CustomJsonFormatter())
        azure_handler._flightops = True
        root.addHandler(azure_handler)

    # The Azure SDK logs every HTTP request at INFO
    logging.getLogger('azure').setLevel(logging.WARNING)

def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name)

def new_correlation_id() -> str:
    """Start a new run and return its correlation ID."""
    value = str(uuid.uuid4())
    correlation_id.set(value)
    return value

# Performance monitoring decorator
def monitor_performance(name: str = None):
    """Decorator for logging function duration."""
    def decorator(func):
        @wraps(func)
        def wrapped(*args, **kwargs):
            logger = get_logger(func.__module__)
            start_time = time.time()

            try:
                result = func(*args, **kwargs)
                process_time = (time.time() - start_time) * 1000

                logger.info(
                    f"Function {name or func.__name__} completed",
                    process_time_ms=round(process_time, 2)
                )

                return result
            except Exception as e:
                process_time = (time.time() - start_time) * 1000
                logger.error(
                    f"Function {name or func.__name__} failed",
                    error=e,
                    process_time_ms=round(process_time, 2)
                )
                raise

        return wrapped
    return decorator
