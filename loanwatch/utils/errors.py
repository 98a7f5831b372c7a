"""
Error taxonomy shared by the services and mapped to HTTP codes in main.py.
"""


class MonitoringError(Exception):
    """Base class for errors raised by the monitoring services."""


class NotFoundError(MonitoringError, LookupError):
    """Referenced alert, report or user does not exist."""


class ValidationError(MonitoringError, ValueError):
    """Malformed or missing required fields. Raised before any write."""


class AlertAlreadyResolvedError(ValidationError):
    """Resolution is terminal. A resolved alert cannot be resolved again."""


class TransientStoreError(MonitoringError):
    """Read/write failure against the database."""
