"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from backoffice.core.config import get_settings, Settings, EnvironmentMode
from backoffice.core.exceptions import (
    BackofficeError,
    NotFoundError,
    ValidationError,
    InvalidTransitionError,
    TerminalStateError,
    OrderNotReadyError,
    ConflictError,
    SubscriptionDeniedError,
    DispatchFailure,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "BackofficeError",
    "NotFoundError",
    "ValidationError",
    "InvalidTransitionError",
    "TerminalStateError",
    "OrderNotReadyError",
    "ConflictError",
    "SubscriptionDeniedError",
    "DispatchFailure",
]
