"""Kalkia configuration.

This package contains:
- settings: Environment variables and configuration
- errors: Custom exceptions and error codes
"""

from kalkia.config.settings import settings
from kalkia.config.errors import (
    KalkiaError,
    ValidationError,
    NotFoundError,
    DataIntegrityError,
    ConfigurationError,
    ComputationError,
)

__all__ = [
    "settings",
    "KalkiaError",
    "ValidationError",
    "NotFoundError",
    "DataIntegrityError",
    "ConfigurationError",
    "ComputationError",
]
