"""
Core infrastructure for the dispatch engine.

This module provides:
- Config: Configuration management
- Errors: Business error taxonomy
- Logging: structlog setup
"""

from .config import ConfigManager, get_config
from .errors import (
    FreightDispatchError,
    IdentifierConflict,
    InvalidSearch,
    InvalidTransition,
    NotFound,
    SequenceUnavailable,
    StoreUnavailable,
    ValidationError,
)
from .logging import configure_logging

__all__ = [
    "ConfigManager",
    "get_config",
    "configure_logging",
    "FreightDispatchError",
    "IdentifierConflict",
    "InvalidSearch",
    "InvalidTransition",
    "NotFound",
    "SequenceUnavailable",
    "StoreUnavailable",
    "ValidationError",
]
