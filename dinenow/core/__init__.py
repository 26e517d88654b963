"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from dinenow.core.config import get_settings, Settings, EnvironmentMode, RecomputeMode
from dinenow.core.exceptions import (
    DineNowError,
    ValidationError,
    NotFoundError,
    UnavailableError,
    InvalidTransitionError,
    ConflictError,
    StorageError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "RecomputeMode",
    "DineNowError",
    "ValidationError",
    "NotFoundError",
    "UnavailableError",
    "InvalidTransitionError",
    "ConflictError",
    "StorageError",
]
