"""
Core module initialization.
Exports configuration, logging utilities and domain errors.
"""

from foodnow.core.config import get_settings, setup_logging, Settings, EnvironmentMode
from foodnow.core.exceptions import (
    FoodNowError,
    InvalidTransition,
    NotFoundError,
    ConflictError,
    NetworkError,
    InsufficientBalance,
    NoQualifyingTier,
    RatingNotAllowed,
    DuplicateRating,
    ValidationFailed,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "FoodNowError",
    "InvalidTransition",
    "NotFoundError",
    "ConflictError",
    "NetworkError",
    "InsufficientBalance",
    "NoQualifyingTier",
    "RatingNotAllowed",
    "DuplicateRating",
    "ValidationFailed",
]
