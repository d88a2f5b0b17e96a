"""
Core package: settings, logging setup and the ordering exception hierarchy.
"""

from tableside.core.config import (
    ChangeFeedBackend,
    EnvironmentMode,
    Settings,
    StoreBackend,
    get_settings,
    setup_logging,
)
from tableside.core.exceptions import BusinessRuleError, OrderingError, RepositoryError

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "StoreBackend",
    "ChangeFeedBackend",
    "OrderingError",
    "BusinessRuleError",
    "RepositoryError",
]
