"""
Obelisk Common Module

Shared infrastructure: configuration, error taxonomy, record schemas and the
persistent store.
"""

from .config import ObeliskConfig, load_config
from .database import Database
from .errors import ErrorReason, ObeliskError, Result

__all__ = [
    "ObeliskConfig",
    "load_config",
    "Database",
    "ErrorReason",
    "ObeliskError",
    "Result",
]
