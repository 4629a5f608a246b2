"""
Shared modules for the Surgical Mart POS backend.

This package contains the storage configuration and repository wiring used
across the application and its scripts.
"""

from shared.cosmos_config import (
    COSMOS_ENDPOINT,
    DATABASE_NAME,
    POS_CONTAINERS,
)

__all__ = [
    "COSMOS_ENDPOINT",
    "DATABASE_NAME",
    "POS_CONTAINERS",
]
