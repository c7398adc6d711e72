"""Core module for configuration and utilities."""

from bkash_gateway.core.config import settings

__all__ = [
    "settings",
]
