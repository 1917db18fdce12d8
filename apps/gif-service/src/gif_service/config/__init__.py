"""
Configuration module for gif service.

This module provides Pydantic-based configuration
loaded from environment variables.

Exports:
    ServiceSettings: Server, upstream, pipeline and stage settings
    get_settings: Process-wide settings accessor
"""

from gif_service.config.settings import (
    ServiceSettings,
    get_settings,
    reset_settings,
    set_settings,
)

__all__ = [
    "ServiceSettings",
    "get_settings",
    "reset_settings",
    "set_settings",
]
