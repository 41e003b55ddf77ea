"""
Configuration Module
====================

Centralized configuration management using Pydantic Settings.
Loads from environment variables with type validation and defaults.

Usage:
    from repstate.config import settings

    print(settings.environment)
    print(settings.protocol.epoch_tree_depth)
"""

from repstate.config.settings import (
    DatastoreBackend,
    Environment,
    LedgerMode,
    LogLevel,
    ProtocolSettings,
    ProverMode,
    Settings,
    SyncSettings,
    get_settings,
)


# Global settings instance (singleton)
settings = get_settings()

__all__ = [
    "Settings",
    "ProtocolSettings",
    "SyncSettings",
    "get_settings",
    "settings",
    "Environment",
    "LogLevel",
    "LedgerMode",
    "ProverMode",
    "DatastoreBackend",
]
