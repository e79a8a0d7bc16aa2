"""
Core module for pattern-sync.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading and validation
    - logger: Logging system with multiple outputs
    - events: Named event notifications emitted by the sync layer

Usage:
    from pattern_sync.core import (
        Config, load_config,
        setup_logging, get_logger,
        EventEmitter, Events,
        PatternSyncError, RemoteError,
    )
"""

from pattern_sync.core.config import (
    AuthConfig,
    AutosaveConfig,
    Config,
    LoggingConfig,
    RemoteConfig,
    RoutingConfig,
    config_from_dict,
    load_config,
)
from pattern_sync.core.events import EventEmitter, Events
from pattern_sync.core.exceptions import (
    AuthenticationError,
    ConfigError,
    ConsistencyError,
    NotFoundError,
    PatternSyncError,
    RemoteError,
    ValidationError,
)
from pattern_sync.core.logger import (
    get_logger,
    log_save_failure,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    # Config
    "Config",
    "RemoteConfig",
    "AuthConfig",
    "AutosaveConfig",
    "RoutingConfig",
    "LoggingConfig",
    "load_config",
    "config_from_dict",
    # Events
    "EventEmitter",
    "Events",
    # Exceptions
    "PatternSyncError",
    "ConfigError",
    "AuthenticationError",
    "RemoteError",
    "NotFoundError",
    "ValidationError",
    "ConsistencyError",
    # Logger
    "setup_logging",
    "get_logger",
    "log_save_failure",
    "shutdown_logging",
]
