"""
Configuration management for pattern-sync.

This module handles loading, validating, and providing access to the
application configuration stored in config.yaml.

The configuration file contains:
    - Remote store location (base URL, API prefix, request timeouts)
    - Session token storage location and refresh margin
    - Autosave behavior (enabled, debounce interval, change polling interval)
    - Editor route prefix used to parse navigable paths
    - Log directory and console verbosity

Configuration File Location:
    By default config.yaml is read from the current working directory.
    An explicit path can be passed with `psync --config <path>`.

Environment Overrides:
    Values from a .env file (loaded with python-dotenv) or the process
    environment take precedence over the YAML file:
        PATTERN_SYNC_BASE_URL    -> remote.base_url
        PATTERN_SYNC_TOKEN_FILE  -> auth.token_file

Example config.yaml:
    remote:
      base_url: "https://patterns.example.com"
      api_prefix: "/api"
      timeout: 15
      initial_load_timeout: 8

    auth:
      token_file: "~/.pattern-sync/session.json"
      refresh_margin: 600

    autosave:
      enabled: true
      interval: 3.0
      poll_interval: 2.0

    routing:
      prefix: "/repl"

    logging:
      directory: "~/.pattern-sync/logs"
      level: "INFO"
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from pattern_sync.core.exceptions import ConfigError


# Default configuration file name (in current working directory)
CONFIG_FILENAME = "config.yaml"

ENV_BASE_URL = "PATTERN_SYNC_BASE_URL"
ENV_TOKEN_FILE = "PATTERN_SYNC_TOKEN_FILE"

DEFAULT_TOKEN_FILE = "~/.pattern-sync/session.json"
DEFAULT_LOG_DIRECTORY = "~/.pattern-sync/logs"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass(frozen=True)
class RemoteConfig:
    """
    Remote store connection settings.

    Attributes:
        base_url: Origin of the remote persistence API, without trailing slash.
                  Example: "https://patterns.example.com"
        api_prefix: Path prefix prepended to every endpoint. Default: "/api".
        timeout: Per-request timeout in seconds. Default: 15.
        initial_load_timeout: Upper bound in seconds for the first full
                  library load. When exceeded the store is marked initialized
                  with an error instead of blocking. Default: 8.
    """
    base_url: str
    api_prefix: str = "/api"
    timeout: float = 15.0
    initial_load_timeout: float = 8.0


@dataclass(frozen=True)
class AuthConfig:
    """
    Session storage settings.

    Attributes:
        token_file: Path to the JSON token file (~ expanded).
        refresh_margin: Refresh the access token when it expires within
                        this many seconds. Default: 600 (10 minutes).
    """
    token_file: Path
    refresh_margin: int = 600


@dataclass(frozen=True)
class AutosaveConfig:
    """
    Autosave behavior settings.

    Attributes:
        enabled: Master switch. When False, scheduling is a no-op and
                 only manual saves reach the server.
        interval: Debounce interval in seconds between the last detected
                  edit and the save. Default: 3.0.
        poll_interval: How often the change detector reads the editor
                       buffer, in seconds. Default: 2.0.
    """
    enabled: bool = True
    interval: float = 3.0
    poll_interval: float = 2.0


@dataclass(frozen=True)
class RoutingConfig:
    """
    Navigable path settings.

    Attributes:
        prefix: Editor route prefix stripped before resolving a track.
                Default: "/repl".
    """
    prefix: str = "/repl"


@dataclass(frozen=True)
class LoggingConfig:
    """
    Logging settings.

    Attributes:
        directory: Directory receiving log files (~ expanded).
        level: Console log level name.
    """
    directory: Path
    level: str = "INFO"


@dataclass(frozen=True)
class Config:
    """
    Complete application configuration.

    This is the main configuration object that aggregates all configuration
    sections. It is created by load_config() and should be treated as
    immutable (frozen dataclass).

    Example:
        config = load_config()
        print(f"Remote: {config.remote.base_url}")
        print(f"Autosave every {config.autosave.interval}s")
    """
    remote: RemoteConfig
    auth: AuthConfig
    autosave: AutosaveConfig
    routing: RoutingConfig
    logging: LoggingConfig


def load_config(config_path: Path | None = None) -> Config:
    """
    Load and validate configuration from config.yaml.

    Args:
        config_path: Optional explicit path to config file.
                     If None, looks for config.yaml in current working directory.

    Returns:
        Config: A frozen dataclass containing all configuration values.

    Raises:
        ConfigError: If the config file is not found, has invalid YAML syntax,
                     is missing required fields, or contains invalid values.

    Behavior:
        1. Load .env into the process environment (existing vars win)
        2. Locate config file (explicit path or CWD/config.yaml)
        3. Read and parse YAML content
        4. Apply environment overrides
        5. Validate each section and apply defaults
        6. Create and return frozen Config object
    """
    load_dotenv()

    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME

    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}",
            details={"file_path": str(config_path)}
        )

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            content = f.read()
    except IOError as e:
        raise ConfigError(
            f"Failed to read configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    try:
        raw_config = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML syntax in configuration file: {e}",
            details={"file_path": str(config_path), "original_error": str(e)}
        ) from e

    # An empty file is allowed when the environment supplies the base URL
    if raw_config is None:
        raw_config = {}

    if not isinstance(raw_config, dict):
        raise ConfigError(
            "Configuration file must contain a YAML dictionary",
            details={"file_path": str(config_path)}
        )

    return config_from_dict(raw_config)


def config_from_dict(raw_config: dict[str, Any]) -> Config:
    """
    Build a Config from an already-parsed dictionary.

    Split out of load_config() so tests and embedding applications can
    configure the library without writing a file.

    Args:
        raw_config: Dictionary with the same structure as config.yaml.

    Returns:
        Config: Validated configuration with defaults applied.

    Raises:
        ConfigError: If a section is not a dictionary or a value is invalid.
    """
    for section in ("remote", "auth", "autosave", "routing", "logging"):
        value = raw_config.get(section)
        if value is not None and not isinstance(value, dict):
            raise ConfigError(
                f"Section '{section}' must be a dictionary",
                details={"section": section}
            )

    return Config(
        remote=_parse_remote_config(raw_config.get("remote") or {}),
        auth=_parse_auth_config(raw_config.get("auth") or {}),
        autosave=_parse_autosave_config(raw_config.get("autosave") or {}),
        routing=_parse_routing_config(raw_config.get("routing") or {}),
        logging=_parse_logging_config(raw_config.get("logging") or {}),
    )


def _parse_remote_config(remote_section: dict[str, Any]) -> RemoteConfig:
    """
    Parse and validate the remote configuration section.

    The base URL may come from PATTERN_SYNC_BASE_URL instead of the file.

    Raises:
        ConfigError: If base_url is missing/empty or a timeout is not positive.
    """
    base_url = os.environ.get(ENV_BASE_URL) or remote_section.get("base_url", "")

    if not isinstance(base_url, str) or not base_url.strip():
        raise ConfigError(
            "'remote.base_url' must be a non-empty string",
            details={"field": "remote.base_url"}
        )

    api_prefix = remote_section.get("api_prefix", "/api")
    if not isinstance(api_prefix, str):
        raise ConfigError(
            "'remote.api_prefix' must be a string",
            details={"field": "remote.api_prefix"}
        )
    api_prefix = api_prefix.strip().rstrip("/")
    if api_prefix and not api_prefix.startswith("/"):
        api_prefix = "/" + api_prefix

    return RemoteConfig(
        base_url=base_url.strip().rstrip("/"),
        api_prefix=api_prefix,
        timeout=_positive_number(remote_section, "timeout", 15.0, "remote"),
        initial_load_timeout=_positive_number(
            remote_section, "initial_load_timeout", 8.0, "remote"
        ),
    )


def _parse_auth_config(auth_section: dict[str, Any]) -> AuthConfig:
    """
    Parse the auth configuration section.

    Raises:
        ConfigError: If token_file is not a string or refresh_margin is negative.
    """
    token_file = os.environ.get(ENV_TOKEN_FILE) or auth_section.get("token_file", DEFAULT_TOKEN_FILE)
    if not isinstance(token_file, str) or not token_file.strip():
        raise ConfigError(
            "'auth.token_file' must be a non-empty string",
            details={"field": "auth.token_file"}
        )

    refresh_margin = auth_section.get("refresh_margin", 600)
    if isinstance(refresh_margin, bool) or not isinstance(refresh_margin, int) or refresh_margin < 0:
        raise ConfigError(
            "'auth.refresh_margin' must be a non-negative integer",
            details={"field": "auth.refresh_margin", "value": refresh_margin}
        )

    return AuthConfig(
        token_file=Path(token_file.strip()).expanduser(),
        refresh_margin=refresh_margin,
    )


def _parse_autosave_config(autosave_section: dict[str, Any]) -> AutosaveConfig:
    """
    Parse the autosave configuration section.

    Raises:
        ConfigError: If enabled is not a boolean or an interval is not positive.
    """
    enabled = autosave_section.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ConfigError(
            "'autosave.enabled' must be true or false",
            details={"field": "autosave.enabled", "value": enabled}
        )

    return AutosaveConfig(
        enabled=enabled,
        interval=_positive_number(autosave_section, "interval", 3.0, "autosave"),
        poll_interval=_positive_number(autosave_section, "poll_interval", 2.0, "autosave"),
    )


def _parse_routing_config(routing_section: dict[str, Any]) -> RoutingConfig:
    prefix = routing_section.get("prefix", "/repl")
    if not isinstance(prefix, str):
        raise ConfigError(
            "'routing.prefix' must be a string",
            details={"field": "routing.prefix"}
        )
    prefix = prefix.strip().rstrip("/")
    if prefix and not prefix.startswith("/"):
        prefix = "/" + prefix
    return RoutingConfig(prefix=prefix)


def _parse_logging_config(logging_section: dict[str, Any]) -> LoggingConfig:
    directory = logging_section.get("directory", DEFAULT_LOG_DIRECTORY)
    if not isinstance(directory, str) or not directory.strip():
        raise ConfigError(
            "'logging.directory' must be a non-empty string",
            details={"field": "logging.directory"}
        )

    level = str(logging_section.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ConfigError(
            f"'logging.level' must be one of {', '.join(_LOG_LEVELS)}",
            details={"field": "logging.level", "value": level}
        )

    return LoggingConfig(
        directory=Path(directory.strip()).expanduser(),
        level=level,
    )


def _positive_number(
    section: dict[str, Any],
    key: str,
    default: float,
    section_name: str
) -> float:
    """
    Read a positive int/float field, applying the default when absent.

    Raises:
        ConfigError: If the value is not a number or is not > 0.
    """
    value = section.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(
            f"'{section_name}.{key}' must be a positive number",
            details={"field": f"{section_name}.{key}", "value": value}
        )
    return float(value)
