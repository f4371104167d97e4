"""Configuration loader with YAML parsing and environment variable substitution."""

import os
import re
from pathlib import Path

import yaml

from .schema import ChatSyncConfig


def substitute_env_vars(text: str) -> str:
    """
    Replace ${VAR_NAME} patterns with environment variable values.

    Args:
        text: Text containing ${VAR_NAME} patterns

    Returns:
        Text with environment variables substituted

    Raises:
        ValueError: If a referenced environment variable is not found
    """

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ValueError(f"Environment variable {var_name} not found")
        return value

    return re.sub(r"\$\{([^}]+)\}", replacer, text)


def load_config(path: Path) -> ChatSyncConfig:
    """
    Load configuration from YAML file with environment variable substitution.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated ChatSyncConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If environment variables are missing or config is invalid
        ValidationError: If config doesn't match schema
    """
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with path.open() as f:
        raw_yaml = f.read()

    yaml_with_env = substitute_env_vars(raw_yaml)

    config_dict = yaml.safe_load(yaml_with_env) or {}

    config = ChatSyncConfig.model_validate(config_dict)

    validate_config(config)

    return config


def validate_config(config: ChatSyncConfig) -> None:
    """
    Perform additional cross-field validation.

    Args:
        config: Configuration to validate

    Raises:
        ValueError: If provider-specific config is missing
    """
    if config.store.provider == "supabase" and config.store.supabase is None:
        raise ValueError("Supabase store selected but supabase config missing")

    if config.feeds.reconnect_min_wait > config.feeds.reconnect_max_wait:
        raise ValueError("feeds.reconnect_min_wait must not exceed feeds.reconnect_max_wait")

    if config.alerts.every_message and not config.alerts.enabled:
        raise ValueError("alerts.every_message requires alerts.enabled")
