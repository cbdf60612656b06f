"""Centralized configuration loading for kubewire.

This module provides utilities for loading and accessing configuration from
kubewire.json with support for environment variable fallbacks and default values.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from kubewire.core.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "kubewire.json"
CONFIG_PATH_ENV = "KUBEWIRE_CONFIG"


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from JSON file.

    Returns empty dict if file doesn't exist or is invalid.

    Args:
        config_path: Path to the config file (default: $KUBEWIRE_CONFIG or "kubewire.json")

    Returns:
        Configuration dictionary, or empty dict if file not found/invalid
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH)
    path = Path(config_path)

    if not path.exists():
        return {}

    try:
        with open(path, "r") as f:
            config = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        # Fall back to defaults rather than refusing to run
        logger.warning(f"Ignoring unreadable config file {path}: {e}")
        return {}

    if not isinstance(config, dict):
        logger.warning(f"Ignoring config file {path}: top level must be an object")
        return {}
    return config


def get_config_value(
    keys: List[str], default: Any = None, config: Optional[Dict[str, Any]] = None
) -> Any:
    """Get nested configuration value with fallback to environment variable.

    Supports nested keys like ["kubectl", "binary"] or ["schema", "kubernetes_version"].
    Also checks environment variables as fallback (e.g., KUBECTL_BINARY for kubectl.binary).

    Args:
        keys: List of keys to traverse (e.g., ["kubectl", "binary"])
        default: Default value if key not found
        config: Optional config dict (uses load_config() if not provided)

    Returns:
        Configuration value, or default if not found
    """
    if config is None:
        config = load_config()

    value = config
    for key in keys:
        if isinstance(value, dict):
            value = value.get(key)
            if value is None:
                break
        else:
            value = None
            break

    if value is not None:
        return value

    env_key = "_".join(k.upper() for k in keys)
    env_value = os.environ.get(env_key)
    if env_value is not None:
        return env_value

    return default


def get_bool(keys: List[str], default: bool = False, config: Optional[Dict[str, Any]] = None) -> bool:
    """Boolean lookup; environment values "1", "true", "yes" count as true."""
    value = get_config_value(keys, default=default, config=config)
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def get_float(keys: List[str], default: float, config: Optional[Dict[str, Any]] = None) -> float:
    """Numeric lookup.

    Raises:
        ConfigError: If the configured value is not a number
    """
    value = get_config_value(keys, default=default, config=config)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{'.'.join(keys)} must be a number, got {value!r}") from e
