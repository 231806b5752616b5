"""
Configuration management module for the household ledger.

This module handles loading and saving configuration values from
config.yaml, merging them over the built-in defaults so every engine
module can look up its tunables without caring whether a file exists.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    'ledger': {
        'chart_days': 30,
        'default_budget_start_day': 1,
        'all_users_sentinel': 'all',
        'temp_id_prefix': 'temp-',
    },
    'budget': {
        'warning_threshold': 80.0,
        'danger_threshold': 100.0,
    },
    'database': {
        'data_dir': 'data',
        'path': 'ledger.db',
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    },
}

CONFIG_FILE = 'config.yaml'


def _merge_defaults(config: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    """Fill missing keys of ``config`` from ``defaults``, one level of nesting deep."""
    for key, value in defaults.items():
        if key not in config or config[key] is None:
            config[key] = copy.deepcopy(value)
        elif isinstance(value, dict) and isinstance(config[key], dict):
            for sub_key, sub_value in value.items():
                config[key].setdefault(sub_key, sub_value)
    return config


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration from config.yaml file.

    Args:
        config_path: Optional path; defaults to ``config.yaml`` in the working directory

    Returns:
        Configuration dictionary with defaults for missing values
    """
    try:
        path = Path(config_path or CONFIG_FILE)
        if path.exists():
            with open(path, 'r') as f:
                config = yaml.safe_load(f) or {}
        else:
            config = {}

        if not isinstance(config, dict):
            logger.warning("Configuration file %s is not a mapping; using defaults", path)
            config = {}

        config = _merge_defaults(config, DEFAULT_CONFIG)
        logger.debug("Configuration loaded from %s", path)
        return config

    except Exception as e:
        logger.error(f"Error loading configuration: {e}", exc_info=True)
        return copy.deepcopy(DEFAULT_CONFIG)


def save_config(config: Dict[str, Any], config_path: Optional[Union[str, Path]] = None) -> bool:
    """
    Save configuration to config.yaml file.

    Args:
        config: Configuration dictionary to save
        config_path: Optional path; defaults to ``config.yaml``

    Returns:
        True if successful, False otherwise
    """
    try:
        path = Path(config_path or CONFIG_FILE)

        # Read existing config to preserve other settings
        existing_config = {}
        if path.exists():
            with open(path, 'r') as f:
                existing_config = yaml.safe_load(f) or {}

        existing_config.update(config)

        with open(path, 'w') as f:
            yaml.dump(existing_config, f, default_flow_style=False)

        logger.info("Configuration saved to %s", path)
        return True

    except Exception as e:
        logger.error(f"Error saving configuration: {e}", exc_info=True)
        return False


def get_setting(section: str, key: str, default: Any = None, config: Optional[Dict[str, Any]] = None) -> Any:
    """
    Look up ``config[section][key]``, loading the config file when none is passed.

    Args:
        section: Top-level section name (e.g. ``ledger``)
        key: Key inside the section
        default: Value returned when the key is absent
        config: Already-loaded configuration

    Returns:
        Configured value or ``default``
    """
    if config is None:
        config = load_config()
    section_values = config.get(section) or {}
    if not isinstance(section_values, dict):
        return default
    return section_values.get(key, default)


def get_ledger_setting(key: str, default: Any = None, config: Optional[Dict[str, Any]] = None) -> Any:
    """Shorthand for ``get_setting('ledger', key, ...)``."""
    fallback = DEFAULT_CONFIG['ledger'].get(key, default)
    return get_setting('ledger', key, fallback, config=config)
