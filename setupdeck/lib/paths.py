"""
XDG-compliant directory utilities for SetupDeck.
"""

import os
from pathlib import Path


def get_xdg_config_home() -> Path:
    """Get XDG config home directory."""
    xdg_config = os.environ.get('XDG_CONFIG_HOME')
    if xdg_config:
        return Path(xdg_config)
    return Path.home() / '.config'


def get_xdg_data_home() -> Path:
    """Get XDG data home directory."""
    xdg_data = os.environ.get('XDG_DATA_HOME')
    if xdg_data:
        return Path(xdg_data)
    return Path.home() / '.local' / 'share'


def get_setupdeck_config_dir() -> Path:
    """Get SetupDeck configuration directory (not created)."""
    return get_xdg_config_home() / 'setupdeck'


def get_setupdeck_data_dir() -> Path:
    """Get SetupDeck data directory (not created)."""
    return get_xdg_data_home() / 'setupdeck'


def get_default_config_file() -> Path:
    """Get the default YAML config file path."""
    return get_setupdeck_config_dir() / 'config.yaml'
