"""
YAML/JSON descriptor loading utilities.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

YAML_SUFFIXES = {".yaml", ".yml"}


def is_yaml_path(file_path: Path) -> bool:
    """Whether the file should be parsed as YAML (JSON otherwise)."""
    return file_path.suffix.lower() in YAML_SUFFIXES


def load_structured_file(file_path: Path) -> Any:
    """Load a YAML or JSON file, choosing the parser from the suffix.

    Raises:
        OSError: File cannot be read
        yaml.YAMLError / json.JSONDecodeError: File cannot be parsed
    """
    text = file_path.read_text(encoding="utf-8")
    if is_yaml_path(file_path):
        return yaml.safe_load(text)
    return json.loads(text)


def load_yaml_file(file_path: Path) -> Optional[Dict[str, Any]]:
    """Load YAML file safely, returning None when missing or unreadable."""
    if not file_path.exists():
        return None

    try:
        with open(file_path, 'r', encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Error loading YAML from {file_path}: {e}")
        return None


def merge_yaml_configs(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge two YAML configurations, with override taking precedence."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            # Recursive merge for nested dicts
            result[key] = merge_yaml_configs(result[key], value)
        else:
            result[key] = value

    return result

