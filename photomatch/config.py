"""Configuration loading.

Settings are read from a YAML file (the repository's ``config.yaml`` by
default) and merged over the built-in defaults below, so a config file only
needs to list what it changes.
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"

DEFAULT_CONFIG: Dict = {
    "calibration": {
        "axes": "XY",
        "inverted": {"x": False, "y": False, "z": False},
        "scale": 1.0,
        "focal_length": None,
    },
    "logging": {
        "level": "INFO",
        "file": None,
    },
}


def merge_config(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into a copy of base.

    Args:
        base: Default configuration
        override: Values taking precedence; nested dictionaries are merged

    Returns:
        New merged configuration dictionary
    """
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(config_path: Optional[Union[str, Path]] = None) -> Dict:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file, defaults to the repository's
            config.yaml

    Returns:
        Configuration dictionary merged over the defaults
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r") as f:
        loaded = yaml.safe_load(f) or {}

    if not isinstance(loaded, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping, got {type(loaded).__name__}")

    logger.debug(f"Loaded configuration from {config_path}")
    return merge_config(DEFAULT_CONFIG, loaded)
