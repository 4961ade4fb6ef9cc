"""
Configuration loading and logging setup.

Settings live in a config.json with one section per concern; anything the
file leaves out comes from DEFAULT_CONFIG.
"""

import copy
import json
import logging
from typing import Optional

from nelko.image.text import Orientation
from nelko.printer.exceptions import InvalidConfigurationError
from nelko.tspl.labels import get_label_size

logger = logging.getLogger(__name__)

CONFIG_PATH = 'config.json'

LOG_FORMAT = '%(asctime)s - %(name)s - [%(threadName)s] - %(levelname)s - %(message)s'

DEFAULT_CONFIG = {
    'printer': {
        'rfcomm_channel': 1,
        'invert_on_wire': True,
        'preferred_names': ['nelko', 'p21'],
        'max_workers': 2,
    },
    'label': {
        'size': '14x40mm',
        'density': 10,
        'copies': 1,
    },
    'image_settings': {
        'threshold': 128,
        'invert': False,
    },
    'text_settings': {
        'font_size': 24,
        'orientation': 'horizontal',
        'invert': False,
        'word_break_only': False,
        'font_path': None,
    },
    'logging': {
        'level': 'INFO',
    },
}


def _merge(base: dict, overrides: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def validate_config(config: dict):
    """
    Raises:
        InvalidConfigurationError: If a value cannot be used
    """
    get_label_size(config['label']['size'])

    orientation = config['text_settings']['orientation']
    try:
        Orientation(orientation)
    except ValueError:
        raise InvalidConfigurationError(
            f"Unknown text orientation: {orientation}",
            context={'allowed': ", ".join(o.value for o in Orientation)}
        )

    threshold = config['image_settings']['threshold']
    if not isinstance(threshold, int) or not 0 <= threshold <= 255:
        raise InvalidConfigurationError(
            f"Threshold must be an integer 0-255, got {threshold!r}"
        )


def load_config(config_path: Optional[str] = None) -> dict:
    """
    Load configuration from file.

    Args:
        config_path: Path to a JSON config file; None returns the defaults

    Returns:
        Configuration dictionary

    Raises:
        InvalidConfigurationError: If the file cannot be read or holds bad values
    """
    if config_path is None:
        config = copy.deepcopy(DEFAULT_CONFIG)
    else:
        try:
            with open(config_path, 'r') as f:
                loaded = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"[Config] Failed to load configuration: {e}")
            raise InvalidConfigurationError(
                f"Failed to load configuration from {config_path}",
                context={'path': config_path, 'error': str(e)}
            )
        if not isinstance(loaded, dict):
            raise InvalidConfigurationError(
                f"Configuration in {config_path} must be a JSON object",
                context={'path': config_path}
            )
        config = _merge(DEFAULT_CONFIG, loaded)
        logger.debug(f"[Config] Configuration loaded from {config_path}")

    validate_config(config)
    return config


def setup_logging(level='INFO'):
    """Configure root logging; level is a name like 'DEBUG' or a logging constant."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        force=True  # Ensure this overrides any prior configuration
    )
    logger.info(f"Logging level set to: {logging.getLevelName(level)}")
