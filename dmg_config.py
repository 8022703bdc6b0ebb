import logging
import os

import tomli

from create_icns import DEFAULT_BASE_ICON
from dmg_errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = 'create-dmg.toml'
PYPROJECT_FILENAME = 'pyproject.toml'
PYPROJECT_TABLE = 'create-dmg'

MAX_TITLE_LENGTH = 27

DEFAULTS = {
    'overwrite': False,
    'identity': None,
    'dmg_title': None,
    'background': None,
    'license': None,
    'width': 660,
    'height': 400,
    'app_x': 180,
    'app_y': 170,
    'folder_x': 480,
    'folder_y': 170,
    'window_x': 500,
    'window_y': 400,
    'icon_size': 160,
    'base_icon': DEFAULT_BASE_ICON,
    'fileicon': 'fileicon',
}

# Keys whose default is None still hold text when set
STRING_KEYS = {'identity', 'dmg_title', 'background', 'license', 'base_icon', 'fileicon'}


def _check_value(key, value, source):
    if key not in DEFAULTS:
        raise ConfigError(f"Unknown setting `{key}` in {source}")
    if key in STRING_KEYS:
        expected = str
    else:
        expected = type(DEFAULTS[key])
    # bool is an int subclass, reject it for numeric settings
    if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
        raise ConfigError(f"Setting `{key}` in {source} must be of type {expected.__name__}")
    return value


class DmgOptions:
    """All user-tunable settings for one run."""

    def __init__(self, **settings):
        values = dict(DEFAULTS)
        for key, value in settings.items():
            values[key] = _check_value(key, value, 'options')
        for key, value in values.items():
            setattr(self, key, value)


def find_config(search_dir):
    """Locate a config file in search_dir. Returns (path, table name) or (None, None)."""
    path = os.path.join(search_dir, CONFIG_FILENAME)
    if os.path.isfile(path):
        return path, None
    path = os.path.join(search_dir, PYPROJECT_FILENAME)
    if os.path.isfile(path):
        return path, PYPROJECT_TABLE
    return None, None


def load_config(path, table=None):
    """Read settings from a TOML file, optionally from its [tool.<table>] section."""
    try:
        with open(path, 'rb') as f:
            data = tomli.load(f)
    except (tomli.TOMLDecodeError, IOError) as e:
        raise ConfigError(f"Error reading {path}: {e}")

    if table:
        data = data.get('tool', {}).get(table, {})
        if not isinstance(data, dict):
            raise ConfigError(f"[tool.{table}] in {path} must be a table")

    settings = {}
    for key, value in data.items():
        key = key.replace('-', '_')
        settings[key] = _check_value(key, value, path)
    return settings


def resolve_options(search_dir, config_path=None, **overrides):
    """
    Merge defaults, the config file and command line overrides, in that order.
    Overrides set to None are treated as not given.
    """
    table = None
    if config_path is None:
        config_path, table = find_config(search_dir)

    settings = {}
    if config_path:
        settings.update(load_config(config_path, table))
        logger.debug(f"Loaded settings from {config_path}")

    settings.update({key: value for key, value in overrides.items() if value is not None})
    return DmgOptions(**settings)
