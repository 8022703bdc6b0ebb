import logging
import os

from dmg_errors import ConfigError

logger = logging.getLogger(__name__)

LICENSE_NAMES = ('license.txt', 'license.rtf')
LICENSE_LANGUAGE = 'en_US'


def find_license(search_dir, explicit=None):
    """Return the license file to embed, or None when there is nothing to add."""
    if explicit:
        if not os.path.isfile(explicit):
            raise ConfigError(f"License file not found: {explicit}")
        return explicit

    try:
        entries = os.listdir(search_dir)
    except FileNotFoundError:
        return None

    # Prefer plain text, and match the file name case-insensitively
    by_name = {entry.lower(): entry for entry in sorted(entries)}
    for name in LICENSE_NAMES:
        if name in by_name:
            path = os.path.join(search_dir, by_name[name])
            if os.path.isfile(path):
                return path
    return None


def license_settings(path):
    """dmgbuild `license` setting for a single-language agreement."""
    logger.debug(f"Adding software license agreement from {path}")
    return {
        'default-language': LICENSE_LANGUAGE,
        'licenses': {LICENSE_LANGUAGE: path},
    }
