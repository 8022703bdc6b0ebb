import logging
import os
import plistlib
import subprocess
from xml.parsers.expat import ExpatError

from dmg_errors import MissingBundleError, MissingMetadataError

logger = logging.getLogger(__name__)

PLUTIL = '/usr/bin/plutil'

DEFAULT_MINIMUM_SYSTEM_VERSION = '10.11'

# ULFO (LZFSE) can only be mounted on 10.11 and later
NEW_FORMAT = 'ULFO'
OLD_FORMAT = 'UDZO'


def select_dmg_format(minimum_system_version):
    """Pick the disk image codec from the app's minimum system version."""
    parts = str(minimum_system_version).split('.')
    try:
        minor = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        minor = 0
    return NEW_FORMAT if minor >= 11 else OLD_FORMAT


def _parse_plist(plist_path):
    with open(plist_path, 'rb') as f:
        data = f.read()
    try:
        return plistlib.loads(data)
    except (plistlib.InvalidFileException, ValueError, ExpatError) as e:
        logger.debug(f"plistlib could not parse {plist_path} ({e}), converting with plutil")
    # plutil understands every format Xcode may have written
    result = subprocess.run(
        [PLUTIL, '-convert', 'xml1', '-o', '-', plist_path],
        capture_output=True, check=True
    )
    return plistlib.loads(result.stdout)


class AppInfo:
    """Metadata read from an application bundle's Info.plist."""

    def __init__(self, app_path, plist):
        self.app_path = app_path
        self.plist = plist

    @property
    def name(self):
        return self.plist.get('CFBundleDisplayName') or self.plist.get('CFBundleName')

    @property
    def version(self):
        return self.plist.get('CFBundleShortVersionString') or self.plist.get('CFBundleVersion')

    @property
    def icon_file(self):
        return self.plist.get('CFBundleIconFile')

    @property
    def icon_path(self):
        """Absolute path of the bundle's .icns, or None if it declares no icon."""
        if not self.icon_file:
            return None
        icon_name = self.icon_file
        if icon_name.endswith('.icns'):
            icon_name = icon_name[:-len('.icns')]
        return os.path.join(self.app_path, 'Contents', 'Resources', f'{icon_name}.icns')

    @property
    def minimum_system_version(self):
        value = self.plist.get('LSMinimumSystemVersion')
        if value is not None and len(str(value)) > 0:
            return str(value)
        return DEFAULT_MINIMUM_SYSTEM_VERSION

    @property
    def dmg_format(self):
        return select_dmg_format(self.minimum_system_version)

    @property
    def dmg_filename(self):
        return f"{self.name} {self.version}.dmg"


def read_app_info(app_path):
    """Read and validate the Info.plist of the bundle at app_path."""
    plist_path = os.path.join(app_path, 'Contents', 'Info.plist')
    if not os.path.exists(plist_path):
        raise MissingBundleError(f"Could not find `{os.path.relpath(app_path)}`")

    try:
        plist = _parse_plist(plist_path)
    except FileNotFoundError:
        raise MissingMetadataError(f"Could not parse `{plist_path}` and {PLUTIL} is not available")
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.decode(errors='replace').strip() if e.stderr else ''
        raise MissingMetadataError(f"Could not parse `{plist_path}`: {stderr}")

    info = AppInfo(app_path, plist)
    if not info.name:
        raise MissingMetadataError(
            'The app must have `CFBundleDisplayName` or `CFBundleName` defined in its `Info.plist`.'
        )
    if not info.version:
        raise MissingMetadataError(
            'The app must have `CFBundleShortVersionString` or `CFBundleVersion` defined in its `Info.plist`.'
        )
    return info
