import io
import plistlib
import struct

import pytest
from PIL import Image

# OSType -> pixel size of the PNG stored under it
PNG_TYPES = {
    b'icp4': 16,
    b'icp5': 32,
    b'icp6': 64,
    b'ic07': 128,
    b'ic08': 256,
    b'ic09': 512,
    b'ic10': 1024,
}


def write_icns(path, variants):
    """Write a minimal .icns holding one solid PNG per OSType in variants (type -> color)."""
    body = b''
    for ostype, color in variants.items():
        size = PNG_TYPES[ostype]
        buffer = io.BytesIO()
        Image.new('RGBA', (size, size), color).save(buffer, 'PNG')
        data = buffer.getvalue()
        body += ostype + struct.pack('>I', len(data) + 8) + data
    with open(path, 'wb') as f:
        f.write(b'icns' + struct.pack('>I', len(body) + 8) + body)
    return str(path)


@pytest.fixture
def make_icns(tmp_path):
    def _make_icns(name, variants):
        return write_icns(tmp_path / name, variants)
    return _make_icns


@pytest.fixture
def make_app(tmp_path):
    def _make_app(name='Lungo', plist=None, icon_variants=None):
        if plist is None:
            plist = {
                'CFBundleName': name,
                'CFBundleShortVersionString': '1.0.0',
                'LSMinimumSystemVersion': '10.11',
            }
        app_path = tmp_path / f'{name}.app'
        resources = app_path / 'Contents' / 'Resources'
        resources.mkdir(parents=True)
        with open(app_path / 'Contents' / 'Info.plist', 'wb') as f:
            plistlib.dump(plist, f)
        if icon_variants:
            icon_name = plist.get('CFBundleIconFile', 'AppIcon').replace('.icns', '')
            write_icns(resources / f'{icon_name}.icns', icon_variants)
        return str(app_path)
    return _make_app
