import io
import logging
import os
import struct
from concurrent.futures import ThreadPoolExecutor, as_completed

import numpy
from PIL import Image, IcnsImagePlugin

from dmg_errors import IconError

logger = logging.getLogger(__name__)

# Drive icon shipped with macOS
DEFAULT_BASE_ICON = '/System/Library/Extensions/IOStorageFamily.kext/Contents/Resources/Removable.icns'

# (width, height, scale) -> ICNS OSType
VARIANT_TYPES = {
    (16, 16, 1): 'icp4',
    (16, 16, 2): 'ic11',
    (32, 32, 1): 'icp5',
    (32, 32, 2): 'ic12',
    (48, 48, 1): 'ih32',
    (64, 64, 1): 'icp6',
    (128, 128, 1): 'ic07',
    (128, 128, 2): 'ic13',
    (256, 256, 1): 'ic08',
    (256, 256, 2): 'ic14',
    (512, 512, 1): 'ic09',
    (512, 512, 2): 'ic10',
}

# Slots that can hold a PNG. 48px only exists as the legacy RLE ih32 type
PNG_TYPES = {size: ostype for size, ostype in VARIANT_TYPES.items() if ostype != 'ih32'}

BIGGEST_VARIANT = (512, 512, 2)

ICNS_MAGIC = b'icns'
# 4 byte type or magic followed by a 4 byte big-endian length
HEADER_SIZE = 8

# How far the top edge of the app icon is pulled in, as a fraction of its width
PERSPECTIVE_INSET = 0.08
WIDTH_DIVISOR = 1.58
HEIGHT_DIVISOR = 1.82
VERTICAL_OFFSET = 0.063


def variant_name(size):
    return VARIANT_TYPES.get(size, 'x'.join(str(n) for n in size))


def read_icns(path):
    """
    Load every image variant of an .icns file as RGBA, keyed by (width, height, scale)
    """
    try:
        with open(path, 'rb') as f:
            icns = IcnsImagePlugin.IcnsFile(f)
            variants = {}
            for size in icns.itersizes():
                variants[size] = icns.getimage(size).convert('RGBA')
            return variants
    except (OSError, SyntaxError, ValueError) as e:
        raise IconError(f"Could not read icon {path}: {e}")


def write_icns(variants, output_path):
    """
    Write variants as an .icns file with one PNG entry per (width, height, scale)
    """
    body = b''
    for size in sorted(variants):
        buffer = io.BytesIO()
        variants[size].save(buffer, format='PNG')
        data = buffer.getvalue()
        body += PNG_TYPES[size].encode('ascii') + struct.pack('>I', len(data) + HEADER_SIZE) + data

    try:
        with open(output_path, 'wb') as f:
            f.write(ICNS_MAGIC + struct.pack('>I', len(body) + HEADER_SIZE) + body)
    except OSError as e:
        raise IconError(f"Could not write {output_path}: {e}")
    return output_path


def perspective_coefficients(source, target):
    """
    Solve the 8 coefficients Pillow needs to map each target point back onto its source point
    """
    matrix = []
    for (x, y), (u, v) in zip(target, source):
        matrix.append([x, y, 1, 0, 0, 0, -u * x, -u * y])
        matrix.append([0, 0, 0, x, y, 1, -v * x, -v * y])
    a = numpy.array(matrix, dtype=numpy.float64)
    b = numpy.array(source, dtype=numpy.float64).reshape(8)
    return numpy.linalg.solve(a, b).tolist()


def apply_perspective(app_icon):
    """Tilt the app icon backwards so it appears to lie on the drive's face."""
    width, height = app_icon.size
    source = [(1, 1), (width, 1), (1, height), (width, height)]
    target = [
        (width * PERSPECTIVE_INSET, 1),
        (width * (1 - PERSPECTIVE_INSET), 1),
        (1, height),
        (width, height),
    ]
    coefficients = perspective_coefficients(source, target)
    return app_icon.transform(
        app_icon.size,
        Image.Transform.PERSPECTIVE,
        coefficients,
        Image.Resampling.BICUBIC,
    )


def compose_variant(app_icon, mount_icon):
    """Layer one app icon variant onto the matching drive icon variant."""
    mount_width, mount_height = mount_icon.size

    app_icon = apply_perspective(app_icon.convert('RGBA'))

    # Aspect ratio is not kept
    app_icon = app_icon.resize(
        (max(1, round(mount_width / WIDTH_DIVISOR)), max(1, round(mount_height / HEIGHT_DIVISOR))),
        Image.Resampling.LANCZOS,
    )

    x = (mount_width - app_icon.width) // 2
    y = (mount_height - app_icon.height) // 2 - round(mount_height * VERTICAL_OFFSET)

    composed = mount_icon.convert('RGBA')
    composed.alpha_composite(app_icon, dest=(x, max(0, y)))
    return composed


def compose_icon(app_icon_path, output_path, base_icon_path=DEFAULT_BASE_ICON, max_workers=None):
    """
    Build a drive icon carrying the app's icon and write it to output_path as .icns
    """
    if not os.path.exists(base_icon_path):
        raise IconError(f"Base disk icon not found: {base_icon_path}")

    base_icons = read_icns(base_icon_path)
    app_icons = read_icns(app_icon_path)
    if not app_icons:
        raise IconError(f"No image variants in {app_icon_path}")

    composed = {}
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_size = {}
        for size, app_icon in app_icons.items():
            if size not in PNG_TYPES:
                logger.debug(f"Skipping {variant_name(size)}, it cannot be stored as PNG")
                continue
            if size not in base_icons:
                logger.warning(f"There is no base image for this type: {variant_name(size)}")
                continue
            future_to_size[executor.submit(compose_variant, app_icon, base_icons[size])] = size

        for future in as_completed(future_to_size):
            size = future_to_size[future]
            composed[size] = future.result()
            logger.debug(f"Composed {variant_name(size)}")

    if BIGGEST_VARIANT not in composed:
        # ic10 is always written
        if BIGGEST_VARIANT not in base_icons:
            raise IconError(f"Base disk icon has no {variant_name(BIGGEST_VARIANT)} variant")
        largest = max(app_icons.values(), key=lambda image: image.width * image.height)
        logger.debug(f"Upscaling {largest.width}x{largest.height} app icon to {variant_name(BIGGEST_VARIANT)}")
        composed[BIGGEST_VARIANT] = compose_variant(largest, base_icons[BIGGEST_VARIANT])

    return write_icns(composed, output_path)
