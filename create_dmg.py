import logging
import os
import subprocess
import sys
import tempfile

import click

import code_sign
from app_info import read_app_info
from create_icns import compose_icon
from dmg_background import create_background
from dmg_config import MAX_TITLE_LENGTH, resolve_options
from dmg_errors import ConfigError, CreateDmgError, DmgBuildError, IconError, SigningError
from license_agreement import find_license, license_settings

logger = logging.getLogger(__name__)


class DmgResult:
    def __init__(self, path, dmg_format, authority=None):
        self.path = path
        self.format = dmg_format
        self.authority = authority


# --- Build steps ---
def prepare_target(dmg_path, overwrite):
    """Make sure nothing is in the way of the image we are about to write."""
    if not os.path.exists(dmg_path):
        return
    if not overwrite:
        raise DmgBuildError(f"`{os.path.basename(dmg_path)}` already exists. Use --overwrite to replace it.")
    os.remove(dmg_path)


def create_drive_icon(app, options, work_dir):
    """
    Compose the volume icon. Falls back to the plain drive icon, or to no
    custom icon at all, when composition is not possible.
    """
    composed_path = os.path.join(work_dir, 'drive-icon.icns')
    try:
        return compose_icon(app.icon_path, composed_path, base_icon_path=options.base_icon)
    except IconError as e:
        logger.warning(f"Could not compose the drive icon: {e}")
    if os.path.exists(options.base_icon):
        return options.base_icon
    return None


def build_settings(app, options, dmg_format, background, icon_path, license_path):
    app_name = os.path.basename(os.path.normpath(app.app_path))
    settings = {
        'format': dmg_format,
        'size': None,
        'files': [app.app_path],
        'symlinks': {'Applications': '/Applications'},
        'icon_locations': {
            app_name: (options.app_x, options.app_y),
            'Applications': (options.folder_x, options.folder_y),
        },
        'background': background,
        'window_rect': ((options.window_x, options.window_y), (options.width, options.height)),
        'icon_size': options.icon_size,
    }
    if icon_path:
        settings['icon'] = icon_path
    if license_path:
        settings['license'] = license_settings(license_path)
    return settings


def build_image(dmg_path, title, settings):
    # dmgbuild reads the macOS version when it is imported
    import dmgbuild
    from dmgbuild.core import DMGError

    try:
        dmgbuild.build_dmg(dmg_path, title, settings=settings)
    except (DMGError, subprocess.CalledProcessError, OSError, ValueError) as e:
        raise DmgBuildError(f"Building the DMG failed. {e}")
    if not os.path.exists(dmg_path):
        raise DmgBuildError(f"Building the DMG failed. {dmg_path} was not written.")


def replace_file_icon(dmg_path, icon_path, fileicon='fileicon'):
    """Give the .dmg file itself the composed icon, so it shows in Finder before mounting."""
    try:
        subprocess.run([fileicon, 'set', dmg_path, icon_path], capture_output=True, text=True, check=True)
    except FileNotFoundError:
        logger.warning(f"{fileicon} not found, the DMG file keeps its default icon. Install with: brew install fileicon")
    except subprocess.CalledProcessError as e:
        logger.warning(f"{fileicon} failed to set the DMG icon: {(e.stderr or '').strip()}")


def create_dmg(app_path, destination, options):
    """
    Package the bundle at app_path into a signed disk image in destination.

    Raises SigningError once the image exists but could not be signed.
    """
    app = read_app_info(app_path)

    title = options.dmg_title or app.name
    if len(title) > MAX_TITLE_LENGTH:
        raise DmgBuildError(f"The disk image title cannot exceed {MAX_TITLE_LENGTH} characters.")
    if options.background is not None and not os.path.isfile(options.background):
        raise ConfigError(f"Background image not found: {options.background}")

    os.makedirs(destination, exist_ok=True)
    dmg_path = os.path.join(destination, app.dmg_filename)
    prepare_target(dmg_path, options.overwrite)

    license_path = find_license(os.getcwd(), options.license)

    with tempfile.TemporaryDirectory(prefix='create-dmg-') as work_dir:
        icon_path = None
        if app.icon_file:
            logger.info('Creating icon')
            icon_path = create_drive_icon(app, options, work_dir)

        dmg_format = app.dmg_format
        logger.info(f"Minimum runtime {app.minimum_system_version} detected, using {dmg_format} format")

        background = options.background
        if background is None:
            background = create_background(
                os.path.join(work_dir, 'background.png'),
                options.width,
                options.height,
                (options.app_x, options.app_y),
                (options.folder_x, options.folder_y),
                options.icon_size,
            )

        logger.info('Building DMG')
        settings = build_settings(app, options, dmg_format, background, icon_path, license_path)
        build_image(dmg_path, title, settings)

        if icon_path:
            logger.info('Replacing DMG icon')
            replace_file_icon(dmg_path, icon_path, options.fileicon)

    logger.info('Code signing DMG')
    authority = code_sign.sign_dmg(dmg_path, options.identity)
    logger.info(f"Code signing identity: {authority}")

    return DmgResult(dmg_path, dmg_format, authority)


# --- Command line ---
@click.command(context_settings={'help_option_names': ['-h', '--help']})
@click.argument('app', type=click.Path())
@click.argument('destination', required=False, type=click.Path(file_okay=False))
@click.option('--overwrite', is_flag=True, help='Overwrite existing DMG with the same name')
@click.option('--identity', help='Manually set code signing identity (automatic by default)')
@click.option('--dmg-title', help=f'Manually set DMG title (must be <={MAX_TITLE_LENGTH} characters) [default: App name]')
@click.option('--background', type=click.Path(dir_okay=False), help='Manually set background image (660x400) [.png]')
@click.option('--width', type=int, help='DMG window width [default: 660]')
@click.option('--height', type=int, help='DMG window height [default: 400]')
@click.option('--app-x', type=int, help='X-coordinate of the app icon [default: 180]')
@click.option('--app-y', type=int, help='Y-coordinate of the app icon [default: 170]')
@click.option('--folder-x', type=int, help='X-coordinate of the Applications folder icon [default: 480]')
@click.option('--folder-y', type=int, help='Y-coordinate of the Applications folder icon [default: 170]')
@click.option('--license', 'license_path', type=click.Path(), help='Software license agreement to show on mount [.txt, .rtf]')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='Settings file [default: create-dmg.toml]')
@click.option('-v', '--verbose', is_flag=True, help='Show debug output')
def main(app, destination, overwrite, identity, dmg_title, background, width, height,
         app_x, app_y, folder_x, folder_y, license_path, config_path, verbose):
    """
    Create a good-looking DMG for your macOS app.

    \b
    Examples
      $ create-dmg 'Lungo.app'
      $ create-dmg 'Lungo.app' Build/Releases
    """
    logging.basicConfig(format='%(message)s')
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.INFO)

    if sys.platform != 'darwin':
        logger.error('macOS only')
        sys.exit(1)

    destination = destination or os.getcwd()

    try:
        options = resolve_options(
            os.getcwd(),
            config_path,
            overwrite=True if overwrite else None,
            identity=identity,
            dmg_title=dmg_title,
            background=background,
            width=width,
            height=height,
            app_x=app_x,
            app_y=app_y,
            folder_x=folder_x,
            folder_y=folder_y,
            license=license_path,
        )
        result = create_dmg(app, destination, options)
    except SigningError as e:
        logger.error(f"Code signing failed. The DMG is fine, just not code signed.\n{e.details()}")
        sys.exit(e.exit_code)
    except CreateDmgError as e:
        logger.error(str(e))
        sys.exit(e.exit_code)
    except Exception:
        logger.exception('Creating the DMG failed')
        sys.exit(1)

    logger.info(f"Created “{os.path.basename(result.path)}”")


def run():
    """Console entry point. Usage errors exit with 1 like every other failure."""
    try:
        main.main(standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(1)
    except click.Abort:
        click.echo('Aborted!', err=True)
        sys.exit(1)


if __name__ == "__main__":
    run()
