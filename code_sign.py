import logging
import re
import subprocess

from dmg_errors import SigningError, VerificationError

logger = logging.getLogger(__name__)

SECURITY = '/usr/bin/security'
CODESIGN = '/usr/bin/codesign'

DEVELOPER_ID = 'Developer ID Application'
MAC_DEVELOPER = 'Mac Developer'

AUTHORITY_PATTERN = re.compile(r'^Authority=(.*)$', re.MULTILINE)


def _run(cmd):
    """Run a signing tool, turning a missing binary or a non-zero exit into SigningError."""
    logger.debug(f"$ {' '.join(cmd)}")
    try:
        return subprocess.run(cmd, capture_output=True, text=True, check=True)
    except FileNotFoundError:
        raise SigningError(f"{cmd[0]} is not available")
    except subprocess.CalledProcessError as e:
        raise SigningError(f"{cmd[0]} exited with status {e.returncode}", stderr=e.stderr)


def list_identities():
    return _run([SECURITY, 'find-identity', '-v', '-p', 'codesigning']).stdout


def select_identity(identities, requested=None):
    """Choose a signing identity from `security find-identity` output, or None."""
    if requested:
        return requested if f'"{requested}"' in identities else None
    if f'{DEVELOPER_ID}:' in identities:
        return DEVELOPER_ID
    if f'{MAC_DEVELOPER}:' in identities:
        return MAC_DEVELOPER
    return None


def find_identity(requested=None):
    identity = select_identity(list_identities(), requested)
    if not identity:
        raise SigningError('No suitable code signing identity found')
    return identity


def sign(dmg_path, identity):
    _run([CODESIGN, '--sign', identity, dmg_path])


def verify(dmg_path):
    """Return the first signing authority recorded on dmg_path."""
    try:
        result = subprocess.run(
            [CODESIGN, dmg_path, '--display', '--verbose=2'],
            capture_output=True, text=True
        )
    except FileNotFoundError:
        raise SigningError(f"{CODESIGN} is not available")

    # codesign prints the signature details on stderr
    match = AUTHORITY_PATTERN.search(result.stderr or '')
    if not match:
        raise VerificationError('Not code signed')
    return match.group(1)


def sign_dmg(dmg_path, requested_identity=None):
    """Sign dmg_path and confirm the signature took. Returns the signing authority."""
    identity = find_identity(requested_identity)
    logger.debug(f"Signing with {identity}")
    sign(dmg_path, identity)
    return verify(dmg_path)
