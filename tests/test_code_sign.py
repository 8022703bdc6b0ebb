import subprocess

import pytest

import code_sign
from code_sign import select_identity
from dmg_errors import SigningError, VerificationError

IDENTITIES = '''\
  1) 0123456789ABCDEF0123456789ABCDEF01234567 "Mac Developer: Jane Roe (ABCDE12345)"
  2) 89ABCDEF0123456789ABCDEF0123456789ABCDEF "Developer ID Application: Lungo Inc (FGHIJ67890)"
     2 valid identities found
'''

MAC_DEVELOPER_ONLY = '''\
  1) 0123456789ABCDEF0123456789ABCDEF01234567 "Mac Developer: Jane Roe (ABCDE12345)"
     1 valid identities found
'''

SIGNED_DISPLAY = '''\
Executable=/tmp/Lungo 1.0.0.dmg
Identifier=Lungo 1.0.0
Format=disk image
Authority=Developer ID Application: Lungo Inc (FGHIJ67890)
Authority=Developer ID Certification Authority
Authority=Apple Root CA
'''


class FakeTools:
    """Stands in for subprocess.run, answering per executable."""

    def __init__(self, identities=IDENTITIES, display=SIGNED_DISPLAY, sign_status=0):
        self.identities = identities
        self.display = display
        self.sign_status = sign_status
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(cmd)
        if cmd[0] == code_sign.SECURITY:
            return subprocess.CompletedProcess(cmd, 0, stdout=self.identities, stderr='')
        if '--sign' in cmd:
            if self.sign_status and kwargs.get('check'):
                raise subprocess.CalledProcessError(self.sign_status, cmd, output='', stderr='errSecInternalComponent')
            return subprocess.CompletedProcess(cmd, self.sign_status, stdout='', stderr='')
        if '--display' in cmd:
            return subprocess.CompletedProcess(cmd, 0, stdout='', stderr=self.display)
        raise AssertionError(f"unexpected command {cmd}")


@pytest.fixture
def tools(monkeypatch):
    def _tools(**kwargs):
        fake = FakeTools(**kwargs)
        monkeypatch.setattr(code_sign.subprocess, 'run', fake)
        return fake
    return _tools


def test_select_identity_prefers_developer_id():
    assert select_identity(IDENTITIES) == 'Developer ID Application'


def test_select_identity_falls_back_to_mac_developer():
    assert select_identity(MAC_DEVELOPER_ONLY) == 'Mac Developer'


def test_select_identity_requested_must_be_listed():
    requested = 'Mac Developer: Jane Roe (ABCDE12345)'

    assert select_identity(IDENTITIES, requested) == requested
    assert select_identity(IDENTITIES, 'Someone Else') is None
    # a partial name does not match the quoted identity
    assert select_identity(IDENTITIES, 'Mac Developer') is None


def test_select_identity_none_available():
    assert select_identity('     0 valid identities found\n') is None


def test_sign_dmg(tools):
    fake = tools()

    authority = code_sign.sign_dmg('/tmp/Lungo 1.0.0.dmg')

    assert authority == 'Developer ID Application: Lungo Inc (FGHIJ67890)'
    assert fake.calls == [
        ['/usr/bin/security', 'find-identity', '-v', '-p', 'codesigning'],
        ['/usr/bin/codesign', '--sign', 'Developer ID Application', '/tmp/Lungo 1.0.0.dmg'],
        ['/usr/bin/codesign', '/tmp/Lungo 1.0.0.dmg', '--display', '--verbose=2'],
    ]


def test_sign_dmg_without_identity(tools):
    fake = tools(identities='     0 valid identities found\n')

    with pytest.raises(SigningError) as excinfo:
        code_sign.sign_dmg('/tmp/Lungo 1.0.0.dmg')

    assert excinfo.value.exit_code == 2
    assert excinfo.value.details() == 'No suitable code signing identity found'
    assert len(fake.calls) == 1


def test_codesign_failure_is_signing_error(tools):
    tools(sign_status=1)

    with pytest.raises(SigningError) as excinfo:
        code_sign.sign_dmg('/tmp/Lungo 1.0.0.dmg')

    assert excinfo.value.details() == 'errSecInternalComponent'


def test_unsigned_image_fails_verification(tools):
    tools(display='Executable=/tmp/Lungo 1.0.0.dmg\ncode object is not signed at all\n')

    with pytest.raises(VerificationError, match='Not code signed') as excinfo:
        code_sign.sign_dmg('/tmp/Lungo 1.0.0.dmg')

    assert excinfo.value.exit_code == 1


def test_missing_security_tool(monkeypatch):
    def missing(cmd, **kwargs):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(code_sign.subprocess, 'run', missing)

    with pytest.raises(SigningError, match='/usr/bin/security is not available'):
        code_sign.find_identity()
