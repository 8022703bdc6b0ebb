class CreateDmgError(Exception):
    """Base class for failures that end a run with a specific exit code."""
    exit_code = 1


class MissingBundleError(CreateDmgError):
    pass


class MissingMetadataError(CreateDmgError):
    pass


class ConfigError(CreateDmgError):
    pass


class DmgBuildError(CreateDmgError):
    pass


class VerificationError(CreateDmgError):
    pass


class SigningError(CreateDmgError):
    """The image was built but could not be code signed."""
    exit_code = 2

    def __init__(self, message, stderr=None):
        super().__init__(message)
        self.stderr = stderr

    def details(self):
        return (self.stderr or str(self)).strip()


class IconError(Exception):
    """Raised when the drive icon cannot be composed. Never fatal."""
