"""Error kinds raised while provisioning origin certificate material."""

from pathlib import Path


class ProvisioningError(Exception):
    """Base class for all provisioning failures.

    Every error is terminal for the current run; callers re-invoke on failure.
    """


class ValidationError(ProvisioningError):
    """Malformed or ambiguous request, raised before any external call."""


class SecretNotFoundError(ProvisioningError, LookupError):
    """Named secret does not exist in the secret store."""

    def __init__(self, name: str) -> None:
        super().__init__(f"secret not found: {name}")
        self.name = name


class SecretFetchError(ProvisioningError):
    """A secret could not be fetched, or was fetched empty."""


class CARequestError(ProvisioningError):
    """The CA API rejected the request or returned unusable material."""


class MalformedCertificateError(ProvisioningError):
    """PEM material is empty or does not parse."""


class PermissionDeniedError(ProvisioningError):
    """A target path cannot be written."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"permission denied writing {path}")
        self.path = path


class DiskFullError(ProvisioningError):
    """No space left while staging a file."""

    def __init__(self, path: Path) -> None:
        super().__init__(f"no space left on device writing {path}")
        self.path = path


class PartialWriteError(ProvisioningError):
    """A staged file could not be renamed into place.

    Committed slots are rolled back before this is raised.
    """

    def __init__(self, path: Path, committed: list[Path]) -> None:
        super().__init__(f"failed to rename staged file into {path}")
        self.path = path
        self.committed = committed


class ReloadError(ProvisioningError):
    """The web server reload command failed."""
