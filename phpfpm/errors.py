"""Error taxonomy for pool and runtime operations."""

from .interface import PoolRecord


class FPMError(Exception):
    """Base class for all errors raised by this package."""


class UnknownUserError(FPMError):
    """Username does not resolve to an OS account."""


class InvalidProviderError(FPMError):
    """Provider identifier given to a pool operation is not usable."""


class UnknownProviderError(FPMError):
    """Provider identifier is not one of the known provider types."""


class InvalidVersionError(FPMError):
    """PHP version is malformed or not supported by the provider."""


class InvalidSettingsError(FPMError):
    """Pool settings overrides are unknown or out of range."""


class PoolAlreadyExistsError(FPMError):
    pass


class PoolNotFoundError(FPMError):
    pass


class PoolIOError(FPMError):
    """Filesystem error while writing or removing pool artifacts."""


class RegistryError(FPMError):
    """The persistent registry rejected or failed an operation."""


class ReloadError(FPMError):
    """Supervisor reload failed.

    The mutation that preceded the reload is committed; ``pool`` holds the
    resulting record when there is one.
    """

    def __init__(self, message: str, pool: PoolRecord | None = None):
        super().__init__(message)
        self.pool = pool


class InstallError(FPMError):
    """A runtime installation procedure failed."""


class ProviderNotImplementedError(FPMError, NotImplementedError):
    """The provider does not support this operation yet."""
