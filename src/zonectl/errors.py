"""zonectl exception hierarchy.

Every failure the engine surfaces derives from :class:`ZonectlError`.
"""

from __future__ import annotations

from typing import Sequence


class ZonectlError(Exception):
    """Base exception for zonectl."""


class ConfigurationError(ZonectlError):
    """Raised when configuration is unusable."""


class CredentialsError(ConfigurationError):
    """Raised when a provider is missing a credential field."""


class UnknownTypeError(ConfigurationError):
    """Raised when a record type is not registered."""


class DuplicateTypeError(ZonectlError):
    """Raised when a name is registered twice."""


class RegistryFrozenError(ZonectlError):
    """Raised when registering after the registry was frozen."""


class RecordError(ZonectlError):
    """Raised when a record cannot be built from its input."""

    def __init__(self, rtype: str, name: str, domain: str, error: Exception | str) -> None:
        super().__init__(f"{rtype} ({name!r}, dom={domain!r}) record error: {error}")
        self.rtype = rtype
        self.name = name
        self.domain = domain
        self.error = error


class ValidationError(ZonectlError):
    """Raised when desired state fails validation."""


class ZoneFetchError(ZonectlError):
    """Raised when a provider cannot read the live zone."""


class ZoneNotFoundError(ZonectlError):
    """Raised when a zone is not known to a provider."""


class CorrectionError(ZonectlError):
    """Raised when executing a correction fails."""

    def __init__(self, domain: str, provider: str, msg: str, error: Exception) -> None:
        super().__init__(f"{domain}/{provider}: {msg}: {error}")
        self.domain = domain
        self.provider = provider
        self.msg = msg
        self.error = error


class ReconcileError(ZonectlError):
    """Composite error returned by the outermost driver call."""

    def __init__(self, errors: Sequence[Exception]) -> None:
        lines = [str(error) for error in errors]
        super().__init__(f"{len(lines)} error(s):\n" + "\n".join(lines))
        self.errors = list(errors)


class SPFError(ZonectlError):
    """Raised when an SPF policy cannot be parsed."""


class UnsupportedMechanismError(SPFError):
    """Raised for SPF mechanisms the parser does not evaluate."""


class TransformError(ConfigurationError):
    """Raised for invalid transform tables or ambiguous transforms."""
