"""Provider boundary and the built-in reference providers.

Importing this package registers the NONE registrar and the BIND and
RFC2136 DNS providers with the default provider registry.
"""

from . import bindfile, none, rfc2136  # noqa: F401
from .base import (
    DEFAULT_REGISTRY,
    Capability,
    DNSServiceProvider,
    Feature,
    ProviderRegistry,
    Registrar,
    Support,
    ZoneCreator,
    ZoneLister,
    can,
    cannot,
    nameserver_corrections,
    require_credentials,
    unimplemented,
)

__all__ = [
    "DEFAULT_REGISTRY",
    "Capability",
    "DNSServiceProvider",
    "Feature",
    "ProviderRegistry",
    "Registrar",
    "Support",
    "ZoneCreator",
    "ZoneLister",
    "can",
    "cannot",
    "nameserver_corrections",
    "require_credentials",
    "unimplemented",
]
