"""Provider interfaces, capabilities and the provider type registry."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .. import registry as rtype_registry
from ..diffing import Change, ChangeType
from ..errors import ConfigurationError, CredentialsError, DuplicateTypeError, RecordError, RegistryFrozenError
from ..models import Correction, DomainConfig, Nameserver, RecordConfig, Records

LOG = logging.getLogger("zonectl")


class Capability(Enum):
    """Closed set of features a provider may declare."""

    CAN_AUTO_DNSSEC = "CanAutoDNSSEC"
    CAN_CONCUR = "CanConcur"
    CAN_GET_ZONES = "CanGetZones"
    CAN_ONLY_DIFF1_FEATURES = "CanOnlyDiff1Features"
    CAN_USE_ALIAS = "CanUseAlias"
    CAN_USE_CAA = "CanUseCAA"
    CAN_USE_DS = "CanUseDS"
    CAN_USE_DS_FOR_CHILDREN = "CanUseDSForChildren"
    CAN_USE_HTTPS = "CanUseHTTPS"
    CAN_USE_PTR = "CanUsePTR"
    CAN_USE_SINGLE_REDIRECT = "CanUseSingleRedirect"
    CAN_USE_SRV = "CanUseSRV"
    CAN_USE_SVCB = "CanUseSVCB"
    CAN_USE_TLSA = "CanUseTLSA"
    CAN_USE_TXT_MULTI = "CanUseTXTMulti"
    CANT_USE_NOPURGE = "CantUseNOPURGE"
    DOC_CREATE_DOMAINS = "DocCreateDomains"
    DOC_DUAL_HOST = "DocDualHost"
    DOC_OFFICIALLY_SUPPORTED = "DocOfficiallySupported"


class Support(Enum):
    """Tri-state answer for a capability."""

    CAN = "can"
    CANNOT = "cannot"
    UNIMPLEMENTED = "unimplemented"


@dataclass(frozen=True)
class Feature:
    """A capability declaration with an optional comment."""

    support: Support
    comment: str = ""


def can(comment: str = "") -> Feature:
    """Declare a supported capability."""
    return Feature(Support.CAN, comment)


def cannot(comment: str = "") -> Feature:
    """Declare an unsupported capability."""
    return Feature(Support.CANNOT, comment)


def unimplemented(comment: str = "") -> Feature:
    """Declare a capability the provider could support but does not yet."""
    return Feature(Support.UNIMPLEMENTED, comment)


Features = Mapping[Capability, Feature]


class DNSServiceProvider(ABC):
    """A provider that serves zones.

    Implementations receive ``DomainConfig`` objects read-only.
    """

    @abstractmethod
    def get_nameservers(self, domain: str) -> List[Nameserver]:
        """Return the nameservers this provider would delegate the domain to."""

    @abstractmethod
    def get_zone_records(self, domain: str, meta: Mapping[str, str]) -> Records:
        """Return the live records of a zone."""

    @abstractmethod
    def get_zone_records_corrections(self, dc: DomainConfig, existing: Records) -> Tuple[List[Correction], int]:
        """Plan the corrections that turn ``existing`` into ``dc``.

        Returns the corrections and the number of actual record changes.
        """


class ZoneCreator(ABC):
    """Provider that can create missing zones."""

    @abstractmethod
    def ensure_zone_exists(self, domain: str, meta: Mapping[str, str]) -> None:
        """Create the zone if it does not exist yet."""


class ZoneLister(ABC):
    """Provider that can enumerate its zones."""

    @abstractmethod
    def list_zones(self) -> List[str]:
        """Return the names of all zones the provider manages."""


class Registrar(ABC):
    """Service that controls a domain's delegation."""

    @abstractmethod
    def get_registrar_corrections(self, dc: DomainConfig) -> List[Correction]:
        """Return at most one correction that updates the delegation."""


DspInitializer = Callable[[Mapping[str, str], Mapping[str, Any]], DNSServiceProvider]
RegistrarInitializer = Callable[[Mapping[str, str]], Registrar]
RecordAuditor = Callable[[Records], List[str]]


@dataclass(frozen=True)
class DspType:
    """Registration entry for a DNS provider type."""

    name: str
    initializer: DspInitializer
    features: Features
    auditor: Optional[RecordAuditor] = None


@dataclass(frozen=True)
class RegistrarType:
    """Registration entry for a registrar type."""

    name: str
    initializer: RegistrarInitializer
    features: Features


class ProviderRegistry:
    """Provider types by name, with their declared capabilities.

    Built-in providers register into the module-level default registry when
    imported; ``build`` assembles an independent registry from explicit
    lists instead.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._dsps: Dict[str, DspType] = {}
        self._registrars: Dict[str, RegistrarType] = {}
        self._frozen = False

    @classmethod
    def build(cls, dns_types: Iterable[DspType] = (), registrar_types: Iterable[RegistrarType] = ()) -> ProviderRegistry:
        """Return a registry holding the given provider and registrar types."""
        registry = cls()
        for dsp in dns_types:
            registry.register_dns_provider_type(dsp.name, dsp.initializer, dsp.features, dsp.auditor)
        for registrar in registrar_types:
            registry.register_registrar_type(registrar.name, registrar.initializer, registrar.features)
        return registry

    def _check_mutable(self, name: str) -> None:
        """Raise RegistryFrozenError once the registry is frozen."""
        if self._frozen:
            raise RegistryFrozenError(f"cannot register provider type {name!r}: registry is frozen")

    def register_dns_provider_type(
        self,
        name: str,
        initializer: DspInitializer,
        features: Features | None = None,
        auditor: RecordAuditor | None = None,
    ) -> None:
        """Register a DNS provider constructor under a unique type name."""
        with self._lock:
            self._check_mutable(name)
            if name in self._dsps:
                raise DuplicateTypeError(f"cannot register DNS provider type {name!r} multiple times")
            self._dsps[name] = DspType(name, initializer, MappingProxyType(dict(features or {})), auditor)

    def register_registrar_type(self, name: str, initializer: RegistrarInitializer, features: Features | None = None) -> None:
        """Register a registrar constructor under a unique type name."""
        with self._lock:
            self._check_mutable(name)
            if name in self._registrars:
                raise DuplicateTypeError(f"cannot register registrar type {name!r} multiple times")
            self._registrars[name] = RegistrarType(name, initializer, MappingProxyType(dict(features or {})))

    def freeze(self) -> None:
        """Reject further registrations."""
        with self._lock:
            self._frozen = True

    def dns_provider_types(self) -> List[str]:
        """Return the registered DNS provider type names."""
        return sorted(self._dsps)

    def registrar_types(self) -> List[str]:
        """Return the registered registrar type names."""
        return sorted(self._registrars)

    def create_dns_provider(self, type_name: str, creds: Mapping[str, str], meta: Mapping[str, Any] | None = None) -> DNSServiceProvider:
        """Instantiate a DNS provider from its credentials entry."""
        type_name = _resolve_type(type_name, creds)
        dsp = self._dsps.get(type_name)
        if dsp is None:
            raise ConfigurationError(f"no such DNS service provider: {type_name!r}")
        return dsp.initializer(creds, meta or {})

    def create_registrar(self, type_name: str, creds: Mapping[str, str]) -> Registrar:
        """Instantiate a registrar from its credentials entry."""
        type_name = _resolve_type(type_name, creds)
        registrar = self._registrars.get(type_name)
        if registrar is None:
            raise ConfigurationError(f"no such registrar type: {type_name!r}")
        return registrar.initializer(creds)

    def _features(self, type_name: str) -> Features:
        """Return the declared features of a provider or registrar type."""
        if type_name in self._dsps:
            return self._dsps[type_name].features
        if type_name in self._registrars:
            return self._registrars[type_name].features
        raise ConfigurationError(f"unknown provider type {type_name!r}")

    def support(self, type_name: str, capability: Capability) -> Support:
        """Return the declared support; undeclared capabilities are CANNOT."""
        feature = self._features(type_name).get(capability)
        return feature.support if feature is not None else Support.CANNOT

    def has_capability(self, type_name: str, capability: Capability) -> bool:
        """Return True if the type declares the capability as supported."""
        return self.support(type_name, capability) is Support.CAN

    def audit_records(self, type_name: str, records: Records) -> List[str]:
        """Run the provider's record auditor, if it has one."""
        dsp = self._dsps.get(type_name)
        if dsp is None:
            return [f"unknown DNS service provider type: {type_name!r}"]
        if dsp.auditor is None:
            return []
        return dsp.auditor(records)


def _resolve_type(type_name: str, creds: Mapping[str, str]) -> str:
    """Reconcile a requested type with the credential entry's TYPE."""
    declared = creds.get("TYPE", "")
    if type_name in {"", "-"}:
        if not declared:
            raise ConfigurationError("credentials entry missing TYPE field")
        return declared
    if declared and declared != type_name:
        raise ConfigurationError(f"credentials entry mismatch: specified={type_name!r} TYPE={declared!r}")
    return type_name


def require_credentials(provider: str, creds: Mapping[str, str], *keys: str) -> Dict[str, str]:
    """Return the named credential values, failing on the first missing one."""
    values: Dict[str, str] = {}
    for key in keys:
        value = creds.get(key)
        if not value:
            raise CredentialsError(f"{provider}: missing required credential {key!r}")
        values[key] = value
    return values


def nameserver_corrections(
    dc: DomainConfig,
    current: Sequence[Nameserver],
    update: Callable[[List[Nameserver]], None],
    provider: str = "",
) -> List[Correction]:
    """Plan a registrar delegation update.

    Returns a single correction when the sorted, case-insensitive sets of
    current and desired nameservers differ, otherwise none.
    """
    wanted = sorted({ns.name.lower() for ns in dc.nameservers})
    found = sorted({ns.name.lower() for ns in current})
    if wanted == found:
        return []
    desired = list(dc.nameservers)
    label = f" ({provider})" if provider else ""
    msg = f"Update nameservers{label} {','.join(found)} -> {','.join(wanted)}"
    return [Correction(msg, lambda: update(desired))]


DEFAULT_REGISTRY = ProviderRegistry()


def register_dns_provider_type(name: str, initializer: DspInitializer, features: Features | None = None, auditor: RecordAuditor | None = None) -> None:
    """Register a DNS provider type in the default registry."""
    DEFAULT_REGISTRY.register_dns_provider_type(name, initializer, features, auditor)


def register_registrar_type(name: str, initializer: RegistrarInitializer, features: Features | None = None) -> None:
    """Register a registrar type in the default registry."""
    DEFAULT_REGISTRY.register_registrar_type(name, initializer, features)


def corrections_from_changes(changes: Iterable[Change], apply: Callable[[Change], None]) -> List[Correction]:
    """Wrap planner changes into corrections; REPORTs carry no action."""
    corrections: List[Correction] = []
    for change in changes:
        if change.type is ChangeType.REPORT:
            corrections.append(Correction(change.msg))
        else:
            corrections.append(Correction(change.msg, lambda change=change: apply(change)))
    return corrections


def record_from_text(domain: str, owner: str, ttl: int, rtype: str, text: str, original: Any = None) -> Optional[RecordConfig]:
    """Build a RecordConfig from presentation-format rdata.

    Returns None (after logging) for record types that are not registered.
    """
    if not rtype_registry.REGISTRY.is_registered(rtype):
        LOG.warning("Skipping unsupported %s record at %s", rtype, owner)
        return None
    rc = RecordConfig(type=rtype, ttl=ttl, original=original)
    rc.set_label_from_fqdn(owner, domain)
    try:
        rtype_registry.lookup(rtype).from_text(rc, text, domain)
    except ValueError as exc:
        raise RecordError(rtype, rc.name, domain, exc) from exc
    return rc
