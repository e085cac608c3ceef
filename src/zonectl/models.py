"""Core data models used by zonectl."""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Sequence

from . import registry
from .errors import ConfigurationError

DEFAULT_TTL = 300


@dataclass(frozen=True, order=True)
class RecordKey:
    """Identifies a record set: owner name plus type."""

    name_fqdn: str
    type: str

    def __str__(self) -> str:
        """Return ``fqdn:TYPE``."""
        return f"{self.name_fqdn}:{self.type}"


@dataclass
class RecordConfig:
    """A single desired or observed DNS record.

    ``name`` is the short label (``@`` for the apex) and ``name_fqdn`` the
    fully qualified owner without a trailing dot. ``target`` carries the value
    exactly as providers expect it: hostnames end with a dot, TXT values are
    stored unquoted (``txt`` holds the chunks, ``target`` their concatenation).
    ``original`` is an opaque handle to the provider-native object the record
    was read from; the planner never inspects it.
    """

    type: str
    name: str = "@"
    name_fqdn: str = ""
    ttl: int = 0
    subdomain: str = ""
    target: str = ""
    metadata: dict[str, str] = field(default_factory=dict)
    original: Any = field(default=None, repr=False, compare=False)

    txt: list[str] = field(default_factory=list)
    mx_preference: int = 0
    srv_priority: int = 0
    srv_weight: int = 0
    srv_port: int = 0
    caa_flag: int = 0
    caa_tag: str = ""
    ds_key_tag: int = 0
    ds_algorithm: int = 0
    ds_digest_type: int = 0
    ds_digest: str = ""
    tlsa_usage: int = 0
    tlsa_selector: int = 0
    tlsa_matching_type: int = 0
    svc_priority: int = 0
    svc_params: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def set_label(self, short: str, origin: str) -> None:
        """Set name/name_fqdn from a short label and the zone origin."""
        if origin.endswith("."):
            raise ValueError(f"origin ({origin}) is not supposed to end with a dot")
        if short.endswith("."):
            raise ValueError(f"label ({short}) is not supposed to end with a dot")
        short = short.lower()
        origin = origin.lower()
        if short in {"", "@"}:
            self.name = "@"
            self.name_fqdn = origin
        else:
            self.name = short
            self.name_fqdn = f"{short}.{origin}"

    def set_label_from_fqdn(self, fqdn: str, origin: str) -> None:
        """Set name/name_fqdn from a FQDN (trailing dot optional)."""
        fqdn = fqdn.rstrip(".").lower()
        origin = origin.rstrip(".").lower()
        if fqdn == origin:
            self.name = "@"
        elif fqdn.endswith("." + origin):
            self.name = fqdn[: -len(origin) - 1]
        else:
            self.name = fqdn
        self.name_fqdn = fqdn

    def set_txt(self, chunks: Sequence[str]) -> None:
        """Store TXT chunks and refresh the joined target."""
        self.txt = list(chunks)
        self.target = "".join(self.txt)

    def key(self) -> RecordKey:
        """Return the record-set key of this record."""
        return RecordKey(self.name_fqdn, self.type)

    @property
    def comparable(self) -> str:
        """Canonical string used for equality (TTL excluded)."""
        return registry.lookup(self.type).comparable(self)

    @property
    def display(self) -> str:
        """Human-readable rendering of the record data."""
        return registry.lookup(self.type).display(self)

    @property
    def identity(self) -> str:
        """Pairing identity within a record set (e.g. the MX preference)."""
        return registry.lookup(self.type).identity(self)

    def copy(self) -> RecordConfig:
        """Return a deep copy that still shares the provider handle."""
        original = self.original
        self.original = None
        try:
            duplicate = copy.deepcopy(self)
        finally:
            self.original = original
        duplicate.original = original
        return duplicate

    def __str__(self) -> str:
        """Return a one-line description used in logs."""
        return f"{self.type} {self.name_fqdn} {self.display} ttl={self.ttl}"


Records = list[RecordConfig]


def group_by_key(records: Iterable[RecordConfig]) -> dict[RecordKey, Records]:
    """Return records grouped by (name_fqdn, type), preserving input order."""
    groups: dict[RecordKey, Records] = {}
    for record in records:
        groups.setdefault(record.key(), []).append(record)
    return groups


@dataclass(frozen=True, eq=False)
class Nameserver:
    """An authoritative nameserver (FQDN without trailing dot)."""

    name: str

    def __eq__(self, other: object) -> bool:
        """Compare nameservers case-insensitively."""
        if not isinstance(other, Nameserver):
            return NotImplemented
        return self.name.lower() == other.name.lower()

    def __hash__(self) -> int:
        """Hash consistently with __eq__."""
        return hash(self.name.lower())

    def __str__(self) -> str:
        """Return the hostname."""
        return self.name


def to_nameservers(names: Iterable[str]) -> list[Nameserver]:
    """Convert hostnames into Nameserver objects."""
    result: list[Nameserver] = []
    for name in names:
        stripped = name.strip().rstrip(".")
        if not stripped:
            raise ConfigurationError("nameserver names cannot be empty")
        result.append(Nameserver(stripped))
    return result


class NameserverMode(Enum):
    """How many of a DNS provider's nameservers to delegate to."""

    NONE = "none"
    ALL = "all"
    CAP = "cap"


@dataclass(frozen=True)
class NameserverCount:
    """Replaces the overloaded integer count of the desired-state document."""

    mode: NameserverMode
    cap: int = 0

    @classmethod
    def from_int(cls, value: int | None) -> NameserverCount:
        """Translate the document's integer: 0 none, negative/None all, positive cap."""
        if value is None or value < 0:
            return cls(NameserverMode.ALL)
        if value == 0:
            return cls(NameserverMode.NONE)
        return cls(NameserverMode.CAP, value)

    def select(self, nameservers: Sequence[Nameserver]) -> list[Nameserver]:
        """Return the nameservers this count allows."""
        if self.mode is NameserverMode.NONE:
            return []
        if self.mode is NameserverMode.CAP:
            return list(nameservers[: self.cap])
        return list(nameservers)

    def to_int(self) -> int:
        """Inverse of from_int."""
        if self.mode is NameserverMode.NONE:
            return 0
        if self.mode is NameserverMode.CAP:
            return self.cap
        return -1


@dataclass
class RawRecordConfig:
    """Untyped record tuple produced by the desired-state document.

    ``args`` are positional: the label first, then the rtype-specific values
    (strings, integers, floats or lists of strings).
    """

    type: str
    args: list[Any] = field(default_factory=list)
    metas: list[dict[str, Any]] = field(default_factory=list)
    ttl: int = 0
    subdomain: str = ""
    ensure_absent: bool = False


@dataclass
class DomainConfig:
    """Desired state for one zone.

    A name written as ``zone!tag`` is one view of a split-horizon zone: ``name``
    is the zone itself and ``unique_name`` tells the views apart.
    """

    name: str
    registrar_name: str = ""
    dsps: dict[str, NameserverCount] = field(default_factory=dict)
    records: Records = field(default_factory=list)
    ensure_absent: Records = field(default_factory=list)
    raw_records: list[RawRecordConfig] = field(default_factory=list)
    nameservers: list[Nameserver] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)
    default_ttl: int = 0
    keep_unknown: bool = False
    unmanaged: list[str] = field(default_factory=list)
    tag: str = ""

    def __post_init__(self) -> None:
        name = self.name.strip()
        if "!" in name and not self.tag:
            name, self.tag = name.split("!", 1)
        self.name = name.rstrip(".").lower()

    @property
    def unique_name(self) -> str:
        """Return ``zone!tag`` for a split-horizon view, else the zone name."""
        return f"{self.name}!{self.tag}" if self.tag else self.name

    def copy(self) -> DomainConfig:
        """Return a copy whose record lists can be mutated independently."""
        duplicate = copy.copy(self)
        duplicate.records = [record.copy() for record in self.records]
        duplicate.ensure_absent = [record.copy() for record in self.ensure_absent]
        duplicate.raw_records = list(self.raw_records)
        duplicate.nameservers = list(self.nameservers)
        duplicate.dsps = dict(self.dsps)
        duplicate.metadata = dict(self.metadata)
        duplicate.unmanaged = list(self.unmanaged)
        return duplicate


@dataclass
class Correction:
    """A planned change: a message plus the thunk that performs it.

    ``f`` raises on failure. A correction without ``f`` is a report that is
    printed but never executed. Replaying a correction against a state that
    already matches must be harmless.
    """

    msg: str
    f: Callable[[], None] | None = field(default=None, repr=False)
    fatal: bool = False

    @property
    def is_report(self) -> bool:
        """Return True when there is nothing to execute."""
        return self.f is None

    def run(self) -> None:
        """Perform the side effect."""
        if self.f is not None:
            self.f()


class CorrectionLog:
    """Thread-safe accumulator of corrections per provider."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._corrections: dict[str, list[Correction]] = {}
        self._counts: dict[str, int] = {}

    def store(self, provider: str, corrections: Sequence[Correction], count: int = 0) -> None:
        """Append corrections for a provider."""
        with self._lock:
            self._corrections.setdefault(provider, []).extend(corrections)
            self._counts[provider] = self._counts.get(provider, 0) + count

    def get(self, provider: str) -> list[Correction]:
        """Return the corrections stored for a provider."""
        with self._lock:
            return list(self._corrections.get(provider, []))

    def change_count(self, provider: str) -> int:
        """Return the number of actual changes stored for a provider."""
        with self._lock:
            return self._counts.get(provider, 0)

    def providers(self) -> list[str]:
        """Return provider names in insertion order."""
        with self._lock:
            return list(self._corrections)
