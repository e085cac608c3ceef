"""SPF policy parsing, lookup accounting, flattening and splitting.

TXT lookups go through a resolver object exposing ``get_txt(label)``.
:class:`LiveResolver` queries DNS with dnspython, :class:`PreloadedResolver`
answers from a cache file, and :class:`CachingResolver` puts a shared
:class:`SPFCache` in front of either one.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

import dns.exception
import dns.resolver

from .errors import SPFError, UnsupportedMechanismError
from .models import DomainConfig, RecordConfig
from .normalize import txt_split

LOG = logging.getLogger("zonectl")

SPF_PREFIX = "v=spf1"
MAX_LOOKUPS = 10
QUALIFIERS = "+-~?"
LOOKUP_MECHANISMS = ("a", "mx", "ptr", "exists")


class TxtResolver(Protocol):
    """Anything that answers TXT queries for SPF evaluation."""

    def get_txt(self, label: str) -> List[str]:
        """Return the TXT strings published at label."""
        ...


@dataclass
class SPFPart:
    """One term of an SPF policy."""

    text: str
    lookups: int = 0
    is_all: bool = False
    include_domain: str = ""
    include_record: Optional["SPFRecord"] = None


@dataclass
class SPFRecord:
    """A parsed SPF policy."""

    parts: List[SPFPart] = field(default_factory=list)

    @property
    def lookups(self) -> int:
        """Number of DNS lookups needed to evaluate the policy."""
        return sum(part.lookups for part in self.parts)

    def text(self) -> str:
        """Return the policy as written, without the include targets expanded."""
        return " ".join([SPF_PREFIX] + [part.text for part in self.parts])

    def _flattened_parts(self, names: set[str], top: bool) -> List[str]:
        """Return the terms with includes named in ``names`` replaced by their contents."""
        result: List[str] = []
        for part in self.parts:
            inline = part.include_record is not None and not part.text.startswith(("-", "~", "?"))
            if inline and ("*" in names or part.include_domain in names):
                result.extend(part.include_record._flattened_parts(names, top=False))
            elif part.is_all:
                if top:
                    result.append(part.text)
            else:
                result.append(part.text)
        return result

    def flatten(self, includes: str) -> str:
        """Return the policy with includes inlined.

        ``includes`` is a comma separated list of include domains, or ``*`` for
        every include.
        """
        names = {name.strip().lower() for name in includes.split(",") if name.strip()}
        seen: set[str] = set()
        parts: List[str] = []
        for text in self._flattened_parts(names, top=True):
            if text not in seen:
                seen.add(text)
                parts.append(text)
        return " ".join([SPF_PREFIX] + parts)


def _find_spf(label: str, records: List[str]) -> str:
    """Return the single SPF policy among the TXT strings of label."""
    policies = [record for record in records if record == SPF_PREFIX or record.startswith(SPF_PREFIX + " ")]
    if not policies:
        raise SPFError(f"{label} has no SPF record")
    if len(policies) > 1:
        raise SPFError(f"{label} has {len(policies)} SPF records")
    return policies[0]


def parse(text: str, resolver: TxtResolver | None, _chain: Tuple[str, ...] = ()) -> SPFRecord:
    """Parse an SPF policy, resolving ``include:`` targets recursively.

    Raises:
        SPFError: If the text is not an SPF policy or an include fails.
        UnsupportedMechanismError: For ``redirect=`` and unknown terms.
    """
    if not text.startswith(SPF_PREFIX + " ") and text != SPF_PREFIX:
        raise SPFError(f"not an SPF record: {text!r}")
    record = SPFRecord()
    for token in text.split()[1:]:
        mechanism = token[1:] if token[0] in QUALIFIERS else token
        lowered = mechanism.lower()
        if lowered == "all":
            record.parts.append(SPFPart(token, is_all=True))
            break
        if lowered.startswith(("ip4:", "ip6:")):
            record.parts.append(SPFPart(token))
        elif lowered.startswith("include:"):
            target = mechanism[len("include:"):].rstrip(".").lower()
            if target in _chain:
                raise SPFError(f"include loop: {' -> '.join(_chain + (target,))}")
            if resolver is None:
                raise SPFError(f"cannot resolve include:{target} without a resolver")
            child = parse(_find_spf(target, resolver.get_txt(target)), resolver, _chain + (target,))
            record.parts.append(
                SPFPart(token, lookups=1 + child.lookups, include_domain=target, include_record=child)
            )
        elif lowered.split(":", 1)[0].split("/", 1)[0] in LOOKUP_MECHANISMS:
            record.parts.append(SPFPart(token, lookups=1))
        else:
            raise UnsupportedMechanismError(f"unsupported SPF term {token!r}")
    return record


def check_split_pattern(pattern: str) -> None:
    """Raise SPFError unless pattern numbers overflow labels with one ``%d``."""
    try:
        first, second = pattern % 1, pattern % 2
    except (TypeError, ValueError) as exc:
        raise SPFError(f"spf_split pattern {pattern!r} must contain exactly one %d: {exc}") from exc
    if first == second:
        raise SPFError(f"spf_split pattern {pattern!r} must contain exactly one %d")


def split_spf(text: str, label: str, domain: str, pattern: str = "_spf%d", max_len: int = 255) -> List[Tuple[str, str]]:
    """Chain an over-long policy into several TXT records.

    Returns ``(label, policy)`` pairs. The first pair keeps ``label`` and the
    ``all`` terminator; each record that overflows ends with an include of
    the next one, named by ``pattern`` under ``domain``.
    """
    check_split_pattern(pattern)
    if len(text) <= max_len:
        return [(label, text)]
    tokens = text.split()[1:]
    terminator: List[str] = []
    if tokens and tokens[-1].lstrip(QUALIFIERS).lower() == "all":
        terminator = [tokens.pop()]
    remaining = list(tokens)
    result: List[Tuple[str, str]] = []
    index = 0
    while True:
        name = label if index == 0 else pattern % index
        tail = terminator if index == 0 else []
        current = [SPF_PREFIX]
        if len(" ".join(current + remaining + tail)) <= max_len:
            result.append((name, " ".join(current + remaining + tail)))
            return result
        link = f"include:{pattern % (index + 1)}.{domain}"
        while remaining and len(" ".join(current + [remaining[0], link] + tail)) <= max_len:
            current.append(remaining.pop(0))
        if len(current) == 1:
            raise SPFError(f"SPF term {remaining[0]!r} does not fit in {max_len} characters")
        result.append((name, " ".join(current + [link] + tail)))
        index += 1


def process_spf_records(dc: DomainConfig, resolver: TxtResolver | None) -> List[str]:
    """Flatten and split SPF TXT records according to their metadata.

    Metadata ``spf_flatten`` names the includes to inline (``*`` for all)
    and ``spf_split`` gives the label pattern for overflow records. Returns
    warnings, including policies that exceed the RFC 7208 lookup limit.
    """
    warnings: List[str] = []
    additions: List[RecordConfig] = []
    for record in dc.records:
        if record.type != "TXT" or not record.target.startswith(SPF_PREFIX):
            continue
        to_flatten = record.metadata.get("spf_flatten", "")
        split_pattern = record.metadata.get("spf_split", "")
        if not (to_flatten or split_pattern):
            if resolver is not None:
                warnings.extend(_audit_policy(record, resolver))
            continue

        policy = parse(record.target, resolver)
        text = policy.flatten(to_flatten) if to_flatten else policy.text()
        pieces = split_spf(text, record.name, dc.name, split_pattern) if split_pattern else [(record.name, text)]
        lookups = parse(text, resolver).lookups + len(pieces) - 1
        if lookups > MAX_LOOKUPS:
            warnings.append(f"SPF policy at {record.name_fqdn} needs {lookups} lookups (limit {MAX_LOOKUPS})")
        LOG.info("%s: SPF policy at %s rewritten into %s record(s)", dc.name, record.name, len(pieces))
        for index, (label, value) in enumerate(pieces):
            target = record if index == 0 else record.copy()
            if index:
                target.set_label(label, dc.name)
                additions.append(target)
            target.metadata = {k: v for k, v in record.metadata.items() if not k.startswith("spf_")}
            target.set_txt(txt_split(value))
    dc.records.extend(additions)
    return warnings


def _audit_policy(record: RecordConfig, resolver: TxtResolver | None) -> List[str]:
    """Warn when an SPF policy cannot be parsed or needs too many lookups."""
    try:
        lookups = parse(record.target, resolver).lookups
    except SPFError as exc:
        return [f"SPF policy at {record.name_fqdn} not checked: {exc}"]
    if lookups > MAX_LOOKUPS:
        return [f"SPF policy at {record.name_fqdn} needs {lookups} lookups (limit {MAX_LOOKUPS})"]
    return []


class SPFCache:
    """Shared, additive ``(label, "txt") -> [str]`` store."""

    def __init__(self, entries: Optional[Dict[str, List[str]]] = None) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str], List[str]] = {}
        for label, values in (entries or {}).items():
            self._entries[(label, "txt")] = list(values)

    def get(self, label: str) -> Optional[List[str]]:
        """Return the cached TXT strings of label, or None."""
        with self._lock:
            values = self._entries.get((label, "txt"))
            return list(values) if values is not None else None

    def put(self, label: str, values: List[str]) -> None:
        """Remember the TXT strings of label."""
        with self._lock:
            self._entries[(label, "txt")] = list(values)

    def to_dict(self) -> Dict[str, Dict[str, List[str]]]:
        """Return the cache in its file format."""
        with self._lock:
            return {label: {"txt": list(values)} for (label, _), values in sorted(self._entries.items())}

    def save(self, path: Path) -> None:
        """Write the cache as JSON."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")


def _read_cache_file(path: Path) -> Dict[str, List[str]]:
    """Read a cache file into ``{label: [txt, ...]}``."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise SPFError(f"cannot read SPF cache file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise SPFError(f"SPF cache file {path} must contain an object")
    return {label: list(entry.get("txt", [])) for label, entry in data.items()}


class LiveResolver:
    """Resolve TXT records with dnspython."""

    def __init__(self, resolver: dns.resolver.Resolver | None = None, lifetime: float | None = None) -> None:
        self._resolver = resolver or dns.resolver.Resolver()
        if lifetime is not None:
            self._resolver.lifetime = lifetime

    def get_txt(self, label: str) -> List[str]:
        """Query TXT records; a missing name or answer is an empty list."""
        try:
            answers = self._resolver.resolve(label, "TXT")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        except dns.exception.DNSException as exc:
            LOG.warning("TXT lookup failed for %s: %s", label, exc)
            raise SPFError(f"TXT lookup for {label} failed: {exc}") from exc
        return [
            "".join(part.decode("utf-8", "replace") if isinstance(part, bytes) else str(part) for part in rdata.strings)
            for rdata in answers
        ]


class PreloadedResolver:
    """Answer TXT lookups from a cache file written by :class:`CachingResolver`."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._entries = _read_cache_file(self.path)

    def get_txt(self, label: str) -> List[str]:
        """Return TXT strings from the preloaded file only."""
        if label not in self._entries:
            raise SPFError(f"{label} is not in SPF cache file {self.path}")
        return list(self._entries[label])


class CachingResolver:
    """Consult a shared cache before the wrapped resolver.

    On ``close()`` the cache is written to ``path`` when one was given.
    """

    def __init__(self, resolver: TxtResolver, cache: SPFCache | None = None, path: Path | str | None = None) -> None:
        self._resolver = resolver
        self.cache = cache or SPFCache()
        self.path = Path(path) if path else None

    def get_txt(self, label: str) -> List[str]:
        """Serve from the cache, resolving and storing on a miss."""
        label = label.rstrip(".").lower()
        cached = self.cache.get(label)
        if cached is not None:
            return cached
        values = self._resolver.get_txt(label)
        self.cache.put(label, values)
        return values

    def close(self) -> None:
        """Persist the cache if it came from a file."""
        if self.path is not None:
            self.cache.save(self.path)
            LOG.debug("Wrote SPF cache to %s", self.path)


def build_resolver(live: bool, cache_path: str = "") -> CachingResolver:
    """Return the resolver used by the reconciler."""
    if live:
        return CachingResolver(LiveResolver(), path=cache_path or None)
    if not cache_path:
        raise SPFError("a preloaded SPF resolver needs a cache file")
    return CachingResolver(PreloadedResolver(cache_path))
