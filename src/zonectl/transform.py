"""Range-based IPv4 rewriting.

A transform table is a ``;``-separated list of rows
``low ~ high ~ newBase ~ newIP[,newIP...]``. Exactly one of the last two
columns is set per row. ``newBase`` maps an address to the same offset
inside a new range; ``newIP`` replaces it with a fixed list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from ipaddress import IPv4Address
from typing import Iterable, List

from .errors import TransformError
from .models import DomainConfig, RecordConfig
from .normalize import target_to_fqdn

LOG = logging.getLogger("zonectl")

IMPORTED_TTL = 60


@dataclass(frozen=True)
class IPConversion:
    """One row of a transform table."""

    low: IPv4Address
    high: IPv4Address
    new_bases: List[IPv4Address] = field(default_factory=list)
    new_ips: List[IPv4Address] = field(default_factory=list)

    def contains(self, address: IPv4Address) -> bool:
        """Return True if address lies in the rule's range."""
        return self.low <= address <= self.high

    def __str__(self) -> str:
        """Return the rule in table notation."""
        bases = ",".join(str(ip) for ip in self.new_bases)
        ips = ",".join(str(ip) for ip in self.new_ips)
        return f"{self.low}~{self.high}~{bases}~{ips}"


def _parse_ipv4(text: str) -> IPv4Address:
    """Parse one IPv4 address of a transform table."""
    try:
        return IPv4Address(text.strip())
    except ValueError as exc:
        raise TransformError(f"invalid IPv4 address {text.strip()!r} in transform table") from exc


def _parse_list(text: str) -> List[IPv4Address]:
    """Parse a comma-separated address list."""
    return [_parse_ipv4(item) for item in text.split(",") if item.strip()]


def decode_transform_table(text: str) -> List[IPConversion]:
    """Parse a transform table string.

    Raises:
        TransformError: If a row is malformed, a range is inverted, or a row
            sets both (or neither) of newBase and newIP.
    """
    rows: List[IPConversion] = []
    for row in text.split(";"):
        if not row.strip():
            continue
        columns = row.split("~")
        if len(columns) != 4:
            raise TransformError(f"transform row {row.strip()!r} must have 4 '~'-separated fields")
        low = _parse_ipv4(columns[0])
        high = _parse_ipv4(columns[1])
        if low > high:
            raise TransformError(f"transform range {low}~{high}: low is greater than high")
        new_bases = _parse_list(columns[2])
        new_ips = _parse_list(columns[3])
        if bool(new_bases) == bool(new_ips):
            raise TransformError(f"transform row {row.strip()!r} must set exactly one of newBase or newIP")
        rows.append(IPConversion(low=low, high=high, new_bases=new_bases, new_ips=new_ips))
    return rows


def transform_ip_to_list(address: IPv4Address | str, rules: Iterable[IPConversion]) -> List[IPv4Address]:
    """Return the addresses an address maps to; unmatched addresses map to themselves."""
    ip = _parse_ipv4(address) if isinstance(address, str) else address
    for rule in rules:
        if not rule.contains(ip):
            continue
        if rule.new_ips:
            return list(rule.new_ips)
        offset = int(ip) - int(rule.low)
        return [IPv4Address(int(base) + offset) for base in rule.new_bases]
    return [ip]


def transform_ip(address: IPv4Address | str, rules: Iterable[IPConversion]) -> IPv4Address:
    """Unary variant of transform_ip_to_list; fails if the address expands."""
    result = transform_ip_to_list(address, rules)
    if len(result) != 1:
        raise TransformError(f"transform of {address} expands to {len(result)} addresses")
    return result[0]


def apply_record_transforms(dc: DomainConfig) -> None:
    """Rewrite A records that carry a ``transform`` metadata table."""
    additions: List[RecordConfig] = []
    for record in dc.records:
        table = record.metadata.get("transform")
        if record.type != "A" or not table:
            continue
        addresses = transform_ip_to_list(record.target, decode_transform_table(table))
        record.target = str(addresses[0])
        for extra in addresses[1:]:
            duplicate = record.copy()
            duplicate.target = str(extra)
            additions.append(duplicate)
    dc.records.extend(additions)


def _retarget_cname(target: str, source: str, destination: str) -> str:
    """Return a CNAME target of the source zone rewritten under the destination zone."""
    absolute = target_to_fqdn(target, source).rstrip(".")
    return f"{absolute}.{destination}."


def import_transform(source: DomainConfig, destination: DomainConfig, rules: List[IPConversion], ttl: int = 0) -> None:
    """Copy A and CNAME records of source into destination.

    Imported labels are the source FQDN placed under the destination zone.
    A targets go through the transform table; CNAME targets are moved under
    the destination zone. MX, NS and TXT records are not imported.
    """
    for record in source.records:
        if record.type in {"MX", "NS", "TXT"}:
            continue
        if record.type not in {"A", "CNAME"}:
            raise TransformError(f"import transform cannot handle {record.type} record {record.name_fqdn}")

        def imported(target: str) -> RecordConfig:
            """Copy the record into the destination zone with a new target."""
            duplicate = record.copy()
            duplicate.set_label(record.name_fqdn, destination.name)
            duplicate.ttl = ttl or IMPORTED_TTL
            duplicate.target = target
            duplicate.original = None
            return duplicate

        if record.type == "A":
            for address in transform_ip_to_list(record.target, rules):
                destination.records.append(imported(str(address)))
        else:
            destination.records.append(imported(_retarget_cname(record.target, source.name, destination.name)))


def apply_import_transforms(domains: List[DomainConfig]) -> None:
    """Expand IMPORT_TRANSFORM pseudo records, then drop them from every domain."""
    by_name = {dc.name: dc for dc in domains}
    by_name.update((dc.unique_name, dc) for dc in domains)
    for dc in domains:
        for record in [r for r in dc.records if r.type == "IMPORT_TRANSFORM"]:
            source = by_name.get(record.target.rstrip("."))
            if source is None:
                raise TransformError(f"{dc.name}: IMPORT_TRANSFORM source domain {record.target!r} is not defined")
            rules = decode_transform_table(record.metadata.get("transform_table", ""))
            LOG.debug("Importing %s into %s with %s rule(s)", source.name, dc.name, len(rules))
            import_transform(source, dc, rules, record.ttl)
    for dc in domains:
        dc.records = [record for record in dc.records if record.type != "IMPORT_TRANSFORM"]
