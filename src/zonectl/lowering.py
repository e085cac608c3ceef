"""Lower the untyped records of the desired-state document into RecordConfigs."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from . import registry as rtype_registry
from .errors import RecordError, UnknownTypeError
from .models import DomainConfig, RawRecordConfig, RecordConfig
from .normalize import fqdn_to_label, is_in_zone
from .registry import RTypeRegistry, check_args

LOG = logging.getLogger("zonectl")


def _format_meta(value: Any) -> str:
    """Render a metadata value as a string."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def apply_subdomain(label: str, subdomain: str) -> str:
    """Return label with an extension-scope subdomain appended."""
    if not subdomain:
        return label
    if label == "@":
        return subdomain
    return f"{label}.{subdomain}"


def _resolve_label(raw: RawRecordConfig, domain: str, metadata: dict[str, str]) -> str:
    """Return the short label of a raw record."""
    if not raw.args or not isinstance(raw.args[0], str):
        raise ValueError("the first argument must be the label")
    label = raw.args[0].strip()
    if label.endswith("."):
        if not is_in_zone(label, domain):
            raise ValueError(f"label {label!r} is outside of the zone")
        label = fqdn_to_label(label, domain)
    elif label != "@" and is_in_zone(label, domain) and metadata.get("skip_fqdn_check") != "true":
        raise ValueError(
            f"label {label!r} repeats the domain name; use {fqdn_to_label(label, domain)!r} "
            "or set skip_fqdn_check"
        )
    return apply_subdomain(label, raw.subdomain)


def lower_record(raw: RawRecordConfig, dc: DomainConfig, handlers: RTypeRegistry) -> RecordConfig:
    """Build one RecordConfig from a raw tuple."""
    rtype = raw.type.upper()
    label = raw.args[0] if raw.args else ""
    try:
        handler = handlers.lookup(rtype)
    except UnknownTypeError as exc:
        raise UnknownTypeError(f"{dc.name}: {exc} (label {label!r})") from exc

    metadata: dict[str, str] = {}
    for meta in raw.metas:
        for key, value in meta.items():
            metadata[str(key)] = _format_meta(value)

    rc = RecordConfig(type=rtype, ttl=raw.ttl, subdomain=raw.subdomain, metadata=metadata)
    try:
        rc.set_label(_resolve_label(raw, dc.name, metadata), dc.name)
        args = check_args(rtype, handler.signature, raw.args[1:])
        handler.from_raw(rc, dc.name, args, metadata)
    except ValueError as exc:
        raise RecordError(rtype, str(label), dc.name, exc) from exc
    return rc


def lower_domain(dc: DomainConfig, handlers: RTypeRegistry | None = None) -> None:
    """Lower all raw records of a domain.

    Either every record is lowered or the domain is left untouched.
    """
    handlers = handlers or rtype_registry.REGISTRY
    records: list[RecordConfig] = []
    absent: list[RecordConfig] = []
    for raw in dc.raw_records:
        rc = lower_record(raw, dc, handlers)
        (absent if raw.ensure_absent else records).append(rc)
    dc.records.extend(records)
    dc.ensure_absent.extend(absent)
    LOG.debug("Lowered %s record(s) for %s (%s ensure-absent)", len(records), dc.name, len(absent))
    dc.raw_records = []


def import_raw_records(domains: Iterable[DomainConfig], handlers: RTypeRegistry | None = None) -> None:
    """Lower the raw records of every domain."""
    for dc in domains:
        lower_domain(dc, handlers)
