"""Serialise domains and live zone records into the desired-state document format."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable

import yaml

from . import registry
from .models import DomainConfig, RecordConfig

# Metadata the record kind itself sets while lowering.
_DERIVED_META = {"transform_table"}


def _sort_key(record: RecordConfig) -> tuple[int, str, str, str]:
    """Sort apex records first, then by label, type and data."""
    return (0 if record.name == "@" else 1, record.name, record.type, record.comparable)


def _record_to_dict(record: RecordConfig) -> dict[str, Any]:
    """Convert a record into a serialisable dictionary."""
    entry: dict[str, Any] = {
        "type": record.type,
        "name": record.name,
        "args": registry.lookup(record.type).to_args(record),
    }
    if record.ttl:
        entry["ttl"] = record.ttl
    meta = {key: value for key, value in record.metadata.items() if key not in _DERIVED_META}
    if meta:
        entry["meta"] = meta
    return entry


def records_to_document(domain: str, records: Iterable[RecordConfig]) -> dict[str, Any]:
    """Create a one-domain document from records, e.g. ones read from a provider.

    Apex NS records become the domain's nameserver list.
    """
    kept: list[RecordConfig] = []
    nameservers: list[str] = []
    for record in records:
        if record.type == "SOA":
            continue
        if record.type == "NS" and record.name == "@":
            nameservers.append(record.target.rstrip("."))
            continue
        kept.append(record)
    entries = [_record_to_dict(record) for record in sorted(kept, key=_sort_key)]
    data: dict[str, Any] = {"name": domain.rstrip(".").lower()}
    if nameservers:
        data["nameservers"] = sorted(nameservers)
    data["records"] = entries
    return {"domains": [data]}


def domain_to_dict(dc: DomainConfig) -> dict[str, Any]:
    """Create a dictionary describing a lowered domain."""
    data: dict[str, Any] = {"name": dc.unique_name}
    if dc.registrar_name:
        data["registrar"] = dc.registrar_name
    if dc.dsps:
        data["dsps"] = {name: count.to_int() for name, count in dc.dsps.items()}
    if dc.nameservers:
        data["nameservers"] = [nameserver.name for nameserver in dc.nameservers]
    if dc.default_ttl:
        data["default_ttl"] = dc.default_ttl
    if dc.keep_unknown:
        data["keep_unknown"] = True
    if dc.unmanaged:
        data["ignore"] = list(dc.unmanaged)
    if dc.metadata:
        data["meta"] = dict(dc.metadata)
    records = [_record_to_dict(record) for record in sorted(dc.records, key=_sort_key)]
    for record in sorted(dc.ensure_absent, key=_sort_key):
        entry = _record_to_dict(record)
        entry["ensure_absent"] = True
        records.append(entry)
    data["records"] = records
    return data


def to_yaml(document: dict[str, Any]) -> str:
    """Return YAML representation of a document."""
    return yaml.safe_dump(document, sort_keys=False, allow_unicode=True)


def to_json(document: dict[str, Any]) -> str:
    """Return JSON representation of a document."""
    return json.dumps(document, indent=2)


def write_document(path: Path, content: str) -> None:
    """Write content to the given path, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
