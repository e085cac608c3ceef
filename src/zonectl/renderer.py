"""Render zone files via Jinja2 templates."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Sequence

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from . import registry
from .errors import ZonectlError
from .models import DEFAULT_TTL, RecordConfig
from .normalize import fqdn_to_label

PACKAGED_TEMPLATES = Path(__file__).parent / "templates"


@dataclass(frozen=True)
class SOAConfig:
    """Values required to render an SOA record."""

    primary_ns: str
    admin_email: str
    serial: int
    refresh: int = 3600
    retry: int = 600
    expire: int = 604800
    minimum: int = 86400


@dataclass
class RenderResult:
    """Holds rendered zone text and destination path."""

    text: str
    output_path: Path


def parse_soa(text: str) -> dict[str, str | int]:
    """Parse SOA rdata into a dict."""
    parts = text.split()
    if len(parts) < 7:
        raise ZonectlError(f"SOA record is malformed: {text!r}")
    return {
        "primary_ns": parts[0],
        "admin_email": parts[1],
        "serial": int(parts[2]),
        "refresh": int(parts[3]),
        "retry": int(parts[4]),
        "expire": int(parts[5]),
        "minimum": int(parts[6]),
    }


def suggest_serial(strategy: str, current_serial: int | None) -> int:
    """Return a serial number that satisfies the chosen strategy."""
    if strategy == "epoch":
        candidate = int(time.time())
    else:
        candidate = int(datetime.now(tz=timezone.utc).strftime("%Y%m%d00"))
    if current_serial is None:
        return candidate
    while candidate <= current_serial:
        candidate += 1
    return candidate


def _record_to_template_data(record: RecordConfig, origin: str) -> dict[str, str | int]:
    """Convert a record into template-friendly data."""
    return {
        "owner": fqdn_to_label(record.name_fqdn, origin),
        "ttl": record.ttl,
        "type": record.type,
        "value": registry.lookup(record.type).to_text(record),
    }


def _sort_key(record: RecordConfig, origin: str) -> tuple:
    """Sort apex records first, then by label, type and data."""
    return (record.name_fqdn != origin, fqdn_to_label(record.name_fqdn, origin), record.type, record.comparable)


def render_zone(
    origin: str,
    records: Iterable[RecordConfig],
    soa: SOAConfig,
    output_dir: Path,
    template_dirs: Sequence[Path] = (),
    default_ttl: int = DEFAULT_TTL,
    template_name: str = "zone.j2",
) -> RenderResult:
    """Render a zone file; templates in ``template_dirs`` override the packaged one."""
    env = Environment(
        loader=FileSystemLoader([str(path) for path in template_dirs] + [str(PACKAGED_TEMPLATES)]),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    template = env.get_template(template_name)
    ordered = sorted(records, key=lambda record: _sort_key(record, origin))
    data = [_record_to_template_data(record, origin) for record in ordered]
    text = template.render(origin=origin, default_ttl=default_ttl, soa=asdict(soa), records=data)
    output_path = output_dir / f"{origin}.zone"
    return RenderResult(text=text.strip() + "\n", output_path=output_path)
