"""BIND zone-file DNS provider.

Zones live in ``<directory>/<zone>.zone``. The whole file is rewritten
whenever anything changes, with a new SOA serial.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple

import dns.exception
import dns.rdatatype
import dns.zone

from ..diffing import by_zone, zone_records
from ..errors import ZoneFetchError
from ..models import Correction, DomainConfig, Nameserver, Records, to_nameservers
from ..renderer import SOAConfig, parse_soa, render_zone, suggest_serial
from ..zonecache import ZoneCache
from .base import (
    Capability,
    DNSServiceProvider,
    ZoneCreator,
    ZoneLister,
    can,
    cannot,
    record_from_text,
    register_dns_provider_type,
)

LOG = logging.getLogger("zonectl.providers.bindfile")

FEATURES = {
    Capability.CAN_CONCUR: can(),
    Capability.CAN_GET_ZONES: can(),
    Capability.CAN_USE_CAA: can(),
    Capability.CAN_USE_DS: can(),
    Capability.CAN_USE_DS_FOR_CHILDREN: can(),
    Capability.CAN_USE_HTTPS: can(),
    Capability.CAN_USE_PTR: can(),
    Capability.CAN_USE_SRV: can(),
    Capability.CAN_USE_SVCB: can(),
    Capability.CAN_USE_TLSA: can(),
    Capability.CAN_USE_TXT_MULTI: can(),
    Capability.CAN_AUTO_DNSSEC: cannot("Use inline-signing in named.conf"),
    Capability.CAN_USE_SINGLE_REDIRECT: cannot(),
    Capability.DOC_CREATE_DOMAINS: can("Writes an empty zone file"),
    Capability.DOC_DUAL_HOST: can(),
}


class BindProvider(DNSServiceProvider, ZoneCreator, ZoneLister):
    """Reads and writes zone files in a directory."""

    def __init__(self, creds: Mapping[str, str], meta: Mapping[str, Any] | None = None) -> None:
        self.directory = Path(creds.get("directory") or "zones")
        self.serial_strategy = creds.get("serial_strategy") or "date"
        self.template_dirs = [Path(creds["template_dir"])] if creds.get("template_dir") else []
        self.default_ttl = int(creds.get("default_ttl") or 300)
        self.nameservers = to_nameservers(
            name for name in (creds.get("nameservers") or "").split(",") if name.strip()
        )
        self.soa_defaults = {
            key[len("soa_"):]: value for key, value in creds.items() if key.startswith("soa_") and value
        }
        self._soa: Dict[str, Dict[str, Any]] = {}
        self.zones: ZoneCache[Path] = ZoneCache(self._scan_directory)

    def _scan_directory(self) -> Dict[str, Path]:
        """Map zone names to ``<zone>.zone`` files in the directory."""
        if not self.directory.is_dir():
            return {}
        return {path.name[: -len(".zone")]: path for path in sorted(self.directory.glob("*.zone"))}

    def get_nameservers(self, domain: str) -> List[Nameserver]:
        """Return the nameservers configured for this provider."""
        return list(self.nameservers)

    def list_zones(self) -> List[str]:
        """Return the zones that have a file."""
        return sorted(self.zones.get_zone_names())

    def get_zone_records(self, domain: str, meta: Mapping[str, str]) -> Records:
        """Parse the zone file; a missing file is an empty zone."""
        if not self.zones.has_zone(domain):
            return []
        path = self.zones.get_zone(domain)
        try:
            with path.open(encoding="utf-8") as handle:
                zone = dns.zone.from_file(handle, origin=f"{domain}.", relativize=False, check_origin=False)
        except (OSError, dns.exception.DNSException) as exc:
            raise ZoneFetchError(f"cannot read zone file {path}: {exc}") from exc

        records: Records = []
        for name, ttl, rdata in zone.iterate_rdatas():
            rtype = dns.rdatatype.to_text(rdata.rdtype)
            if rtype == "SOA":
                self._soa[domain] = parse_soa(rdata.to_text())
                continue
            record = record_from_text(domain, name.to_text(), ttl, rtype, rdata.to_text(), original=rdata)
            if record is not None:
                records.append(record)
        return records

    def _build_soa(self, domain: str) -> SOAConfig:
        """Combine the current SOA with configured defaults and a fresh serial."""
        base = {**self._soa.get(domain, {}), **self.soa_defaults}
        primary = self.nameservers[0].name if self.nameservers else f"ns.{domain}"
        current_serial = self._soa.get(domain, {}).get("serial")
        return SOAConfig(
            primary_ns=_absolute(str(base.get("primary_ns") or primary)),
            admin_email=_absolute(str(base.get("admin_email") or f"hostmaster.{domain}")),
            serial=suggest_serial(self.serial_strategy, current_serial),
            refresh=int(base.get("refresh") or 3600),
            retry=int(base.get("retry") or 600),
            expire=int(base.get("expire") or 604800),
            minimum=int(base.get("minimum") or 86400),
        )

    def get_zone_records_corrections(self, dc: DomainConfig, existing: Records) -> Tuple[List[Correction], int]:
        """Plan one correction that rewrites the whole zone file."""
        messages, changed, count = by_zone(existing, dc)
        if not changed:
            return [], 0
        render = render_zone(
            dc.name,
            zone_records(existing, dc),
            self._build_soa(dc.name),
            self.directory,
            template_dirs=self.template_dirs,
            default_ttl=dc.default_ttl or self.default_ttl,
        )

        def write() -> None:
            """Write the rendered zone and remember its path."""
            render.output_path.parent.mkdir(parents=True, exist_ok=True)
            render.output_path.write_text(render.text, encoding="utf-8")
            self.zones.set_zone(dc.name, render.output_path)
            LOG.info("Wrote zone file to %s", render.output_path)

        msg = "\n".join(messages + [f"WRITE zone file {render.output_path}"])
        return [Correction(msg, write)], count

    def ensure_zone_exists(self, domain: str, meta: Mapping[str, str]) -> None:
        """Write an empty zone file (SOA only) if none exists."""
        if self.zones.has_zone(domain):
            return
        render = render_zone(domain, [], self._build_soa(domain), self.directory, template_dirs=self.template_dirs)
        render.output_path.parent.mkdir(parents=True, exist_ok=True)
        render.output_path.write_text(render.text, encoding="utf-8")
        self.zones.set_zone(domain, render.output_path)
        LOG.info("Created zone file %s", render.output_path)


def _absolute(name: str) -> str:
    """Append the root dot to a name if missing."""
    return name if name.endswith(".") else f"{name}."


def new_provider(creds: Mapping[str, str], meta: Mapping[str, Any]) -> BindProvider:
    """Build a BindProvider from a credentials entry."""
    return BindProvider(creds, meta)


register_dns_provider_type("BIND", new_provider, FEATURES)
