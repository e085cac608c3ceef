"""RFC 2136 DNS provider: AXFR for reading, TSIG-signed dynamic updates for writing."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Tuple

import dns.exception
import dns.name
import dns.query
import dns.rcode
import dns.rdatatype
import dns.tsigkeyring
import dns.update
import dns.zone

from .. import registry as rtype_registry
from ..diffing import Change, ChangeType, by_record_set
from ..errors import ConfigurationError, ZoneFetchError, ZonectlError
from ..models import Correction, DomainConfig, Nameserver, Records, to_nameservers
from .base import (
    Capability,
    DNSServiceProvider,
    cannot,
    can,
    corrections_from_changes,
    record_from_text,
    register_dns_provider_type,
    require_credentials,
)

LOG = logging.getLogger("zonectl.providers.rfc2136")

FEATURES = {
    Capability.CAN_CONCUR: cannot("Updates are serialized per server"),
    Capability.CAN_USE_CAA: can(),
    Capability.CAN_USE_DS_FOR_CHILDREN: can(),
    Capability.CAN_USE_HTTPS: can(),
    Capability.CAN_USE_PTR: can(),
    Capability.CAN_USE_SRV: can(),
    Capability.CAN_USE_SVCB: can(),
    Capability.CAN_USE_TLSA: can(),
    Capability.CAN_USE_TXT_MULTI: can(),
    Capability.CAN_GET_ZONES: can(),
}

KEYFILE_PATTERN = re.compile(
    r'key\s+"(?P<name>[^"]+)"\s*\{'
    r"(?P<body>.*?)"
    r"\}",
    re.IGNORECASE | re.DOTALL,
)
ALGORITHM_PATTERN = re.compile(
    r"algorithm\s+(?P<algorithm>[\w-]+)\s*;",
    re.IGNORECASE,
)
SECRET_PATTERN = re.compile(
    r'secret\s+"(?P<secret>[^"]+)"\s*;',
    re.IGNORECASE,
)


@dataclass(frozen=True)
class TsigKey:
    """Holds TSIG credentials used for AXFR and updates."""

    name: str
    algorithm: str
    secret: str


def parse_keyfile(encoded: str, overrides: Mapping[str, str | None]) -> TsigKey:
    """Decode a base64-encoded BIND keyfile; explicit values take precedence."""
    name = overrides.get("name")
    algorithm = overrides.get("algorithm")
    secret = overrides.get("secret")
    if encoded:
        try:
            decoded = base64.b64decode(encoded).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            raise ConfigurationError("Failed to decode TSIG key file base64 payload.") from exc
        match = KEYFILE_PATTERN.search(decoded)
        if not match:
            raise ConfigurationError("TSIG key file does not match expected format.")
        body = match.group("body")
        algo_match = ALGORITHM_PATTERN.search(body)
        secret_match = SECRET_PATTERN.search(body)
        name = name or match.group("name")
        algorithm = algorithm or (algo_match.group("algorithm") if algo_match else None)
        secret = secret or (secret_match.group("secret") if secret_match else None)

    if not all([name, algorithm, secret]):
        raise ConfigurationError("TSIG key missing name, algorithm, or secret.")
    return TsigKey(name=name, algorithm=algorithm, secret=secret)


class Rfc2136Provider(DNSServiceProvider):
    """Talks to an authoritative server that accepts signed updates."""

    def __init__(self, creds: Mapping[str, str], meta: Mapping[str, Any] | None = None) -> None:
        self.server = require_credentials("RFC2136", creds, "server")["server"]
        self.port = int(creds.get("port") or 53)
        self.timeout = float(creds.get("timeout") or 10)
        self.tsig = parse_keyfile(
            creds.get("keyfile_b64", ""),
            overrides={
                "name": creds.get("tsig_name"),
                "algorithm": creds.get("tsig_algorithm"),
                "secret": creds.get("tsig_secret"),
            },
        )
        self.keyring = dns.tsigkeyring.from_text({self.tsig.name: self.tsig.secret})
        self.nameservers = to_nameservers(
            name for name in (creds.get("nameservers") or "").split(",") if name.strip()
        )

    def get_nameservers(self, domain: str) -> List[Nameserver]:
        """Return the nameservers configured for this provider."""
        return list(self.nameservers)

    def get_zone_records(self, domain: str, meta: Mapping[str, str]) -> Records:
        """Transfer the zone with AXFR."""
        try:
            xfr = dns.query.xfr(
                where=self.server,
                zone=domain,
                port=self.port,
                keyring=self.keyring,
                keyname=self.tsig.name,
                relativize=False,
                timeout=self.timeout,
            )
            zone = dns.zone.from_xfr(xfr, relativize=False)
        except (OSError, dns.exception.DNSException) as exc:
            raise ZoneFetchError(f"AXFR failed for zone {domain}: {exc}") from exc

        records: Records = []
        for name, ttl, rdata in zone.iterate_rdatas():
            rtype = dns.rdatatype.to_text(rdata.rdtype)
            if rtype == "SOA":
                continue
            record = record_from_text(domain, name.to_text(), ttl, rtype, rdata.to_text(), original=rdata)
            if record is not None:
                records.append(record)
        return records

    def get_zone_records_corrections(self, dc: DomainConfig, existing: Records) -> Tuple[List[Correction], int]:
        """Plan one dynamic update per changed record set."""
        changes, count = by_record_set(existing, dc)
        return corrections_from_changes(changes, lambda change: self._apply(dc.name, change)), count

    def _apply(self, domain: str, change: Change) -> None:
        """Replace one record set with a single dynamic update."""
        update = dns.update.Update(
            f"{domain}.",
            keyring=self.keyring,
            keyname=self.tsig.name,
            keyalgorithm=self.tsig.algorithm,
        )
        owner = dns.name.from_text(f"{change.key.name_fqdn}.")
        if change.type is not ChangeType.CREATE:
            update.delete(owner, change.key.type)
        for record in change.new:
            update.add(owner, record.ttl, record.type, rtype_registry.lookup(record.type).to_text(record))
        LOG.info("Sending dynamic update for %s %s", change.key.name_fqdn, change.key.type)
        response = dns.query.tcp(update, self.server, port=self.port, timeout=self.timeout)
        rcode = response.rcode()
        if rcode != dns.rcode.NOERROR:
            raise ZonectlError(f"Dynamic update failed with rcode {dns.rcode.to_text(rcode)}")


def new_provider(creds: Mapping[str, str], meta: Mapping[str, Any]) -> Rfc2136Provider:
    """Build an Rfc2136Provider from a credentials entry."""
    return Rfc2136Provider(creds, meta)


register_dns_provider_type("RFC2136", new_provider, FEATURES)
