from pathlib import Path

from zonectl.config import AppConfig
from zonectl.diffing import ChangeType, by_record_set
from zonectl.models import DomainConfig, NameserverCount, RawRecordConfig, to_nameservers
from zonectl.providers.base import (
    Capability,
    DNSServiceProvider,
    DspType,
    ProviderRegistry,
    Registrar,
    RegistrarType,
    ZoneCreator,
    can,
    cannot,
    corrections_from_changes,
    nameserver_corrections,
)
from zonectl.controller import ProviderInstance


def make_config(**overrides) -> AppConfig:
    values = dict(
        creds_file=Path("creds.json"),
        log_level="INFO",
        max_concurrency=4,
        workers=4,
        default_ttl=300,
        spf_cache="",
        spf_live=False,
        timeout=0,
        populate=True,
    )
    values.update(overrides)
    return AppConfig(**values)


def raw(rtype, *args, ttl=0, meta=None, subdomain="", ensure_absent=False) -> RawRecordConfig:
    return RawRecordConfig(
        type=rtype,
        args=list(args),
        metas=[meta] if meta else [],
        ttl=ttl,
        subdomain=subdomain,
        ensure_absent=ensure_absent,
    )


def make_domain(name, *records, dsps=None, registrar="", nameservers=(), **kwargs) -> DomainConfig:
    return DomainConfig(
        name=name,
        registrar_name=registrar,
        dsps={key: NameserverCount.from_int(value) for key, value in (dsps or {}).items()},
        raw_records=list(records),
        nameservers=to_nameservers(nameservers),
        **kwargs,
    )


class FakeResolver:
    def __init__(self, txt=None):
        self.txt = txt or {}
        self.queries = []

    def get_txt(self, label: str):
        self.queries.append(label)
        return self.txt.get(label, [])


class InMemoryProvider(DNSServiceProvider, ZoneCreator):
    """Keeps zones in a dict and replaces whole record sets."""

    def __init__(self, nameservers=(), zones=None, fail_on=None):
        self.nameservers = to_nameservers(nameservers)
        self.zones = zones if zones is not None else {}
        self.fail_on = fail_on
        self.applied = []
        self.created = []

    def get_nameservers(self, domain):
        return list(self.nameservers)

    def get_zone_records(self, domain, meta):
        return [record.copy() for record in self.zones.get(domain, [])]

    def get_zone_records_corrections(self, dc, existing):
        changes, count = by_record_set(existing, dc)
        return corrections_from_changes(changes, lambda change: self._apply(dc.name, change)), count

    def _apply(self, domain, change):
        if self.fail_on is not None and change.key.name_fqdn == self.fail_on:
            raise RuntimeError(f"refusing to touch {change.key.name_fqdn}")
        self.applied.append((domain, change.type, str(change.key)))
        records = self.zones.setdefault(domain, [])
        if change.type is not ChangeType.CREATE:
            records[:] = [record for record in records if record.key() != change.key]
        records.extend(record.copy() for record in change.new)

    def ensure_zone_exists(self, domain, meta):
        if domain not in self.zones:
            self.created.append(domain)
            self.zones[domain] = []


class FakeRegistrar(Registrar):
    def __init__(self, nameservers=(), log=None):
        self.delegations = {}
        self.default = to_nameservers(nameservers)
        self.log = log if log is not None else []

    def get_registrar_corrections(self, dc):
        current = self.delegations.get(dc.name, self.default)
        return nameserver_corrections(dc, current, lambda wanted: self._update(dc.name, wanted), "fake")

    def _update(self, domain, wanted):
        self.log.append(("registrar", domain))
        self.delegations[domain] = list(wanted)


def memory_registry(concur=True) -> ProviderRegistry:
    features = {
        Capability.CAN_CONCUR: can() if concur else cannot(),
        Capability.CAN_USE_TXT_MULTI: can(),
        Capability.CAN_USE_CAA: can(),
        Capability.CAN_USE_SRV: can(),
    }
    return ProviderRegistry.build(
        dns_types=[DspType("MEMORY", lambda creds, meta: InMemoryProvider(), features)],
        registrar_types=[RegistrarType("FAKE", lambda creds: FakeRegistrar(), {Capability.CAN_CONCUR: can()})],
    )


def instance(name, impl, type_name="MEMORY") -> ProviderInstance:
    return ProviderInstance(name, type_name, impl)
