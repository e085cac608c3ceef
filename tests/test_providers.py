import base64

import dns.query
import dns.rcode
import dns.zone
import pytest

from zonectl.errors import (
    ConfigurationError,
    CredentialsError,
    DuplicateTypeError,
    RegistryFrozenError,
    ZoneFetchError,
    ZonectlError,
)
from zonectl.lowering import lower_domain
from zonectl.providers import DEFAULT_REGISTRY, Capability, Support, require_credentials
from zonectl.providers.base import DspType, ProviderRegistry, RegistrarType, can, unimplemented
from zonectl.providers.bindfile import BindProvider
from zonectl.providers.none import NoneRegistrar
from zonectl.providers.rfc2136 import Rfc2136Provider, parse_keyfile
from zonectl.validate import normalize_domain

from tests.support import InMemoryProvider, make_domain, raw

KEYFILE = 'key "zonectl-key" {\n    algorithm hmac-sha256;\n    secret "c2VjcmV0c2VjcmV0";\n};\n'


def _noop_dsp(creds, meta):
    return InMemoryProvider()


def test_registry_rejects_duplicates_and_registration_after_freeze():
    registry = ProviderRegistry()
    registry.register_dns_provider_type("MEMORY", _noop_dsp)
    with pytest.raises(DuplicateTypeError):
        registry.register_dns_provider_type("MEMORY", _noop_dsp)
    registry.freeze()
    with pytest.raises(RegistryFrozenError):
        registry.register_registrar_type("LATE", lambda creds: NoneRegistrar())


def test_type_resolution_against_credentials():
    registry = ProviderRegistry.build(dns_types=[DspType("MEMORY", _noop_dsp, {})])
    assert isinstance(registry.create_dns_provider("-", {"TYPE": "MEMORY"}), InMemoryProvider)
    assert isinstance(registry.create_dns_provider("MEMORY", {}), InMemoryProvider)
    with pytest.raises(ConfigurationError, match="mismatch"):
        registry.create_dns_provider("OTHER", {"TYPE": "MEMORY"})
    with pytest.raises(ConfigurationError, match="missing TYPE"):
        registry.create_dns_provider("-", {})
    with pytest.raises(ConfigurationError, match="no such"):
        registry.create_dns_provider("-", {"TYPE": "GHOST"})


def test_capability_lookup_defaults_to_cannot():
    registry = ProviderRegistry.build(
        dns_types=[DspType("MEMORY", _noop_dsp, {Capability.CAN_USE_CAA: can(), Capability.CAN_USE_DS: unimplemented()})],
        registrar_types=[RegistrarType("FAKE", lambda creds: NoneRegistrar(), {})],
    )
    assert registry.has_capability("MEMORY", Capability.CAN_USE_CAA)
    assert registry.support("MEMORY", Capability.CAN_USE_DS) is Support.UNIMPLEMENTED
    assert registry.support("MEMORY", Capability.CAN_USE_SRV) is Support.CANNOT
    assert not registry.has_capability("FAKE", Capability.CAN_CONCUR)
    with pytest.raises(ConfigurationError):
        registry.support("GHOST", Capability.CAN_CONCUR)


def test_builtin_providers_are_registered():
    assert {"BIND", "RFC2136"} <= set(DEFAULT_REGISTRY.dns_provider_types())
    assert "NONE" in DEFAULT_REGISTRY.registrar_types()
    assert not DEFAULT_REGISTRY.has_capability("RFC2136", Capability.CAN_CONCUR)


def test_none_registrar_never_corrects():
    dc = make_domain("example.com", nameservers=["ns1.example.net"])
    assert NoneRegistrar().get_registrar_corrections(dc) == []


def test_require_credentials():
    assert require_credentials("X", {"a": "1", "b": "2"}, "a") == {"a": "1"}
    with pytest.raises(CredentialsError, match="'b'"):
        require_credentials("X", {"a": "1", "b": ""}, "a", "b")


def _bind(tmp_path):
    return BindProvider(
        {
            "directory": str(tmp_path / "zones"),
            "nameservers": "ns1.example.net, ns2.example.net",
            "soa_admin_email": "hostmaster.example.net.",
        }
    )


def _desired(*records):
    dc = make_domain("example.com", *records, dsps={"bind": None})
    lower_domain(dc)
    normalize_domain(dc, 300)
    return dc


RECORDS = (
    raw("A", "@", "192.0.2.1"),
    raw("AAAA", "www", "2001:db8::1", ttl=600),
    raw("MX", "@", 10, "mail"),
    raw("TXT", "@", "a" * 600),
    raw("SRV", "_sip._tcp", 10, 60, 5060, "sip"),
    raw("CAA", "@", 0, "issue", "letsencrypt.org"),
)


def test_bind_zone_round_trip(tmp_path):
    provider = _bind(tmp_path)
    provider.ensure_zone_exists("example.com", {})
    assert provider.list_zones() == ["example.com"]
    assert provider.get_zone_records("example.com", {}) == []

    dc = _desired(*RECORDS)
    corrections, count = provider.get_zone_records_corrections(dc, [])
    assert count == len(RECORDS)
    (write,) = corrections
    assert "WRITE zone file" in write.msg
    write.run()

    text = (tmp_path / "zones" / "example.com.zone").read_text(encoding="utf-8")
    assert "$ORIGIN example.com." in text
    assert "hostmaster.example.net." in text

    fresh = _bind(tmp_path)
    existing = fresh.get_zone_records("example.com", {})
    txt = next(record for record in existing if record.type == "TXT")
    assert [len(chunk) for chunk in txt.txt] == [255, 255, 90]
    assert fresh.get_zone_records_corrections(_desired(*RECORDS), existing) == ([], 0)


def test_bind_serial_increases_on_rewrite(tmp_path):
    provider = _bind(tmp_path)
    provider.get_zone_records_corrections(_desired(raw("A", "@", "192.0.2.1")), [])[0][0].run()
    first = dns.zone.from_file(str(tmp_path / "zones" / "example.com.zone"), origin="example.com.", relativize=False, check_origin=False)
    serial = first.find_rdataset("example.com.", "SOA")[0].serial

    existing = provider.get_zone_records("example.com", {})
    provider.get_zone_records_corrections(_desired(raw("A", "@", "192.0.2.2")), existing)[0][0].run()
    second = dns.zone.from_file(str(tmp_path / "zones" / "example.com.zone"), origin="example.com.", relativize=False, check_origin=False)
    assert second.find_rdataset("example.com.", "SOA")[0].serial > serial


def test_bind_keeps_hands_off_records(tmp_path):
    provider = _bind(tmp_path)
    provider.get_zone_records_corrections(
        _desired(raw("A", "@", "192.0.2.1"), raw("TXT", "_acme-challenge", "token")), []
    )[0][0].run()
    existing = provider.get_zone_records("example.com", {})
    dc = make_domain("example.com", raw("A", "@", "192.0.2.9"), dsps={"bind": None}, unmanaged=["_acme-challenge"])
    lower_domain(dc)
    normalize_domain(dc, 300)
    provider.get_zone_records_corrections(dc, existing)[0][0].run()
    targets = sorted(record.target for record in provider.get_zone_records("example.com", {}))
    assert targets == ["192.0.2.9", "token"]


def test_parse_keyfile():
    encoded = base64.b64encode(KEYFILE.encode()).decode()
    key = parse_keyfile(encoded, {})
    assert (key.name, key.algorithm, key.secret) == ("zonectl-key", "hmac-sha256", "c2VjcmV0c2VjcmV0")
    assert parse_keyfile(encoded, {"name": "other"}).name == "other"
    with pytest.raises(ConfigurationError):
        parse_keyfile(base64.b64encode(b"garbage").decode(), {})
    with pytest.raises(ConfigurationError):
        parse_keyfile("", {"name": "k", "algorithm": "hmac-sha256"})


def _rfc2136():
    return Rfc2136Provider(
        {
            "server": "192.0.2.53",
            "tsig_name": "zonectl-key",
            "tsig_algorithm": "hmac-sha256",
            "tsig_secret": "c2VjcmV0c2VjcmV0",
            "nameservers": "ns1.example.net",
        }
    )


def test_rfc2136_requires_a_server():
    with pytest.raises(CredentialsError):
        Rfc2136Provider({"tsig_name": "k", "tsig_algorithm": "hmac-sha256", "tsig_secret": "c2VjcmV0"})


def test_rfc2136_reads_zone_by_transfer(monkeypatch):
    zone_text = """
$ORIGIN example.com.
@ 3600 IN SOA ns1.example.net. hostmaster.example.net. 1 3600 600 604800 300
@ 300 IN A 192.0.2.1
@ 300 IN NS ns1.example.net.
www 300 IN CNAME example.com.
"""
    monkeypatch.setattr(dns.query, "xfr", lambda **kwargs: iter(()))
    monkeypatch.setattr(dns.zone, "from_xfr", lambda xfr, relativize: dns.zone.from_text(zone_text, relativize=False))
    records = _rfc2136().get_zone_records("example.com", {})
    assert sorted((r.type, r.name, r.target) for r in records) == [
        ("A", "@", "192.0.2.1"),
        ("CNAME", "www", "example.com."),
        ("NS", "@", "ns1.example.net."),
    ]


def test_rfc2136_transfer_failure(monkeypatch):
    def refuse(**kwargs):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(dns.query, "xfr", refuse)
    with pytest.raises(ZoneFetchError, match="AXFR failed"):
        _rfc2136().get_zone_records("example.com", {})


class _Response:
    def __init__(self, rcode):
        self._rcode = rcode

    def rcode(self):
        return self._rcode


def test_rfc2136_replaces_record_sets(monkeypatch):
    sent = []

    def fake_tcp(update, where, port, timeout):
        sent.append((update, where))
        return _Response(dns.rcode.NOERROR)

    monkeypatch.setattr(dns.query, "tcp", fake_tcp)
    provider = _rfc2136()
    existing = _desired(raw("A", "www", "192.0.2.1")).records
    dc = _desired(raw("A", "www", "192.0.2.1"), raw("A", "www", "192.0.2.2"))
    corrections, count = provider.get_zone_records_corrections(dc, existing)
    assert count == 1
    (correction,) = corrections
    correction.run()

    (update, where), = sent
    assert where == "192.0.2.53"
    text = update.to_text()
    assert "www.example.com. 0 ANY A" in text
    assert "192.0.2.1" in text and "192.0.2.2" in text


def test_rfc2136_update_failure(monkeypatch):
    monkeypatch.setattr(dns.query, "tcp", lambda update, where, port, timeout: _Response(dns.rcode.REFUSED))
    provider = _rfc2136()
    (correction,), _ = provider.get_zone_records_corrections(_desired(raw("A", "new", "192.0.2.7")), [])
    assert "CREATE" in correction.msg
    with pytest.raises(ZonectlError, match="REFUSED"):
        correction.run()


def test_bind_non_ascii_txt_converges(tmp_path):
    provider = _bind(tmp_path)
    value = "café ☃"
    provider.get_zone_records_corrections(_desired(raw("TXT", "@", value)), [])[0][0].run()

    fresh = _bind(tmp_path)
    existing = fresh.get_zone_records("example.com", {})
    (txt,) = [record for record in existing if record.type == "TXT"]
    assert txt.txt == [value]
    assert fresh.get_zone_records_corrections(_desired(raw("TXT", "@", value)), existing) == ([], 0)
