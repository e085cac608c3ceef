import pytest

from zonectl.errors import RecordError, UnknownTypeError
from zonectl.lowering import apply_subdomain, import_raw_records, lower_domain, lower_record
from zonectl.registry import REGISTRY

from tests.support import make_domain, raw


def _lower(*records, name="example.com"):
    dc = make_domain(name, *records)
    lower_domain(dc)
    return dc


def test_apex_a_record():
    dc = _lower(raw("A", "@", "198.51.100.7", ttl=300))
    (record,) = dc.records
    assert record.name == "@"
    assert record.name_fqdn == "example.com"
    assert record.target == "198.51.100.7"
    assert record.ttl == 300
    assert dc.raw_records == []


def test_hostname_targets_become_absolute():
    dc = _lower(raw("CNAME", "www", "web"), raw("MX", "@", 10, "mail.example.net."))
    cname, mx = dc.records
    assert cname.target == "web.example.com."
    assert cname.name_fqdn == "www.example.com"
    assert mx.mx_preference == 10
    assert mx.comparable == "10 mail.example.net."


def test_txt_long_value_is_chunked():
    dc = _lower(raw("TXT", "@", "a" * 600))
    (record,) = dc.records
    assert [len(chunk) for chunk in record.txt] == [255, 255, 90]
    assert record.target == "a" * 600


def test_txt_list_argument_is_rejoined():
    dc = _lower(raw("TXT", "@", ["v=spf1 ", "-all"]))
    assert dc.records[0].target == "v=spf1 -all"
    assert dc.records[0].txt == ["v=spf1 -all"]


def test_structured_types():
    dc = _lower(
        raw("SRV", "_sip._tcp", 10, 60, 5060, "sip"),
        raw("CAA", "@", 0, "ISSUE", "letsencrypt.org"),
        raw("TLSA", "_443._tcp", 3, 1, 1, "ABCDEF01"),
        raw("DS", "child", 12345, 13, 2, "aa bb"),
        raw("HTTPS", "@", 1, ".", 'alpn="h2,h3"'),
    )
    srv, caa, tlsa, ds, https = dc.records
    assert srv.comparable == "10 60 5060 sip.example.com."
    assert caa.comparable == '0 issue "letsencrypt.org"'
    assert tlsa.target == "abcdef01"
    assert ds.comparable == "12345 13 2 aabb"
    assert https.svc_params == "alpn=h2,h3"


def test_fqdn_label_inside_zone_is_shortened():
    dc = _lower(raw("A", "host.example.com.", "192.0.2.1"))
    assert dc.records[0].name == "host"


def test_label_outside_zone_is_rejected():
    with pytest.raises(RecordError, match="outside of the zone"):
        _lower(raw("A", "host.example.net.", "192.0.2.1"))


def test_label_repeating_the_domain_is_rejected_unless_allowed():
    with pytest.raises(RecordError, match="repeats the domain"):
        _lower(raw("A", "www.example.com", "192.0.2.1"))
    dc = _lower(raw("A", "www.example.com", "192.0.2.1", meta={"skip_fqdn_check": True}))
    assert dc.records[0].name_fqdn == "www.example.com.example.com"


def test_subdomain_is_applied():
    assert apply_subdomain("@", "sub") == "sub"
    assert apply_subdomain("www", "sub") == "www.sub"
    dc = _lower(raw("A", "www", "192.0.2.1", subdomain="sub"))
    assert dc.records[0].name_fqdn == "www.sub.example.com"


def test_wrong_arity_is_a_record_error():
    with pytest.raises(RecordError) as excinfo:
        _lower(raw("MX", "@", "mail"))
    assert excinfo.value.rtype == "MX"
    assert excinfo.value.domain == "example.com"


def test_bad_address_is_a_record_error():
    with pytest.raises(RecordError, match="invalid IP"):
        _lower(raw("A", "@", "300.1.1.1"))


def test_unknown_type_names_the_domain():
    dc = make_domain("example.com", raw("BOGUS", "@", "x"))
    with pytest.raises(UnknownTypeError, match="example.com"):
        lower_record(dc.raw_records[0], dc, REGISTRY)


def test_lowering_is_all_or_nothing():
    dc = make_domain("example.com", raw("A", "@", "192.0.2.1"), raw("A", "bad", "nope"))
    with pytest.raises(RecordError):
        lower_domain(dc)
    assert dc.records == []


def test_ensure_absent_records_are_kept_apart():
    dc = _lower(raw("A", "@", "192.0.2.1"), raw("A", "old", "192.0.2.9", ensure_absent=True))
    assert [r.name for r in dc.records] == ["@"]
    assert [r.name for r in dc.ensure_absent] == ["old"]


def test_metadata_values_are_strings():
    dc = _lower(raw("A", "@", "192.0.2.1", meta={"flag": True, "count": 3}))
    assert dc.records[0].metadata == {"flag": "true", "count": "3"}


def test_import_raw_records_lowers_every_domain():
    first = make_domain("example.com", raw("A", "@", "192.0.2.1"))
    second = make_domain("example.net", raw("CNAME", "www", "@"))
    import_raw_records([first, second])
    assert [r.target for r in first.records] == ["192.0.2.1"]
    assert [r.target for r in second.records] == ["example.net."]
    assert first.raw_records == [] and second.raw_records == []
