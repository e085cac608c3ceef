import threading
import time

import pytest

from zonectl.controller import Reconciler, add_ns_records, determine_nameservers, initialize_providers
from zonectl.errors import ConfigurationError, CorrectionError, ReconcileError, ZoneFetchError
from zonectl.models import Nameserver

from tests.support import (
    FakeRegistrar,
    InMemoryProvider,
    instance,
    make_config,
    make_domain,
    memory_registry,
    raw,
)


def _reconciler(providers, registrars=None, concur=True, **config):
    return Reconciler(
        make_config(**config),
        memory_registry(concur=concur),
        {name: instance(name, impl) for name, impl in providers.items()},
        {name: instance(name, impl, "FAKE") for name, impl in (registrars or {}).items()},
    )


def _apex_a():
    return make_domain("example.com", raw("A", "@", "198.51.100.7", ttl=300), dsps={"mem": None})


def test_apex_a_record_create_then_nothing_to_do():
    provider = InMemoryProvider()
    reconciler = _reconciler({"mem": provider})

    (plan,) = reconciler.plan([_apex_a()])
    assert plan.all_errors() == []
    (correction,) = plan.dsp_plans[0].corrections
    assert "CREATE A example.com 198.51.100.7 ttl=300" in correction.msg

    report = reconciler.execute([plan])
    assert report.errors == []
    assert report.executed.change_count("mem") == 1
    assert [r.target for r in provider.zones["example.com"]] == ["198.51.100.7"]

    (again,) = reconciler.plan([_apex_a()])
    assert again.correction_count() == 0


def test_nameserver_accounting():
    p1 = InMemoryProvider(nameservers=["a.ns.example", "b.ns.example", "c.ns.example", "d.ns.example"])
    p2 = InMemoryProvider(nameservers=["never.ns.example"])
    dc = make_domain("example.com", dsps={"p1": 2, "p2": 0}, nameservers=["ns1.x."])
    providers = {"p1": instance("p1", p1), "p2": instance("p2", p2)}

    nameservers = determine_nameservers(dc, providers)
    assert nameservers == [Nameserver("ns1.x"), Nameserver("a.ns.example"), Nameserver("b.ns.example")]

    dc.nameservers = nameservers
    add_ns_records(dc, ttl=300)
    assert sorted(r.target for r in dc.records) == ["a.ns.example.", "b.ns.example.", "ns1.x."]
    assert all(r.name == "@" and r.type == "NS" for r in dc.records)


def test_nameservers_are_deduplicated_case_insensitively():
    provider = InMemoryProvider(nameservers=["NS1.X", "ns2.x"])
    dc = make_domain("example.com", dsps={"mem": None}, nameservers=["ns1.x"])
    assert [ns.name for ns in determine_nameservers(dc, {"mem": instance("mem", provider)})] == ["ns1.x", "ns2.x"]


def test_full_pass_is_idempotent_including_registrar():
    provider = InMemoryProvider(nameservers=["ns1.mem.example", "ns2.mem.example"])
    registrar = FakeRegistrar()
    reconciler = _reconciler({"mem": provider}, {"reg": registrar})

    def domain():
        return make_domain(
            "example.com",
            raw("A", "@", "192.0.2.1"),
            raw("MX", "@", 10, "mail"),
            raw("TXT", "@", "v=spf1 -all"),
            raw("CNAME", "www", "@"),
            dsps={"mem": None},
            registrar="reg",
        )

    plans = reconciler.plan([domain()])
    assert plans[0].correction_count() > 0
    report = reconciler.execute(plans)
    report.raise_for_errors()
    assert [ns.name for ns in registrar.delegations["example.com"]] == ["ns1.mem.example", "ns2.mem.example"]

    plans = reconciler.plan([domain()])
    assert plans[0].correction_count() == 0
    assert plans[0].registrar_plan.corrections == []


class _LoggingProvider(InMemoryProvider):
    def __init__(self, log, **kwargs):
        super().__init__(**kwargs)
        self.log = log

    def _apply(self, domain, change):
        time.sleep(0.01)
        super()._apply(domain, change)
        self.log.append(("dsp", domain))


def test_registrar_runs_after_dns_providers():
    log = []
    provider = _LoggingProvider(log, nameservers=["ns1.mem.example"])
    registrar = FakeRegistrar(log=log)
    reconciler = _reconciler({"mem": provider}, {"reg": registrar})
    domains = [
        make_domain(name, raw("A", "@", "192.0.2.1"), raw("A", "www", "192.0.2.2"), dsps={"mem": None}, registrar="reg")
        for name in ("one.example", "two.example")
    ]
    report = reconciler.execute(reconciler.plan(domains))
    assert report.errors == []
    for name in ("one.example", "two.example"):
        entries = [kind for kind, domain in log if domain == name]
        assert entries[-1] == "registrar"
        assert entries.count("registrar") == 1
        assert entries.count("dsp") >= 2


def test_registrar_is_skipped_when_a_dns_provider_fails():
    provider = InMemoryProvider(nameservers=["ns1.mem.example"], fail_on="www.example.com")
    registrar = FakeRegistrar()
    reconciler = _reconciler({"mem": provider}, {"reg": registrar})
    dc = make_domain(
        "example.com",
        raw("A", "@", "192.0.2.1"),
        raw("A", "www", "192.0.2.2"),
        dsps={"mem": None},
        registrar="reg",
    )
    report = reconciler.execute(reconciler.plan([dc]))
    assert len(report.errors) == 1
    assert isinstance(report.errors[0], CorrectionError)
    assert report.skipped_registrars == ["example.com"]
    assert "example.com" not in registrar.delegations
    with pytest.raises(ReconcileError):
        report.raise_for_errors()
    # corrections after the failed one still ran
    assert any(key.startswith("example.com:") for _, _, key in provider.applied)


def test_validation_errors_block_the_domain_only():
    provider = InMemoryProvider()
    reconciler = _reconciler({"mem": provider})
    bad = make_domain("bad.example", raw("CNAME", "@", "other.example.net."), dsps={"mem": None})
    good = make_domain("good.example", raw("A", "@", "192.0.2.1"), dsps={"mem": None})
    bad_plan, good_plan = reconciler.plan([bad, good])
    assert any("CNAME at apex (@) not allowed" in str(error) for error in bad_plan.errors)
    assert bad_plan.dsp_plans == []
    report = reconciler.execute([bad_plan, good_plan])
    assert "bad.example" not in provider.zones
    assert [r.target for r in provider.zones["good.example"]] == ["192.0.2.1"]
    assert len(report.errors) == 1


def test_apex_ns_written_by_hand_blocks_the_domain():
    provider = InMemoryProvider(nameservers=["ns1.mem.example"])
    reconciler = _reconciler({"mem": provider})
    dc = make_domain("example.com", raw("NS", "@", "ns1.other.example."), dsps={"mem": None})
    (plan,) = reconciler.plan([dc])
    assert any("use nameservers instead" in str(error) for error in plan.errors)
    assert plan.dsp_plans == []


def test_unknown_provider_is_an_error():
    reconciler = _reconciler({})
    (plan,) = reconciler.plan([make_domain("example.com", dsps={"ghost": None})])
    assert isinstance(plan.errors[0], ConfigurationError)


def test_provider_fetch_failure_is_isolated():
    class Broken(InMemoryProvider):
        def get_zone_records(self, domain, meta):
            raise ZoneFetchError("server unreachable")

    healthy = InMemoryProvider()
    reconciler = _reconciler({"broken": Broken(), "mem": healthy})
    dc = make_domain("example.com", raw("A", "@", "192.0.2.1"), dsps={"broken": None, "mem": None})
    (plan,) = reconciler.plan([dc])
    errors = {p.provider: p.error for p in plan.dsp_plans}
    assert isinstance(errors["broken"], ZoneFetchError)
    assert errors["mem"] is None
    report = reconciler.execute([plan])
    assert healthy.zones["example.com"]
    assert any(isinstance(error, ZoneFetchError) for error in report.errors)


def test_foreign_provider_exceptions_only_skip_their_zone():
    class Flaky(InMemoryProvider):
        def get_zone_records(self, domain, meta):
            if domain == "a.example":
                raise RuntimeError("HTTP 503 from provider API")
            return super().get_zone_records(domain, meta)

        def get_nameservers(self, domain):
            if domain == "c.example":
                raise KeyError(domain)
            return super().get_nameservers(domain)

    reconciler = _reconciler({"mem": Flaky()})
    domains = [
        make_domain(name, raw("A", "@", "192.0.2.1"), dsps={"mem": None})
        for name in ("a.example", "b.example", "c.example")
    ]
    broken, healthy, no_nameservers = reconciler.plan(domains)

    (failed,) = broken.dsp_plans
    assert isinstance(failed.error, ZoneFetchError)
    assert "HTTP 503" in str(failed.error)
    assert isinstance(failed.error.__cause__, RuntimeError)

    assert healthy.all_errors() == []
    assert healthy.correction_count() == 1

    assert isinstance(no_nameservers.errors[0], ZoneFetchError)
    assert no_nameservers.dsp_plans == []


def test_populate_creates_missing_zones():
    provider = InMemoryProvider()
    reconciler = _reconciler({"mem": provider})
    reconciler.plan([_apex_a()], populate=False)
    assert provider.created == []
    reconciler.plan([_apex_a()], populate=True)
    assert provider.created == ["example.com"]


def test_cancel_stops_before_the_next_correction():
    provider = InMemoryProvider()
    reconciler = _reconciler({"mem": provider})
    plans = reconciler.plan([_apex_a()])
    reconciler.cancel()
    report = reconciler.execute(plans)
    assert report.cancelled
    assert provider.applied == []


def test_providers_that_cannot_concur_run_one_job_at_a_time():
    active = []
    peak = []
    lock = threading.Lock()

    class Serial(InMemoryProvider):
        def _apply(self, domain, change):
            with lock:
                active.append(domain)
                peak.append(len(active))
            time.sleep(0.02)
            super()._apply(domain, change)
            with lock:
                active.remove(domain)

    provider = Serial()
    reconciler = _reconciler({"mem": provider}, concur=False, workers=8)
    domains = [make_domain(f"d{n}.example", raw("A", "@", "192.0.2.1"), dsps={"mem": None}) for n in range(6)]
    report = reconciler.execute(reconciler.plan(domains))
    assert report.errors == []
    assert max(peak) == 1
    assert len(provider.zones) == 6


def test_concurrent_providers_respect_max_concurrency():
    active = []
    peak = []
    lock = threading.Lock()

    class Parallel(InMemoryProvider):
        def _apply(self, domain, change):
            with lock:
                active.append(domain)
                peak.append(len(active))
            time.sleep(0.05)
            super()._apply(domain, change)
            with lock:
                active.remove(domain)

    provider = Parallel()
    reconciler = _reconciler({"mem": provider}, workers=8, max_concurrency=2)
    domains = [make_domain(f"d{n}.example", raw("A", "@", "192.0.2.1"), dsps={"mem": None}) for n in range(6)]
    reconciler.execute(reconciler.plan(domains))
    assert max(peak) <= 2


def test_split_horizon_views_reconcile_independently():
    internal = InMemoryProvider()
    public = InMemoryProvider()
    reconciler = _reconciler({"internal": internal, "public": public})
    inside = make_domain("example.com!inside", raw("A", "@", "10.0.0.1"), dsps={"internal": None})
    outside = make_domain("example.com!outside", raw("A", "@", "192.0.2.1"), dsps={"public": None})

    plans = reconciler.plan([inside, outside])
    assert [plan.name for plan in plans] == ["example.com!inside", "example.com!outside"]
    report = reconciler.execute(plans)
    assert report.errors == []
    assert [r.target for r in internal.zones["example.com"]] == ["10.0.0.1"]
    assert [r.target for r in public.zones["example.com"]] == ["192.0.2.1"]


def test_initialize_providers():
    registry = memory_registry()
    domains = [make_domain("example.com", dsps={"mem": None}, registrar="reg")]
    creds = {"mem": {"TYPE": "MEMORY"}, "reg": {"TYPE": "FAKE"}}
    dns_providers, registrars = initialize_providers(domains, creds, registry)
    assert dns_providers["mem"].type_name == "MEMORY"
    assert isinstance(dns_providers["mem"].impl, InMemoryProvider)
    assert isinstance(registrars["reg"].impl, FakeRegistrar)


def test_initialize_providers_requires_credentials():
    with pytest.raises(ConfigurationError):
        initialize_providers([make_domain("example.com", dsps={"mem": None})], {}, memory_registry())
