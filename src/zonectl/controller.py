"""High-level orchestration: plan corrections for each domain and execute them."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import AppConfig
from .errors import ConfigurationError, CorrectionError, ReconcileError, ZoneFetchError, ZonectlError
from .lowering import lower_domain
from .models import Correction, CorrectionLog, DomainConfig, Nameserver, NameserverMode, RecordConfig
from .providers.base import (
    DEFAULT_REGISTRY,
    Capability,
    DNSServiceProvider,
    ProviderRegistry,
    ZoneCreator,
)
from .spf import process_spf_records
from .transform import apply_import_transforms, apply_record_transforms
from .validate import (
    check_apex_nameservers,
    check_provider_capabilities,
    check_records,
    normalize_domain,
    raise_for_issues,
)

LOG = logging.getLogger("zonectl")


@dataclass(frozen=True)
class ProviderInstance:
    """A configured provider: its name in the document, its type and the implementation."""

    name: str
    type_name: str
    impl: Any


@dataclass
class ProviderPlan:
    """Corrections one provider needs for one domain."""

    provider: str
    corrections: List[Correction] = field(default_factory=list)
    change_count: int = 0
    error: Optional[Exception] = None

    @property
    def actionable(self) -> List[Correction]:
        """Corrections that change something (reports excluded)."""
        return [correction for correction in self.corrections if not correction.is_report]


@dataclass
class DomainPlan:
    """Everything planned for one domain."""

    domain: DomainConfig
    dsp_plans: List[ProviderPlan] = field(default_factory=list)
    registrar_plan: Optional[ProviderPlan] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)

    @property
    def name(self) -> str:
        """Return the unique name of the domain, tag included."""
        return self.domain.unique_name

    def provider_errors(self) -> List[Exception]:
        """Return the errors of the provider and registrar plans."""
        plans = self.dsp_plans + ([self.registrar_plan] if self.registrar_plan else [])
        return [plan.error for plan in plans if plan.error is not None]

    def all_errors(self) -> List[Exception]:
        """Return domain errors followed by provider errors."""
        return self.errors + self.provider_errors()

    def correction_count(self) -> int:
        """Number of corrections that would change something."""
        plans = self.dsp_plans + ([self.registrar_plan] if self.registrar_plan else [])
        return sum(len(plan.actionable) for plan in plans)


@dataclass
class RunReport:
    """Outcome of executing a set of plans."""

    executed: CorrectionLog = field(default_factory=CorrectionLog)
    errors: List[Exception] = field(default_factory=list)
    skipped_registrars: List[str] = field(default_factory=list)
    cancelled: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add_error(self, error: Exception) -> None:
        """Record an error; safe to call from worker threads."""
        with self._lock:
            self.errors.append(error)

    def raise_for_errors(self) -> None:
        """Raise ReconcileError if anything failed."""
        if self.errors:
            raise ReconcileError(self.errors)


def wrap_provider_error(domain: str, provider: str, exc: Exception) -> ZonectlError:
    """Return exc as a ZonectlError; foreign provider failures become ZoneFetchError."""
    if isinstance(exc, ZonectlError):
        return exc
    error = ZoneFetchError(f"{domain}: provider {provider}: {type(exc).__name__}: {exc}")
    error.__cause__ = exc
    return error


def configure_logging(level: str) -> None:
    """Configure logging output."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def determine_nameservers(dc: DomainConfig, dns_providers: Mapping[str, ProviderInstance]) -> List[Nameserver]:
    """Return explicit nameservers followed by those each DNS provider contributes.

    Order is preserved and duplicates (case-insensitive) are dropped.
    """
    collected: List[Nameserver] = list(dc.nameservers)
    for name, count in dc.dsps.items():
        if count.mode is NameserverMode.NONE:
            continue
        instance = dns_providers.get(name)
        if instance is None:
            raise ConfigurationError(f"{dc.name}: unknown DNS provider {name!r}")
        try:
            offered = instance.impl.get_nameservers(dc.name)
        except ZonectlError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise wrap_provider_error(dc.name, name, exc) from exc
        selected = count.select(offered)
        LOG.debug("%s: %s contributes %s of %s nameserver(s)", dc.name, name, len(selected), len(offered))
        collected.extend(selected)
    return list(dict.fromkeys(collected))


def add_ns_records(dc: DomainConfig, ttl: int = 0) -> None:
    """Add apex NS records for nameservers that do not have one yet."""
    present = {r.target.rstrip(".").lower() for r in dc.records if r.type == "NS" and r.name == "@"}
    for nameserver in dc.nameservers:
        if nameserver.name.lower() in present:
            continue
        record = RecordConfig(type="NS", ttl=ttl, target=f"{nameserver.name.lower()}.")
        record.set_label("@", dc.name)
        dc.records.append(record)
        present.add(nameserver.name.lower())


def initialize_providers(
    domains: Iterable[DomainConfig],
    credentials: Mapping[str, Mapping[str, str]],
    registry: ProviderRegistry = DEFAULT_REGISTRY,
) -> Tuple[Dict[str, ProviderInstance], Dict[str, ProviderInstance]]:
    """Instantiate the providers and registrars the domains refer to."""
    dns_providers: Dict[str, ProviderInstance] = {}
    registrars: Dict[str, ProviderInstance] = {}
    for dc in domains:
        for name in dc.dsps:
            if name in dns_providers:
                continue
            creds = credentials.get(name)
            if creds is None:
                raise ConfigurationError(f"DNS provider {name!r} has no credentials entry")
            dns_providers[name] = ProviderInstance(name, creds["TYPE"], registry.create_dns_provider("-", creds))
        name = dc.registrar_name
        if not name or name in registrars:
            continue
        creds = credentials.get(name)
        if creds is None:
            if name.upper() != "NONE":
                raise ConfigurationError(f"registrar {name!r} has no credentials entry")
            creds = {"TYPE": "NONE"}
        registrars[name] = ProviderInstance(name, creds["TYPE"], registry.create_registrar("-", creds))
    return dns_providers, registrars


class Reconciler:
    """Plans and executes reconciliation passes.

    Planning is sequential per domain. Execution runs the corrections of each
    (domain, provider) pair as one job on a thread pool; corrections inside a
    job keep planner order. Registrar corrections of a domain only run after
    all of its DNS provider jobs succeeded.
    """

    def __init__(
        self,
        config: AppConfig,
        registry: ProviderRegistry,
        dns_providers: Mapping[str, ProviderInstance],
        registrars: Mapping[str, ProviderInstance],
        resolver: Any = None,
        printer: Callable[[str], None] | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.dns_providers = dict(dns_providers)
        self.registrars = dict(registrars)
        self.resolver = resolver
        self.printer = printer
        self._cancel = threading.Event()
        self._semaphores: Dict[str, threading.BoundedSemaphore] = {}
        self._semaphore_lock = threading.Lock()

    def cancel(self) -> None:
        """Stop executing at the next correction boundary."""
        if not self._cancel.is_set():
            LOG.warning("Cancellation requested; stopping after in-flight corrections")
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        """Return True once cancel() was called."""
        return self._cancel.is_set()

    def close(self) -> None:
        """Release the SPF resolver, writing its cache."""
        close = getattr(self.resolver, "close", None)
        if close is not None:
            close()

    # Planning

    def plan(self, domains: Sequence[DomainConfig], populate: bool = False) -> List[DomainPlan]:
        """Return one DomainPlan per domain; failures are attached, not raised."""
        plans = [DomainPlan(dc) for dc in domains]
        for plan in plans:
            try:
                lower_domain(plan.domain)
            except ZonectlError as exc:
                LOG.error("%s: %s", plan.name, exc)
                plan.errors.append(exc)
        lowered = [plan for plan in plans if not plan.errors]
        try:
            apply_import_transforms([plan.domain for plan in lowered])
        except ZonectlError as exc:
            LOG.error("%s", exc)
            for plan in lowered:
                plan.errors.append(exc)
            return plans
        for plan in lowered:
            self._plan_domain(plan, populate)
        return plans

    def _plan_domain(self, plan: DomainPlan, populate: bool) -> None:
        """Prepare one domain and plan every provider and the registrar."""
        dc = plan.domain
        try:
            self._prepare(plan)
        except ZonectlError as exc:
            LOG.error("%s: %s", dc.name, exc)
            plan.errors.append(exc)
            return

        for name in dc.dsps:
            plan.dsp_plans.append(self._plan_provider(dc, self.dns_providers[name], populate))

        if dc.registrar_name:
            instance = self.registrars.get(dc.registrar_name)
            registrar_plan = ProviderPlan(dc.registrar_name)
            if instance is None:
                registrar_plan.error = ConfigurationError(f"{dc.name}: unknown registrar {dc.registrar_name!r}")
            else:
                try:
                    registrar_plan.corrections = instance.impl.get_registrar_corrections(dc)
                    registrar_plan.change_count = len(registrar_plan.actionable)
                except Exception as exc:  # noqa: BLE001
                    registrar_plan.error = wrap_provider_error(dc.name, dc.registrar_name, exc)
            if registrar_plan.error is not None:
                LOG.error("%s: registrar %s: %s", dc.name, dc.registrar_name, registrar_plan.error)
            plan.registrar_plan = registrar_plan

        LOG.info(
            "%s: %s correction(s) planned across %s provider(s)",
            dc.name,
            plan.correction_count(),
            len(plan.dsp_plans),
        )

    def _prepare(self, plan: DomainPlan) -> None:
        """Transform, complete and validate the desired records of a domain."""
        dc = plan.domain
        for name in dc.dsps:
            if name not in self.dns_providers:
                raise ConfigurationError(f"{dc.name}: unknown DNS provider {name!r}")
        apply_record_transforms(dc)
        apex_ns = check_apex_nameservers(dc)
        dc.nameservers = determine_nameservers(dc, self.dns_providers)
        add_ns_records(dc)
        normalize_domain(dc, self.config.default_ttl)
        plan.warnings.extend(process_spf_records(dc, self.resolver))

        provider_types = {name: self.dns_providers[name].type_name for name in dc.dsps}
        issues = apex_ns + check_records(dc) + check_provider_capabilities(dc, provider_types, self.registry)
        plan.warnings.extend(str(issue) for issue in issues if not issue.fatal)
        for warning in plan.warnings:
            LOG.warning("%s: %s", dc.name, warning)
        raise_for_issues(dc.name, [issue for issue in issues if issue.fatal])

    def _plan_provider(self, dc: DomainConfig, instance: ProviderInstance, populate: bool) -> ProviderPlan:
        """Fetch the zone from one provider and plan its corrections."""
        result = ProviderPlan(instance.name)
        provider: DNSServiceProvider = instance.impl
        try:
            if populate and isinstance(provider, ZoneCreator):
                provider.ensure_zone_exists(dc.name, dc.metadata)
            existing = provider.get_zone_records(dc.name, dc.metadata)
            result.corrections, result.change_count = provider.get_zone_records_corrections(dc, existing)
        except Exception as exc:  # noqa: BLE001
            result.error = wrap_provider_error(dc.name, instance.name, exc)
            LOG.warning("%s: skipping provider %s: %s", dc.name, instance.name, result.error)
        return result

    # Execution

    def _semaphore(self, instance: ProviderInstance) -> threading.BoundedSemaphore:
        """Return the semaphore bounding concurrent jobs of a provider."""
        with self._semaphore_lock:
            if instance.name not in self._semaphores:
                concurrent = self.registry.has_capability(instance.type_name, Capability.CAN_CONCUR)
                limit = self.config.max_concurrency if concurrent else 1
                self._semaphores[instance.name] = threading.BoundedSemaphore(limit)
            return self._semaphores[instance.name]

    def _run_job(self, domain: str, instance: ProviderInstance, corrections: List[Correction], report: RunReport) -> bool:
        """Run one provider's corrections for one domain, in order."""
        ok = True
        done: List[Correction] = []
        with self._semaphore(instance):
            for correction in corrections:
                if self._cancel.is_set():
                    report.cancelled = True
                    ok = False
                    break
                LOG.info("%s/%s: %s", domain, instance.name, correction.msg)
                if self.printer is not None:
                    self.printer(correction.msg)
                if correction.is_report:
                    continue
                try:
                    correction.run()
                except Exception as exc:  # noqa: BLE001
                    error = CorrectionError(domain, instance.name, correction.msg, exc)
                    LOG.error("%s", error)
                    report.add_error(error)
                    ok = False
                    if correction.fatal:
                        break
                    continue
                done.append(correction)
        report.executed.store(instance.name, done, len(done))
        return ok

    def execute(self, plans: Sequence[DomainPlan]) -> RunReport:
        """Execute planned corrections and return what happened."""
        report = RunReport()
        for plan in plans:
            report.errors.extend(plan.all_errors())
        runnable = [plan for plan in plans if not plan.errors]

        timer: threading.Timer | None = None
        if self.config.timeout > 0:
            timer = threading.Timer(self.config.timeout, self.cancel)
            timer.daemon = True
            timer.start()
        try:
            with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
                futures: Dict[str, List[Any]] = {}
                for plan in runnable:
                    futures[plan.name] = [
                        pool.submit(
                            self._run_job, plan.name, self.dns_providers[dsp.provider], dsp.corrections, report
                        )
                        for dsp in plan.dsp_plans
                        if dsp.error is None and dsp.corrections
                    ]

                registrar_jobs = []
                for plan in runnable:
                    registrar_plan = plan.registrar_plan
                    if registrar_plan is None or registrar_plan.error is not None or not registrar_plan.corrections:
                        continue
                    dsp_ok = all(future.result() for future in futures[plan.name])
                    dsp_ok = dsp_ok and not any(dsp.error for dsp in plan.dsp_plans)
                    if not dsp_ok:
                        LOG.warning("%s: skipping registrar corrections; DNS provider corrections failed", plan.name)
                        report.skipped_registrars.append(plan.name)
                        continue
                    instance = self.registrars[registrar_plan.provider]
                    registrar_jobs.append(
                        pool.submit(self._run_job, plan.name, instance, registrar_plan.corrections, report)
                    )
                for job in registrar_jobs:
                    job.result()
        finally:
            if timer is not None:
                timer.cancel()
        return report
