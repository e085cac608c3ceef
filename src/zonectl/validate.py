"""Normalisation and validation of desired state before planning."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional

from . import registry as rtype_registry
from .dnstree import DomainTree
from .errors import ValidationError
from .models import DEFAULT_TTL, DomainConfig, RecordConfig, group_by_key
from .normalize import label_to_fqdn, to_ascii
from .providers.base import Capability, ProviderRegistry, Support

LOG = logging.getLogger("zonectl")

TYPE_CAPABILITIES = {
    "CAA": Capability.CAN_USE_CAA,
    "CF_SINGLE_REDIRECT": Capability.CAN_USE_SINGLE_REDIRECT,
    "HTTPS": Capability.CAN_USE_HTTPS,
    "PTR": Capability.CAN_USE_PTR,
    "SRV": Capability.CAN_USE_SRV,
    "SVCB": Capability.CAN_USE_SVCB,
    "TLSA": Capability.CAN_USE_TLSA,
}

GLUE_TYPES = {"A", "AAAA"}

# Characters that never appear in a hostname target.
BAD_TARGET_CHARS = frozenset("'\" +,|!£$%&()=?^*ç°§;:<>[]@")

# Kinds whose owner names conventionally carry underscores.
UNDERSCORE_TYPES = {"SRV", "TLSA", "TXT"}


@dataclass
class Issue:
    """A validation finding; fatal issues block planning of the zone."""

    message: str
    record: Optional[RecordConfig] = None
    fatal: bool = True

    def __str__(self) -> str:
        """Prefix the message with the record it concerns."""
        if self.record is None:
            return self.message
        return f"{self.record.type} {self.record.name_fqdn}: {self.message}"


def normalize_domain(dc: DomainConfig, default_ttl: int = DEFAULT_TTL) -> None:
    """IDN-encode names and fill in TTLs of 0."""
    dc.name = to_ascii(dc.name)
    ttl = dc.default_ttl or default_ttl
    for record in list(dc.records) + list(dc.ensure_absent):
        if record.name != "@":
            record.name = to_ascii(record.name)
        record.name_fqdn = label_to_fqdn(record.name, dc.name)
        if rtype_registry.lookup(record.type).hostname_target:
            record.target = to_ascii(record.target)
        if record.ttl == 0:
            record.ttl = ttl


def _check_wildcard(record: RecordConfig) -> Optional[str]:
    """Return a problem with wildcard placement, or None."""
    labels = record.name.split(".")
    for index, label in enumerate(labels):
        if "*" in label and (index != 0 or label != "*"):
            return f"wildcard must be the leftmost label and exactly '*': {record.name!r}"
    return None


def check_target(target: str) -> Optional[str]:
    """Return a problem with a hostname target, or None if it is usable."""
    if target in {"@", "."}:
        return None
    if not target:
        return "empty target"
    if any(char in BAD_TARGET_CHARS for char in target):
        return f"target {target!r} includes an invalid character"
    if "/" in target and not target.endswith(".in-addr.arpa."):
        return f"target {target!r} includes an invalid character"
    if "." in target and not target.endswith("."):
        return f"target {target!r} must end with a dot"
    return None


def _check_underscore(record: RecordConfig, domain: str) -> Optional[str]:
    """Return a warning for an underscore in a label where one is unusual."""
    label = record.name
    if record.type in UNDERSCORE_TYPES or label == "@":
        return None
    if label.startswith(("_", "sql-")) or "._" in label:
        return None
    if "_" in label:
        return f"label {label}.{domain} contains \"_\" (can't be used in a URL)"
    return None


def check_apex_nameservers(dc: DomainConfig) -> List[Issue]:
    """Reject NS records written at the apex; apex NS come from the nameserver list."""
    return [
        Issue("NS record at the apex not allowed; use nameservers instead", record)
        for record in dc.records
        if record.type == "NS" and record.name == "@"
    ]


def check_records(dc: DomainConfig) -> List[Issue]:
    """Return structural issues of a domain's records."""
    issues: List[Issue] = []
    for record in dc.records:
        for warning in rtype_registry.lookup(record.type).audit(record):
            issues.append(Issue(warning, record, fatal=False))
        if record.name_fqdn != label_to_fqdn(record.name, dc.name):
            issues.append(Issue(f"name {record.name!r} and FQDN {record.name_fqdn!r} disagree", record))
        wildcard = _check_wildcard(record)
        if wildcard:
            issues.append(Issue(wildcard, record))
        if record.type == "CNAME" and record.name == "@":
            issues.append(Issue("CNAME at apex (@) not allowed", record))
        if record.type == "CNAME" and record.target.rstrip(".") == record.name_fqdn:
            issues.append(Issue("CNAME loop (target points at itself)", record))
        if rtype_registry.lookup(record.type).hostname_target:
            problem = check_target(record.target)
            if problem:
                issues.append(Issue(problem, record))
        underscore = _check_underscore(record, dc.name)
        if underscore:
            issues.append(Issue(underscore, record, fatal=False))

    by_label: dict[str, Counter] = {}
    for record in dc.records:
        by_label.setdefault(record.name_fqdn, Counter())[record.type] += 1
    for fqdn, types in sorted(by_label.items()):
        if types.get("CNAME", 0) > 1:
            issues.append(Issue(f"{fqdn} has {types['CNAME']} CNAME records"))
        if "CNAME" in types and len(types) > 1:
            others = ", ".join(sorted(t for t in types if t != "CNAME"))
            issues.append(Issue(f"CNAME at {fqdn} cannot coexist with {others}"))

    for key, records in group_by_key(dc.records).items():
        seen = Counter(record.comparable for record in records)
        for comparable, count in sorted(seen.items()):
            if count > 1:
                issues.append(Issue(f"duplicate {key.type} record at {key.name_fqdn}: {comparable}"))
        ttls = {record.ttl for record in records}
        if len(ttls) > 1:
            issues.append(
                Issue(f"{key.type} records at {key.name_fqdn} have different TTLs {sorted(ttls)}", fatal=False)
            )

    absent = {(record.key(), record.comparable) for record in dc.ensure_absent}
    for record in dc.records:
        if (record.key(), record.comparable) in absent:
            issues.append(Issue("record is both desired and listed as ensure_absent", record))

    issues.extend(_check_delegations(dc))
    return issues


def _check_delegations(dc: DomainConfig) -> List[Issue]:
    """Warn about records hidden below a delegation."""
    delegated = [r.name for r in dc.records if r.type == "NS" and r.name != "@"]
    if not delegated:
        return []
    tree = DomainTree.from_names(dc.name, [f"*.{name}" for name in delegated])
    issues = []
    for record in dc.records:
        if record.type in GLUE_TYPES or record.name == "@":
            continue
        if tree.get(record.name_fqdn) and record.name not in delegated:
            issues.append(Issue("record is occluded by a delegation (NS) above it", record, fatal=False))
    return issues


def check_provider_capabilities(
    dc: DomainConfig,
    provider_types: Mapping[str, str],
    providers: ProviderRegistry,
) -> List[Issue]:
    """Check record types against each provider's declared capabilities.

    ``provider_types`` maps provider names used by the domain to their type.
    """
    issues: List[Issue] = []
    used = {record.type for record in dc.records}
    multi_txt = any(record.type == "TXT" and len(record.txt) > 1 for record in dc.records)
    ds_at_apex = any(record.type == "DS" and record.name == "@" for record in dc.records)
    for provider, type_name in sorted(provider_types.items()):
        needed = [(rtype, TYPE_CAPABILITIES[rtype]) for rtype in sorted(used) if rtype in TYPE_CAPABILITIES]
        if "DS" in used:
            needed.append(("DS", Capability.CAN_USE_DS if ds_at_apex else Capability.CAN_USE_DS_FOR_CHILDREN))
        if multi_txt:
            needed.append(("multi-string TXT", Capability.CAN_USE_TXT_MULTI))
        for what, capability in needed:
            support = providers.support(type_name, capability)
            if capability is Capability.CAN_USE_DS_FOR_CHILDREN and support is not Support.CAN:
                support = providers.support(type_name, Capability.CAN_USE_DS)
            if support is Support.CANNOT:
                issues.append(Issue(f"provider {provider} ({type_name}) does not support {what} records"))
            elif support is Support.UNIMPLEMENTED:
                issues.append(
                    Issue(f"provider {provider} ({type_name}) has not implemented {what} records", fatal=False)
                )
        if dc.keep_unknown and providers.support(type_name, Capability.CANT_USE_NOPURGE) is Support.CAN:
            issues.append(Issue(f"provider {provider} ({type_name}) cannot keep unknown records"))
        for message in providers.audit_records(type_name, dc.records):
            issues.append(Issue(f"{provider}: {message}"))
    return issues


def raise_for_issues(domain: str, issues: Iterable[Issue]) -> None:
    """Log non-fatal issues and raise ValidationError listing fatal ones."""
    fatal = []
    for issue in issues:
        if issue.fatal:
            fatal.append(issue)
        else:
            LOG.warning("%s: %s", domain, issue)
    if fatal:
        raise ValidationError(f"{domain}: " + "; ".join(str(issue) for issue in fatal))
