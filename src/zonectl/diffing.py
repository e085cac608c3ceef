"""Compare desired and existing records and describe the changes.

Three granularities are offered to providers: ``by_record`` (one change per
record), ``by_record_set`` (one change per owner name and type),
``by_label`` (one change per owner name) and ``by_zone`` (one change for
the whole zone). All of them share the same pairing logic and produce
deterministic messages and ordering for a given input.
"""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .models import DomainConfig, RecordConfig, RecordKey, Records
from .normalize import fqdn_to_label

CompareFn = Callable[[RecordConfig], str]

IGNORED_TYPES = {"SOA"}


class ChangeType(Enum):
    """Kind of a planned change; REPORT is informational only."""

    REPORT = "REPORT"
    CREATE = "CREATE"
    CHANGE = "CHANGE"
    DELETE = "DELETE"


@dataclass
class Change:
    """One planned change at the granularity the provider asked for."""

    type: ChangeType
    key: RecordKey
    old: Records = field(default_factory=list)
    new: Records = field(default_factory=list)
    msgs: List[str] = field(default_factory=list)

    @property
    def msg(self) -> str:
        """Return all messages joined by newlines."""
        return "\n".join(self.msgs)


@dataclass
class _Op:
    """A record-level difference."""

    type: ChangeType
    old: Optional[RecordConfig] = None
    new: Optional[RecordConfig] = None
    ttl_only: bool = False

    @property
    def record(self) -> RecordConfig:
        """Return the record this operation is about."""
        return self.new if self.new is not None else self.old

    def message(self) -> str:
        """Return the one-line description of the operation."""
        rec = self.record
        head = f"{rec.type} {rec.name_fqdn}"
        if self.type is ChangeType.CREATE:
            return f"+ CREATE {head} {rec.display} ttl={rec.ttl}"
        if self.type is ChangeType.DELETE:
            return f"- DELETE {head} {rec.display} ttl={rec.ttl}"
        if self.type is ChangeType.REPORT:
            return f"= KEEP {head} {rec.display} ttl={rec.ttl} (unknown record kept)"
        old, new = self.old, self.new
        if self.ttl_only:
            return f"± CHANGE-TTL {head} {new.display} ttl={old.ttl} -> {new.ttl}"
        ttl = f"ttl={new.ttl}" if old.ttl == new.ttl else f"ttl={old.ttl} -> {new.ttl}"
        return f"± CHANGE {head} {old.display} -> {new.display} {ttl}"


def matches_patterns(record: RecordConfig, patterns: Iterable[str], origin: str) -> bool:
    """Return True if a record matches any hands-off pattern.

    A pattern is a glob over the short label or the FQDN, optionally
    followed by ``:TYPE`` (itself a glob) to restrict the record types.
    """
    label = fqdn_to_label(record.name_fqdn, origin)
    for pattern in patterns:
        name_glob, _, type_glob = pattern.lower().partition(":")
        if type_glob and not fnmatch.fnmatch(record.type.lower(), type_glob):
            continue
        if fnmatch.fnmatch(label, name_glob) or fnmatch.fnmatch(record.name_fqdn, name_glob):
            return True
    return False


def _signature(record: RecordConfig, compare_fn: Optional[CompareFn]) -> str:
    """Return the comparable form, extended by the provider's compare function."""
    extra = compare_fn(record) if compare_fn else ""
    return f"{record.comparable}|{extra}" if extra else record.comparable


def _same_record(a: RecordConfig, b: RecordConfig) -> bool:
    """Return True if both records have the same key and data."""
    return a.key() == b.key() and a.comparable == b.comparable


class CompareConfig:
    """Both sides of a zone grouped by owner name and type.

    Existing records that match ``dc.unmanaged`` are dropped, SOA records
    are ignored, desired records listed in ``dc.ensure_absent`` are never
    created and existing ones are always deleted.
    """

    def __init__(self, existing: Sequence[RecordConfig], dc: DomainConfig, compare_fn: Optional[CompareFn] = None):
        self.origin = dc.name
        self.keep_unknown = dc.keep_unknown
        self.compare_fn = compare_fn
        self.ensure_absent = list(dc.ensure_absent)
        self.groups: Dict[RecordKey, Tuple[Records, Records]] = {}
        self.hands_off: Dict[RecordKey, Records] = {}
        for record in existing:
            if record.type in IGNORED_TYPES:
                continue
            if matches_patterns(record, dc.unmanaged, dc.name):
                self.hands_off.setdefault(record.key(), []).append(record)
                continue
            self.groups.setdefault(record.key(), ([], []))[0].append(record)
        for record in dc.records:
            if record.type in IGNORED_TYPES or self.is_absent(record):
                continue
            self.groups.setdefault(record.key(), ([], []))[1].append(record)

    def is_absent(self, record: RecordConfig) -> bool:
        """Return True if the record is listed as ensure_absent."""
        return any(_same_record(record, absent) for absent in self.ensure_absent)

    def label_sort_key(self, fqdn: str) -> Tuple[int, str]:
        """Apex first, then labels alphabetically."""
        if fqdn == self.origin:
            return (0, "")
        return (1, fqdn_to_label(fqdn, self.origin))

    def sorted_keys(self) -> List[RecordKey]:
        """Return every record key, most specific labels first."""
        return sorted(self.groups, key=lambda key: (self.label_sort_key(key.name_fqdn), key.type))

    def diff_group(self, key: RecordKey) -> List[_Op]:
        """Pair the existing and desired records of one group."""
        existing, desired = self.groups[key]
        existing = list(existing)
        unmatched: Records = []
        for record in desired:
            sig = _signature(record, self.compare_fn)
            match = next(
                (e for e in existing if _signature(e, self.compare_fn) == sig and e.ttl == record.ttl),
                None,
            )
            if match is None:
                unmatched.append(record)
            else:
                existing.remove(match)
        desired = unmatched

        ops: List[_Op] = []
        ops.extend(self._pair(existing, desired, lambda r: _signature(r, self.compare_fn), ttl_only=True))
        if not self.keep_unknown:
            ops.extend(self._pair(existing, desired, lambda r: r.identity))
            existing.sort(key=lambda r: r.comparable)
            desired.sort(key=lambda r: r.comparable)
            while existing and desired:
                ops.append(_Op(ChangeType.CHANGE, existing.pop(0), desired.pop(0)))
        for record in existing:
            forced = self.is_absent(record)
            ops.append(_Op(ChangeType.REPORT if self.keep_unknown and not forced else ChangeType.DELETE, old=record))
        for record in desired:
            ops.append(_Op(ChangeType.CREATE, new=record))
        return ops

    @staticmethod
    def _pair(existing: Records, desired: Records, key_fn: Callable[[RecordConfig], str], ttl_only: bool = False) -> List[_Op]:
        """Pair desired with existing records by identity into CHANGE operations."""
        ops: List[_Op] = []
        for record in list(desired):
            ident = key_fn(record)
            if not ident:
                continue
            match = next((e for e in existing if key_fn(e) == ident), None)
            if match is None:
                continue
            existing.remove(match)
            desired.remove(record)
            ops.append(_Op(ChangeType.CHANGE, match, record, ttl_only=ttl_only))
        return ops

    def diff(self) -> List[Tuple[RecordKey, List[_Op]]]:
        """Return the non-empty group diffs in presentation order."""
        result = []
        for key in self.sorted_keys():
            ops = self.diff_group(key)
            if ops:
                result.append((key, ops))
        return result


def _rank(change_type: ChangeType, rtype: str) -> int:
    """CNAME removals first and CNAME creations last within a label."""
    if rtype != "CNAME":
        return 1
    if change_type is ChangeType.DELETE:
        return 0
    if change_type is ChangeType.CREATE:
        return 2
    return 1


def _order(changes: List[Change], cc: CompareConfig) -> List[Change]:
    """Sort changes by label with CNAME removals first and CNAME creations last; ties keep input order."""
    indexed = list(enumerate(changes))
    indexed.sort(
        key=lambda item: (
            cc.label_sort_key(item[1].key.name_fqdn),
            _rank(item[1].type, item[1].key.type),
            item[1].key.type,
            item[0],
        )
    )
    return [change for _, change in indexed]


def _count(ops: Iterable[_Op]) -> int:
    """Count operations that change something."""
    return sum(1 for op in ops if op.type is not ChangeType.REPORT)


def by_record(existing: Sequence[RecordConfig], dc: DomainConfig, compare_fn: Optional[CompareFn] = None) -> Tuple[List[Change], int]:
    """One change per record difference."""
    cc = CompareConfig(existing, dc, compare_fn)
    changes: List[Change] = []
    count = 0
    for key, ops in cc.diff():
        count += _count(ops)
        for op in ops:
            changes.append(
                Change(
                    op.type,
                    key,
                    old=[op.old] if op.old is not None else [],
                    new=[op.new] if op.new is not None else [],
                    msgs=[op.message()],
                )
            )
    return _order(changes, cc), count


def _set_change(key: RecordKey, ops: List[_Op], existing: Records, desired: Records, hands_off: Sequence[RecordConfig] = ()) -> Change:
    """Fold the operations of one record set into a single Change."""
    msgs = [op.message() for op in ops]
    if all(op.type is ChangeType.REPORT for op in ops):
        return Change(ChangeType.REPORT, key, old=list(existing), msgs=msgs)
    kept = [op.old for op in ops if op.type is ChangeType.REPORT]
    new = list(desired) + kept + list(hands_off)
    existing = list(existing) + list(hands_off)
    if not existing:
        return Change(ChangeType.CREATE, key, new=new, msgs=msgs)
    if not new:
        return Change(ChangeType.DELETE, key, old=list(existing), msgs=msgs)
    return Change(ChangeType.CHANGE, key, old=list(existing), new=new, msgs=msgs)


def by_record_set(existing: Sequence[RecordConfig], dc: DomainConfig, compare_fn: Optional[CompareFn] = None) -> Tuple[List[Change], int]:
    """One change per (owner name, type) whose membership or TTLs differ.

    ``new`` holds the full desired set (plus kept unknown and hands-off records)
    and ``old`` the full existing set, so providers can replace the set.
    """
    cc = CompareConfig(existing, dc, compare_fn)
    changes: List[Change] = []
    count = 0
    for key, ops in cc.diff():
        count += _count(ops)
        old, new = cc.groups[key]
        changes.append(_set_change(key, ops, old, new, cc.hands_off.get(key, [])))
    return _order(changes, cc), count


def by_label(existing: Sequence[RecordConfig], dc: DomainConfig, compare_fn: Optional[CompareFn] = None) -> Tuple[List[Change], int]:
    """One change per owner name; the key's type is empty."""
    cc = CompareConfig(existing, dc, compare_fn)
    per_label: Dict[str, Tuple[List[_Op], Records, Records]] = {}
    changed_labels: List[str] = []
    for key, ops in cc.diff():
        if key.name_fqdn not in per_label:
            per_label[key.name_fqdn] = ([], [], [])
            changed_labels.append(key.name_fqdn)
        per_label[key.name_fqdn][0].extend(ops)
    for key in cc.sorted_keys():
        if key.name_fqdn in per_label:
            old, new = cc.groups[key]
            per_label[key.name_fqdn][1].extend(old)
            per_label[key.name_fqdn][2].extend(new)
    changes: List[Change] = []
    count = 0
    for fqdn in changed_labels:
        ops, old, new = per_label[fqdn]
        count += _count(ops)
        changes.append(_set_change(RecordKey(fqdn, ""), ops, old, new))
    return changes, count


def by_zone(existing: Sequence[RecordConfig], dc: DomainConfig, compare_fn: Optional[CompareFn] = None) -> Tuple[List[str], bool, int]:
    """Describe the difference for providers that replace the whole zone.

    Returns ``(messages, changed, actual_change_count)``. ``changed`` is
    False when only reports were produced.
    """
    changes, count = by_record(existing, dc, compare_fn)
    messages = [change.msg for change in changes]
    return messages, count > 0, count


def zone_records(existing: Sequence[RecordConfig], dc: DomainConfig) -> Records:
    """Return the records a whole-zone provider should publish.

    This is the desired set plus existing records that are kept because of
    ``keep_unknown`` or the hands-off patterns.
    """
    cc = CompareConfig(existing, dc)
    result = [record for record in dc.records if not cc.is_absent(record)]
    for record in existing:
        if record.type in IGNORED_TYPES:
            continue
        if matches_patterns(record, dc.unmanaged, dc.name):
            result.append(record)
    for _, ops in cc.diff():
        result.extend(op.old for op in ops if op.type is ChangeType.REPORT)
    return result


def order_deletes_first(changes: Sequence[Change]) -> List[Change]:
    """Stable partition: DELETEs, then CREATEs, then CHANGEs, then REPORTs."""
    rank = {ChangeType.DELETE: 0, ChangeType.CREATE: 1, ChangeType.CHANGE: 2, ChangeType.REPORT: 3}
    return sorted(changes, key=lambda change: rank[change.type])
