"""Provider-specific record kinds and pseudo records."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..errors import TransformError
from ..models import RecordConfig
from ..registry import ArgKind, RType, register
from ..transform import decode_transform_table

REDIRECT_CODES = {301, 302, 303, 307, 308}


class SingleRedirectRType(RType):
    """Cloudflare "single redirect" rule expressed as a record.

    Arguments: rule name, HTTP status code, match expression, target
    expression. Always attached to the zone apex.
    """

    name = "CF_SINGLE_REDIRECT"
    signature = (ArgKind.STRING, ArgKind.INTEGER, ArgKind.STRING, ArgKind.STRING)

    def from_raw(self, rc: RecordConfig, origin: str, args: Sequence[Any], meta: Mapping[str, str]) -> None:
        """Store the redirect rule in ``extra``; only valid at the apex."""
        if rc.name != "@":
            raise ValueError(f"{self.name} must be placed at the apex, not {rc.name!r}")
        rule, code, when, then = args
        if not when.strip() or not then.strip():
            raise ValueError(f"{self.name} needs both a match and a target expression")
        rc.extra = {"sr_name": rule, "sr_code": code, "sr_when": when, "sr_then": then}
        rc.target = self.comparable(rc)

    def text_to_args(self, text: str) -> list[Any]:
        """Refuse zone-file rdata."""
        raise ValueError(f"{self.name} has no zone-file representation")

    def to_args(self, rc: RecordConfig) -> list[Any]:
        """Return rule name, code, matcher and replacement."""
        extra = rc.extra
        return [extra["sr_name"], extra["sr_code"], extra["sr_when"], extra["sr_then"]]

    def to_text(self, rc: RecordConfig) -> str:
        """Return the comparable form."""
        return self.comparable(rc)

    def comparable(self, rc: RecordConfig) -> str:
        """Return code, matcher and replacement."""
        extra = rc.extra
        return f"{extra['sr_code']} when=({extra['sr_when']}) then=({extra['sr_then']})"

    def display(self, rc: RecordConfig) -> str:
        """Show the rule name with its comparable form."""
        return f"{rc.extra['sr_name']!r} {self.comparable(rc)}"

    def identity(self, rc: RecordConfig) -> str:
        """Pair redirects by rule name."""
        return rc.extra.get("sr_name", "")

    def audit(self, rc: RecordConfig) -> list[str]:
        """Flag unsupported redirect codes."""
        code = rc.extra.get("sr_code")
        if code not in REDIRECT_CODES:
            return [f"redirect code {code} is not one of {sorted(REDIRECT_CODES)}"]
        return []


class ImportTransformRType(RType):
    """Pseudo record: import A/CNAME records from another domain.

    Arguments: transform table, source domain. Expanded and removed before
    validation; it never reaches a provider.
    """

    name = "IMPORT_TRANSFORM"
    signature = (ArgKind.STRING, ArgKind.STRING)

    def from_raw(self, rc: RecordConfig, origin: str, args: Sequence[Any], meta: Mapping[str, str]) -> None:
        """Check the transform table and store it with the source domain."""
        table, source = args
        try:
            decode_transform_table(table)
        except TransformError as exc:
            raise ValueError(str(exc)) from exc
        rc.metadata["transform_table"] = table
        rc.target = source.strip().rstrip(".").lower()

    def to_args(self, rc: RecordConfig) -> list[Any]:
        """Return the transform table and source domain."""
        return [rc.metadata.get("transform_table", ""), rc.target]

    def comparable(self, rc: RecordConfig) -> str:
        """Compare by source domain and table."""
        return f"{rc.target} {rc.metadata.get('transform_table', '')}"


CF_SINGLE_REDIRECT = register(SingleRedirectRType())
IMPORT_TRANSFORM = register(ImportTransformRType())
