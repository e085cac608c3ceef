"""Record kinds whose data has several fields."""

from __future__ import annotations

import re
from typing import Any, Mapping, Sequence

from ..models import RecordConfig
from ..normalize import target_to_fqdn
from ..registry import ArgKind, RType, register

CAA_TAGS = {"issue", "issuewild", "iodef", "issuemail", "issuevmc", "contactemail", "contactphone"}
HEX_PATTERN = re.compile(r"^[0-9a-f]+$")


def _uint(value: int, bits: int, what: str) -> int:
    """Range-check an unsigned integer field."""
    if not 0 <= value < (1 << bits):
        raise ValueError(f"{what} {value} does not fit in {bits} bits")
    return value


def _hex(value: str, what: str) -> str:
    """Return value as lowercase hexadecimal without whitespace."""
    cleaned = "".join(value.split()).lower()
    if not HEX_PATTERN.match(cleaned):
        raise ValueError(f"{what} must be hexadecimal, got {value!r}")
    return cleaned


class MxRType(RType):
    """MX: preference and exchange host."""

    name = "MX"
    signature = (ArgKind.INTEGER, ArgKind.STRING)
    hostname_target = True

    def from_raw(self, rc: RecordConfig, origin: str, args: Sequence[Any], meta: Mapping[str, str]) -> None:
        """Set preference and exchange host."""
        rc.mx_preference = _uint(args[0], 16, "MX preference")
        rc.target = target_to_fqdn(args[1], origin)

    def to_args(self, rc: RecordConfig) -> list[Any]:
        """Return preference and exchange."""
        return [rc.mx_preference, rc.target]

    def to_text(self, rc: RecordConfig) -> str:
        """Return ``preference exchange``."""
        return f"{rc.mx_preference} {rc.target}"

    def identity(self, rc: RecordConfig) -> str:
        """Pair MX records by preference."""
        return str(rc.mx_preference)

    def audit(self, rc: RecordConfig) -> list[str]:
        """Flag a null MX with a non-zero preference."""
        if rc.target == "." and rc.mx_preference != 0:
            return ["null MX (target '.') must use preference 0"]
        return []


class SrvRType(RType):
    """SRV: priority, weight, port and target host."""

    name = "SRV"
    signature = (ArgKind.INTEGER, ArgKind.INTEGER, ArgKind.INTEGER, ArgKind.STRING)
    hostname_target = True

    def from_raw(self, rc: RecordConfig, origin: str, args: Sequence[Any], meta: Mapping[str, str]) -> None:
        """Set priority, weight, port and target host."""
        rc.srv_priority = _uint(args[0], 16, "SRV priority")
        rc.srv_weight = _uint(args[1], 16, "SRV weight")
        rc.srv_port = _uint(args[2], 16, "SRV port")
        rc.target = target_to_fqdn(args[3], origin)

    def to_args(self, rc: RecordConfig) -> list[Any]:
        """Return priority, weight, port and target."""
        return [rc.srv_priority, rc.srv_weight, rc.srv_port, rc.target]

    def to_text(self, rc: RecordConfig) -> str:
        """Return ``priority weight port target``."""
        return f"{rc.srv_priority} {rc.srv_weight} {rc.srv_port} {rc.target}"

    def identity(self, rc: RecordConfig) -> str:
        """Pair SRV records by priority and port."""
        return f"{rc.srv_priority} {rc.srv_port}"

    def audit(self, rc: RecordConfig) -> list[str]:
        """Flag SRV labels that are not ``_service._proto``."""
        if not rc.name.startswith("_"):
            return [f"SRV label {rc.name!r} should be of the form _service._proto"]
        return []


class CaaRType(RType):
    """CAA: flag, property tag and value."""

    name = "CAA"
    signature = (ArgKind.INTEGER, ArgKind.STRING, ArgKind.STRING)

    def from_raw(self, rc: RecordConfig, origin: str, args: Sequence[Any], meta: Mapping[str, str]) -> None:
        """Set flag, tag and value."""
        rc.caa_flag = _uint(args[0], 8, "CAA flag")
        tag = args[1].strip().lower()
        if not tag.isalnum():
            raise ValueError(f"CAA tag {args[1]!r} must be alphanumeric")
        rc.caa_tag = tag
        rc.target = args[2]

    def to_args(self, rc: RecordConfig) -> list[Any]:
        """Return flag, tag and value."""
        return [rc.caa_flag, rc.caa_tag, rc.target]

    def to_text(self, rc: RecordConfig) -> str:
        """Return ``flag tag "value"``."""
        escaped = rc.target.replace("\\", "\\\\").replace('"', '\\"')
        return f'{rc.caa_flag} {rc.caa_tag} "{escaped}"'

    def identity(self, rc: RecordConfig) -> str:
        """Pair CAA records by tag."""
        return rc.caa_tag

    def audit(self, rc: RecordConfig) -> list[str]:
        """Flag unregistered CAA properties."""
        if rc.caa_tag not in CAA_TAGS:
            return [f"CAA tag {rc.caa_tag!r} is not a registered property"]
        return []


class TlsaRType(RType):
    """TLSA: certificate association for a service."""

    name = "TLSA"
    signature = (ArgKind.INTEGER, ArgKind.INTEGER, ArgKind.INTEGER, ArgKind.STRING)

    def from_raw(self, rc: RecordConfig, origin: str, args: Sequence[Any], meta: Mapping[str, str]) -> None:
        """Set usage, selector, matching type and certificate data."""
        rc.tlsa_usage = _uint(args[0], 8, "TLSA usage")
        rc.tlsa_selector = _uint(args[1], 8, "TLSA selector")
        rc.tlsa_matching_type = _uint(args[2], 8, "TLSA matching type")
        rc.target = _hex(args[3], "TLSA certificate data")

    def to_args(self, rc: RecordConfig) -> list[Any]:
        """Return usage, selector, matching type and data."""
        return [rc.tlsa_usage, rc.tlsa_selector, rc.tlsa_matching_type, rc.target]

    def to_text(self, rc: RecordConfig) -> str:
        """Return ``usage selector matching-type data``."""
        return f"{rc.tlsa_usage} {rc.tlsa_selector} {rc.tlsa_matching_type} {rc.target}"

    def identity(self, rc: RecordConfig) -> str:
        """Pair TLSA records by their three parameters."""
        return f"{rc.tlsa_usage} {rc.tlsa_selector} {rc.tlsa_matching_type}"

    def audit(self, rc: RecordConfig) -> list[str]:
        """Flag undefined TLSA parameter values."""
        warnings = []
        if rc.tlsa_usage > 3:
            warnings.append(f"TLSA usage {rc.tlsa_usage} is not defined")
        if rc.tlsa_selector > 1:
            warnings.append(f"TLSA selector {rc.tlsa_selector} is not defined")
        if rc.tlsa_matching_type > 2:
            warnings.append(f"TLSA matching type {rc.tlsa_matching_type} is not defined")
        return warnings


class DsRType(RType):
    """DS: delegation signer digest for a child zone."""

    name = "DS"
    signature = (ArgKind.INTEGER, ArgKind.INTEGER, ArgKind.INTEGER, ArgKind.STRING)

    def from_raw(self, rc: RecordConfig, origin: str, args: Sequence[Any], meta: Mapping[str, str]) -> None:
        """Set key tag, algorithm, digest type and digest."""
        rc.ds_key_tag = _uint(args[0], 16, "DS key tag")
        rc.ds_algorithm = _uint(args[1], 8, "DS algorithm")
        rc.ds_digest_type = _uint(args[2], 8, "DS digest type")
        rc.ds_digest = _hex(args[3], "DS digest")
        rc.target = rc.ds_digest

    def to_args(self, rc: RecordConfig) -> list[Any]:
        """Return key tag, algorithm, digest type and digest."""
        return [rc.ds_key_tag, rc.ds_algorithm, rc.ds_digest_type, rc.ds_digest]

    def to_text(self, rc: RecordConfig) -> str:
        """Return ``key-tag algorithm digest-type digest``."""
        return f"{rc.ds_key_tag} {rc.ds_algorithm} {rc.ds_digest_type} {rc.ds_digest}"

    def identity(self, rc: RecordConfig) -> str:
        """Pair DS records by key tag and digest type."""
        return f"{rc.ds_key_tag} {rc.ds_digest_type}"

    def audit(self, rc: RecordConfig) -> list[str]:
        """Flag DS records at the apex."""
        if rc.name == "@":
            return ["DS records belong to delegations, not the zone apex"]
        return []


class SvcbRType(RType):
    """SVCB and HTTPS records: priority, target and a parameter string."""

    signature = (ArgKind.INTEGER, ArgKind.STRING, ArgKind.STRING)
    hostname_target = True

    def __init__(self, name: str) -> None:
        self.name = name

    def from_raw(self, rc: RecordConfig, origin: str, args: Sequence[Any], meta: Mapping[str, str]) -> None:
        """Set priority, target and normalised parameters."""
        rc.svc_priority = _uint(args[0], 16, f"{self.name} priority")
        rc.target = target_to_fqdn(args[1], origin)
        rc.svc_params = " ".join(args[2].replace('"', "").split())

    def text_to_args(self, text: str) -> list[Any]:
        """Split off priority and target; the parameter list stays raw."""
        fields = text.split(None, 2)
        if len(fields) < 2:
            return super().text_to_args(text)
        if len(fields) == 2:
            fields.append("")
        return fields

    def to_args(self, rc: RecordConfig) -> list[Any]:
        """Return priority, target and parameters."""
        return [rc.svc_priority, rc.target, rc.svc_params]

    def to_text(self, rc: RecordConfig) -> str:
        """Return ``priority target params``."""
        return f"{rc.svc_priority} {rc.target} {rc.svc_params}".rstrip()

    def identity(self, rc: RecordConfig) -> str:
        """Pair service bindings by priority."""
        return str(rc.svc_priority)

    def audit(self, rc: RecordConfig) -> list[str]:
        """Flag alias-mode bindings that carry parameters."""
        if rc.svc_priority == 0 and rc.svc_params:
            return [f"{self.name} alias mode (priority 0) must not carry parameters"]
        return []


MX = register(MxRType())
SRV = register(SrvRType())
CAA = register(CaaRType())
TLSA = register(TlsaRType())
DS = register(DsRType())
SVCB = register(SvcbRType("SVCB"))
HTTPS = register(SvcbRType("HTTPS"))
