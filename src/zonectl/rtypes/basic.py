"""Address and single-hostname record kinds."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..models import RecordConfig
from ..normalize import parse_ip, target_to_fqdn
from ..registry import ArgKind, RType, register


class AddressRType(RType):
    """A and AAAA records."""

    signature = (ArgKind.STRING,)
    version = 4

    def __init__(self, name: str, version: int) -> None:
        self.name = name
        self.version = version

    def from_raw(self, rc: RecordConfig, origin: str, args: Sequence[Any], meta: Mapping[str, str]) -> None:
        """Set the target to the canonical address text."""
        rc.target = str(parse_ip(args[0], self.version))

    def audit(self, rc: RecordConfig) -> list[str]:
        """Flag targets that are not addresses of this family."""
        try:
            parse_ip(rc.target, self.version)
        except ValueError as exc:
            return [str(exc)]
        return []


class HostnameRType(RType):
    """Records whose only data is a hostname (CNAME, NS, PTR)."""

    signature = (ArgKind.STRING,)
    hostname_target = True

    def __init__(self, name: str) -> None:
        self.name = name

    def from_raw(self, rc: RecordConfig, origin: str, args: Sequence[Any], meta: Mapping[str, str]) -> None:
        """Set the target as an absolute hostname."""
        target = args[0].strip()
        if not target:
            raise ValueError(f"{self.name} target cannot be empty")
        rc.target = target_to_fqdn(target, origin)

    def audit(self, rc: RecordConfig) -> list[str]:
        """Flag relative and root targets."""
        if not rc.target.endswith("."):
            return [f"{self.name} target {rc.target!r} is not fully qualified"]
        if rc.target == ".":
            return [f"{self.name} target cannot be the root"]
        return []


A = register(AddressRType("A", 4))
AAAA = register(AddressRType("AAAA", 6))
CNAME = register(HostnameRType("CNAME"))
NS = register(HostnameRType("NS"))
PTR = register(HostnameRType("PTR"))
