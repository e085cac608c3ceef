"""Record type (rtype) registry.

Each record kind registers a handler when its module is imported. After
start-up the table is frozen into a read-only mapping so lookups never need
a lock.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Mapping, Sequence

from .errors import DuplicateTypeError, RegistryFrozenError, UnknownTypeError
from .normalize import tokenize_rfc1035

if TYPE_CHECKING:
    from .models import RecordConfig


class ArgKind(Enum):
    """Admissible kinds of a positional raw-record argument."""

    STRING = "string"
    INTEGER = "integer"
    FLOAT = "floating"
    STRINGS = "list<string>"

    def accepts(self, value: Any) -> bool:
        """Return True if value can be used for this kind."""
        if self is ArgKind.STRING:
            return isinstance(value, str)
        if self is ArgKind.INTEGER:
            if isinstance(value, bool):
                return False
            if isinstance(value, int):
                return True
            if isinstance(value, float):
                return value.is_integer()
            return isinstance(value, str) and value.strip().isdigit()
        if self is ArgKind.FLOAT:
            if isinstance(value, bool):
                return False
            if isinstance(value, (int, float)):
                return True
            if isinstance(value, str):
                try:
                    float(value)
                except ValueError:
                    return False
                return True
            return False
        if isinstance(value, str):
            return True
        return isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value)

    def coerce(self, value: Any) -> Any:
        """Convert an accepted value into its canonical Python type."""
        if self is ArgKind.INTEGER:
            return int(value)
        if self is ArgKind.FLOAT:
            return float(value)
        if self is ArgKind.STRINGS:
            return [value] if isinstance(value, str) else list(value)
        return value


def check_args(rtype: str, signature: Sequence[ArgKind], args: Sequence[Any]) -> list[Any]:
    """Validate arguments against a signature and return them coerced.

    Raises:
        ValueError: If the arity or an argument kind does not match.
    """
    if len(args) != len(signature):
        raise ValueError(f"{rtype} expects {len(signature)} argument(s) after the label, got {len(args)}")
    coerced: list[Any] = []
    for position, (kind, value) in enumerate(zip(signature, args), start=1):
        if not kind.accepts(value):
            raise ValueError(f"{rtype} argument {position} must be {kind.value}, got {value!r}")
        coerced.append(kind.coerce(value))
    return coerced


class RType(ABC):
    """Base class for record kind handlers.

    Subclasses set ``name`` and ``signature`` and implement ``from_raw``.
    ``comparable`` must be stable for semantically equal records and
    ``identity`` groups records that describe the same logical entry
    (e.g. an MX preference) so edits pair up in the planner.
    """

    name: str = ""
    signature: tuple[ArgKind, ...] = ()
    hostname_target: bool = False

    @abstractmethod
    def from_raw(self, rc: RecordConfig, origin: str, args: Sequence[Any], meta: Mapping[str, str]) -> None:
        """Populate rc from positional arguments that already passed check_args."""

    def text_to_args(self, text: str) -> list[Any]:
        """Split presentation rdata into positional arguments (uncoerced)."""
        fields = tokenize_rfc1035(text)
        if len(self.signature) == 1 and self.signature[0] is ArgKind.STRINGS:
            args: list[Any] = [fields]
        elif len(self.signature) and len(fields) > len(self.signature):
            head = len(self.signature) - 1
            args = fields[:head] + [" ".join(fields[head:])]
        else:
            args = list(fields)
        return args

    def from_text(self, rc: RecordConfig, text: str, origin: str) -> None:
        """Populate rc from RFC 1035 presentation rdata."""
        args = check_args(self.name, self.signature, self.text_to_args(text))
        self.from_raw(rc, origin, args, rc.metadata)

    def to_args(self, rc: RecordConfig) -> list[Any]:
        """Return the positional arguments (after the label) that rebuild rc."""
        return [rc.target]

    def to_text(self, rc: RecordConfig) -> str:
        """Return RFC 1035 presentation rdata."""
        return rc.target

    def comparable(self, rc: RecordConfig) -> str:
        """Return the form used to decide whether two records are equal."""
        return self.to_text(rc)

    def display(self, rc: RecordConfig) -> str:
        """Return the form shown in correction messages."""
        return self.comparable(rc)

    def identity(self, rc: RecordConfig) -> str:
        """Return the key that pairs old and new records of a set."""
        return ""

    def audit(self, rc: RecordConfig) -> list[str]:
        """Return provider-independent structural warnings."""
        return []


class RTypeRegistry:
    """Dispatch table from record type name to handler."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, RType] = {}
        self._frozen: Mapping[str, RType] | None = None

    def register(self, handler: RType) -> RType:
        """Add a handler; a name can only be registered once."""
        name = handler.name.upper()
        if not name:
            raise ValueError("record type handlers need a name")
        with self._lock:
            if self._frozen is not None:
                raise RegistryFrozenError(f"cannot register rtype {name!r}: registry is frozen")
            if name in self._handlers:
                raise DuplicateTypeError(f"rtype {name!r} registered multiple times")
            self._handlers[name] = handler
        return handler

    def freeze(self) -> None:
        """Make the table read-only."""
        with self._lock:
            if self._frozen is None:
                self._frozen = MappingProxyType(dict(self._handlers))

    @property
    def frozen(self) -> bool:
        """Return True once freeze() was called."""
        return self._frozen is not None

    def _table(self) -> Mapping[str, RType]:
        """Return the frozen mapping, or the live dict before freezing."""
        frozen = self._frozen
        return frozen if frozen is not None else self._handlers

    def lookup(self, name: str) -> RType:
        """Return the handler for a type name."""
        handler = self._table().get(name.upper())
        if handler is None:
            raise UnknownTypeError(f"unknown rtype {name!r}")
        return handler

    def is_registered(self, name: str) -> bool:
        """Return True if a handler exists for name."""
        return name.upper() in self._table()

    def names(self) -> list[str]:
        """Return the registered type names, sorted."""
        return sorted(self._table())


REGISTRY = RTypeRegistry()


def register(handler: RType) -> RType:
    """Register a handler with the process-wide registry."""
    return REGISTRY.register(handler)


def lookup(name: str) -> RType:
    """Look up a handler in the process-wide registry."""
    return REGISTRY.lookup(name)


def freeze() -> None:
    """Freeze the process-wide registry."""
    REGISTRY.freeze()
