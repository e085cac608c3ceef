"""Suffix tree over DNS labels with wildcard support."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .normalize import label_to_fqdn


@dataclass
class _Node:
    """One label of the tree."""

    children: Dict[str, "_Node"] = field(default_factory=dict)
    leaf: bool = False
    wildcard: bool = False


def _labels(fqdn: str) -> List[str]:
    """Return the labels of a name, TLD first."""
    stripped = fqdn.strip().rstrip(".").lower()
    if not stripped:
        return []
    return list(reversed(stripped.split(".")))


class DomainTree:
    """Set of names that answers "is this name covered?".

    A name added as ``*.label`` covers ``label`` itself, which carries the
    wildcard, and every name below it.
    """

    def __init__(self) -> None:
        self._root = _Node()

    @classmethod
    def from_names(cls, domain: str, names: Iterable[str]) -> DomainTree:
        """Return a tree holding every name of domain."""
        tree = cls()
        for name in names:
            tree.add(domain, name)
        return tree

    def add(self, domain: str, name: str) -> None:
        """Add a label (``@``, short, or absolute with a trailing dot) of domain."""
        name = name.strip()
        fqdn = name.rstrip(".") if name.endswith(".") else label_to_fqdn(name, domain)
        labels = _labels(fqdn)
        wildcard = bool(labels) and labels[-1] == "*"
        if wildcard:
            labels = labels[:-1]
        node = self._root
        for label in labels:
            node = node.children.setdefault(label, _Node())
        if wildcard:
            node.wildcard = True
        else:
            node.leaf = True

    def get(self, fqdn: str) -> bool:
        """Return True if fqdn was added, carries a wildcard or lies below one."""
        node = self._root
        covered = False
        for label in _labels(fqdn):
            covered = covered or node.wildcard
            child = node.children.get(label)
            if child is None:
                return covered
            node = child
        return node.leaf or node.wildcard or covered

    def __contains__(self, fqdn: object) -> bool:
        """Support ``fqdn in tree``."""
        return isinstance(fqdn, str) and self.get(fqdn)
