"""The NONE registrar: a placeholder that never changes anything."""

from __future__ import annotations

from typing import List, Mapping

from ..models import Correction, DomainConfig
from .base import Capability, Registrar, can, register_registrar_type

FEATURES = {Capability.CAN_CONCUR: can()}


class NoneRegistrar(Registrar):
    """Registrar for domains whose delegation is managed elsewhere."""

    def get_registrar_corrections(self, dc: DomainConfig) -> List[Correction]:
        """Never change delegations."""
        return []


def new_registrar(creds: Mapping[str, str]) -> NoneRegistrar:
    """Build the NONE registrar; it needs no credentials."""
    return NoneRegistrar()


register_registrar_type("NONE", new_registrar, FEATURES)
