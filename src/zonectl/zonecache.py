"""Per-provider cache of the provider's zones."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Generic, List, Mapping, TypeVar

from .errors import ZoneNotFoundError

LOG = logging.getLogger("zonectl")

Z = TypeVar("Z")


class ZoneCache(Generic[Z]):
    """Thread-safe, single-flight cache of ``name -> zone``.

    The first read calls ``fetch_all`` while holding the lock, so concurrent
    readers wait for that single call instead of issuing their own. The
    cache is never invalidated. ``fetch_all`` must not call back into the
    cache.
    """

    def __init__(self, fetch_all: Callable[[], Mapping[str, Z]]) -> None:
        self._fetch_all = fetch_all
        self._lock = threading.Lock()
        self._zones: Dict[str, Z] | None = None
        self._pending: Dict[str, Z] = {}

    def _ensure_locked(self) -> Dict[str, Z]:
        """Fetch the zone list on first use; the caller holds the lock."""
        if self._zones is None:
            LOG.debug("Populating zone cache")
            zones = dict(self._fetch_all())
            zones.update(self._pending)
            self._zones = zones
            self._pending = {}
        return self._zones

    def has_zone(self, name: str) -> bool:
        """Return True if the provider has the zone."""
        with self._lock:
            return name in self._ensure_locked()

    def get_zone(self, name: str) -> Z:
        """Return a zone.

        Raises:
            ZoneNotFoundError: If the provider has no zone of that name.
        """
        with self._lock:
            zones = self._ensure_locked()
            if name not in zones:
                raise ZoneNotFoundError(f"zone {name!r} not found")
            return zones[name]

    def get_zone_names(self) -> List[str]:
        """Return the names of every known zone."""
        with self._lock:
            return list(self._ensure_locked())

    def set_zone(self, name: str, zone: Z) -> None:
        """Add or overwrite a zone without triggering a fetch.

        Zones set before the first fetch are merged over its result.
        """
        with self._lock:
            if self._zones is None:
                self._pending[name] = zone
            else:
                self._zones[name] = zone
