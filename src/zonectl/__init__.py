"""zonectl: reconcile declarative DNS configuration against providers."""

from . import rtypes  # noqa: F401  (registers the built-in record kinds)

__all__ = ["__version__"]

__version__ = "0.1.0"
