"""Built-in record kinds.

Importing this package registers every kind with the process-wide registry.
"""

from . import basic, structured, txt, vendor  # noqa: F401

__all__ = ["basic", "structured", "txt", "vendor"]
