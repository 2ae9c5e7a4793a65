"""Compendia - document lifecycle and compendium caching layer.

Versioned, permissioned, hierarchically-embedded documents kept consistent
between memory, their observers, and a remote persistence backend.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
