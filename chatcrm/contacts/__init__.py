"""Contact identity resolution."""

from .resolver import ContactResolver, normalize_sender

__all__ = ["ContactResolver", "normalize_sender"]
