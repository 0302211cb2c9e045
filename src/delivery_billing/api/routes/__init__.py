"""Route group exports."""

from . import health, pricing, uploads

__all__ = ["health", "uploads", "pricing"]
