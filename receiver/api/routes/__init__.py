"""API route modules."""

from receiver.api.routes import data, health

__all__ = ["data", "health"]
