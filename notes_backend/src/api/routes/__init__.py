"""HTTP API route handlers."""

from . import organize

__all__ = ["organize"]
