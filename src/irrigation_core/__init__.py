"""
Irrigation Pro Core Package

Multi-tenant database access and observability.
"""

from . import database
from . import observability

__all__ = ["database", "observability"]
