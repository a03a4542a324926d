"""
Irrigation Pro API Package

FastAPI surface over the data-access layer.
"""

from .main import create_app

__all__ = ["create_app"]
