"""
API Routers package.
"""

from . import sniper

__all__ = ["sniper"]
