"""
HTTP API for profiles, agent lifecycle and operator logs.
"""

from .app import create_app

__all__ = ["create_app"]
