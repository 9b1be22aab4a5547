"""
Configuration management for the Document API.

Contains the Pydantic settings model and the cached settings accessor.
"""

from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
