"""Configuration module for the demand pipeline."""

from .settings import Settings, DEFAULT_SERVICE_TYPES

__all__ = [
    "Settings",
    "DEFAULT_SERVICE_TYPES",
]
