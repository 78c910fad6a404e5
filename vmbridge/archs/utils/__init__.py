"""Shared helpers."""

from .common import ConfigError, load_yaml_with_vars

__all__ = [
    "ConfigError",
    "load_yaml_with_vars",
]
