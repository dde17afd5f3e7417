"""
Configuration management.

Project configuration file parsing and environment resolution.
"""

from sqlchangelog.config.loader import DEFAULTS, Config, load_config
from sqlchangelog.config.resolver import resolve_config

__all__ = [
    "load_config",
    "Config",
    "DEFAULTS",
    "resolve_config",
]
