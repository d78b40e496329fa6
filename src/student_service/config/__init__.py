"""Configuration management module."""

from .loader import ServiceConfig, find_config_file, load_config

__all__ = ["ServiceConfig", "load_config", "find_config_file"]
