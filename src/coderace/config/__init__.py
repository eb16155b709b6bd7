"""Configuration management."""

from coderace.config.manager import ConfigManager
from coderace.config.schema import CoderaceConfig

__all__ = ["ConfigManager", "CoderaceConfig"]
