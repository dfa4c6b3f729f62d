"""Configuration management."""

from arazzo_workbench.config.settings import Environment, Settings, get_settings

__all__ = ["Environment", "Settings", "get_settings"]
