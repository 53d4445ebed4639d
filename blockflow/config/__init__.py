"""Configuration management."""

from blockflow.config.settings import EngineSettings, Environment, Settings, get_settings

__all__ = ["EngineSettings", "Environment", "Settings", "get_settings"]
