"""
Configuration module for the okxfeed client.

Exports the main Settings class and get_settings function for application-wide
configuration management.
"""

from .settings import LoggingSettings, OKXSettings, Settings, StreamSettings, get_settings

__all__ = ["Settings", "OKXSettings", "StreamSettings", "LoggingSettings", "get_settings"]
