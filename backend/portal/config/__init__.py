"""Configuration module for the portal backend."""

from portal.config.settings import PortalSettings, get_settings, normalize_database_url

__all__ = [
    "PortalSettings",
    "get_settings",
    "normalize_database_url",
]
