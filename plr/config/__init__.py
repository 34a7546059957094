"""
Configuration package for plr

Settings are loaded from YAML, a .env file and environment variables (see
``settings``). Provider token storage lives in ``plr.config.auth``.
"""

from .settings import get_settings, reload_settings, reset_settings, Settings

__all__ = [
    "get_settings",
    "reload_settings",
    "reset_settings",
    "Settings",
]
