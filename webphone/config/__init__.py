"""Configuration module."""

from webphone.config.constants import RELAY, RelayConstants
from webphone.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings", "RelayConstants", "RELAY"]
