"""Configuration and per-user service helpers."""

from .permissions import TOOL_KEYS, ToolPermissions
from .settings import SecretVault, Settings, SettingsStore, redact_secret, redact_settings

__all__ = [
    "TOOL_KEYS",
    "SecretVault",
    "Settings",
    "SettingsStore",
    "ToolPermissions",
    "redact_secret",
    "redact_settings",
]
