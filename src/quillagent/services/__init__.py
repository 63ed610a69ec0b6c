"""Service-layer helpers (settings persistence)."""

from .settings import Settings, SettingsStore, ToolTimeoutSettings, redact_secret

__all__ = ["Settings", "SettingsStore", "ToolTimeoutSettings", "redact_secret"]
