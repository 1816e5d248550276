"""Service layer helpers (settings persistence)."""

from .settings import Settings, SettingsStore, redact_secret

__all__ = [
    "Settings",
    "SettingsStore",
    "redact_secret",
]
