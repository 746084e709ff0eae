"""Configuration helpers for the prompt workbench.

Updates: v0.2.0 - 2026-10-19 - Expose workbench settings loader and key defaults.
Updates: v0.1.0 - 2026-10-19 - Package scaffold.
"""

from .settings import (
    DEFAULT_DB_PATH,
    DEFAULT_QUEUE_KEY,
    DEFAULT_VISIT_BUFFER_KEY,
    DEFAULT_VISIT_FLUSH_LOCK_KEY,
    DEFAULT_VISIT_GUARD_PREFIX,
    DEFAULT_WORKSPACE_KEY_PREFIX,
    SettingsError,
    WorkbenchSettings,
    load_settings,
)

__all__ = [
    "DEFAULT_DB_PATH",
    "DEFAULT_QUEUE_KEY",
    "DEFAULT_VISIT_BUFFER_KEY",
    "DEFAULT_VISIT_FLUSH_LOCK_KEY",
    "DEFAULT_VISIT_GUARD_PREFIX",
    "DEFAULT_WORKSPACE_KEY_PREFIX",
    "SettingsError",
    "WorkbenchSettings",
    "load_settings",
]
