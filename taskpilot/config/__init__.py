"""Configuration exports."""

from .settings import (
    AgentSettings,
    ObservabilitySettings,
    RegistrySettings,
    Settings,
    StreamingSettings,
    ValidationSettings,
    get_settings,
)

__all__ = [
    "AgentSettings",
    "ObservabilitySettings",
    "RegistrySettings",
    "Settings",
    "StreamingSettings",
    "ValidationSettings",
    "get_settings",
]
