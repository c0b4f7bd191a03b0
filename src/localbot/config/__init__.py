"""
config/ — LocalBot runtime settings
"""

from localbot.config.settings import (
    AgentConfig,
    LoggingConfig,
    ProviderConfig,
    RouterSettings,
    Settings,
    ToolsConfig,
    get_settings,
    load_settings,
)

__all__ = [
    "AgentConfig",
    "LoggingConfig",
    "ProviderConfig",
    "RouterSettings",
    "Settings",
    "ToolsConfig",
    "get_settings",
    "load_settings",
]
