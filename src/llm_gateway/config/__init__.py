"""
Configuration de LLM Gateway.
"""

from .loader import load_config, reload_config, get_config
from .settings import (
    Settings,
    ServerConfig,
    GenerationDefaults,
    ProviderConfig,
    AntigravityApiConfig,
)

__all__ = [
    "load_config",
    "reload_config",
    "get_config",
    "Settings",
    "ServerConfig",
    "GenerationDefaults",
    "ProviderConfig",
    "AntigravityApiConfig",
]
