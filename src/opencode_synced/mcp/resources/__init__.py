"""MCP resource handlers for opencode-synced."""

from .config import (
    CONFIG_RESOURCES,
    EFFECTIVE_CONFIG_URI,
    handle_list_config_resources,
    handle_read_config_resource,
)

__all__ = [
    "CONFIG_RESOURCES",
    "EFFECTIVE_CONFIG_URI",
    "handle_list_config_resources",
    "handle_read_config_resource",
]
