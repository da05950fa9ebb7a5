"""Configuration and logging utilities."""

from agent_swarm.config.settings import settings, Settings
from agent_swarm.config.logging import configure_logging, get_logger

__all__ = [
    'settings',
    'Settings',
    'configure_logging',
    'get_logger',
]
