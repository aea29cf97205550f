"""
Утилиты трекера доступности.
"""

from .logger import get_logger, setup_logging
from .config import TrackerConfig, RelayConfig, load_config, save_config, load_config_from_env

__all__ = [
    "get_logger",
    "setup_logging",
    "TrackerConfig",
    "RelayConfig",
    "load_config",
    "save_config",
    "load_config_from_env"
]
