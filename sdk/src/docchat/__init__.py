"""docchat Python SDK."""

from .client import (
    Docchat,
    DocchatConfigurationError,
    DocchatError,
    DocchatQueryError,
)
from .config import AppConfig, load_config

__all__ = [
    "AppConfig",
    "Docchat",
    "DocchatConfigurationError",
    "DocchatError",
    "DocchatQueryError",
    "load_config",
]
