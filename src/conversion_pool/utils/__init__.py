"""
Утилиты для пула конвертации.
"""

from .config import (
    PoolConfig,
    RetryConfig,
    ShutdownConfig,
    OnlineBackendConfig,
    LocalOfficeConfig,
    BackoffStrategy,
    QueueTimeoutPolicy,
    load_config,
    load_config_from_env
)
from .logger import get_logger, get_task_logger, setup_logging

__all__ = [
    "PoolConfig",
    "RetryConfig",
    "ShutdownConfig",
    "OnlineBackendConfig",
    "LocalOfficeConfig",
    "BackoffStrategy",
    "QueueTimeoutPolicy",
    "load_config",
    "load_config_from_env",
    "get_logger",
    "get_task_logger",
    "setup_logging"
]
