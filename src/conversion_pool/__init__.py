"""
Пул конвертации документов с ограничением времени ожидания и выполнения и ретраями.

Основные компоненты:
- ConversionPoolManager: жизненный цикл пула, прием и диспетчеризация задач
- OnlineBackend / LocalOfficeBackend: бэкенды конвертации
- RetryPolicy: решение о повторе по исходу попытки
- DocumentConverter: фасад convert(...).to(...).execute()
"""

from .core.pool_manager import ConversionPoolManager, stop_quietly
from .core.retry_policy import RetryPolicy, RetryDecision
from .core.graceful_shutdown import ShutdownStatus
from .backends import Backend, OnlineBackend, LocalOfficeBackend
from .converter import DocumentConverter
from .models.task import ConversionTask, TaskHandle, TaskStatus
from .models.outcome import ExecutionOutcome, FailureKind
from .models.pool_metrics import PoolState
from .models.worker import Worker, WorkerStatus
from .utils.config import PoolConfig, RetryConfig, load_config, load_config_from_env
from .utils.logger import get_logger, setup_logging
from .exceptions import (
    ConversionPoolError,
    IllegalStateError,
    ConfigurationError,
    QueueFullError,
    BackendError,
    BackendUnusable,
    TaskError,
    TaskQueueTimeout,
    QueueTimeout,
    TaskExecutionTimeout,
    PermanentFailure,
    RetriesExhausted
)

__version__ = "1.0.0"
__author__ = "Conversion Pool Team"

__all__ = [
    "ConversionPoolManager",
    "stop_quietly",
    "RetryPolicy",
    "RetryDecision",
    "ShutdownStatus",
    "Backend",
    "OnlineBackend",
    "LocalOfficeBackend",
    "DocumentConverter",
    "ConversionTask",
    "TaskHandle",
    "TaskStatus",
    "ExecutionOutcome",
    "FailureKind",
    "PoolState",
    "Worker",
    "WorkerStatus",
    "PoolConfig",
    "RetryConfig",
    "load_config",
    "load_config_from_env",
    "get_logger",
    "setup_logging",
    "ConversionPoolError",
    "IllegalStateError",
    "ConfigurationError",
    "QueueFullError",
    "BackendError",
    "BackendUnusable",
    "TaskError",
    "TaskQueueTimeout",
    "QueueTimeout",
    "TaskExecutionTimeout",
    "PermanentFailure",
    "RetriesExhausted"
]
