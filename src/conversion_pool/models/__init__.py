"""
Модели данных для пула конвертации.
"""

from .task import ConversionTask, TaskHandle, TaskStatus
from .worker import Worker, WorkerStatus, WorkerMetrics
from .outcome import ExecutionOutcome, FailureKind
from .pool_metrics import PoolMetrics, PoolState

__all__ = [
    "ConversionTask",
    "TaskHandle",
    "TaskStatus",
    "Worker",
    "WorkerStatus",
    "WorkerMetrics",
    "ExecutionOutcome",
    "FailureKind",
    "PoolMetrics",
    "PoolState"
]
