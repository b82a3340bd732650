"""
Основные компоненты пула конвертации.
"""

from .pool_manager import ConversionPoolManager, stop_quietly
from .task_queue import TaskQueue
from .dispatcher import Dispatcher
from .retry_policy import RetryPolicy, RetryDecision
from .graceful_shutdown import GracefulShutdown, ShutdownStatus, ShutdownPhase
from .task_executor import TaskExecutor
from .worker_manager import WorkerManager

__all__ = [
    "ConversionPoolManager",
    "stop_quietly",
    "TaskQueue",
    "Dispatcher",
    "RetryPolicy",
    "RetryDecision",
    "GracefulShutdown",
    "ShutdownStatus",
    "ShutdownPhase",
    "TaskExecutor",
    "WorkerManager"
]
