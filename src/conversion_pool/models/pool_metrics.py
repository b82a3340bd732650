"""
Метрики пула конвертации.
"""

from enum import Enum
from typing import Any, Dict, Optional
from dataclasses import dataclass
from datetime import datetime


class PoolState(Enum):
    """Состояния жизненного цикла пула. Переходы только вперед."""
    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class PoolMetrics:
    """Метрики пула конвертации."""

    # Основные метрики
    total_tasks_submitted: int = 0
    total_tasks_succeeded: int = 0
    total_tasks_failed: int = 0
    total_retries: int = 0

    # Терминальные исходы по видам
    permanent_failures: int = 0
    retries_exhausted: int = 0
    queue_timeouts: int = 0
    execution_timeouts: int = 0
    rejected_tasks: int = 0
    unusable_backends: int = 0

    # Метрики времени
    total_execution_time: float = 0.0
    average_execution_time: float = 0.0
    max_execution_time: float = 0.0

    # Метрики очереди
    max_queue_size: int = 0

    # Временные метрики
    pool_start_time: Optional[datetime] = None
    pool_stop_time: Optional[datetime] = None
    uptime: float = 0.0

    def start_pool(self):
        """Запуск пула."""
        self.pool_start_time = datetime.now()

    def stop_pool(self):
        """Остановка пула."""
        self.pool_stop_time = datetime.now()
        if self.pool_start_time:
            self.uptime = (self.pool_stop_time - self.pool_start_time).total_seconds()

    def update_task_success(self, execution_time: float):
        """Обновление успешного завершения задачи."""
        self.total_tasks_succeeded += 1
        self.total_execution_time += execution_time
        self.max_execution_time = max(self.max_execution_time, execution_time)
        self.average_execution_time = self.total_execution_time / self.total_tasks_succeeded

    def update_task_failure(self):
        self.total_tasks_failed += 1

    def update_queue_size(self, size: int):
        """Обновление размера очереди."""
        self.max_queue_size = max(self.max_queue_size, size)

    def get_uptime(self) -> float:
        """Получение времени работы пула."""
        if self.pool_start_time and not self.pool_stop_time:
            return (datetime.now() - self.pool_start_time).total_seconds()
        return self.uptime

    def to_dict(self) -> Dict[str, Any]:
        """Преобразование в словарь."""
        finished = self.total_tasks_succeeded + self.total_tasks_failed
        return {
            'total_tasks_submitted': self.total_tasks_submitted,
            'total_tasks_succeeded': self.total_tasks_succeeded,
            'total_tasks_failed': self.total_tasks_failed,
            'total_retries': self.total_retries,
            'permanent_failures': self.permanent_failures,
            'retries_exhausted': self.retries_exhausted,
            'queue_timeouts': self.queue_timeouts,
            'execution_timeouts': self.execution_timeouts,
            'rejected_tasks': self.rejected_tasks,
            'unusable_backends': self.unusable_backends,
            'average_execution_time': self.average_execution_time,
            'max_execution_time': self.max_execution_time,
            'max_queue_size': self.max_queue_size,
            'success_rate': (self.total_tasks_succeeded / finished * 100) if finished else 0.0,
            'uptime': self.get_uptime()
        }
