"""
Воркеры пула конвертации: по одному на бэкенд.
"""

import uuid
from enum import Enum
from typing import Optional, Dict, Any, TYPE_CHECKING
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock

if TYPE_CHECKING:
    from ..backends.base import Backend


class WorkerStatus(Enum):
    """Статусы воркеров."""
    FREE = "free"
    BUSY = "busy"
    UNUSABLE = "unusable"
    STOPPED = "stopped"


@dataclass
class WorkerMetrics:
    """Метрики воркера."""

    tasks_succeeded: int = 0
    tasks_failed: int = 0
    timeouts: int = 0
    total_execution_time: float = 0.0
    average_execution_time: float = 0.0
    last_task_at: Optional[datetime] = None

    def update_execution_time(self, execution_time: float):
        """Обновление времени выполнения."""
        self.tasks_succeeded += 1
        self.total_execution_time += execution_time
        self.average_execution_time = self.total_execution_time / self.tasks_succeeded
        self.last_task_at = datetime.now()

    def update_failure(self, is_timeout: bool = False):
        """Обновление статистики ошибок."""
        self.tasks_failed += 1
        if is_timeout:
            self.timeouts += 1
        self.last_task_at = datetime.now()


@dataclass(eq=False)
class Worker:
    """Воркер: привязка одного бэкенда к не более чем одной задаче."""

    backend: 'Backend' = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    status: WorkerStatus = WorkerStatus.FREE
    current_task_id: Optional[str] = None
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None
    error: Optional[BaseException] = None
    metrics: WorkerMetrics = field(default_factory=WorkerMetrics)
    metadata: Dict[str, Any] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock, repr=False)

    def __post_init__(self):
        if self.backend is None:
            raise ValueError("Worker backend is required")
        if not self.name:
            self.name = f"worker-{self.id[:8]}"

    def start(self):
        """Запуск воркера."""
        with self._lock:
            self.status = WorkerStatus.FREE
            self.started_at = datetime.now()

    def stop(self):
        """Остановка воркера."""
        with self._lock:
            self.status = WorkerStatus.STOPPED
            self.stopped_at = datetime.now()

    def set_busy(self, task_id: str) -> bool:
        """Занять воркер задачей. False если воркер не свободен."""
        with self._lock:
            if self.status != WorkerStatus.FREE:
                return False
            self.status = WorkerStatus.BUSY
            self.current_task_id = task_id
            return True

    def set_free(self):
        """Освободить воркер после выполнения."""
        with self._lock:
            if self.status == WorkerStatus.BUSY:
                self.status = WorkerStatus.FREE
            self.current_task_id = None

    def set_unusable(self, error: BaseException):
        """Исключить воркер из диспетчеризации навсегда."""
        with self._lock:
            self.status = WorkerStatus.UNUSABLE
            self.error = error
            self.current_task_id = None

    def update_metrics(self, execution_time: float, success: bool = True, is_timeout: bool = False):
        """Обновление метрик."""
        with self._lock:
            if success:
                self.metrics.update_execution_time(execution_time)
            else:
                self.metrics.update_failure(is_timeout)

    def is_available(self) -> bool:
        """Проверка доступности воркера."""
        return self.status == WorkerStatus.FREE

    def is_usable(self) -> bool:
        return self.status in (WorkerStatus.FREE, WorkerStatus.BUSY)
