"""
Модели задач конвертации.
"""

import threading
import uuid
from concurrent.futures import Future
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union
from dataclasses import dataclass, field
from datetime import datetime


class TaskStatus(Enum):
    """Статусы задач."""
    PENDING = "pending"
    QUEUED = "queued"
    DISPATCHED = "dispatched"
    SUCCEEDED = "succeeded"
    PERMANENTLY_FAILED = "permanently_failed"
    RETRIES_EXHAUSTED = "retries_exhausted"
    QUEUE_TIMEOUT = "queue_timeout"
    REJECTED = "rejected"


TERMINAL_STATUSES = frozenset({
    TaskStatus.SUCCEEDED,
    TaskStatus.PERMANENTLY_FAILED,
    TaskStatus.RETRIES_EXHAUSTED,
    TaskStatus.QUEUE_TIMEOUT,
    TaskStatus.REJECTED,
})


@dataclass
class ConversionTask:
    """Задача конвертации одного документа."""

    source: Union[str, Path] = ""
    target: Union[str, Path] = ""
    target_format: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    queue_timeout: Optional[float] = None
    execution_timeout: Optional[float] = None
    options: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)
    status: TaskStatus = TaskStatus.PENDING
    attempts: int = 0
    last_error: Optional[BaseException] = None

    # Служебные поля очереди (время по time.monotonic)
    first_enqueued_at: Optional[float] = None
    enqueued_at: Optional[float] = None
    not_before: float = 0.0

    def __post_init__(self):
        """Валидация после инициализации."""
        if not str(self.source).strip():
            raise ValueError("Task source is required")
        if not str(self.target).strip():
            raise ValueError("Task target is required")
        if self.target_format is None:
            suffix = Path(str(self.target)).suffix
            self.target_format = suffix[1:].lower() if suffix else None

    @property
    def source_path(self) -> Path:
        return Path(self.source)

    @property
    def target_path(self) -> Path:
        return Path(self.target)

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TaskHandle:
    """
    Дескриптор отправленной задачи.

    Завершение наблюдается через ``result()`` или ``exception()``.
    Дескриптор разрешается ровно один раз, повторные попытки игнорируются.
    """

    def __init__(self, task: ConversionTask):
        self._task = task
        self._future: Future = Future()
        self._lock = threading.Lock()

    @property
    def task(self) -> ConversionTask:
        return self._task

    @property
    def task_id(self) -> str:
        return self._task.id

    @property
    def status(self) -> TaskStatus:
        return self._task.status

    @property
    def attempts(self) -> int:
        return self._task.attempts

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> Any:
        """
        Ожидание результата конвертации.

        Args:
            timeout: Таймаут ожидания в секундах

        Returns:
            Результат бэкенда (обычно путь к выходному файлу)

        Raises:
            TaskError: Терминальная ошибка задачи
            concurrent.futures.TimeoutError: Результат не получен за timeout
        """
        return self._future.result(timeout=timeout)

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        return self._future.exception(timeout=timeout)

    def add_done_callback(self, callback: Callable[['TaskHandle'], None]):
        self._future.add_done_callback(lambda _: callback(self))

    def _resolve(self, result: Any, status: TaskStatus = TaskStatus.SUCCEEDED) -> bool:
        with self._lock:
            if self._future.done():
                return False
            self._task.status = status
            self._future.set_result(result)
            return True

    def _reject(self, error: BaseException, status: TaskStatus) -> bool:
        with self._lock:
            if self._future.done():
                return False
            self._task.status = status
            self._task.last_error = error
            self._future.set_exception(error)
            return True

    def __repr__(self) -> str:
        return f"TaskHandle(task_id={self.task_id}, status={self.status.value})"
