"""
Механизм корректной остановки пула конвертации.
"""

import threading
import time
from typing import Callable, List, Optional
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ..utils.config import ShutdownConfig
from ..utils.logger import get_logger


logger = get_logger(__name__)

_FAILED = object()


class ShutdownPhase(Enum):
    """Фазы завершения работы."""
    INITIATED = "initiated"
    STOPPING_NEW_TASKS = "stopping_new_tasks"
    WAITING_FOR_COMPLETION = "waiting_for_completion"
    RELEASING_BACKENDS = "releasing_backends"
    COMPLETED = "completed"


@dataclass
class ShutdownStatus:
    """Статус завершения работы."""
    phase: ShutdownPhase
    start_time: datetime
    tasks_rejected: int = 0
    tasks_abandoned: int = 0
    cleanup_callbacks_executed: int = 0
    errors: List[Exception] = field(default_factory=list)
    completed: bool = False

    @property
    def error_count(self) -> int:
        return len(self.errors)


class GracefulShutdown:
    """
    Пошаговая остановка: прекращение приема, ожидание выполняющихся задач,
    освобождение бэкендов, очистка. Ошибки шага записываются и не прерывают
    следующие шаги.
    """

    def __init__(self, config: Optional[ShutdownConfig] = None):
        self.config = config or ShutdownConfig()
        self._status: Optional[ShutdownStatus] = None
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    def execute_shutdown(
        self,
        stop_new_tasks_callback: Optional[Callable[[], int]] = None,
        get_busy_count_callback: Optional[Callable[[], int]] = None,
        release_backends_callback: Optional[Callable[[], List[Exception]]] = None,
        abandon_tasks_callback: Optional[Callable[[], int]] = None
    ) -> ShutdownStatus:
        """
        Выполнение остановки.

        Args:
            stop_new_tasks_callback: Прекращает прием задач, возвращает число отклоненных
            get_busy_count_callback: Число выполняющихся задач
            release_backends_callback: Освобождает бэкенды, возвращает ошибки
            abandon_tasks_callback: Отклоняет незавершенные задачи, возвращает их число

        Returns:
            Финальный статус завершения работы
        """
        with self._lock:
            if self._status is not None:
                logger.debug("Shutdown already executed")
                return self._status

            status = ShutdownStatus(phase=ShutdownPhase.INITIATED, start_time=datetime.now())
            self._status = status

        # Фаза 1: Остановка приема новых задач
        status.phase = ShutdownPhase.STOPPING_NEW_TASKS
        logger.info("Phase 1: Stopping new task acceptance")
        if stop_new_tasks_callback:
            rejected = self._run_step("stop_new_tasks", stop_new_tasks_callback)
            if isinstance(rejected, int):
                status.tasks_rejected = rejected

        # Фаза 2: Ожидание завершения текущих задач
        status.phase = ShutdownPhase.WAITING_FOR_COMPLETION
        logger.info("Phase 2: Waiting for in-flight tasks")
        if get_busy_count_callback:
            self._wait_for_task_completion(get_busy_count_callback)

        # Фаза 3: Освобождение бэкендов
        status.phase = ShutdownPhase.RELEASING_BACKENDS
        logger.info("Phase 3: Releasing backends")
        if release_backends_callback:
            release_errors = self._run_step("release_backends", release_backends_callback)
            if isinstance(release_errors, list):
                status.errors.extend(release_errors)

        if abandon_tasks_callback:
            abandoned = self._run_step("abandon_tasks", abandon_tasks_callback)
            if isinstance(abandoned, int):
                status.tasks_abandoned = abandoned

        # Фаза 4: Выполнение cleanup callback'ов
        for callback in self._callbacks:
            if self._run_step(f"cleanup {callback}", callback) is not _FAILED:
                status.cleanup_callbacks_executed += 1

        status.phase = ShutdownPhase.COMPLETED
        status.completed = True

        elapsed_time = (datetime.now() - status.start_time).total_seconds()
        if status.errors:
            logger.warning(f"Shutdown completed in {elapsed_time:.2f}s with {status.error_count} errors")
        else:
            logger.info(f"Shutdown completed in {elapsed_time:.2f} seconds")
        return status

    def _run_step(self, name: str, callback: Callable):
        try:
            return callback()
        except Exception as e:
            logger.error(f"Error in shutdown step {name}: {e}")
            self._status.errors.append(e)
            return _FAILED

    def _wait_for_task_completion(self, get_busy_count_callback: Callable[[], int]):
        """Ожидание завершения задач."""
        deadline = time.monotonic() + self.config.task_completion_timeout

        while True:
            busy = self._run_step("get_busy_count", get_busy_count_callback)
            if busy is _FAILED or busy == 0:
                return
            if time.monotonic() >= deadline:
                logger.warning(
                    f"Task completion timeout ({self.config.task_completion_timeout}s) exceeded, "
                    f"{busy} tasks still running"
                )
                return
            time.sleep(0.05)

    def add_cleanup_callback(self, callback: Callable[[], None]):
        """Добавление cleanup callback'а."""
        self._callbacks.append(callback)

    def is_shutdown_completed(self) -> bool:
        """Проверка завершения shutdown."""
        return self._status is not None and self._status.completed

    def get_status(self) -> Optional[ShutdownStatus]:
        """Получение текущего статуса."""
        return self._status

    def __repr__(self) -> str:
        if self._status:
            return f"GracefulShutdown(phase={self._status.phase.value})"
        return "GracefulShutdown(not_initiated)"
