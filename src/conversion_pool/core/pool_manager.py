"""
Менеджер пула конвертации: жизненный цикл, прием задач, ретраи.
"""

import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from .dispatcher import Dispatcher
from .graceful_shutdown import GracefulShutdown, ShutdownStatus
from .retry_policy import RetryDecision, RetryPolicy
from .task_executor import TaskExecutor
from .task_queue import TaskQueue
from .worker_manager import WorkerManager

from ..backends.base import Backend
from ..backends.local import LocalOfficeBackend
from ..backends.online import OnlineBackend
from ..models.outcome import ExecutionOutcome
from ..models.pool_metrics import PoolMetrics, PoolState
from ..models.task import ConversionTask, TaskHandle, TaskStatus
from ..models.worker import Worker

from ..utils.config import PoolConfig
from ..utils.logger import get_logger
from ..exceptions import (
    BackendUnusable,
    ConversionPoolError,
    IllegalStateError,
    PermanentFailure,
    QueueFullError,
    RetriesExhausted,
    TaskExecutionTimeout,
    TaskQueueTimeout
)


logger = get_logger(__name__)


class ConversionPoolManager:
    """
    Пул конвертации с фиксированным набором бэкендов.

    Единственная точка входа для ``start()``, ``stop()`` и ``submit()``.
    Жизненный цикл одноразовый: NOT_STARTED -> RUNNING -> STOPPED.
    """

    def __init__(self, backends: Sequence[Backend], config: Optional[PoolConfig] = None):
        self.config = config or PoolConfig(pool_size=max(len(backends), 1))
        self._lifecycle_lock = threading.Lock()
        self._condition = threading.Condition()
        self._state = PoolState.NOT_STARTED

        # Инициализация компонентов
        self._queue = TaskQueue(self.config.queue_max_size, self.config.queue_timeout_policy)
        self._retry_policy = RetryPolicy(self.config.max_retries, self.config.retry)
        self._task_executor = TaskExecutor(self._retry_policy)
        self._worker_manager = WorkerManager(backends)
        self._graceful_shutdown = GracefulShutdown(self.config.shutdown)
        self._dispatcher = Dispatcher(
            self._condition,
            self._queue,
            self._worker_manager,
            on_dispatch=self._assign_task,
            on_expired=self._expire_tasks,
            on_no_workers=self._fail_orphaned_tasks
        )

        # Задачи, еще не получившие терминальный исход
        self._handles: Dict[str, TaskHandle] = {}
        self._pool_metrics = PoolMetrics()

        self._setup_callbacks()

        logger.info(f"ConversionPoolManager initialized with {len(backends)} backends")

    @classmethod
    def from_config(cls, config: PoolConfig) -> 'ConversionPoolManager':
        """Создание пула с бэкендами, описанными в конфигурации."""
        if config.backend == "local":
            backends: List[Backend] = [
                LocalOfficeBackend(config.local, config.working_dir, name=f"local-{index + 1}")
                for index in range(config.pool_size)
            ]
        else:
            backends = [
                OnlineBackend(config.online, name=f"online-{index + 1}")
                for index in range(config.pool_size)
            ]
        return cls(backends, config)

    def _setup_callbacks(self):
        """Настройка callback'ов между компонентами."""
        self._worker_manager.set_task_handler(self._run_task)
        self._worker_manager.set_on_worker_error(self._on_worker_error)

    # Жизненный цикл

    def start(self):
        """Запуск пула: захват бэкендов, потоков воркеров и диспетчера."""
        with self._lifecycle_lock:
            with self._condition:
                if self._state != PoolState.NOT_STARTED:
                    raise IllegalStateError(f"Pool cannot be started (current state: {self._state.value})")

            logger.info("Starting ConversionPoolManager...")
            try:
                self._worker_manager.start()
            except Exception as e:
                with self._condition:
                    self._state = PoolState.STOPPED
                logger.error(f"Failed to start pool: {e}")
                raise ConversionPoolError(f"Failed to start pool: {e}") from e

            self._dispatcher.start()
            with self._condition:
                self._state = PoolState.RUNNING
                self._pool_metrics.start_pool()

            logger.info(f"ConversionPoolManager started with {self.pool_size} workers")

    def stop(self) -> Optional[ShutdownStatus]:
        """
        Остановка пула. Повторный вызов ничего не делает и не выбрасывает исключений.

        Returns:
            Статус остановки с ошибками освобождения бэкендов
        """
        with self._lifecycle_lock:
            with self._condition:
                previous = self._state
            if previous == PoolState.STOPPED:
                logger.debug("Pool already stopped")
                return self._graceful_shutdown.get_status()

            logger.info("Stopping ConversionPoolManager...")
            was_running = previous == PoolState.RUNNING

            status = self._graceful_shutdown.execute_shutdown(
                stop_new_tasks_callback=self._stop_accepting_tasks,
                get_busy_count_callback=self._busy_count if was_running else None,
                release_backends_callback=self._release_backends if was_running else None,
                abandon_tasks_callback=self._abandon_unfinished_tasks
            )

            with self._condition:
                self._pool_metrics.stop_pool()

            logger.info("ConversionPoolManager stopped")
            return status

    def _stop_accepting_tasks(self) -> int:
        """Перевод в STOPPED и отклонение задач из очереди."""
        with self._condition:
            self._state = PoolState.STOPPED
            pending = self._queue.drain()
            handles = [self._handles.pop(task.id) for task in pending if task.id in self._handles]
            self._pool_metrics.rejected_tasks += len(handles)
            self._pool_metrics.total_tasks_failed += len(handles)
            self._condition.notify_all()

        for handle in handles:
            handle._reject(
                IllegalStateError(f"Pool stopped before task {handle.task_id} was dispatched"),
                TaskStatus.REJECTED
            )
        return len(handles)

    def _busy_count(self) -> int:
        with self._condition:
            return self._worker_manager.busy_count()

    def _release_backends(self) -> List[Exception]:
        self._dispatcher.stop(timeout=self.config.shutdown.worker_join_timeout)
        return self._worker_manager.stop(join_timeout=self.config.shutdown.worker_join_timeout)

    def _abandon_unfinished_tasks(self) -> int:
        """Отклонение задач, которые не завершились до освобождения бэкендов."""
        with self._condition:
            handles = list(self._handles.values())
            self._handles.clear()
            self._pool_metrics.rejected_tasks += len(handles)
            self._pool_metrics.total_tasks_failed += len(handles)
            self._condition.notify_all()

        for handle in handles:
            logger.warning(f"Task {handle.task_id} abandoned by shutdown")
            handle._reject(
                IllegalStateError(f"Pool stopped while task {handle.task_id} was in flight"),
                TaskStatus.REJECTED
            )
        return len(handles)

    # Прием задач

    def submit(self, task: ConversionTask) -> TaskHandle:
        """
        Отправка задачи в пул.

        Args:
            task: Задача конвертации

        Returns:
            Дескриптор для получения результата

        Raises:
            IllegalStateError: Пул не запущен или уже остановлен
            QueueFullError: Очередь заполнена дольше submit_timeout
        """
        if not isinstance(task, ConversionTask):
            raise TypeError(f"Expected ConversionTask, got {type(task).__name__}")

        with self._condition:
            self._ensure_running()
            if task.status != TaskStatus.PENDING:
                raise ValueError(f"Task {task.id} was already submitted")

            self._wait_for_queue_space()

            handle = TaskHandle(task)
            self._handles[task.id] = handle
            self._queue.append(task, self._queue_timeout_for(task))

            self._pool_metrics.total_tasks_submitted += 1
            self._pool_metrics.update_queue_size(len(self._queue))
            self._condition.notify_all()

        logger.debug(f"Task {task.id} submitted to pool")
        return handle

    def submit_conversion(
        self,
        source: Union[str, Path],
        target: Union[str, Path],
        target_format: Optional[str] = None,
        **kwargs
    ) -> TaskHandle:
        """Создание и отправка задачи конвертации."""
        return self.submit(ConversionTask(source=source, target=target, target_format=target_format, **kwargs))

    def _ensure_running(self):
        if self._state != PoolState.RUNNING:
            raise IllegalStateError(f"Pool is not running (current state: {self._state.value})")

    def _wait_for_queue_space(self):
        """Ожидание места в ограниченной очереди. Вызывается под условием."""
        if not self._queue.is_full():
            return

        timeout = self.config.submit_timeout
        deadline = None if timeout is None else time.monotonic() + timeout
        while self._queue.is_full():
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                raise QueueFullError(f"Task queue is full ({self._queue.max_size} tasks)")
            self._condition.wait(remaining)
            self._ensure_running()

    def _queue_timeout_for(self, task: ConversionTask) -> float:
        return task.queue_timeout if task.queue_timeout is not None else self.config.queue_timeout

    def _execution_timeout_for(self, task: ConversionTask) -> float:
        return task.execution_timeout if task.execution_timeout is not None else self.config.execution_timeout

    # Диспетчеризация и выполнение

    def _assign_task(self, worker: Worker, task: ConversionTask):
        """Передача задачи воркеру (callback диспетчера)."""
        task.attempts += 1
        self._worker_manager.assign(worker, task)

    def _run_task(self, worker: Worker, task: ConversionTask):
        """Выполнение одной попытки на потоке воркера."""
        outcome = self._task_executor.execute_task(task, worker, self._execution_timeout_for(task))
        self._complete_attempt(worker, task, outcome)

    def _complete_attempt(self, worker: Worker, task: ConversionTask, outcome: ExecutionOutcome):
        """Освобождение воркера и решение о судьбе задачи."""
        decision = self._retry_policy.decide(task, outcome)

        with self._condition:
            worker.set_free()
            if isinstance(outcome.error, TaskExecutionTimeout):
                self._pool_metrics.execution_timeouts += 1
                if not worker.is_usable():
                    self._pool_metrics.unusable_backends += 1

            if (decision == RetryDecision.RETRY
                    and self._state == PoolState.RUNNING
                    and task.id in self._handles):
                delay = self._retry_policy.calculate_delay(task.attempts)
                self._queue.push_front(task, self._queue_timeout_for(task), delay)
                task.last_error = outcome.error
                self._pool_metrics.total_retries += 1
                self._condition.notify_all()

                logger.warning(
                    f"Retrying task {task.id} after transient failure "
                    f"(attempt {task.attempts} of {self._retry_policy.max_attempts}): {outcome.error}"
                )
                return

            handle = self._handles.pop(task.id, None)
            self._condition.notify_all()

        if handle is not None:
            self._finish_task(handle, decision, outcome)

    def _finish_task(self, handle: TaskHandle, decision: RetryDecision, outcome: ExecutionOutcome):
        """Доставка терминального исхода вызывающему."""
        task = handle.task

        if decision == RetryDecision.COMPLETE:
            with self._condition:
                self._pool_metrics.update_task_success(outcome.execution_time)
            handle._resolve(outcome.result)
            logger.debug(f"Task {task.id} succeeded after {task.attempts} attempt(s)")
            return

        if decision == RetryDecision.FAIL:
            error = outcome.error
            if not isinstance(error, PermanentFailure):
                error = PermanentFailure(f"Task {task.id} failed permanently: {outcome.error}", task.id)
                error.__cause__ = outcome.error
            status = TaskStatus.PERMANENTLY_FAILED
            counter = 'permanent_failures'
        elif decision == RetryDecision.EXHAUSTED:
            error = RetriesExhausted(
                f"Task {task.id} failed after {task.attempts} attempts: {outcome.error}",
                task.id,
                attempts=task.attempts,
                last_error=outcome.error
            )
            error.__cause__ = outcome.error
            status = TaskStatus.RETRIES_EXHAUSTED
            counter = 'retries_exhausted'
        else:
            error = IllegalStateError(f"Pool stopped before task {task.id} could be retried")
            error.__cause__ = outcome.error
            status = TaskStatus.REJECTED
            counter = 'rejected_tasks'

        with self._condition:
            setattr(self._pool_metrics, counter, getattr(self._pool_metrics, counter) + 1)
            self._pool_metrics.update_task_failure()

        logger.error(f"Task {task.id} terminated with {type(error).__name__}: {error}")
        handle._reject(error, status)

    def _expire_tasks(self, tasks: List[ConversionTask]):
        """Задачи, не дождавшиеся воркера (callback диспетчера)."""
        with self._condition:
            handles = [self._handles.pop(task.id) for task in tasks if task.id in self._handles]
            # Уже выполнявшаяся задача завершается исчерпанием повторов, а не таймаутом очереди
            retried = [handle for handle in handles if handle.task.attempts > 0]
            self._pool_metrics.queue_timeouts += len(handles) - len(retried)
            self._pool_metrics.retries_exhausted += len(retried)
            self._pool_metrics.total_tasks_failed += len(handles)
            self._condition.notify_all()

        for handle in handles:
            task = handle.task
            timeout = self._queue_timeout_for(task)
            if task.attempts > 0:
                error = RetriesExhausted(
                    f"Task {task.id} ran out of queue time after {task.attempts} attempts: {task.last_error}",
                    task.id,
                    attempts=task.attempts,
                    last_error=task.last_error
                )
                error.__cause__ = task.last_error
                logger.error(f"Task {task.id} could not be retried within {timeout}s")
                handle._reject(error, TaskStatus.RETRIES_EXHAUSTED)
            else:
                logger.warning(f"Task {task.id} was not dispatched within {timeout}s")
                handle._reject(
                    TaskQueueTimeout(f"Task {task.id} waited more than {timeout}s for a free worker", task.id),
                    TaskStatus.QUEUE_TIMEOUT
                )

    def _fail_orphaned_tasks(self, tasks: List[ConversionTask]):
        """Очередь без единого пригодного воркера (callback диспетчера)."""
        with self._condition:
            handles = [self._handles.pop(task.id) for task in tasks if task.id in self._handles]
            self._pool_metrics.total_tasks_failed += len(handles)
            self._condition.notify_all()

        for handle in handles:
            handle._reject(
                BackendUnusable(f"No usable backend left to run task {handle.task_id}"),
                TaskStatus.REJECTED
            )
        if handles:
            logger.error(f"{len(handles)} queued tasks failed: every backend is unusable")

    def _on_worker_error(self, worker: Worker, task: ConversionTask, error: Exception):
        """Непредвиденная ошибка при обработке задачи воркером."""
        logger.error(f"{worker.name} failed to process task {task.id}: {error}")
        try:
            self._complete_attempt(worker, task, ExecutionOutcome.permanent(error))
        except Exception as e:
            logger.error(f"Could not complete task {task.id} after worker error: {e}")

    # Состояние и метрики

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def pool_size(self) -> int:
        return len(self._worker_manager)

    def is_running(self) -> bool:
        """Проверка работы пула."""
        return self._state == PoolState.RUNNING

    def get_workers(self) -> List[Worker]:
        """Получение списка воркеров."""
        return self._worker_manager.get_workers()

    def get_backends(self) -> List[Backend]:
        return [worker.backend for worker in self._worker_manager.get_workers()]

    def get_queue_size(self) -> int:
        """Получение размера очереди задач."""
        with self._condition:
            return len(self._queue)

    def get_metrics(self) -> Dict[str, Any]:
        """Получение метрик пула."""
        with self._condition:
            pool_metrics = self._pool_metrics.to_dict()
            pool_metrics.update({
                'state': self._state.value,
                'pending_tasks': len(self._handles),
                'queue_metrics': self._queue.get_metrics(),
                'worker_metrics': self._worker_manager.get_worker_stats()
            })
        pool_metrics['execution_metrics'] = self._task_executor.get_metrics()
        return pool_metrics

    def wait_for_completion(self, timeout: Optional[float] = None) -> bool:
        """
        Ожидание терминального исхода всех отправленных задач.

        Args:
            timeout: Таймаут ожидания

        Returns:
            True если все задачи завершены, False если таймаут
        """
        with self._condition:
            return self._condition.wait_for(lambda: not self._handles, timeout)

    def __enter__(self):
        """Контекстный менеджер - вход."""
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Контекстный менеджер - выход."""
        self.stop()

    def __repr__(self) -> str:
        return (f"ConversionPoolManager(state={self._state.value}, "
                f"workers={self.pool_size}, "
                f"queue_size={len(self._queue)})")


def stop_quietly(pool: Optional[ConversionPoolManager]):
    """Остановка пула без выброса исключений."""
    if pool is None:
        return
    try:
        pool.stop()
    except Exception as e:
        logger.warning(f"Error while stopping pool: {e}")
