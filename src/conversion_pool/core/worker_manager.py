"""
Менеджер фиксированного набора воркеров.
"""

import queue
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..backends.base import Backend
from ..models.task import ConversionTask
from ..models.worker import Worker, WorkerStatus
from ..utils.logger import get_logger
from ..exceptions import BackendError, ConversionPoolError


logger = get_logger(__name__)


class WorkerManager:
    """
    Менеджер воркеров: по одному воркеру и потоку на бэкенд.

    Набор воркеров задается при создании и больше не меняется, меняется
    только их доступность.
    """

    def __init__(self, backends: Sequence[Backend]):
        if not backends:
            raise ValueError("At least one backend is required")

        self._workers: List[Worker] = [
            Worker(backend=backend, name=f"worker-{index + 1}")
            for index, backend in enumerate(backends)
        ]
        self._inboxes: Dict[str, "queue.Queue[Optional[ConversionTask]]"] = {
            worker.id: queue.Queue() for worker in self._workers
        }
        self._worker_threads: Dict[str, threading.Thread] = {}
        self._shutdown_event = threading.Event()

        # Callback'и для взаимодействия с пулом
        self._task_handler: Optional[Callable[[Worker, ConversionTask], None]] = None
        self._on_worker_error: Optional[Callable[[Worker, ConversionTask, Exception], None]] = None

        logger.info(f"WorkerManager initialized with {len(self._workers)} workers")

    def set_task_handler(self, handler: Callable[[Worker, ConversionTask], None]):
        """Установка обработчика задач."""
        self._task_handler = handler

    def set_on_worker_error(self, callback: Callable[[Worker, ConversionTask, Exception], None]):
        """Установка callback'а для обработки ошибок воркеров."""
        self._on_worker_error = callback

    def start(self):
        """Запуск бэкендов и потоков воркеров."""
        logger.info("Starting WorkerManager...")

        acquired: List[Worker] = []
        for worker in self._workers:
            try:
                worker.backend.acquire()
            except Exception as e:
                logger.error(f"Failed to acquire backend {worker.backend.name}: {e}")
                for started in acquired:
                    self._release_backend(started)
                raise BackendError(f"Failed to acquire backend {worker.backend.name}: {e}") from e
            acquired.append(worker)

        for worker in self._workers:
            worker.start()
            thread = threading.Thread(
                target=self._worker_loop,
                args=(worker,),
                name=f"{worker.name}-thread",
                daemon=True
            )
            thread.start()
            self._worker_threads[worker.id] = thread

        logger.info(f"WorkerManager started with {len(self._workers)} workers")

    def stop(self, join_timeout: float = 5.0) -> List[Exception]:
        """
        Остановка воркеров и освобождение всех бэкендов.

        Ошибки освобождения не прерывают остановку остальных бэкендов.

        Returns:
            Список ошибок освобождения
        """
        logger.info("Stopping WorkerManager...")

        self._shutdown_event.set()
        for worker in self._workers:
            self._inboxes[worker.id].put(None)

        errors: List[Exception] = []
        for worker in self._workers:
            error = self._release_backend(worker)
            if error is not None:
                errors.append(error)
            worker.stop()

        for thread in self._worker_threads.values():
            if thread.is_alive():
                thread.join(timeout=join_timeout)

        logger.info(f"WorkerManager stopped ({len(errors)} release errors)")
        return errors

    def _release_backend(self, worker: Worker) -> Optional[Exception]:
        try:
            worker.backend.release()
            return None
        except Exception as e:
            logger.error(f"Failed to release backend {worker.backend.name}: {e}")
            return e

    def assign(self, worker: Worker, task: ConversionTask):
        """Передача задачи занятому воркеру."""
        if worker.status != WorkerStatus.BUSY:
            raise ConversionPoolError(f"{worker.name} must be reserved before assignment")
        self._inboxes[worker.id].put(task)

    def _worker_loop(self, worker: Worker):
        """Основной цикл воркера."""
        logger.debug(f"{worker.name} started")
        inbox = self._inboxes[worker.id]

        while not self._shutdown_event.is_set():
            task = inbox.get()
            if task is None:
                break

            try:
                if self._task_handler is None:
                    raise ConversionPoolError("No task handler set")
                self._task_handler(worker, task)
            except Exception as e:
                logger.error(f"Error in {worker.name} loop: {e}")
                if self._on_worker_error:
                    self._on_worker_error(worker, task, e)

        logger.debug(f"{worker.name} stopped")

    def find_free_worker(self) -> Optional[Worker]:
        """Первый свободный воркер."""
        return next((w for w in self._workers if w.is_available()), None)

    def has_usable_workers(self) -> bool:
        return any(w.is_usable() for w in self._workers)

    def busy_count(self) -> int:
        return sum(1 for w in self._workers if w.status == WorkerStatus.BUSY)

    def get_workers(self) -> List[Worker]:
        """Получение списка воркеров."""
        return list(self._workers)

    def get_worker_by_id(self, worker_id: str) -> Optional[Worker]:
        """Получение воркера по ID."""
        return next((w for w in self._workers if w.id == worker_id), None)

    def get_worker_stats(self) -> Dict[str, Any]:
        """Получение статистики воркеров."""
        workers = self._workers
        total_workers = len(workers)
        busy_workers = sum(1 for w in workers if w.status == WorkerStatus.BUSY)

        return {
            'total_workers': total_workers,
            'free_workers': sum(1 for w in workers if w.status == WorkerStatus.FREE),
            'busy_workers': busy_workers,
            'unusable_workers': sum(1 for w in workers if w.status == WorkerStatus.UNUSABLE),
            'total_tasks_succeeded': sum(w.metrics.tasks_succeeded for w in workers),
            'total_tasks_failed': sum(w.metrics.tasks_failed for w in workers),
            'worker_utilization': busy_workers / total_workers * 100
        }

    def __len__(self) -> int:
        return len(self._workers)

    def __repr__(self) -> str:
        stats = self.get_worker_stats()
        return (f"WorkerManager(workers={stats['total_workers']}, free={stats['free_workers']}, "
                f"busy={stats['busy_workers']}, unusable={stats['unusable_workers']})")
