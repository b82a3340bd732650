"""
Цикл диспетчеризации задач по свободным воркерам.
"""

import threading
import time
from typing import Callable, List, Optional

from .task_queue import TaskQueue
from .worker_manager import WorkerManager
from ..models.task import ConversionTask
from ..models.worker import Worker
from ..utils.logger import get_logger


logger = get_logger(__name__)


class Dispatcher:
    """
    Единственный поток, сопоставляющий задачи из очереди со свободными воркерами.

    Решения принимаются под общим условием пула. Поток просыпается при
    отправке задачи, при освобождении воркера и к ближайшему сроку в очереди.
    Выполнение конвертации идет вне блокировки.
    """

    def __init__(
        self,
        condition: threading.Condition,
        task_queue: TaskQueue,
        worker_manager: WorkerManager,
        on_dispatch: Callable[[Worker, ConversionTask], None],
        on_expired: Callable[[List[ConversionTask]], None],
        on_no_workers: Callable[[List[ConversionTask]], None]
    ):
        self._condition = condition
        self._queue = task_queue
        self._worker_manager = worker_manager
        self._on_dispatch = on_dispatch
        self._on_expired = on_expired
        self._on_no_workers = on_no_workers
        self._stopped = False
        self._thread: Optional[threading.Thread] = None

    def start(self):
        """Запуск потока диспетчеризации."""
        self._thread = threading.Thread(
            target=self._dispatch_loop,
            name="conversion-dispatcher",
            daemon=True
        )
        self._thread.start()
        logger.debug("Dispatcher started")

    def stop(self, timeout: float = 5.0):
        """Остановка потока диспетчеризации."""
        with self._condition:
            self._stopped = True
            self._condition.notify_all()

        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        logger.debug("Dispatcher stopped")

    def _next_decision(self):
        """
        Ожидание следующего решения. Вызывается под условием.

        Returns:
            (истекшие задачи, задачи без воркеров, воркер, задача)
        """
        while not self._stopped:
            now = time.monotonic()

            expired = self._queue.pop_expired(now)
            if expired:
                self._condition.notify_all()
                return expired, [], None, None

            if len(self._queue) and not self._worker_manager.has_usable_workers():
                self._condition.notify_all()
                return [], self._queue.drain(), None, None

            worker = self._worker_manager.find_free_worker()
            if worker is not None:
                task = self._queue.pop_next(now)
                if task is not None:
                    worker.set_busy(task.id)
                    # место в очереди освободилось
                    self._condition.notify_all()
                    return [], [], worker, task

            self._condition.wait(self._queue.next_wakeup(now))

        return [], [], None, None

    def _dispatch_loop(self):
        """Основной цикл диспетчеризации."""
        while True:
            with self._condition:
                expired, orphaned, worker, task = self._next_decision()
                if self._stopped:
                    return

            if expired:
                self._on_expired(expired)
            if orphaned:
                self._on_no_workers(orphaned)
            if task is not None:
                logger.debug(f"Dispatching task {task.id} to {worker.name}")
                self._on_dispatch(worker, task)
