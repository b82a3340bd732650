"""
Очередь задач конвертации.
"""

import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

from ..models.task import ConversionTask, TaskStatus
from ..utils.config import QueueTimeoutPolicy
from ..utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(eq=False)
class _QueueEntry:
    task: ConversionTask
    deadline: float


class TaskQueue:
    """
    FIFO очередь ожидающих задач с крайним сроком для каждой задачи.

    Очередь не синхронизирована сама по себе: все вызовы выполняются под
    условием пула, которое защищает и очередь, и доступность воркеров.
    """

    def __init__(
        self,
        max_size: int = 0,
        policy: QueueTimeoutPolicy = QueueTimeoutPolicy.PER_RESIDENCY
    ):
        self.max_size = max_size
        self.policy = policy
        self._entries: Deque[_QueueEntry] = deque()

        # Метрики
        self._metrics = {
            'tasks_enqueued': 0,
            'tasks_requeued': 0,
            'tasks_dispatched': 0,
            'tasks_expired': 0,
            'tasks_drained': 0,
            'max_size_reached': 0,
            'average_wait_time': 0.0,
            'max_wait_time': 0.0
        }

        logger.debug(f"TaskQueue initialized: max_size={max_size}, policy={policy.value}")

    def _deadline(self, task: ConversionTask, queue_timeout: float, now: float) -> float:
        if self.policy == QueueTimeoutPolicy.TOTAL and task.first_enqueued_at is not None:
            return task.first_enqueued_at + queue_timeout
        return now + queue_timeout

    def _mark_enqueued(self, task: ConversionTask, now: float):
        if task.first_enqueued_at is None:
            task.first_enqueued_at = now
        task.enqueued_at = now
        task.status = TaskStatus.QUEUED

    def is_full(self) -> bool:
        return self.max_size > 0 and len(self._entries) >= self.max_size

    def append(self, task: ConversionTask, queue_timeout: float, now: Optional[float] = None):
        """
        Добавление новой задачи в хвост очереди.

        Args:
            task: Задача
            queue_timeout: Максимальное время ожидания воркера в секундах
            now: Текущее время по time.monotonic
        """
        now = time.monotonic() if now is None else now
        self._mark_enqueued(task, now)
        self._entries.append(_QueueEntry(task, self._deadline(task, queue_timeout, now)))

        self._metrics['tasks_enqueued'] += 1
        self._metrics['max_size_reached'] = max(self._metrics['max_size_reached'], len(self._entries))

    def push_front(
        self,
        task: ConversionTask,
        queue_timeout: float,
        delay: float = 0.0,
        now: Optional[float] = None
    ):
        """Возврат задачи после временной ошибки в голову очереди (емкость не учитывается)."""
        now = time.monotonic() if now is None else now
        self._mark_enqueued(task, now)
        task.not_before = now + delay if delay > 0 else 0.0
        self._entries.appendleft(_QueueEntry(task, self._deadline(task, queue_timeout, now)))

        self._metrics['tasks_requeued'] += 1

    def pop_next(self, now: Optional[float] = None) -> Optional[ConversionTask]:
        """Извлечение первой задачи, готовой к диспетчеризации."""
        now = time.monotonic() if now is None else now
        for entry in self._entries:
            if entry.task.not_before <= now:
                self._entries.remove(entry)
                self._record_dispatch(entry.task, now)
                return entry.task
        return None

    def pop_expired(self, now: Optional[float] = None) -> List[ConversionTask]:
        """Извлечение всех задач с истекшим сроком ожидания."""
        now = time.monotonic() if now is None else now
        expired = [entry for entry in self._entries if entry.deadline <= now]
        for entry in expired:
            self._entries.remove(entry)

        self._metrics['tasks_expired'] += len(expired)
        return [entry.task for entry in expired]

    def next_wakeup(self, now: Optional[float] = None) -> Optional[float]:
        """Время в секундах до ближайшего срока или готовности задачи, None если очередь пуста."""
        now = time.monotonic() if now is None else now
        moments = [entry.deadline for entry in self._entries]
        moments.extend(entry.task.not_before for entry in self._entries if entry.task.not_before > now)
        if not moments:
            return None
        return max(0.0, min(moments) - now)

    def drain(self) -> List[ConversionTask]:
        """Извлечение всех задач."""
        tasks = [entry.task for entry in self._entries]
        self._entries.clear()
        self._metrics['tasks_drained'] += len(tasks)
        return tasks

    def _record_dispatch(self, task: ConversionTask, now: float):
        self._metrics['tasks_dispatched'] += 1
        wait_time = now - (task.enqueued_at or now)
        self._metrics['max_wait_time'] = max(self._metrics['max_wait_time'], wait_time)

        dispatched = self._metrics['tasks_dispatched']
        average = self._metrics['average_wait_time']
        self._metrics['average_wait_time'] = average + (wait_time - average) / dispatched

    def task_ids(self) -> List[str]:
        return [entry.task.id for entry in self._entries]

    def get_metrics(self) -> Dict[str, float]:
        """Получение метрик очереди."""
        metrics = self._metrics.copy()
        metrics['current_size'] = len(self._entries)
        return metrics

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"TaskQueue(size={len(self)}, max_size={self.max_size}, policy={self.policy.value})"
