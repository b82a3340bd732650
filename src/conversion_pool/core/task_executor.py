"""
Исполнитель задач на бэкенде воркера с таймаутом выполнения.
"""

import threading
import time
from typing import Any, Dict, Optional

from .retry_policy import RetryPolicy
from ..models.outcome import ExecutionOutcome
from ..models.task import ConversionTask, TaskStatus
from ..models.worker import Worker
from ..utils.logger import get_logger, get_task_logger
from ..exceptions import BackendUnusable, TaskExecutionTimeout


logger = get_logger(__name__)


class _BackendCall:
    """Один вызов бэкенда в отдельном daemon потоке, который можно бросить."""

    def __init__(self, worker: Worker, task: ConversionTask):
        self.worker = worker
        self.task = task
        self.outcome: Optional[ExecutionOutcome] = None
        self.error: Optional[BaseException] = None
        self.finished = threading.Event()
        self.thread = threading.Thread(
            target=self._run,
            name=f"{worker.name}-call",
            daemon=True
        )

    def _run(self):
        try:
            self.outcome = self.worker.backend.execute(self.task)
        except Exception as e:
            self.error = e
        finally:
            self.finished.set()

    def start(self):
        self.thread.start()

    def wait(self, timeout: float) -> bool:
        return self.finished.wait(timeout)


class TaskExecutor:
    """Исполнитель задач с поддержкой таймаутов и метрик."""

    def __init__(self, retry_policy: RetryPolicy):
        self._retry_policy = retry_policy
        self._metrics_lock = threading.Lock()

        # Метрики выполнения
        self._metrics: Dict[str, Any] = {
            'total_executions': 0,
            'successful_executions': 0,
            'failed_executions': 0,
            'timeout_executions': 0,
            'abandoned_backends': 0,
            'total_execution_time': 0.0,
            'max_execution_time': 0.0
        }

    def execute_task(self, task: ConversionTask, worker: Worker, timeout: float) -> ExecutionOutcome:
        """
        Выполнение одной попытки задачи на бэкенде воркера.

        Args:
            task: Задача для выполнения
            worker: Занятый воркер
            timeout: Таймаут выполнения в секундах

        Returns:
            Исход попытки. Исключения бэкенда классифицируются политикой ретраев.
        """
        start_time = time.time()
        task.status = TaskStatus.DISPATCHED
        task_logger = get_task_logger(__name__, task.id)

        task_logger.debug(f"Executing on {worker.name} (attempt {task.attempts})")

        call = _BackendCall(worker, task)
        call.start()

        if not call.wait(timeout):
            execution_time = time.time() - start_time
            task_logger.warning(f"Timed out on {worker.name} after {execution_time:.3f}s")
            self._restore_backend(worker)

            outcome = ExecutionOutcome.transient(
                TaskExecutionTimeout(f"Task {task.id} timed out after {timeout}s", task.id),
                execution_time
            )
            self._update_metrics(outcome, is_timeout=True)
            worker.update_metrics(execution_time, success=False, is_timeout=True)
            return outcome

        execution_time = time.time() - start_time

        if call.error is not None:
            task_logger.error(f"Backend {worker.backend.name} raised: {call.error}")
            outcome = self._retry_policy.outcome_from_error(call.error, execution_time)
        elif call.outcome is None:
            outcome = ExecutionOutcome.success(None, execution_time)
        elif call.outcome.error is not None and call.outcome.kind is None:
            outcome = self._retry_policy.outcome_from_error(call.outcome.error, execution_time)
        else:
            outcome = call.outcome

        if outcome.is_success():
            task_logger.debug(f"Converted on {worker.name} in {execution_time:.3f}s")
        else:
            task_logger.info(f"Failed on {worker.name} ({outcome.kind.value}): {outcome.error}")

        self._update_metrics(outcome)
        worker.update_metrics(execution_time, success=outcome.is_success())
        return outcome

    def _restore_backend(self, worker: Worker):
        """Восстановление бэкенда после брошенного вызова, иначе воркер выводится из пула."""
        try:
            restored = worker.backend.restore()
        except Exception as e:
            logger.error(f"Restoring backend {worker.backend.name} failed: {e}")
            restored = False

        if not restored:
            error = BackendUnusable(
                f"Backend {worker.backend.name} could not be restored after a timeout",
                worker_id=worker.id
            )
            worker.set_unusable(error)
            with self._metrics_lock:
                self._metrics['abandoned_backends'] += 1
            logger.error(f"{error}; {worker.name} excluded from dispatch")

    def _update_metrics(self, outcome: ExecutionOutcome, is_timeout: bool = False):
        """Обновление метрик выполнения."""
        with self._metrics_lock:
            self._metrics['total_executions'] += 1
            self._metrics['total_execution_time'] += outcome.execution_time
            self._metrics['max_execution_time'] = max(
                self._metrics['max_execution_time'],
                outcome.execution_time
            )

            if outcome.is_success():
                self._metrics['successful_executions'] += 1
            else:
                self._metrics['failed_executions'] += 1
                if is_timeout:
                    self._metrics['timeout_executions'] += 1

    def get_metrics(self) -> Dict[str, Any]:
        """Получение метрик выполнения."""
        with self._metrics_lock:
            metrics = self._metrics.copy()

        total = metrics['total_executions']
        if total > 0:
            metrics['average_execution_time'] = metrics['total_execution_time'] / total
            metrics['success_rate'] = (metrics['successful_executions'] / total) * 100
        else:
            metrics['average_execution_time'] = 0.0
            metrics['success_rate'] = 0.0
        return metrics

    def __repr__(self) -> str:
        metrics = self.get_metrics()
        return f"TaskExecutor(executions={metrics['total_executions']}, success_rate={metrics['success_rate']:.1f}%)"
