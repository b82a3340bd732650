"""
Тесты для отдельных компонентов пула конвертации.
"""

import time
import pytest
import threading
from unittest.mock import Mock

from conversion_pool.core.task_queue import TaskQueue
from conversion_pool.core.retry_policy import RetryPolicy, RetryDecision
from conversion_pool.core.graceful_shutdown import GracefulShutdown, ShutdownPhase
from conversion_pool.core.task_executor import TaskExecutor
from conversion_pool.core.worker_manager import WorkerManager

from conversion_pool.models.outcome import ExecutionOutcome, FailureKind
from conversion_pool.models.task import ConversionTask, TaskHandle, TaskStatus
from conversion_pool.models.worker import Worker, WorkerStatus
from conversion_pool.utils.config import BackoffStrategy, QueueTimeoutPolicy, RetryConfig, ShutdownConfig
from conversion_pool.exceptions import (
    BackendError,
    BackendUnusable,
    ConversionPoolError,
    PermanentFailure,
    TaskExecutionTimeout
)

from conftest import FakeBackend, make_task


class TestConversionTask:
    """Тесты модели задачи."""

    def test_target_format_from_suffix(self):
        task = ConversionTask(source="a.docx", target="out/A.PDF")

        assert task.target_format == "pdf"
        assert task.status == TaskStatus.PENDING
        assert task.attempts == 0
        assert task.source_path.name == "a.docx"

    def test_explicit_target_format(self):
        task = ConversionTask(source="a.docx", target="a.out", target_format="pdf:writer_pdf_Export")

        assert task.target_format == "pdf:writer_pdf_Export"

    def test_blank_paths_rejected(self):
        """Пустые пути недопустимы."""
        with pytest.raises(ValueError):
            ConversionTask(source="", target="a.pdf")
        with pytest.raises(ValueError):
            ConversionTask(source="a.docx", target="  ")

    def test_unique_ids(self):
        assert make_task("a").id != make_task("a").id


class TestTaskHandle:
    """Тесты дескриптора задачи."""

    def test_resolved_once(self):
        """Дескриптор разрешается только один раз."""
        handle = TaskHandle(make_task("a"))

        assert handle._resolve("first")
        assert not handle._resolve("second")
        assert not handle._reject(PermanentFailure("late"), TaskStatus.PERMANENTLY_FAILED)

        assert handle.result(timeout=0) == "first"
        assert handle.status == TaskStatus.SUCCEEDED

    def test_reject(self):
        handle = TaskHandle(make_task("a"))
        error = PermanentFailure("bad input")

        handle._reject(error, TaskStatus.PERMANENTLY_FAILED)

        assert handle.exception(timeout=0) is error
        assert handle.task.last_error is error
        assert handle.task.is_terminal()

    def test_done_callback_receives_handle(self):
        handle = TaskHandle(make_task("a"))
        received = []
        handle.add_done_callback(received.append)

        handle._resolve("ok")

        assert received == [handle]


class TestTaskQueue:
    """Тесты очереди задач."""

    def test_fifo_order(self):
        """Задачи извлекаются в порядке добавления."""
        queue = TaskQueue()
        tasks = [make_task(name) for name in ("a", "b", "c")]
        for task in tasks:
            queue.append(task, 10.0, now=0.0)

        assert [queue.pop_next(now=1.0) for _ in tasks] == tasks
        assert queue.pop_next(now=1.0) is None
        assert tasks[0].status == TaskStatus.QUEUED

    def test_push_front(self):
        """Повтор становится в голову очереди, даже если очередь заполнена."""
        queue = TaskQueue(max_size=1)
        waiting = make_task("waiting")
        retried = make_task("retried")
        queue.append(waiting, 10.0, now=0.0)

        assert queue.is_full()
        queue.push_front(retried, 10.0, now=0.0)

        assert len(queue) == 2
        assert queue.task_ids() == [retried.id, waiting.id]

    def test_expiry(self):
        """Истекшие задачи извлекаются целиком."""
        queue = TaskQueue()
        short = make_task("short")
        long = make_task("long")
        queue.append(short, 1.0, now=0.0)
        queue.append(long, 5.0, now=0.0)

        assert queue.pop_expired(now=0.5) == []
        assert queue.pop_expired(now=1.0) == [short]
        assert queue.task_ids() == [long.id]
        assert queue.get_metrics()['tasks_expired'] == 1

    def test_next_wakeup(self):
        queue = TaskQueue()
        assert queue.next_wakeup(now=0.0) is None

        queue.append(make_task("a"), 3.0, now=0.0)
        queue.append(make_task("b"), 2.0, now=0.5)

        assert queue.next_wakeup(now=1.0) == pytest.approx(1.5)
        assert queue.next_wakeup(now=10.0) == 0.0

    def test_backoff_skips_ineligible_task(self):
        """Отложенная задача пропускается до наступления срока."""
        queue = TaskQueue()
        fresh = make_task("fresh")
        queue.append(fresh, 10.0, now=0.0)
        delayed = make_task("delayed")
        queue.push_front(delayed, 10.0, delay=2.0, now=0.0)

        assert queue.next_wakeup(now=0.0) == pytest.approx(2.0)
        assert queue.pop_next(now=1.0) is fresh
        assert queue.pop_next(now=1.0) is None
        assert queue.pop_next(now=2.0) is delayed

    def test_per_residency_deadline_resets(self):
        """Срок ожидания отсчитывается заново при повторе."""
        queue = TaskQueue(policy=QueueTimeoutPolicy.PER_RESIDENCY)
        task = make_task("a")
        queue.append(task, 1.0, now=0.0)
        queue.pop_next(now=0.1)

        queue.push_front(task, 1.0, now=5.0)

        assert queue.pop_expired(now=5.5) == []
        assert queue.pop_expired(now=6.0) == [task]

    def test_total_deadline_from_first_submission(self):
        """При политике TOTAL срок считается от первой отправки."""
        queue = TaskQueue(policy=QueueTimeoutPolicy.TOTAL)
        task = make_task("a")
        queue.append(task, 1.0, now=0.0)
        queue.pop_next(now=0.1)

        queue.push_front(task, 1.0, now=0.5)

        assert queue.pop_expired(now=1.0) == [task]

    def test_drain(self):
        queue = TaskQueue()
        tasks = [make_task(str(i)) for i in range(3)]
        for task in tasks:
            queue.append(task, 1.0)

        assert queue.drain() == tasks
        assert len(queue) == 0


class TestRetryPolicy:
    """Тесты политики ретраев."""

    def test_classify(self):
        """Классификация исключений по умолчанию."""
        policy = RetryPolicy(max_retries=3)

        assert policy.classify(TaskExecutionTimeout("slow")) == FailureKind.TRANSIENT
        assert policy.classify(BackendError("down")) == FailureKind.TRANSIENT
        assert policy.classify(ConnectionResetError()) == FailureKind.TRANSIENT
        assert policy.classify(TimeoutError()) == FailureKind.TRANSIENT
        assert policy.classify(PermanentFailure("bad")) == FailureKind.PERMANENT
        assert policy.classify(ValueError("???")) == FailureKind.PERMANENT

    def test_classify_configured_types(self):
        config = RetryConfig(transient_errors=[KeyError], permanent_errors=[ConnectionRefusedError])
        policy = RetryPolicy(max_retries=1, config=config)

        assert policy.classify(KeyError("x")) == FailureKind.TRANSIENT
        assert policy.classify(ConnectionRefusedError()) == FailureKind.PERMANENT

    def test_decide(self):
        """Решение зависит только от исхода и числа попыток."""
        policy = RetryPolicy(max_retries=2)
        task = make_task("a")
        transient = ExecutionOutcome.transient(BackendError("busy"))

        task.attempts = 1
        assert policy.decide(task, ExecutionOutcome.success("ok")) == RetryDecision.COMPLETE
        assert policy.decide(task, ExecutionOutcome.permanent(PermanentFailure("no"))) == RetryDecision.FAIL
        assert policy.decide(task, transient) == RetryDecision.RETRY

        task.attempts = 2
        assert policy.decide(task, transient) == RetryDecision.RETRY

        task.attempts = 3
        assert policy.decide(task, transient) == RetryDecision.EXHAUSTED

    def test_zero_retries(self):
        policy = RetryPolicy(max_retries=0)
        task = make_task("a")
        task.attempts = 1

        assert policy.max_attempts == 1
        assert policy.decide(task, ExecutionOutcome.transient(BackendError("busy"))) == RetryDecision.EXHAUSTED

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)

    @pytest.mark.parametrize("strategy, expected", [
        (BackoffStrategy.NONE, [0.0, 0.0, 0.0]),
        (BackoffStrategy.FIXED, [1.0, 1.0, 1.0]),
        (BackoffStrategy.LINEAR, [1.0, 2.0, 3.0]),
        (BackoffStrategy.EXPONENTIAL, [1.0, 2.0, 4.0]),
    ])
    def test_calculate_delay(self, strategy, expected):
        """Тест расчета задержек."""
        policy = RetryPolicy(3, RetryConfig(base_delay=1.0, max_delay=10.0, strategy=strategy))

        assert [policy.calculate_delay(n) for n in (1, 2, 3)] == expected

    def test_delay_capped(self):
        policy = RetryPolicy(10, RetryConfig(base_delay=1.0, max_delay=5.0, strategy=BackoffStrategy.EXPONENTIAL))

        assert policy.calculate_delay(8) == 5.0

    def test_default_has_no_delay(self):
        assert RetryPolicy(3).calculate_delay(2) == 0.0


class TestTaskExecutor:
    """Тесты исполнителя задач."""

    @staticmethod
    def _busy_worker(backend) -> Worker:
        worker = Worker(backend=backend, name="worker-test")
        worker.start()
        worker.set_busy("task")
        return worker

    def test_success(self):
        executor = TaskExecutor(RetryPolicy(1))
        worker = self._busy_worker(FakeBackend())
        task = make_task("a")

        outcome = executor.execute_task(task, worker, timeout=5.0)

        assert outcome.is_success()
        assert outcome.result.name == "a.pdf"
        assert task.status == TaskStatus.DISPATCHED
        assert worker.metrics.tasks_succeeded == 1

    def test_timeout_restores_backend(self):
        """Таймаут дает временную ошибку и восстановление бэкенда."""
        backend = FakeBackend(default="hang")
        executor = TaskExecutor(RetryPolicy(1))
        worker = self._busy_worker(backend)

        start_time = time.monotonic()
        outcome = executor.execute_task(make_task("a"), worker, timeout=0.2)

        assert time.monotonic() - start_time < 1.0
        assert outcome.is_transient()
        assert isinstance(outcome.error, TaskExecutionTimeout)
        assert backend.restore_calls == 1
        assert worker.status == WorkerStatus.BUSY
        assert executor.get_metrics()['timeout_executions'] == 1

    def test_failed_restore_makes_worker_unusable(self):
        """Невосстановленный бэкенд исключает воркер."""
        backend = FakeBackend(default="hang", restore_result=False)
        executor = TaskExecutor(RetryPolicy(1))
        worker = self._busy_worker(backend)

        executor.execute_task(make_task("a"), worker, timeout=0.1)

        assert worker.status == WorkerStatus.UNUSABLE
        assert isinstance(worker.error, BackendUnusable)
        assert worker.error.worker_id == worker.id
        assert executor.get_metrics()['abandoned_backends'] == 1

    def test_restore_raising_makes_worker_unusable(self):
        backend = FakeBackend(default="hang")
        backend.restore = Mock(side_effect=RuntimeError("kill failed"))
        worker = self._busy_worker(backend)

        TaskExecutor(RetryPolicy(1)).execute_task(make_task("a"), worker, timeout=0.1)

        assert worker.status == WorkerStatus.UNUSABLE

    def test_raised_exception_is_classified(self):
        executor = TaskExecutor(RetryPolicy(1))

        transient = executor.execute_task(
            make_task("a"), self._busy_worker(FakeBackend(script=[ConnectionError("reset")])), timeout=5.0
        )
        permanent = executor.execute_task(
            make_task("b"), self._busy_worker(FakeBackend(script=[KeyError("bad")])), timeout=5.0
        )

        assert transient.is_transient()
        assert permanent.is_permanent()

    def test_unclassified_outcome_is_classified(self):
        backend = Mock()
        backend.name = "mock"
        backend.execute.return_value = ExecutionOutcome(error=BackendError("busy"))

        outcome = TaskExecutor(RetryPolicy(1)).execute_task(make_task("a"), self._busy_worker(backend), timeout=5.0)

        assert outcome.kind == FailureKind.TRANSIENT


class TestWorker:
    """Тесты модели воркера."""

    def test_transitions(self):
        worker = Worker(backend=FakeBackend())
        assert worker.name.startswith("worker-")

        worker.start()
        assert worker.is_available()

        assert worker.set_busy("t1")
        assert not worker.set_busy("t2")
        assert worker.current_task_id == "t1"

        worker.set_free()
        assert worker.status == WorkerStatus.FREE

    def test_unusable_is_not_freed(self):
        """Исключенный воркер не возвращается в пул."""
        worker = Worker(backend=FakeBackend())
        worker.start()
        worker.set_busy("t1")

        worker.set_unusable(BackendUnusable("gone"))
        worker.set_free()

        assert worker.status == WorkerStatus.UNUSABLE
        assert not worker.is_usable()
        assert not worker.set_busy("t2")

    def test_backend_required(self):
        with pytest.raises(ValueError):
            Worker(backend=None)


class TestWorkerManager:
    """Тесты менеджера воркеров."""

    def test_requires_backends(self):
        with pytest.raises(ValueError):
            WorkerManager([])

    def test_start_and_stop(self):
        backends = [FakeBackend("a"), FakeBackend("b")]
        manager = WorkerManager(backends)

        manager.start()
        assert [w.name for w in manager.get_workers()] == ["worker-1", "worker-2"]
        assert manager.find_free_worker() is manager.get_workers()[0]

        errors = manager.stop(join_timeout=1.0)

        assert errors == []
        assert all(b.release_calls == 1 for b in backends)
        assert all(w.status == WorkerStatus.STOPPED for w in manager.get_workers())

    def test_start_failure_releases_acquired(self):
        """Ошибка захвата откатывает уже захваченные бэкенды."""
        first = FakeBackend("first")
        second = FakeBackend("second", fail_acquire=True)
        third = FakeBackend("third")
        manager = WorkerManager([first, second, third])

        with pytest.raises(BackendError):
            manager.start()

        assert first.release_calls == 1
        assert third.acquire_calls == 0

    def test_assign_runs_handler(self):
        manager = WorkerManager([FakeBackend()])
        done = threading.Event()
        seen = []

        def handler(worker, task):
            seen.append((worker.name, task.id))
            done.set()

        manager.set_task_handler(handler)
        manager.start()
        try:
            worker = manager.find_free_worker()
            task = make_task("a")
            worker.set_busy(task.id)
            manager.assign(worker, task)

            assert done.wait(2.0)
            assert seen == [("worker-1", task.id)]
        finally:
            manager.stop(join_timeout=1.0)

    def test_assign_requires_busy_worker(self):
        manager = WorkerManager([FakeBackend()])
        manager.start()
        try:
            with pytest.raises(ConversionPoolError):
                manager.assign(manager.get_workers()[0], make_task("a"))
        finally:
            manager.stop(join_timeout=1.0)

    def test_handler_error_reported(self):
        manager = WorkerManager([FakeBackend()])
        reported = threading.Event()
        errors = []

        def on_error(worker, task, error):
            errors.append(error)
            reported.set()

        manager.set_task_handler(Mock(side_effect=RuntimeError("boom")))
        manager.set_on_worker_error(on_error)
        manager.start()
        try:
            worker = manager.find_free_worker()
            worker.set_busy("t")
            manager.assign(worker, make_task("a"))

            assert reported.wait(2.0)
            assert isinstance(errors[0], RuntimeError)
        finally:
            manager.stop(join_timeout=1.0)

    def test_stop_collects_release_errors(self):
        manager = WorkerManager([FakeBackend("a", fail_release=True), FakeBackend("b")])
        manager.start()

        errors = manager.stop(join_timeout=1.0)

        assert len(errors) == 1
        assert isinstance(errors[0], BackendError)

    def test_worker_stats(self):
        manager = WorkerManager([FakeBackend("a"), FakeBackend("b")])
        manager.start()
        try:
            manager.get_workers()[0].set_busy("t")
            stats = manager.get_worker_stats()

            assert stats['total_workers'] == 2
            assert stats['busy_workers'] == 1
            assert stats['free_workers'] == 1
            assert stats['worker_utilization'] == 50.0
            assert manager.busy_count() == 1
            assert manager.has_usable_workers()
        finally:
            manager.stop(join_timeout=1.0)


class TestGracefulShutdown:
    """Тесты graceful shutdown."""

    def test_steps_in_order(self):
        """Шаги остановки выполняются по порядку."""
        calls = []
        shutdown = GracefulShutdown(ShutdownConfig(task_completion_timeout=1.0))

        status = shutdown.execute_shutdown(
            stop_new_tasks_callback=lambda: calls.append("stop") or 2,
            get_busy_count_callback=lambda: calls.append("busy") or 0,
            release_backends_callback=lambda: calls.append("release") or [],
            abandon_tasks_callback=lambda: calls.append("abandon") or 0
        )

        assert calls == ["stop", "busy", "release", "abandon"]
        assert status.phase == ShutdownPhase.COMPLETED
        assert status.completed
        assert status.tasks_rejected == 2
        assert shutdown.is_shutdown_completed()

    def test_errors_do_not_abort_shutdown(self):
        """Ошибка шага записывается, следующие шаги выполняются."""
        release_error = BackendError("release failed")
        abandon = Mock(return_value=1)
        shutdown = GracefulShutdown()

        status = shutdown.execute_shutdown(
            stop_new_tasks_callback=Mock(side_effect=RuntimeError("stop failed")),
            release_backends_callback=lambda: [release_error],
            abandon_tasks_callback=abandon
        )

        assert status.completed
        assert status.error_count == 2
        assert release_error in status.errors
        assert status.tasks_abandoned == 1
        abandon.assert_called_once()

    def test_waits_for_busy_tasks(self):
        """Ожидание завершения выполняющихся задач."""
        busy = [2, 1, 0]
        shutdown = GracefulShutdown(ShutdownConfig(task_completion_timeout=5.0))

        shutdown.execute_shutdown(get_busy_count_callback=lambda: busy.pop(0) if len(busy) > 1 else busy[0])

        assert busy == [0]

    def test_completion_timeout(self):
        shutdown = GracefulShutdown(ShutdownConfig(task_completion_timeout=0.2))

        start_time = time.monotonic()
        shutdown.execute_shutdown(get_busy_count_callback=lambda: 1)

        assert 0.2 <= time.monotonic() - start_time < 1.0

    def test_executes_once(self):
        release = Mock(return_value=[])
        shutdown = GracefulShutdown()

        first = shutdown.execute_shutdown(release_backends_callback=release)
        second = shutdown.execute_shutdown(release_backends_callback=release)

        assert first is second
        release.assert_called_once()

    def test_cleanup_callbacks(self):
        shutdown = GracefulShutdown()
        cleanup = Mock()
        shutdown.add_cleanup_callback(cleanup)
        shutdown.add_cleanup_callback(Mock(side_effect=OSError("cannot remove")))

        status = shutdown.execute_shutdown()

        cleanup.assert_called_once()
        assert status.cleanup_callbacks_executed == 1
        assert status.error_count == 1
