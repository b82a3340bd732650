"""
Общие фикстуры: управляемые бэкенды и фабрика пулов.
"""

import threading
import time
from pathlib import Path
from typing import List, Optional, Sequence

import pytest

from conversion_pool import ConversionPoolManager, PoolConfig, stop_quietly
from conversion_pool.backends.base import Backend
from conversion_pool.models.outcome import ExecutionOutcome
from conversion_pool.models.task import ConversionTask
from conversion_pool.exceptions import BackendError, PermanentFailure


class ConcurrencyTracker:
    """Счетчик одновременных выполнений и порядок запуска задач."""

    def __init__(self):
        self._lock = threading.Lock()
        self.current = 0
        self.max_concurrent = 0
        self.started: List[str] = []

    def enter(self, task: ConversionTask):
        with self._lock:
            self.current += 1
            self.max_concurrent = max(self.max_concurrent, self.current)
            self.started.append(str(task.source))

    def leave(self):
        with self._lock:
            self.current -= 1


class FakeBackend(Backend):
    """
    Бэкенд с заданным сценарием поведения.

    Каждый вызов ``execute()`` берет следующий шаг из ``script``:
    "ok", "transient", "permanent", "hang" или исключение для выброса.
    Когда сценарий закончился, используется ``default``.
    """

    def __init__(
        self,
        name: str = "fake",
        tracker: Optional[ConcurrencyTracker] = None,
        delay: float = 0.0,
        script: Sequence = (),
        default="ok",
        restore_result: bool = True,
        fail_acquire: bool = False,
        fail_release: bool = False
    ):
        self.name = name
        self.tracker = tracker or ConcurrencyTracker()
        self.delay = delay
        self.script = list(script)
        self.default = default
        self.restore_result = restore_result
        self.fail_acquire = fail_acquire
        self.fail_release = fail_release

        self.acquire_calls = 0
        self.release_calls = 0
        self.restore_calls = 0
        self.calls = 0
        self._abort = threading.Event()
        self._lock = threading.Lock()

    def acquire(self):
        self.acquire_calls += 1
        if self.fail_acquire:
            raise BackendError(f"{self.name} cannot start")

    def release(self):
        self.release_calls += 1
        if self.fail_release:
            raise BackendError(f"{self.name} cannot stop")

    def restore(self) -> bool:
        self.restore_calls += 1
        self._abort.set()
        return self.restore_result

    def _next_step(self):
        with self._lock:
            self.calls += 1
            self._abort.clear()
            return self.script.pop(0) if self.script else self.default

    def execute(self, task: ConversionTask) -> ExecutionOutcome:
        step = self._next_step()
        self.tracker.enter(task)
        try:
            if step == "hang":
                self._abort.wait(10.0)
                return ExecutionOutcome.success(Path(task.target))

            if self.delay:
                time.sleep(self.delay)

            if isinstance(step, BaseException):
                raise step
            if step == "transient":
                return ExecutionOutcome.transient(BackendError(f"{self.name} is busy"))
            if step == "permanent":
                return ExecutionOutcome.permanent(PermanentFailure(f"{self.name} rejected {task.source}", task.id))
            return ExecutionOutcome.success(Path(task.target))
        finally:
            self.tracker.leave()


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Ожидание выполнения условия."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def make_task(name: str, **kwargs) -> ConversionTask:
    return ConversionTask(source=f"{name}.docx", target=f"{name}.pdf", **kwargs)


@pytest.fixture
def tracker():
    return ConcurrencyTracker()


@pytest.fixture
def pool_factory():
    """Фабрика запущенных пулов, останавливаемых после теста."""
    pools: List[ConversionPoolManager] = []

    def factory(backends: Sequence[Backend], start: bool = True, **config_kwargs) -> ConversionPoolManager:
        config_kwargs.setdefault('pool_size', len(backends))
        config_kwargs.setdefault('queue_timeout', 5.0)
        config_kwargs.setdefault('execution_timeout', 5.0)
        config_kwargs.setdefault('max_retries', 0)
        pool = ConversionPoolManager(backends, PoolConfig(**config_kwargs))
        pools.append(pool)
        if start:
            pool.start()
        return pool

    yield factory

    for pool in pools:
        stop_quietly(pool)
