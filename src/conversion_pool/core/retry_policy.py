"""
Политика ретраев: классификация ошибок и решение о повторе.
"""

from enum import Enum
from typing import Optional

from ..models.outcome import ExecutionOutcome, FailureKind
from ..models.task import ConversionTask
from ..utils.config import RetryConfig, BackoffStrategy
from ..utils.logger import get_logger
from ..exceptions import (
    BackendError,
    PermanentFailure,
    TaskExecutionTimeout
)


logger = get_logger(__name__)

DEFAULT_TRANSIENT_ERRORS = (TaskExecutionTimeout, BackendError, ConnectionError, TimeoutError)


class RetryDecision(Enum):
    """Решения по результату попытки."""
    COMPLETE = "complete"  # Успех
    FAIL = "fail"  # Постоянная ошибка
    RETRY = "retry"  # Вернуть в голову очереди
    EXHAUSTED = "exhausted"  # Попытки исчерпаны


class RetryPolicy:
    """Политика ретраев с ограничением числа попыток и необязательным backoff."""

    def __init__(self, max_retries: int, config: Optional[RetryConfig] = None):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.config = config or RetryConfig()

        logger.debug(f"RetryPolicy initialized: max_retries={max_retries}, config={self.config}")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def classify(self, error: BaseException) -> FailureKind:
        """
        Классификация исключения, выброшенного бэкендом.

        Args:
            error: Исключение

        Returns:
            PERMANENT или TRANSIENT
        """
        if isinstance(error, PermanentFailure):
            return FailureKind.PERMANENT

        if self.config.permanent_errors and isinstance(error, tuple(self.config.permanent_errors)):
            return FailureKind.PERMANENT

        transient = DEFAULT_TRANSIENT_ERRORS + tuple(self.config.transient_errors)
        if isinstance(error, transient):
            return FailureKind.TRANSIENT

        return FailureKind.PERMANENT

    def outcome_from_error(self, error: BaseException, execution_time: float = 0.0) -> ExecutionOutcome:
        return ExecutionOutcome(
            error=error,
            kind=self.classify(error),
            execution_time=execution_time
        )

    def decide(self, task: ConversionTask, outcome: ExecutionOutcome) -> RetryDecision:
        """
        Решение по исходу попытки.

        Args:
            task: Задача, ``attempts`` уже учитывает текущую попытку
            outcome: Исход попытки

        Returns:
            Решение о дальнейшей судьбе задачи
        """
        if outcome.is_success():
            return RetryDecision.COMPLETE

        if not outcome.is_transient():
            return RetryDecision.FAIL

        if task.attempts >= self.max_attempts:
            return RetryDecision.EXHAUSTED

        return RetryDecision.RETRY

    def calculate_delay(self, attempt_number: int) -> float:
        """
        Расчет задержки перед повтором.

        Args:
            attempt_number: Номер повтора (начиная с 1)

        Returns:
            Задержка в секундах
        """
        strategy = self.config.strategy
        base = self.config.base_delay

        if strategy == BackoffStrategy.NONE or base <= 0:
            return 0.0

        if strategy == BackoffStrategy.FIXED:
            delay = base
        elif strategy == BackoffStrategy.LINEAR:
            delay = base * max(attempt_number, 1)
        else:
            delay = base * (self.config.exponential_base ** (max(attempt_number, 1) - 1))

        return min(delay, self.config.max_delay)

    def __repr__(self) -> str:
        return f"RetryPolicy(max_retries={self.max_retries}, strategy={self.config.strategy.value})"
