"""
Бэкенд удаленного HTTP сервиса конвертации.
"""

import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import requests

from .base import Backend
from ..models.outcome import ExecutionOutcome
from ..models.task import ConversionTask
from ..utils.config import OnlineBackendConfig
from ..utils.logger import get_logger, get_task_logger
from ..exceptions import BackendError, ConfigurationError, PermanentFailure


logger = get_logger(__name__)

# Статусы, после которых есть смысл повторить запрос
TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


def _with_cause(error: Exception, cause: Optional[BaseException]) -> Exception:
    error.__cause__ = cause
    return error


class OnlineBackend(Backend):
    """
    Отправляет документ на удаленный сервис конвертации.

    Документ уходит POST запросом multipart на ``url_connection`` с
    добавленным целевым форматом, например
    ``http://localhost:9980/lool/convert-to/pdf``. Тело ответа 200
    записывается в целевой файл.
    """

    def __init__(
        self,
        config: OnlineBackendConfig,
        name: str = "online",
        session_factory: Callable[[], requests.Session] = requests.Session
    ):
        if not config.url_connection:
            raise ConfigurationError("url_connection is required for the online backend")

        self.config = config
        self.name = name
        self._session_factory = session_factory
        self._session: Optional[requests.Session] = None
        # Меняется при каждом release/restore, устаревший вызов не пишет результат
        self._generation = 0
        self._lock = threading.Lock()

    def acquire(self):
        """Открытие HTTP сессии."""
        with self._lock:
            self._session = self._session_factory()
        logger.info(f"Backend {self.name} connected to {self.config.url_connection}")

    def release(self):
        """Закрытие HTTP сессии."""
        with self._lock:
            session, self._session = self._session, None
            self._generation += 1
        if session is not None:
            session.close()
            logger.info(f"Backend {self.name} released")

    def restore(self) -> bool:
        """Новая сессия; ответ брошенного запроса уже не попадет в целевой файл."""
        self.release()
        self.acquire()
        return True

    def build_url(self, task: ConversionTask) -> str:
        base = self.config.url_connection
        if not base.endswith('/'):
            base += '/'
        return base + task.target_format

    def execute(self, task: ConversionTask) -> ExecutionOutcome:
        start_time = time.time()

        if not task.target_format:
            return ExecutionOutcome.permanent(
                PermanentFailure(f"Target format of task {task.id} is unknown", task.id)
            )

        with self._lock:
            session = self._session
            generation = self._generation
        if session is None:
            return ExecutionOutcome.transient(BackendError(f"Backend {self.name} is not acquired"))

        url = self.build_url(task)
        get_task_logger(__name__, task.id).debug(f"Posting {task.source} to {url}")

        try:
            with open(task.source_path, 'rb') as source:
                response = session.post(
                    url,
                    files={self.config.form_field: (task.source_path.name, source)},
                    data=task.options or None,
                    timeout=(self.config.connect_timeout, self.config.read_timeout),
                    verify=self.config.verify_ssl
                )
        except (requests.exceptions.MissingSchema,
                requests.exceptions.InvalidSchema,
                requests.exceptions.InvalidURL) as e:
            return ExecutionOutcome.permanent(_with_cause(
                PermanentFailure(f"Invalid conversion url {url}: {e}", task.id), e
            ))
        except requests.RequestException as e:
            # Отказ соединения, таймаут и прочие сетевые ошибки считаем временными
            return ExecutionOutcome.transient(
                _with_cause(BackendError(f"Request to {url} failed: {e}"), e),
                time.time() - start_time
            )
        except OSError as e:
            # RequestException тоже OSError, поэтому эта ветка последняя
            return ExecutionOutcome.permanent(_with_cause(
                PermanentFailure(f"Cannot read source {task.source}: {e}", task.id), e
            ))

        execution_time = time.time() - start_time

        if response.status_code == 200:
            return self._publish(task, response.content, generation, execution_time)

        message = f"Conversion service returned HTTP {response.status_code} for task {task.id}"
        if response.status_code in TRANSIENT_STATUS_CODES:
            return ExecutionOutcome.transient(BackendError(message), execution_time)
        return ExecutionOutcome.permanent(PermanentFailure(message, task.id), execution_time)

    def _publish(self, task: ConversionTask, content: bytes, generation: int, execution_time: float) -> ExecutionOutcome:
        """Запись ответа во временный файл и перенос на место цели, если вызов не брошен."""
        target = task.target_path
        target.parent.mkdir(parents=True, exist_ok=True)

        fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".part", dir=target.parent)
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(content)

            with self._lock:
                if generation == self._generation:
                    temp_path.replace(target)
                    return ExecutionOutcome.success(target, execution_time)
        finally:
            if temp_path.exists():
                temp_path.unlink()

        get_task_logger(__name__, task.id).warning(f"Discarded response of abandoned call on {self.name}")
        return ExecutionOutcome.transient(
            BackendError(f"Call on backend {self.name} was abandoned before it finished"),
            execution_time
        )
