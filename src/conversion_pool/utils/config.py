"""
Система конфигурации для пула конвертации.
"""

import json
import os
import tempfile
import yaml
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union
from dataclasses import dataclass, field, asdict
from pathlib import Path

from ..exceptions import ConfigurationError


DEFAULT_POOL_SIZE = 1
DEFAULT_QUEUE_TIMEOUT = 30.0
DEFAULT_EXECUTION_TIMEOUT = 120.0
DEFAULT_MAX_RETRIES = 3

BACKEND_KINDS = ("online", "local")

# Числовые поля: значения из YAML и окружения могут прийти строками
NUMERIC_FIELDS = {
    'pool_size': int,
    'queue_timeout': float,
    'execution_timeout': float,
    'max_retries': int,
    'queue_max_size': int,
    'submit_timeout': float,
}

SECTION_NUMERIC_FIELDS = {
    'online': {'connect_timeout': float, 'read_timeout': float},
    'local': {'kill_timeout': float},
    'retry': {'base_delay': float, 'max_delay': float, 'exponential_base': float},
    'shutdown': {'task_completion_timeout': float, 'worker_join_timeout': float},
}


def _coerce_numbers(section: Any, fields: Mapping[str, type], prefix: str = ""):
    """Приведение числовых полей секции, None остается None."""
    for name, convert in fields.items():
        value = getattr(section, name)
        if value is None or type(value) is convert:
            continue
        if isinstance(value, bool):
            raise ConfigurationError(f"{prefix}{name} must be a number, got {value!r}")
        try:
            setattr(section, name, convert(value))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"{prefix}{name} must be a number, got {value!r}") from e


class QueueTimeoutPolicy(Enum):
    """Как отсчитывается таймаут ожидания в очереди при повторах."""
    PER_RESIDENCY = "per_residency"  # Сброс при каждом возврате в очередь
    TOTAL = "total"  # От первой отправки


class BackoffStrategy(Enum):
    """Стратегии backoff."""
    NONE = "none"
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass
class RetryConfig:
    """Конфигурация ретраев (задержки и классификация ошибок)."""
    base_delay: float = 0.0  # Базовая задержка в секундах
    max_delay: float = 30.0  # Максимальная задержка в секундах
    exponential_base: float = 2.0
    strategy: BackoffStrategy = BackoffStrategy.NONE
    transient_errors: List[type] = field(default_factory=list)  # Типы исключений для ретрая
    permanent_errors: List[type] = field(default_factory=list)  # Типы исключений без ретрая


@dataclass
class ShutdownConfig:
    """Конфигурация остановки пула."""
    task_completion_timeout: float = 10.0  # Ожидание выполняющихся задач
    worker_join_timeout: float = 5.0  # Ожидание завершения потоков воркеров


@dataclass
class OnlineBackendConfig:
    """Конфигурация удаленного HTTP бэкенда."""
    url_connection: str = ""
    connect_timeout: float = 10.0
    read_timeout: Optional[float] = None  # None - равен execution_timeout пула
    verify_ssl: bool = True
    form_field: str = "data"


@dataclass
class LocalOfficeConfig:
    """Конфигурация локального офисного процесса."""
    office_home: str = "soffice"  # Путь к исполняемому файлу или имя в PATH
    kill_timeout: float = 5.0  # Ожидание завершения дерева процессов
    extra_args: List[str] = field(default_factory=list)


@dataclass
class PoolConfig:
    """Основная конфигурация пула конвертации."""

    # Основные параметры пула
    pool_size: int = DEFAULT_POOL_SIZE
    queue_timeout: float = DEFAULT_QUEUE_TIMEOUT
    execution_timeout: float = DEFAULT_EXECUTION_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES

    # Очередь
    queue_max_size: int = 0  # 0 - без ограничения
    submit_timeout: Optional[float] = None  # None - ждать места без ограничения
    queue_timeout_policy: QueueTimeoutPolicy = QueueTimeoutPolicy.PER_RESIDENCY

    working_dir: Union[str, Path, None] = None
    backend: str = "online"
    log_level: str = "INFO"

    # Конфигурации компонентов
    online: OnlineBackendConfig = field(default_factory=OnlineBackendConfig)
    local: LocalOfficeConfig = field(default_factory=LocalOfficeConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    shutdown: ShutdownConfig = field(default_factory=ShutdownConfig)

    def __post_init__(self):
        """Нормализация и валидация выполняются один раз при создании."""
        self._normalize()
        self.validate()

    def _normalize(self):
        _coerce_numbers(self, NUMERIC_FIELDS)
        for section_name, fields in SECTION_NUMERIC_FIELDS.items():
            _coerce_numbers(getattr(self, section_name), fields, prefix=f"{section_name}.")

        if self.online.read_timeout is None:
            self.online.read_timeout = self.execution_timeout

        if self.working_dir is None or not str(self.working_dir).strip():
            self.working_dir = Path(tempfile.gettempdir())
        else:
            self.working_dir = Path(str(self.working_dir).strip())

        try:
            if not isinstance(self.queue_timeout_policy, QueueTimeoutPolicy):
                self.queue_timeout_policy = QueueTimeoutPolicy(str(self.queue_timeout_policy).lower())
            if not isinstance(self.retry.strategy, BackoffStrategy):
                self.retry.strategy = BackoffStrategy(str(self.retry.strategy).lower())
        except ValueError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

        self.backend = (self.backend or "online").strip().lower()
        self.log_level = (self.log_level or "INFO").strip().upper()
        self.online.url_connection = (self.online.url_connection or "").strip()
        if not (self.local.office_home or "").strip():
            self.local.office_home = "soffice"

    def validate(self) -> bool:
        """Валидация конфигурации."""
        errors = []

        if self.pool_size < 1:
            errors.append("pool_size must be >= 1")

        if self.queue_timeout <= 0:
            errors.append("queue_timeout must be > 0")

        if self.execution_timeout <= 0:
            errors.append("execution_timeout must be > 0")

        if self.max_retries < 0:
            errors.append("max_retries must be >= 0")

        if self.queue_max_size < 0:
            errors.append("queue_max_size must be >= 0")

        if self.submit_timeout is not None and self.submit_timeout < 0:
            errors.append("submit_timeout must be >= 0")

        if self.backend not in BACKEND_KINDS:
            errors.append(f"backend must be one of {', '.join(BACKEND_KINDS)}")

        if self.online.read_timeout <= 0:
            errors.append("online.read_timeout must be > 0")

        if self.retry.base_delay < 0:
            errors.append("retry.base_delay must be >= 0")

        if self.retry.max_delay < self.retry.base_delay:
            errors.append("retry.max_delay must be >= retry.base_delay")

        if self.shutdown.task_completion_timeout < 0:
            errors.append("shutdown.task_completion_timeout must be >= 0")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

        return True

    def to_dict(self) -> Dict[str, Any]:
        """Преобразование в словарь из простых типов."""
        config_dict = asdict(self)
        config_dict['working_dir'] = str(self.working_dir)
        config_dict['queue_timeout_policy'] = self.queue_timeout_policy.value
        config_dict['retry']['strategy'] = self.retry.strategy.value
        # Типы исключений не сериализуются
        config_dict['retry'].pop('transient_errors')
        config_dict['retry'].pop('permanent_errors')
        return config_dict

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'PoolConfig':
        """Создание из словаря."""
        data = dict(data or {})

        # Извлекаем конфигурации компонентов
        sections = {
            'online': OnlineBackendConfig,
            'local': LocalOfficeConfig,
            'retry': RetryConfig,
            'shutdown': ShutdownConfig,
        }
        try:
            for key, section_cls in sections.items():
                section_data = data.pop(key, None)
                if section_data:
                    data[key] = section_cls(**section_data)
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_config(file_path: Union[str, Path]) -> PoolConfig:
    """
    Загрузка конфигурации из файла.

    Args:
        file_path: Путь к файлу конфигурации (.yaml, .yml или .json)

    Returns:
        Объект конфигурации
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    with open(file_path, 'r', encoding='utf-8') as f:
        if file_path.suffix.lower() in ['.yaml', '.yml']:
            data = yaml.safe_load(f)
        elif file_path.suffix.lower() == '.json':
            data = json.load(f)
        else:
            raise ConfigurationError(f"Unsupported configuration file format: {file_path.suffix}")

    return PoolConfig.from_dict(data or {})


def load_config_from_env(environ: Optional[Mapping[str, str]] = None) -> PoolConfig:
    """
    Загрузка конфигурации из переменных окружения.

    Args:
        environ: Источник переменных, по умолчанию os.environ

    Returns:
        Объект конфигурации
    """
    env = os.environ if environ is None else environ
    config_data: Dict[str, Any] = {}

    converters = {
        'CONVERSION_POOL_SIZE': ('pool_size', int),
        'CONVERSION_POOL_QUEUE_TIMEOUT': ('queue_timeout', float),
        'CONVERSION_POOL_EXECUTION_TIMEOUT': ('execution_timeout', float),
        'CONVERSION_POOL_MAX_RETRIES': ('max_retries', int),
        'CONVERSION_POOL_QUEUE_MAX_SIZE': ('queue_max_size', int),
        'CONVERSION_POOL_WORKING_DIR': ('working_dir', str),
        'CONVERSION_POOL_BACKEND': ('backend', str),
        'CONVERSION_POOL_LOG_LEVEL': ('log_level', str),
    }
    try:
        for var, (key, convert) in converters.items():
            if env.get(var):
                config_data[key] = convert(env[var])
    except ValueError as e:
        raise ConfigurationError(f"Invalid environment configuration: {e}") from e

    if env.get('CONVERSION_POOL_URL'):
        config_data['online'] = {'url_connection': env['CONVERSION_POOL_URL']}

    if env.get('CONVERSION_POOL_OFFICE_HOME'):
        config_data['local'] = {'office_home': env['CONVERSION_POOL_OFFICE_HOME']}

    return PoolConfig.from_dict(config_data)
