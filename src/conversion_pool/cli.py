"""
Консольная утилита конвертации документов через пул.
"""

import sys
import argparse
from typing import List, Optional, Sequence, Tuple

from .converter import DocumentConverter
from .core.pool_manager import ConversionPoolManager
from .models.task import TaskHandle
from .utils.config import PoolConfig, load_config, load_config_from_env
from .utils.logger import get_logger, setup_logging
from .exceptions import ConversionPoolError


logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Парсер аргументов командной строки."""
    parser = argparse.ArgumentParser(
        prog="conversion-pool",
        description="Конвертация документов через пул бэкендов"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Путь к файлу конфигурации (.yaml, .yml, .json)"
    )
    backend = parser.add_mutually_exclusive_group()
    backend.add_argument(
        "--url",
        type=str,
        help="Адрес сервиса онлайн-конвертации"
    )
    backend.add_argument(
        "--office-home",
        type=str,
        help="Путь к исполняемому файлу офисного пакета"
    )
    parser.add_argument(
        "--pool-size",
        type=int,
        help="Количество бэкендов в пуле"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Таймаут выполнения одной конвертации в секундах"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Уровень логирования"
    )
    parser.add_argument(
        "files",
        nargs="+",
        metavar="SOURCE TARGET",
        help="Пары исходный файл / выходной файл"
    )
    return parser


def build_config(args: argparse.Namespace) -> PoolConfig:
    """Конфигурация из файла или окружения с переопределениями из аргументов."""
    config = load_config(args.config) if args.config else load_config_from_env()
    data = config.to_dict()

    if args.url:
        data['backend'] = "online"
        data['online']['url_connection'] = args.url
    if args.office_home:
        data['backend'] = "local"
        data['local']['office_home'] = args.office_home
    if args.pool_size is not None:
        data['pool_size'] = args.pool_size
    if args.timeout is not None:
        data['execution_timeout'] = args.timeout
    if args.log_level:
        data['log_level'] = args.log_level

    return PoolConfig.from_dict(data)


def _pairs(files: Sequence[str]) -> List[Tuple[str, str]]:
    return list(zip(files[0::2], files[1::2]))


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Основная функция утилиты."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if len(args.files) % 2:
        parser.error("SOURCE and TARGET must be given in pairs")

    try:
        config = build_config(args)
    except (ConversionPoolError, OSError) as e:
        print(f"Ошибка конфигурации: {e}", file=sys.stderr)
        return 1

    setup_logging(level=config.log_level)

    try:
        pool = ConversionPoolManager.from_config(config)
    except ConversionPoolError as e:
        print(f"Ошибка конфигурации: {e}", file=sys.stderr)
        return 1

    failed = 0
    try:
        with pool:
            converter = DocumentConverter(pool)
            handles: List[Tuple[str, str, TaskHandle]] = [
                (source, target, converter.convert(source).to(target).execute_async())
                for source, target in _pairs(args.files)
            ]
            for source, target, handle in handles:
                error = handle.exception()
                if error is None:
                    print(f"Готово: {source} -> {target}")
                else:
                    failed += 1
                    print(f"Ошибка: {source}: {error}", file=sys.stderr)
    except ConversionPoolError as e:
        logger.error(f"Conversion pool failed: {e}")
        print(f"Ошибка пула: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nПрервано пользователем", file=sys.stderr)
        return 1

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
