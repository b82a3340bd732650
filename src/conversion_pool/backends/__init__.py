"""
Бэкенды конвертации.
"""

from .base import Backend
from .online import OnlineBackend
from .local import LocalOfficeBackend

__all__ = [
    "Backend",
    "OnlineBackend",
    "LocalOfficeBackend"
]
