# src/common/__init__.py
"""
Общие утилиты, константы и логгер.
"""

from src.common.logger import get_logger, log_info, log_error, log_warning, log_debug
from src.common.constants import (
    TypeMsg,
    BookingStatus,
    ConnectionStatus,
    is_trackable_status,
    is_active_transit,
    status_value,
)

__all__ = [
    "get_logger",
    "log_info",
    "log_error",
    "log_warning",
    "log_debug",
    "TypeMsg",
    "BookingStatus",
    "ConnectionStatus",
    "is_trackable_status",
    "is_active_transit",
    "status_value",
]
