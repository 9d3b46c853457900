"""
goswitch 工具模块。

提供日志、重试、限速、原子写入、安装历史和输入验证等工具功能。
"""

from .logger import get_logger, setup_logger, get_app_home
from .retry import RetryHandler, is_transient_error
from .speed_limiter import SpeedLimiter
from .download_history import DownloadHistory
from .rate_limiter import RateLimiter
from .input_validator import InputValidator, InputValidationError
from .fileio import atomic_write_text, atomic_save_json

__all__ = [
    "get_logger",
    "setup_logger",
    "get_app_home",
    "RetryHandler",
    "is_transient_error",
    "SpeedLimiter",
    "DownloadHistory",
    "RateLimiter",
    "InputValidator",
    "InputValidationError",
    "atomic_write_text",
    "atomic_save_json",
]
