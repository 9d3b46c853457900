"""
goswitch 核心模块。

提供配置管理、安装存储、远程目录、下载安装和版本管理功能。
"""

from .exceptions import (
    GoSwitchError, NetworkError, ParseError, IntegrityError, NotFoundError,
    PreconditionError, InstallRootError, BusyError, ExtractionError, DownloadCancelledError,
)
from .interfaces import IConfigManager, IInstallStore, ILocalManager, IRemoteFetcher, IVersionManager
from .config_manager import ConfigManager, ConfigValidationError, ConfigLoadError, ConfigSaveError
from .install_store import FileSystemInstallStore
from .events import EventBus, Subscription, DOWNLOAD_PROGRESS, INSTALL_RESULT
from .env_manager import EnvManager, EnvManagerError
from .remote_fetcher import RemoteFetcher, MirrorStatus
from .local_manager import LocalManager
from .download_manager import DownloadManager, DownloadState
from .version_manager import VersionManager
from . import version_utils

__all__ = [
    "GoSwitchError", "NetworkError", "ParseError", "IntegrityError", "NotFoundError",
    "PreconditionError", "InstallRootError", "BusyError", "ExtractionError", "DownloadCancelledError",
    "IConfigManager", "IInstallStore", "ILocalManager", "IRemoteFetcher", "IVersionManager",
    "ConfigManager", "ConfigValidationError", "ConfigLoadError", "ConfigSaveError",
    "FileSystemInstallStore",
    "EventBus", "Subscription", "DOWNLOAD_PROGRESS", "INSTALL_RESULT",
    "EnvManager", "EnvManagerError",
    "RemoteFetcher", "MirrorStatus",
    "LocalManager",
    "DownloadManager", "DownloadState",
    "VersionManager",
    "version_utils",
]
