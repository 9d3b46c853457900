"""
核心模块抽象接口定义。

定义配置管理、安装存储、本地扫描、远程获取和版本管理的抽象接口。
"""

import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional


class IConfigManager(ABC):
    """配置管理器抽象接口。"""

    @abstractmethod
    def get_config(self) -> dict[str, Any]:
        """获取配置字典。"""
        pass

    @abstractmethod
    def save_config(self, config: dict[str, Any] | None = None) -> None:
        """保存配置到文件。"""
        pass

    @abstractmethod
    def get_settings(self) -> dict[str, Any]:
        """获取 settings 配置部分。"""
        pass

    @abstractmethod
    def get_setting(self, key: str, default: Any = None) -> Any:
        """获取单个设置项。"""
        pass

    @abstractmethod
    def set_setting(self, key: str, value: Any) -> None:
        """修改单个设置项并保存。"""
        pass

    @abstractmethod
    def get_sdk_root(self) -> Path:
        """获取托管安装根目录。"""
        pass

    @abstractmethod
    def get_pointer_mode(self) -> str:
        """获取激活指针的实现方式。"""
        pass

    @abstractmethod
    def get_cache(self) -> dict[str, Any]:
        """获取缓存内容。"""
        pass

    @abstractmethod
    def set_cache(self, key: str, value: Any) -> None:
        """设置缓存值。"""
        pass

    @abstractmethod
    def save_cache(self, cache: dict[str, Any] | None = None) -> None:
        """保存缓存到文件。"""
        pass


class IInstallStore(ABC):
    """
    安装存储抽象接口。

    把托管安装目录和激活指针封装在窄接口之后，测试可以用内存实现替换。
    """

    @abstractmethod
    def list_managed(self) -> List[Dict[str, str]]:
        """列出托管安装，每项包含 version 和 path。"""
        pass

    @abstractmethod
    def read_active_pointer(self) -> Optional[str]:
        """读取激活指针指向的路径，未设置或悬空时返回 None。"""
        pass

    @abstractmethod
    def write_active_pointer(self, path: str) -> None:
        """原子地把激活指针改为指向 path。"""
        pass

    @abstractmethod
    def managed_path(self, version: str) -> str:
        """获取托管版本的安装路径。"""
        pass

    @abstractmethod
    def is_managed_path(self, path: str) -> bool:
        """判断路径是否位于托管安装根目录下。"""
        pass

    @abstractmethod
    def exists(self, version: str) -> bool:
        """判断托管版本是否已安装。"""
        pass

    @abstractmethod
    def create_staging_dir(self, version: str) -> str:
        """创建安装用的隐藏临时目录。"""
        pass

    @abstractmethod
    def commit_staging(self, source_dir: str, version: str) -> str:
        """把已解压的目录原子地移动到最终位置。"""
        pass

    @abstractmethod
    def discard(self, path: str) -> None:
        """删除临时目录或文件。"""
        pass

    @abstractmethod
    def remove_managed(self, version: str) -> None:
        """移除托管安装。"""
        pass

    @abstractmethod
    def purge_stale(self, include_staging: bool = True) -> int:
        """清理中断遗留的临时目录和回收目录。"""
        pass


class ILocalManager(ABC):
    """本地版本扫描器抽象接口。"""

    @abstractmethod
    def scan_local_versions(self) -> List[Dict[str, Any]]:
        """扫描全部已安装版本并标记激活项。"""
        pass

    @abstractmethod
    def is_valid_installation(self, path: str) -> bool:
        """判断路径是否为有效的 Go 安装。"""
        pass


class IRemoteFetcher(ABC):
    """远程版本获取器抽象接口。"""

    @abstractmethod
    def get_remote_versions(self, use_cache: bool = True) -> List[Dict[str, Any]]:
        """获取远程可用版本。"""
        pass

    @abstractmethod
    def invalidate_cache(self) -> None:
        """使版本目录缓存失效。"""
        pass


class IVersionManager(ABC):
    """版本管理器抽象接口。"""

    @abstractmethod
    def list_versions(self) -> List[Dict[str, Any]]:
        """列出已安装版本。"""
        pass

    @abstractmethod
    def get_remote_versions(self, refresh: bool = False) -> List[Dict[str, Any]]:
        """获取远程可用版本。"""
        pass

    @abstractmethod
    def install_version(
        self,
        version: str,
        progress_callback: Optional[Callable[[int], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """下载并安装指定版本。"""
        pass

    @abstractmethod
    def switch_version(self, path: str) -> str:
        """切换到指定安装路径。"""
        pass

    @abstractmethod
    def uninstall_version(self, version: str) -> None:
        """卸载指定托管版本。"""
        pass
