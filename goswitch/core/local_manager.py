"""
本地版本管理模块。

提供本地 Go 安装的扫描、验证和版本识别功能。
"""

import os
import re
import subprocess
import sys
from typing import Any, Dict, List, Optional

from goswitch.core import version_utils
from goswitch.core.config_manager import ConfigManager
from goswitch.core.install_store import normalize_path
from goswitch.core.interfaces import IInstallStore, ILocalManager
from goswitch.utils.logger import get_logger

logger = get_logger()

SYSTEM_VERSION = "system"

GO_VERSION_PATTERN = re.compile(r"go version go(\S+)")
VERSION_FILE_PATTERN = re.compile(r"^go(\d+(?:\.\d+)*(?:(?:rc|beta|alpha)\d+)?)")
FOLDER_PATTERN = re.compile(r"^go[-_]?(\d+(?:\.\d+)*(?:(?:rc|beta|alpha)\d+)?)$", re.IGNORECASE)


class LocalManager(ILocalManager):
    """
    本地版本管理器类。

    托管安装来自安装存储，外部安装来自配置中的系统路径和 GOROOT。
    扫描是只读的，不持有任何锁。
    实现 ILocalManager 抽象接口。
    """

    def __init__(self, config_manager: ConfigManager, store: IInstallStore):
        """
        初始化本地版本管理器。

        参数:
            config_manager: 配置管理器实例
            store: 安装存储
        """
        self.config_manager = config_manager
        self.store = store

    def scan_local_versions(self) -> List[Dict[str, Any]]:
        """
        扫描全部已安装版本。

        返回:
            按版本降序排列的列表，每项包含 version、path、active、managed；
            版本相同时托管安装在前，再按路径排序

        抛出:
            InstallRootError: 托管根目录存在但无法读取
        """
        active = self.store.read_active_pointer()
        active_key = normalize_path(active) if active else None

        entries: Dict[str, Dict[str, Any]] = {}
        for item in self.store.list_managed():
            key = normalize_path(item["path"])
            entries[key] = {
                "version": item["version"],
                "path": item["path"],
                "active": False,
                "managed": True,
            }

        if self.config_manager.get_setting("include_system_installs", True):
            for path in self._foreign_candidates():
                key = normalize_path(path)
                if key in entries or self.store.is_managed_path(path):
                    continue
                if not self.is_valid_installation(path):
                    continue
                entries[key] = {
                    "version": self.detect_version(path),
                    "path": os.path.abspath(path),
                    "active": False,
                    "managed": False,
                }

        if active_key and active_key in entries:
            entries[active_key]["active"] = True

        versions = self.sort_installed(list(entries.values()))
        logger.debug(f"找到 {len(versions)} 个本地 Go 安装")
        return versions

    @staticmethod
    def sort_installed(versions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        排序已安装版本列表。

        参数:
            versions: 版本字典列表

        返回:
            排序后的新列表
        """
        by_path = sorted(versions, key=lambda v: (not v["managed"], v["path"]))
        return version_utils.sort_versions_desc(by_path)

    def _foreign_candidates(self) -> List[str]:
        candidates = [os.path.expanduser(p) for p in self.config_manager.get_system_paths() if p]
        goroot = os.environ.get("GOROOT")
        if goroot and not self._inside_home(goroot):
            candidates.append(goroot)
        return candidates

    def _inside_home(self, path: str) -> bool:
        home = normalize_path(str(self.config_manager.home))
        candidate = normalize_path(path)
        return candidate == home or candidate.startswith(home + os.sep)

    def is_valid_installation(self, path: str) -> bool:
        """
        判断路径是否为有效的 Go 安装。

        参数:
            path: 安装路径

        返回:
            目录存在且包含任一标记文件时返回 True
        """
        if not path or not os.path.isdir(path):
            return False
        return any(
            os.path.isfile(os.path.join(path, *marker.split("/")))
            for marker in self.config_manager.get_marker_files()
        )

    def detect_version(self, path: str) -> str:
        """
        识别外部安装的版本号。

        依次尝试 VERSION 文件、bin/go version 输出和 go* 目录名，都失败时
        返回 "system"。

        参数:
            path: 安装路径

        返回:
            不带 go 前缀的版本字符串
        """
        version = self._read_version_file(path)
        if version:
            return version

        version = self.get_go_version_by_cmd(path)
        if version:
            return version

        match = FOLDER_PATTERN.match(os.path.basename(os.path.normpath(path)))
        if match:
            return match.group(1)

        logger.debug(f"无法识别 {path} 的版本，记为 {SYSTEM_VERSION}")
        return SYSTEM_VERSION

    def _read_version_file(self, path: str) -> Optional[str]:
        version_file = os.path.join(path, "VERSION")
        try:
            with open(version_file, "r", encoding="utf-8") as f:
                first_line = f.readline().strip()
        except OSError:
            return None
        match = VERSION_FILE_PATTERN.match(first_line)
        return match.group(1) if match else None

    def get_go_version_by_cmd(self, path: str) -> Optional[str]:
        """
        通过执行 go version 获取安装的版本。

        参数:
            path: 安装路径

        返回:
            版本字符串，获取失败返回 None
        """
        exe_name = "go.exe" if sys.platform.startswith("win") else "go"
        executable = os.path.join(path, "bin", exe_name)
        if not os.path.isfile(executable):
            return None

        kwargs: Dict[str, Any] = {}
        if sys.platform.startswith("win"):
            kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW

        try:
            result = subprocess.run(
                [executable, "version"],
                capture_output=True,
                text=True,
                timeout=10,
                **kwargs,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"获取 {executable} 版本超时 (10秒)")
            return None
        except OSError as e:
            logger.warning(f"无法执行 {executable}: {e}")
            return None

        match = GO_VERSION_PATTERN.search(result.stdout + result.stderr)
        if match:
            return version_utils.normalize_version(match.group(1))
        logger.debug(f"无法从 {executable} 的输出中解析版本")
        return None
