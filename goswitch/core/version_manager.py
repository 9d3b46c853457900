"""
版本管理器模块。

提供 Go 版本的列出、安装、切换和卸载功能。
"""

import os
import threading
from typing import Any, Callable, Dict, List, Optional

from goswitch.core import version_utils
from goswitch.core.config_manager import ConfigManager
from goswitch.core.download_manager import DownloadManager, DownloadState
from goswitch.core.env_manager import EnvManager, EnvManagerError
from goswitch.core.exceptions import (
    BusyError,
    InstallRootError,
    NotFoundError,
    PreconditionError,
)
from goswitch.core.install_store import FileSystemInstallStore, normalize_path
from goswitch.core.interfaces import IInstallStore, IVersionManager
from goswitch.core.local_manager import LocalManager
from goswitch.core.remote_fetcher import RemoteFetcher
from goswitch.utils.input_validator import InputValidator
from goswitch.utils.logger import get_logger

logger = get_logger()


class VersionManager(IVersionManager):
    """
    版本管理器类。

    本类作为协调者，将具体工作委托给各个专用模块。所有修改安装根目录
    或激活指针的操作都在同一把互斥锁下执行；同一时刻最多只有一个安装
    任务，安装闸门以非阻塞方式获取。
    实现 IVersionManager 抽象接口。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        store: Optional[IInstallStore] = None,
        env_manager: Optional[EnvManager] = None,
        remote_fetcher: Optional[RemoteFetcher] = None,
        download_manager: Optional[DownloadManager] = None,
        local_manager: Optional[LocalManager] = None,
    ):
        """
        初始化版本管理器。

        参数:
            config_manager: 配置管理器实例
            store: 安装存储，默认使用配置中的安装根目录
            env_manager: 环境脚本管理器
            remote_fetcher: 远程版本获取器
            download_manager: 下载管理器
            local_manager: 本地版本管理器
        """
        self.config_manager = config_manager
        pointer_mode = config_manager.get_pointer_mode()

        self.store = store or FileSystemInstallStore(
            config_manager.get_sdk_root(), config_manager.home, pointer_mode
        )
        self.env_manager = env_manager or EnvManager(config_manager.home, pointer_mode)
        self.remote_fetcher = remote_fetcher or RemoteFetcher(config_manager)
        self.local_manager = local_manager or LocalManager(config_manager, self.store)
        self.download_manager = download_manager or DownloadManager(config_manager, self.store)

        self.download_state = DownloadState()
        self._install_gate = threading.Lock()
        self._mutation_lock = threading.Lock()
        self._cancel_event: Optional[threading.Event] = None

        try:
            self.purge_stale()
        except InstallRootError as e:
            logger.warning(f"启动时清理遗留目录失败: {e}")

    def list_versions(self) -> List[Dict[str, Any]]:
        """
        列出全部已安装版本。

        返回:
            InstalledVersion 字典列表
        """
        return self.local_manager.scan_local_versions()

    def get_remote_versions(self, refresh: bool = False) -> List[Dict[str, Any]]:
        """
        获取远程可用版本。

        参数:
            refresh: 为 True 时先清除内存和磁盘缓存再重新获取

        返回:
            RemoteRelease 字典列表
        """
        if refresh:
            self.invalidate_remote_cache()
        return self.remote_fetcher.get_remote_versions(use_cache=not refresh)

    def invalidate_remote_cache(self) -> None:
        self.remote_fetcher.invalidate_cache()

    def get_active_version(self) -> Optional[Dict[str, Any]]:
        for v in self.list_versions():
            if v["active"]:
                return v
        return None

    def get_download_state(self) -> Dict[str, Any]:
        return self.download_state.snapshot()

    def begin_install(
        self, version: str, cancel_event: Optional[threading.Event] = None
    ) -> str:
        """
        占用安装闸门。

        在调用方线程中执行，忙碌时立即拒绝，不修改下载状态。成功后必须
        调用 run_install 释放闸门。

        参数:
            version: 版本号，可带 go 前缀
            cancel_event: 取消标志

        返回:
            规范化后的版本号

        抛出:
            InputValidationError: 版本号不合法
            BusyError: 已有安装任务在进行中
        """
        version = version_utils.normalize_version(version)
        InputValidator.validate_version_string(version)

        if not self._install_gate.acquire(blocking=False):
            raise BusyError(self.download_state.version or version)
        self.download_state.begin(version)
        self._cancel_event = cancel_event or threading.Event()
        return version

    def run_install(
        self,
        version: str,
        progress_callback: Optional[Callable[[int], None]] = None,
    ) -> str:
        """
        执行已占用闸门的安装任务，结束时释放闸门。

        参数:
            version: begin_install 返回的版本号
            progress_callback: 进度回调

        返回:
            正式安装路径
        """
        cancel_event = self._cancel_event
        try:
            release = self._resolve_release(version)
            if self.store.exists(version):
                raise PreconditionError(f"版本 {version} 已安装")

            def _on_progress(progress: int) -> None:
                self.download_state.update(progress)
                if progress_callback:
                    progress_callback(progress)

            return self.download_manager.install_release(
                release, self._commit_install(version), _on_progress, cancel_event
            )
        finally:
            self.abort_install()

    def abort_install(self) -> None:
        """释放 begin_install 占用的安装闸门并清空下载状态。"""
        self._cancel_event = None
        self.download_state.finish()
        self._install_gate.release()

    def install_version(
        self,
        version: str,
        progress_callback: Optional[Callable[[int], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """
        下载并安装指定版本。

        安装完成后默认不切换激活版本。

        参数:
            version: 版本号，可带 go 前缀
            progress_callback: 进度回调，参数为 0 到 100 的整数
            cancel_event: 取消标志

        返回:
            正式安装路径

        抛出:
            BusyError: 已有安装任务在进行中
            NotFoundError: 目录中没有该版本或当前平台的安装包
            PreconditionError: 版本已安装
            NetworkError, ParseError, IntegrityError, ExtractionError: 安装失败
        """
        version = self.begin_install(version, cancel_event)
        return self.run_install(version, progress_callback)

    def cancel_install(self) -> bool:
        """
        请求取消进行中的安装。

        返回:
            有进行中的任务返回 True
        """
        cancel_event = self._cancel_event
        if cancel_event is None or not self._install_gate.locked():
            return False
        cancel_event.set()
        logger.info(f"已请求取消安装 {self.download_state.version}")
        return True

    def _resolve_release(self, version: str) -> Dict[str, Any]:
        release = self.remote_fetcher.get_release(version)
        if release is None:
            raise NotFoundError(f"远程目录中没有版本 {version}")
        if not release.get("filename"):
            raise NotFoundError(f"版本 {version} 没有当前平台的安装包")
        return release

    def _commit_install(self, version: str) -> Callable[[str], str]:
        def _commit(source_dir: str) -> str:
            with self._mutation_lock:
                self.store.purge_stale(include_staging=False)
                try:
                    path = self.store.commit_staging(source_dir, version)
                except OSError as e:
                    raise InstallRootError(f"登记安装 {version} 失败: {e}") from e
                if (
                    self.config_manager.get_setting("auto_activate_first_install", False)
                    and self.store.read_active_pointer() is None
                ):
                    logger.info(f"尚无激活版本，自动激活 {version}")
                    self._activate(path)
                return path
        return _commit

    def switch_version(self, path: str) -> str:
        """
        切换激活版本。

        路径先解析符号链接，激活指针本身或指向它的链接会被解析为当前
        激活的安装，不会让指针指向自身。检查和写入都在互斥锁内完成。

        参数:
            path: 安装路径

        返回:
            激活的绝对路径

        抛出:
            NotFoundError: 路径不存在或不是有效的 Go 安装
        """
        target = os.path.realpath(os.path.expanduser(path))

        with self._mutation_lock:
            self._purge_locked()
            if not self.local_manager.is_valid_installation(target):
                raise NotFoundError(f"{target} 不是有效的 Go 安装")
            self._activate(target)
        logger.info(f"已切换到 {target}")
        return target

    def switch_to_managed(self, version: str) -> str:
        """
        按版本号切换到托管安装。

        参数:
            version: 版本号，可带 go 前缀

        返回:
            激活的绝对路径
        """
        version = version_utils.normalize_version(version)
        InputValidator.validate_version_string(version)
        if not self.store.exists(version):
            raise NotFoundError(f"托管版本 {version} 不存在")
        return self.switch_version(self.store.managed_path(version))

    def _activate(self, path: str) -> None:
        try:
            self.store.write_active_pointer(path)
        except OSError as e:
            raise InstallRootError(f"更新激活指针失败: {e}") from e
        try:
            self.env_manager.write_activation_scripts(path)
        except EnvManagerError as e:
            logger.warning(f"激活指针已更新，但激活脚本未能写入: {e}")

    def uninstall_version(self, version: str) -> None:
        """
        卸载托管版本。

        参数:
            version: 版本号，可带 go 前缀

        抛出:
            NotFoundError: 版本未安装
            PreconditionError: 版本仅作为外部安装存在，或当前处于激活状态
        """
        version = version_utils.normalize_version(version)
        InputValidator.validate_version_string(version)

        with self._mutation_lock:
            self._purge_locked()
            if not self.store.exists(version):
                foreign = [
                    v for v in self.local_manager.scan_local_versions()
                    if v["version"] == version and not v["managed"]
                ]
                if foreign:
                    raise PreconditionError(
                        f"版本 {version} 不是托管安装，不能卸载: {foreign[0]['path']}"
                    )
                raise NotFoundError(f"版本 {version} 未安装")

            active = self.store.read_active_pointer()
            if active and normalize_path(active) == normalize_path(self.store.managed_path(version)):
                raise PreconditionError(f"版本 {version} 当前处于激活状态，请先切换到其他版本")

            try:
                self.store.remove_managed(version)
            except OSError as e:
                raise InstallRootError(f"卸载 {version} 失败: {e}") from e
        logger.info(f"已卸载 Go {version}")

    def purge_stale(self) -> int:
        """
        清理中断遗留的临时目录和回收目录。

        返回:
            清理的目录数量
        """
        with self._mutation_lock:
            return self._purge_locked()

    def _purge_locked(self) -> int:
        return self.store.purge_stale(include_staging=not self._install_gate.locked())
