"""
应用门面模块。

面向界面或其他调用方的入口：把核心异常转换为 "Success" / "Error: <消息>"
结果字符串，并通过事件总线广播安装进度和结果。
"""

import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional

from goswitch.core.config_manager import ConfigManager
from goswitch.core.events import DOWNLOAD_PROGRESS, INSTALL_RESULT, EventBus, Subscription
from goswitch.core.version_manager import VersionManager
from goswitch.utils.logger import get_logger

logger = get_logger()

SUCCESS = "Success"


def error_result(error: BaseException) -> str:
    return f"Error: {error}"


def _looks_like_path(target: str) -> bool:
    separators = {"/", os.sep, os.altsep}
    return (
        os.path.isabs(target)
        or target.startswith("~")
        or any(sep in target for sep in separators if sep)
    )


class GoSwitchApp:
    """
    goswitch 应用门面类。

    所有修改操作都返回结果字符串而不抛出异常；查询操作直接返回数据。
    每次 install_version 调用恰好广播一次 install_result 事件，包括因
    忙碌被拒绝的调用。
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        config_manager: Optional[ConfigManager] = None,
        version_manager: Optional[VersionManager] = None,
        max_workers: int = 1,
    ):
        """
        初始化应用门面。

        参数:
            home: goswitch 主目录
            config_manager: 配置管理器实例
            version_manager: 版本管理器实例
            max_workers: 后台安装线程数
        """
        self.config_manager = config_manager or ConfigManager(home)
        self.version_manager = version_manager or VersionManager(self.config_manager)
        self.events = EventBus(self.config_manager.get_setting("event_queue_size", 256))
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="goswitch-install")

    def subscribe(self, event: str, maxsize: Optional[int] = None) -> Subscription:
        return self.events.subscribe(event, maxsize)

    def list_versions(self) -> List[Dict[str, Any]]:
        return self.version_manager.list_versions()

    def fetch_remote_versions(self, refresh: bool = False) -> List[Dict[str, Any]]:
        """
        获取远程可用版本。

        参数:
            refresh: 为 True 时忽略缓存

        返回:
            RemoteRelease 字典列表

        抛出:
            NetworkError: 所有镜像源都无法连接
            ParseError: 版本目录格式错误
        """
        return self.version_manager.get_remote_versions(refresh=refresh)

    def switch_version(self, target: str) -> str:
        """
        切换激活版本。

        参数:
            target: 安装路径（绝对路径、含路径分隔符或以 ~ 开头），否则按托管
                版本号处理

        返回:
            "Success" 或 "Error: <消息>"
        """
        try:
            if _looks_like_path(target):
                self.version_manager.switch_version(target)
            else:
                self.version_manager.switch_to_managed(target)
            return SUCCESS
        except Exception as e:
            logger.error(f"切换到 {target} 失败: {e}")
            return error_result(e)

    def uninstall_version(self, version: str) -> str:
        """
        卸载托管版本。

        参数:
            version: 版本号

        返回:
            "Success" 或 "Error: <消息>"
        """
        try:
            self.version_manager.uninstall_version(version)
            return SUCCESS
        except Exception as e:
            logger.error(f"卸载 {version} 失败: {e}")
            return error_result(e)

    def install_version(self, version: str, cancel_event: Optional[threading.Event] = None) -> str:
        """
        在当前线程中安装指定版本。

        参数:
            version: 版本号
            cancel_event: 取消标志

        返回:
            "Success" 或 "Error: <消息>"
        """
        try:
            normalized = self.version_manager.begin_install(version, cancel_event)
        except Exception as e:
            return self._publish_result(version, error_result(e))
        return self._run_install(normalized)

    def install_version_async(
        self, version: str, cancel_event: Optional[threading.Event] = None
    ) -> "Future[str]":
        """
        在后台线程中安装指定版本。

        忙碌检查在调用方线程中完成，被拒绝时返回已完成的 Future。

        参数:
            version: 版本号
            cancel_event: 取消标志

        返回:
            结果字符串的 Future
        """
        try:
            normalized = self.version_manager.begin_install(version, cancel_event)
        except Exception as e:
            future: "Future[str]" = Future()
            future.set_result(self._publish_result(version, error_result(e)))
            return future

        try:
            return self._executor.submit(self._run_install, normalized)
        except RuntimeError as e:
            self.version_manager.abort_install()
            future = Future()
            future.set_result(self._publish_result(normalized, error_result(e)))
            return future

    def _run_install(self, version: str) -> str:
        def _on_progress(progress: int) -> None:
            self.events.emit(DOWNLOAD_PROGRESS, {"version": version, "progress": progress})

        try:
            self.version_manager.run_install(version, _on_progress)
            result = SUCCESS
        except Exception as e:
            logger.error(f"安装 Go {version} 失败: {e}")
            result = error_result(e)
        return self._publish_result(version, result)

    def _publish_result(self, version: str, result: str) -> str:
        self.events.emit(INSTALL_RESULT, {"version": version, "result": result})
        return result

    def get_download_state(self) -> Dict[str, Any]:
        return self.version_manager.get_download_state()

    def cancel_install(self) -> bool:
        return self.version_manager.cancel_install()

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "GoSwitchApp":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
