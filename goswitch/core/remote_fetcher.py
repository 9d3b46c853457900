"""
远程版本获取模块。

从 go.dev 及其镜像获取 Go 发布目录（JSON 格式），并解析为版本列表。
"""

import platform
import sys
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import requests

from goswitch.core import version_utils
from goswitch.core.config_manager import ConfigManager, ConfigSaveError
from goswitch.core.exceptions import NetworkError, ParseError
from goswitch.core.interfaces import IRemoteFetcher
from goswitch.utils.logger import get_logger
from goswitch.utils.rate_limiter import RateLimiter
from goswitch.utils.retry import RetryHandler

logger = get_logger()

CACHE_KEY = "go_releases"

ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "x64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv6l": "armv6l",
    "armv7l": "armv6l",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}


def detect_platform(os_override: str = "", arch_override: str = "") -> Tuple[str, str]:
    """
    获取当前系统对应的 Go 发布平台名称。

    参数:
        os_override: 配置中指定的操作系统，为空时自动检测
        arch_override: 配置中指定的架构，为空时自动检测

    返回:
        (os, arch) 元组，例如 ("linux", "amd64")
    """
    if os_override:
        goos = os_override
    elif sys.platform.startswith("win"):
        goos = "windows"
    elif sys.platform == "darwin":
        goos = "darwin"
    else:
        goos = sys.platform.rstrip("0123456789") or "linux"

    if arch_override:
        goarch = arch_override
    else:
        machine = platform.machine().lower()
        goarch = ARCH_ALIASES.get(machine, machine)
    return goos, goarch


class MirrorStatus:
    """
    镜像源状态跟踪类。

    记录镜像源的可用状态、失败时间和原因，最近成功的镜像优先。
    """

    def __init__(self):
        self._status: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def record_success(self, mirror_url: str) -> None:
        with self._lock:
            self._status[mirror_url] = {
                "last_success": datetime.now(),
                "last_failure": None,
                "failure_reason": None,
                "consecutive_failures": 0
            }

    def record_failure(self, mirror_url: str, reason: str) -> None:
        """
        记录镜像源失败。

        参数:
            mirror_url: 镜像源 URL
            reason: 失败原因
        """
        with self._lock:
            current = self._status.setdefault(mirror_url, {
                "last_success": None,
                "last_failure": None,
                "failure_reason": None,
                "consecutive_failures": 0
            })
            current["last_failure"] = datetime.now()
            current["failure_reason"] = reason
            current["consecutive_failures"] += 1

    def get_sorted_mirrors(self, mirror_list: List[str]) -> List[str]:
        """
        获取按优先级排序的镜像源列表。

        优先使用最近成功的镜像源，其次是连续失败次数少的。排序稳定，
        状态相同时保持配置顺序。

        参数:
            mirror_list: 原始镜像源列表

        返回:
            排序后的镜像源列表
        """
        with self._lock:
            snapshot = dict(self._status)

        def get_priority(mirror_url: str) -> tuple:
            status = snapshot.get(mirror_url, {})
            last_success = status.get("last_success")
            consecutive_failures = status.get("consecutive_failures", 0)
            if last_success is None:
                return (1, consecutive_failures, 0)
            return (0, consecutive_failures, -last_success.timestamp())

        return sorted(mirror_list, key=get_priority)

    def get_failure_summary(self) -> str:
        with self._lock:
            summaries = [
                f"{url}: {status.get('failure_reason', '未知错误')} "
                f"(连续失败 {status.get('consecutive_failures', 0)} 次)"
                for url, status in self._status.items()
                if status.get("last_failure")
            ]
        return "; ".join(summaries) if summaries else "无失败记录"


class RemoteFetcher(IRemoteFetcher):
    """
    远程版本获取器类。

    负责从镜像源获取 Go 的可用版本列表，并维护内存和磁盘两级缓存。
    缓存在过期、调用 invalidate_cache 或 use_cache=False 时刷新。
    实现 IRemoteFetcher 抽象接口。
    """

    def __init__(self, config_manager: ConfigManager):
        """
        初始化远程版本获取器。

        参数:
            config_manager: 配置管理器实例
        """
        self.config_manager = config_manager
        self.rate_limiter = RateLimiter(requests_per_second=config_manager.get_request_rate_limit())
        self.retry_handler = RetryHandler(max_retries=config_manager.get_fetch_retry_count())
        self.mirror_status = MirrorStatus()
        self.platform = detect_platform(
            config_manager.get_setting("platform_os", ""),
            config_manager.get_setting("platform_arch", ""),
        )
        self._memory_cache: Optional[Dict[str, Any]] = None
        self._lock = threading.Lock()

    def get_remote_versions(self, use_cache: bool = True) -> List[Dict[str, Any]]:
        """
        获取远程可用的 Go 版本。

        参数:
            use_cache: 是否使用缓存；False 时强制从网络刷新

        返回:
            按版本降序排列的发布信息列表

        抛出:
            NetworkError: 所有镜像源都无法连接
            ParseError: 镜像源返回的数据格式错误
        """
        if use_cache:
            cached = self._get_cached_releases()
            if cached is not None:
                return cached

        mirror_list = self.config_manager.get_index_mirrors()
        if not mirror_list:
            raise NetworkError("未配置版本目录镜像源")

        errors: List[Exception] = []
        for mirror_url in self.mirror_status.get_sorted_mirrors(mirror_list):
            try:
                logger.info(f"尝试从镜像源获取 Go 版本: {mirror_url}")
                data = self._fetch_index(mirror_url)
                releases = self.parse_releases(data)
            except (NetworkError, ParseError) as e:
                logger.warning(f"从镜像源 {mirror_url} 获取版本失败: {e}")
                self.mirror_status.record_failure(mirror_url, str(e))
                errors.append(e)
                continue

            self.mirror_status.record_success(mirror_url)
            self._update_cache(releases)
            logger.info(f"成功从镜像源 {mirror_url} 获取 {len(releases)} 个 Go 版本")
            return releases

        summary = self.mirror_status.get_failure_summary()
        logger.error(f"所有镜像源获取 Go 版本失败。失败详情: {summary}")
        if all(isinstance(e, ParseError) for e in errors):
            raise ParseError(f"版本目录格式错误: {summary}") from errors[-1]
        raise NetworkError(f"无法获取版本目录: {summary}") from errors[-1]

    def get_release(self, version: str) -> Optional[Dict[str, Any]]:
        """
        查找指定版本的发布信息。

        参数:
            version: 版本号，可带 go 前缀

        返回:
            发布信息字典，未找到返回 None
        """
        version = version_utils.normalize_version(version)
        for release in self.get_remote_versions(use_cache=True):
            if release["version"] == version:
                return release
        return None

    def invalidate_cache(self) -> None:
        """使内存和磁盘缓存失效。"""
        with self._lock:
            self._memory_cache = None
            cache = self.config_manager.get_cache()
            if CACHE_KEY in cache:
                del cache[CACHE_KEY]
                self.config_manager.save_cache()
        logger.info("已清除版本目录缓存")

    def _get_cached_releases(self) -> Optional[List[Dict[str, Any]]]:
        expire_time = self.config_manager.get_cache_expire_time()
        with self._lock:
            if self._is_fresh(self._memory_cache, expire_time):
                logger.debug("使用内存缓存的版本目录")
                return list(self._memory_cache["releases"])

            disk_cached = self.config_manager.get_cache().get(CACHE_KEY)
            if self._is_fresh(disk_cached, expire_time):
                logger.info("使用本地缓存的版本目录")
                self._memory_cache = disk_cached
                return list(disk_cached["releases"])
        return None

    def _is_fresh(self, cached: Optional[Dict[str, Any]], expire_time: int) -> bool:
        if not isinstance(cached, dict) or not isinstance(cached.get("releases"), list):
            return False
        if cached.get("platform") != list(self.platform):
            return False
        try:
            last_update = datetime.fromisoformat(cached.get("last_update", ""))
        except (TypeError, ValueError):
            return False
        return (datetime.now() - last_update).total_seconds() < expire_time

    def _fetch_index(self, index_url: str) -> Any:
        """
        请求版本目录并解码 JSON。

        参数:
            index_url: 目录 URL

        返回:
            解码后的 JSON 数据
        """
        timeout = self.config_manager.get_request_timeout()

        def _do_get():
            self.rate_limiter.acquire()
            response = requests.get(index_url, timeout=timeout)
            response.raise_for_status()
            return response

        try:
            response = self.retry_handler.execute(_do_get)
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"请求 {index_url} 失败: {e}", url=index_url) from e

        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"{index_url} 返回的不是有效 JSON: {e}") from e

    def parse_releases(self, data: Any) -> List[Dict[str, Any]]:
        """
        把 go.dev 的 JSON 目录解析为发布信息列表。

        参数:
            data: 解码后的 JSON 数据，应为发布对象数组

        返回:
            按版本降序排列的发布信息列表

        抛出:
            ParseError: 顶层不是数组，或非空数组中没有任何有效条目
        """
        if not isinstance(data, list):
            raise ParseError(f"版本目录应为数组，实际为 {type(data).__name__}")

        releases: Dict[str, Dict[str, Any]] = {}
        invalid = 0
        for item in data:
            if not isinstance(item, dict) or not isinstance(item.get("version"), str):
                invalid += 1
                continue
            version = version_utils.normalize_version(item["version"])
            if not version:
                invalid += 1
                continue
            releases.setdefault(version, self._build_release(version, item))

        if invalid:
            logger.warning(f"版本目录中有 {invalid} 个无效项被过滤")
        if data and not releases:
            raise ParseError("版本目录中没有有效的版本条目")

        return version_utils.sort_versions_desc(list(releases.values()))

    def _build_release(self, version: str, item: Dict[str, Any]) -> Dict[str, Any]:
        classification = version_utils.classify_version(version)
        archive = self._select_archive(item.get("files"))
        filename = archive.get("filename") if archive else None
        download_mirrors = self.config_manager.get_download_mirrors()

        download_url = None
        if filename and download_mirrors:
            download_url = download_mirrors[0].rstrip("/") + "/" + filename

        return {
            "version": version,
            "classification": classification,
            "stable": classification == version_utils.STABLE,
            "filename": filename,
            "download_url": download_url,
            "sha256": (archive.get("sha256") or None) if archive else None,
            "size": archive.get("size") if archive and isinstance(archive.get("size"), int) else None,
        }

    def _select_archive(self, files: Any) -> Optional[Dict[str, Any]]:
        """
        选出当前平台的归档文件条目。

        参数:
            files: 发布对象中的 files 数组

        返回:
            文件条目，没有匹配项返回 None
        """
        if not isinstance(files, list):
            return None
        goos, goarch = self.platform
        for f in files:
            if not isinstance(f, dict):
                continue
            if f.get("os") == goos and f.get("arch") == goarch and f.get("kind") == "archive":
                return f
        return None

    def _update_cache(self, releases: List[Dict[str, Any]]) -> None:
        cache_data = {
            "last_update": datetime.now().isoformat(),
            "platform": list(self.platform),
            "releases": releases,
        }
        with self._lock:
            self._memory_cache = cache_data
            self.config_manager.set_cache(CACHE_KEY, cache_data)
            try:
                self.config_manager.save_cache()
            except ConfigSaveError as e:
                logger.warning(f"写入版本目录缓存失败: {e}")
