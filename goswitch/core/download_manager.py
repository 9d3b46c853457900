"""
下载管理模块。

提供 Go 发布包的下载、校验、解压和登记功能。
"""

import hashlib
import os
import stat
import tarfile
import threading
import zipfile
from typing import Any, Callable, Dict, List, Optional

import requests

from goswitch.core.config_manager import ConfigManager
from goswitch.core.exceptions import (
    DownloadCancelledError,
    ExtractionError,
    GoSwitchError,
    IntegrityError,
    NetworkError,
)
from goswitch.core.interfaces import IInstallStore
from goswitch.core.remote_fetcher import MirrorStatus
from goswitch.utils.download_history import DownloadHistory
from goswitch.utils.input_validator import InputValidator, InputValidationError
from goswitch.utils.logger import get_logger
from goswitch.utils.rate_limiter import RateLimiter
from goswitch.utils.retry import RetryHandler
from goswitch.utils.speed_limiter import SpeedLimiter

logger = get_logger()

CHUNK_SIZE = 64 * 1024


class DownloadState:
    """
    当前安装任务的状态。

    version 为空字符串表示空闲；progress 为 0 到 100 的整数。
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._version = ""
        self._progress = 0

    def begin(self, version: str) -> None:
        with self._lock:
            self._version = version
            self._progress = 0

    def update(self, progress: int) -> None:
        with self._lock:
            if self._version:
                self._progress = max(0, min(100, progress))

    def finish(self) -> None:
        with self._lock:
            self._version = ""
            self._progress = 0

    @property
    def version(self) -> str:
        with self._lock:
            return self._version

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {"version": self._version, "progress": self._progress}


class ProgressReporter:
    """
    下载进度节流器。

    只在百分比至少增加 step 时回调，进度不会回退。字节进度最多到 99，
    100 只在安装登记成功后报告一次，登记失败时进度条不会显示完成。
    """

    def __init__(self, callback: Optional[Callable[[int], None]], step: int = 1):
        self.callback = callback
        self.step = max(1, step)
        self.last: Optional[int] = None

    def report(self, percent: int) -> None:
        """
        报告进度。

        参数:
            percent: 当前百分比
        """
        percent = max(0, min(100, int(percent)))
        if self.last is not None:
            if percent <= self.last:
                return
            if percent < 100 and percent - self.last < self.step:
                return
        self.last = percent
        if self.callback:
            self.callback(percent)

    def report_bytes(self, downloaded: int, total: int) -> None:
        """按字节数报告进度，最多到 99；100 留给登记完成之后。"""
        if total > 0:
            self.report(min(99, downloaded * 100 // total))


class DownloadManager:
    """
    下载管理器类。

    负责发布包的下载、完整性校验和解压。下载文件和临时解压目录在任何
    结果下都会被清理；只有登记回调成功后新版本才会出现在安装根目录中。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        store: IInstallStore,
        download_history: Optional[DownloadHistory] = None,
    ):
        """
        初始化下载管理器。

        参数:
            config_manager: 配置管理器实例
            store: 安装存储
            download_history: 安装历史记录器，默认写入配置目录
        """
        self.config_manager = config_manager
        self.store = store
        self.rate_limiter = RateLimiter(requests_per_second=config_manager.get_request_rate_limit())
        self.retry_handler = RetryHandler(max_retries=config_manager.get_download_retry_count())
        self.mirror_status = MirrorStatus()
        self.download_history = download_history or DownloadHistory(config_manager.CONFIG_DIR)
        self.download_dir = config_manager.home / "downloads"

    def install_release(
        self,
        release: Dict[str, Any],
        commit: Callable[[str], str],
        progress_callback: Optional[Callable[[int], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """
        下载、校验、解压并登记一个发布版本。

        参数:
            release: 远程目录中的发布信息，需包含 version 和 filename
            commit: 登记回调，接收已解压目录并返回正式安装路径
            progress_callback: 进度回调，参数为 0 到 100 的整数
            cancel_event: 取消标志，下载过程中被设置时中止安装

        返回:
            正式安装路径
        """
        version = release["version"]
        filename = release["filename"]
        InputValidator.validate_filename(filename)

        reporter = ProgressReporter(progress_callback, self.config_manager.get_setting("progress_step", 1))
        archive_path = str(self.download_dir / f"{filename}.part")
        staging_dir = None
        download_url = None
        try:
            reporter.report(0)
            download_url = self.download_archive(release, archive_path, reporter, cancel_event)
            _check_cancelled(cancel_event)

            staging_dir = self.store.create_staging_dir(version)
            source_dir = self.extract_archive(archive_path, staging_dir, filename)
            _check_cancelled(cancel_event)

            path = commit(source_dir)
            reporter.report(100)
            self.download_history.add_record(version, "success", download_url=download_url)
            logger.info(f"成功安装 Go {version}: {path}")
            return path
        except DownloadCancelledError as e:
            self.download_history.add_record(version, "cancelled", str(e), download_url)
            raise
        except (GoSwitchError, InputValidationError, OSError) as e:
            logger.error(f"安装 Go {version} 失败: {e}")
            self.download_history.add_record(version, "failed", str(e), download_url)
            raise
        finally:
            self.store.discard(archive_path)
            if staging_dir:
                self.store.discard(staging_dir)

    def _candidate_urls(self, release: Dict[str, Any]) -> List[str]:
        mirrors = self.config_manager.get_download_mirrors()
        filename = release["filename"]
        urls = [
            mirror.rstrip("/") + "/" + filename
            for mirror in self.mirror_status.get_sorted_mirrors(mirrors)
        ]
        if not urls and release.get("download_url"):
            urls.append(release["download_url"])
        return urls

    def download_archive(
        self,
        release: Dict[str, Any],
        dest_path: str,
        reporter: ProgressReporter,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """
        依次尝试各下载镜像，直到一个成功。

        网络错误切换到下一个镜像；校验失败和取消立即抛出。

        参数:
            release: 发布信息
            dest_path: 下载目标文件
            reporter: 进度节流器
            cancel_event: 取消标志

        返回:
            实际使用的下载 URL
        """
        urls = self._candidate_urls(release)
        if not urls:
            raise NetworkError(f"未配置下载镜像源，无法下载 {release['filename']}")

        last_error: Optional[NetworkError] = None
        for url in urls:
            mirror = url[: -len(release["filename"])]
            try:
                logger.info(f"正在从 {url} 下载 Go {release['version']}")
                self._download_from_url(url, dest_path, release, reporter, cancel_event)
                self.mirror_status.record_success(mirror)
                return url
            except NetworkError as e:
                logger.warning(f"从 {url} 下载失败: {e}")
                self.mirror_status.record_failure(mirror, str(e))
                last_error = e
        raise NetworkError(
            f"所有镜像源下载失败: {self.mirror_status.get_failure_summary()}"
        ) from last_error

    def _download_from_url(
        self,
        url: str,
        dest_path: str,
        release: Dict[str, Any],
        reporter: ProgressReporter,
        cancel_event: Optional[threading.Event],
    ) -> None:
        timeout = self.config_manager.get_request_timeout()

        def _do_download():
            self.rate_limiter.acquire()
            response = requests.get(url, stream=True, timeout=timeout)
            try:
                response.raise_for_status()
            except requests.exceptions.HTTPError:
                response.close()
                raise
            return response

        try:
            response = self.retry_handler.execute(_do_download)
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"请求 {url} 失败: {e}", url=url) from e

        total = release.get("size") or int(response.headers.get("content-length", 0) or 0)
        speed_limiter = SpeedLimiter(self.config_manager.get_download_speed_limit())
        digest = hashlib.sha256()
        downloaded = 0

        os.makedirs(os.path.dirname(dest_path), exist_ok=True)
        try:
            with open(dest_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    _check_cancelled(cancel_event)
                    if not chunk:
                        continue
                    speed_limiter.write_with_limit(f, chunk)
                    digest.update(chunk)
                    downloaded += len(chunk)
                    reporter.report_bytes(downloaded, total)
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"下载 {url} 中断: {e}", url=url) from e
        finally:
            response.close()

        if release.get("size") and downloaded != release["size"]:
            raise NetworkError(
                f"下载不完整: 期望 {release['size']} 字节，实际 {downloaded} 字节", url=url
            )

        expected = (release.get("sha256") or "").lower()
        actual = digest.hexdigest()
        if expected and expected != actual:
            raise IntegrityError(
                f"{release['filename']} 校验失败: 期望 {expected}，实际 {actual}",
                expected=expected,
                actual=actual,
            )
        logger.info(f"下载完成 {downloaded} 字节，SHA-256 {actual}")

    def extract_archive(self, archive_path: str, staging_dir: str, filename: str) -> str:
        """
        解压安装包，防止路径遍历漏洞。

        归档只有一个顶层目录（Go 官方包为 go/）时返回该目录。

        参数:
            archive_path: 压缩包路径
            staging_dir: 临时目录
            filename: 原始文件名，用于判断格式

        返回:
            解压后的安装树根目录
        """
        extract_dir = os.path.join(staging_dir, "extract")
        os.makedirs(extract_dir)
        lowered = filename.lower()
        try:
            if lowered.endswith(".zip"):
                self._extract_zip(archive_path, extract_dir)
            elif lowered.endswith((".tar.gz", ".tgz")):
                self._extract_tar(archive_path, extract_dir)
            else:
                raise ExtractionError(f"不支持的安装包格式: {filename}")
        except (zipfile.BadZipFile, tarfile.TarError, EOFError) as e:
            raise ExtractionError(f"解压 {filename} 失败: {e}") from e

        entries = os.listdir(extract_dir)
        if len(entries) == 1 and os.path.isdir(os.path.join(extract_dir, entries[0])):
            return os.path.join(extract_dir, entries[0])
        return extract_dir

    def _safe_join(self, base: str, name: str) -> str:
        if name.startswith(("/", "\\")) or ".." in name.replace("\\", "/").split("/"):
            raise ExtractionError(f"压缩包包含非法路径: {name}")
        try:
            return InputValidator.safe_join_path(base, name)
        except InputValidationError as e:
            raise ExtractionError(str(e)) from e

    def _extract_zip(self, archive_path: str, dest: str) -> None:
        with zipfile.ZipFile(archive_path, "r") as zf:
            members = zf.infolist()
            for member in members:
                self._safe_join(dest, member.filename)
            for member in members:
                target = self._safe_join(dest, member.filename)
                if member.is_dir():
                    os.makedirs(target, exist_ok=True)
                    continue
                os.makedirs(os.path.dirname(target), exist_ok=True)
                with zf.open(member) as src, open(target, "wb") as out:
                    while True:
                        block = src.read(CHUNK_SIZE)
                        if not block:
                            break
                        out.write(block)
                mode = (member.external_attr >> 16) & 0o777
                if mode:
                    os.chmod(target, mode | stat.S_IRUSR | stat.S_IWUSR)

    def _extract_tar(self, archive_path: str, dest: str) -> None:
        with tarfile.open(archive_path, "r:*") as tf:
            members = tf.getmembers()
            for member in members:
                self._safe_join(dest, member.name)
                if member.isdev():
                    raise ExtractionError(f"压缩包包含设备文件: {member.name}")
                if member.issym() or member.islnk():
                    link_base = os.path.dirname(member.name) if member.issym() else ""
                    if os.path.isabs(member.linkname):
                        raise ExtractionError(f"压缩包包含绝对路径链接: {member.name}")
                    try:
                        InputValidator.safe_join_path(dest, link_base, member.linkname)
                    except InputValidationError as e:
                        raise ExtractionError(f"压缩包链接指向解压目录之外: {member.name}") from e
            if hasattr(tarfile, "data_filter"):
                tf.extractall(dest, members=members, filter="data")
            else:
                tf.extractall(dest, members=members)


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise DownloadCancelledError("安装已取消")
