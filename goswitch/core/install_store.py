"""
安装存储模块。

托管安装根目录下每个非隐藏子目录代表一个已安装版本；激活指针是
主目录下的 current 符号链接或 active_path 文件。安装先解压到隐藏的
.tmp-* 目录再重命名到位，卸载先重命名为隐藏的 .trash-* 目录再删除，
因此中途崩溃不会留下被扫描到的半成品目录。
"""

import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from goswitch.core.exceptions import InstallRootError, NotFoundError, PreconditionError
from goswitch.core.interfaces import IInstallStore
from goswitch.utils.fileio import atomic_write_text
from goswitch.utils.logger import get_logger

logger = get_logger()

STAGING_PREFIX = ".tmp-"
TRASH_PREFIX = ".trash-"
POINTER_LINK_NAME = "current"
POINTER_FILE_NAME = "active_path"


def normalize_path(path: str) -> str:
    """
    规范化路径用于比较。

    参数:
        path: 原始路径

    返回:
        解析符号链接、绝对化并统一大小写规则后的路径
    """
    return os.path.normcase(os.path.realpath(os.path.expanduser(path)))


class FileSystemInstallStore(IInstallStore):
    """
    基于本地文件系统的安装存储。

    实现 IInstallStore 抽象接口。
    """

    def __init__(self, sdk_root: Path, home: Path, pointer_mode: str = "symlink"):
        """
        初始化安装存储。

        参数:
            sdk_root: 托管安装根目录
            home: goswitch 主目录，激活指针存放于此
            pointer_mode: 激活指针实现方式，symlink 或 file
        """
        if pointer_mode not in ("symlink", "file"):
            raise ValueError(f"未知的激活指针类型: {pointer_mode}")
        self.sdk_root = Path(os.path.abspath(sdk_root))
        self.home = Path(os.path.abspath(home))
        self.pointer_mode = pointer_mode

    @property
    def pointer_path(self) -> Path:
        """激活指针在磁盘上的位置。"""
        name = POINTER_LINK_NAME if self.pointer_mode == "symlink" else POINTER_FILE_NAME
        return self.home / name

    def list_managed(self) -> List[Dict[str, str]]:
        """
        列出托管安装。

        返回:
            按目录名排序的列表，每项包含 version 和 path

        抛出:
            InstallRootError: 根目录存在但无法读取
        """
        if not self.sdk_root.exists():
            return []
        try:
            with os.scandir(self.sdk_root) as it:
                entries = [
                    {"version": entry.name, "path": os.path.join(self.sdk_root, entry.name)}
                    for entry in it
                    if not entry.name.startswith(".") and entry.is_dir()
                ]
        except OSError as e:
            raise InstallRootError(f"无法读取安装根目录 {self.sdk_root}: {e}") from e
        return sorted(entries, key=lambda e: e["version"])

    def read_active_pointer(self) -> Optional[str]:
        """
        读取激活指针。

        返回:
            指向的绝对路径；未设置、无法解析或目标不存在时返回 None
        """
        pointer = self.pointer_path
        try:
            if self.pointer_mode == "symlink":
                if not os.path.islink(pointer):
                    if pointer.exists():
                        logger.warning(f"{pointer} 不是符号链接，忽略")
                    return None
                target = os.readlink(pointer)
                if not os.path.isabs(target):
                    target = os.path.join(pointer.parent, target)
            else:
                if not pointer.exists():
                    return None
                target = pointer.read_text(encoding="utf-8").strip()
                if not target:
                    return None
        except OSError as e:
            logger.warning(f"读取激活指针失败: {e}")
            return None

        target = os.path.abspath(target)
        if not os.path.isdir(target):
            logger.debug(f"激活指针悬空: {target}")
            return None
        return target

    def write_active_pointer(self, path: str) -> None:
        """
        原子地更新激活指针。

        符号链接模式先创建临时链接再 os.replace 覆盖；文件模式先写临时文件
        再替换。读者要么看到旧指针，要么看到新指针。

        参数:
            path: 新的激活安装路径，先解析符号链接

        抛出:
            PreconditionError: 路径解析后就是激活指针本身
        """
        target = os.path.realpath(path)
        if os.path.normcase(target) == os.path.normcase(os.path.abspath(self.pointer_path)):
            raise PreconditionError(f"激活指针不能指向自身: {self.pointer_path}")
        self.home.mkdir(parents=True, exist_ok=True)

        if self.pointer_mode == "file":
            atomic_write_text(self.pointer_path, target + "\n")
        else:
            temp_link = self.home / f".{POINTER_LINK_NAME}.{uuid.uuid4().hex[:8]}.tmp"
            os.symlink(target, temp_link, target_is_directory=True)
            try:
                os.replace(temp_link, self.pointer_path)
            except OSError:
                os.unlink(temp_link)
                raise
        logger.info(f"激活指针已指向 {target}")

    def managed_path(self, version: str) -> str:
        return os.path.join(self.sdk_root, version)

    def is_managed_path(self, path: str) -> bool:
        """
        判断路径是否位于托管安装根目录下。

        参数:
            path: 待判断路径

        返回:
            是托管安装返回 True
        """
        root = normalize_path(str(self.sdk_root))
        candidate = normalize_path(path)
        return candidate.startswith(root + os.sep)

    def exists(self, version: str) -> bool:
        return os.path.isdir(self.managed_path(version))

    def create_staging_dir(self, version: str) -> str:
        """
        在安装根目录下创建隐藏的临时目录。

        与最终位置同处一个文件系统，保证之后的 rename 是原子的。

        参数:
            version: 版本号

        返回:
            临时目录路径
        """
        try:
            self.sdk_root.mkdir(parents=True, exist_ok=True)
            return tempfile.mkdtemp(prefix=f"{STAGING_PREFIX}{version}-", dir=self.sdk_root)
        except OSError as e:
            raise InstallRootError(f"无法在 {self.sdk_root} 创建临时目录: {e}") from e

    def commit_staging(self, source_dir: str, version: str) -> str:
        """
        把已解压的目录重命名为正式安装目录。

        参数:
            source_dir: 已解压的目录
            version: 版本号

        返回:
            正式安装路径

        抛出:
            PreconditionError: 目标版本已存在
        """
        target = self.managed_path(version)
        if os.path.exists(target):
            raise PreconditionError(f"版本 {version} 已安装: {target}")
        os.rename(source_dir, target)
        logger.info(f"已登记安装 {version}: {target}")
        return target

    def discard(self, path: str) -> None:
        """
        删除临时目录或文件，不存在时忽略。

        参数:
            path: 待删除路径
        """
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path, ignore_errors=True)
        elif os.path.lexists(path):
            try:
                os.remove(path)
            except OSError as e:
                logger.warning(f"删除临时文件 {path} 失败: {e}")

    def remove_managed(self, version: str) -> None:
        """
        移除托管安装。

        先重命名为 .trash-* 使其立即从扫描结果中消失，再递归删除。删除
        中断时回收目录留在原地，由 purge_stale 清理。

        参数:
            version: 版本号

        抛出:
            NotFoundError: 版本不存在
        """
        path = self.managed_path(version)
        if not os.path.isdir(path):
            raise NotFoundError(f"托管版本 {version} 不存在")

        trash = os.path.join(self.sdk_root, f"{TRASH_PREFIX}{version}-{uuid.uuid4().hex[:8]}")
        os.rename(path, trash)
        logger.info(f"已移除 {version}，正在删除 {trash}")
        try:
            shutil.rmtree(trash)
        except OSError as e:
            logger.warning(f"删除 {trash} 未完成，将在下次清理时重试: {e}")

    def purge_stale(self, include_staging: bool = True) -> int:
        """
        清理中断遗留的目录。

        参数:
            include_staging: 是否同时清理 .tmp-* 安装临时目录；有安装任务
                进行中时必须为 False

        返回:
            清理的目录数量
        """
        if not self.sdk_root.exists():
            return 0
        prefixes = (TRASH_PREFIX, STAGING_PREFIX) if include_staging else (TRASH_PREFIX,)
        purged = 0
        try:
            names = os.listdir(self.sdk_root)
        except OSError as e:
            raise InstallRootError(f"无法读取安装根目录 {self.sdk_root}: {e}") from e
        for name in names:
            if not name.startswith(prefixes):
                continue
            path = os.path.join(self.sdk_root, name)
            shutil.rmtree(path, ignore_errors=True)
            if os.path.exists(path):
                logger.warning(f"清理遗留目录失败: {path}")
                continue
            purged += 1
            logger.info(f"已清理遗留目录: {path}")
        return purged
