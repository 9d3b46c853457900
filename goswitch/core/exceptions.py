"""
核心异常定义模块。

所有 goswitch 异常都继承自 GoSwitchError，调用方可以用一个 except
子句捕获全部业务错误，而系统异常（KeyboardInterrupt 等）照常上抛。
"""

from typing import Optional


class GoSwitchError(Exception):
    """goswitch 异常基类。"""
    pass


class NetworkError(GoSwitchError):
    """远程目录获取或下载时的网络错误（连接失败、超时、HTTP 错误）。"""

    def __init__(self, message: str, url: Optional[str] = None):
        self.url = url
        super().__init__(message)


class ParseError(GoSwitchError):
    """远程返回的版本目录格式错误。"""
    pass


class IntegrityError(GoSwitchError):
    """下载文件的校验和与目录记录不一致。"""

    def __init__(self, message: str, expected: str = "", actual: str = ""):
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class NotFoundError(GoSwitchError):
    """版本或安装路径不存在。"""
    pass


class PreconditionError(GoSwitchError):
    """操作前置条件不满足，例如卸载当前激活的版本。"""
    pass


class InstallRootError(GoSwitchError, OSError):
    """托管安装根目录无法访问。"""
    pass


class BusyError(GoSwitchError):
    """已有安装任务在进行中。"""

    def __init__(self, active_version: str):
        self.active_version = active_version
        super().__init__(f"已有安装任务在进行中: {active_version}")


class ExtractionError(GoSwitchError):
    """解压安装包失败。"""
    pass


class DownloadCancelledError(GoSwitchError):
    """安装任务被取消。"""
    pass
