"""
输入验证模块。

提供版本号、文件名、URL 和路径的验证功能。
"""

import os
import re


class InputValidationError(ValueError):
    """输入验证错误异常。"""
    pass


class InputValidator:
    """
    输入验证器类。

    所有方法在验证失败时抛出 InputValidationError。
    """

    VERSION_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._+-]*$')
    FILENAME_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._+-]*$')
    URL_PATTERN = re.compile(
        r'^https?://'
        r'(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+'
        r'(?:[A-Z]{2,63}|[A-Z0-9-]{2,})|localhost|\d{1,3}(?:\.\d{1,3}){3})'
        r'(?::\d+)?'
        r'(?:/?|[/?]\S+)$',
        re.IGNORECASE
    )
    MAX_VERSION_LENGTH = 100
    MAX_FILENAME_LENGTH = 255

    @classmethod
    def validate_version_string(cls, version: str) -> bool:
        """
        验证版本号字符串的有效性。

        版本号会被用作安装目录名，因此不能包含路径分隔符或 ..。

        参数:
            version: 版本号字符串

        返回:
            验证通过返回 True
        """
        if not version or not version.strip():
            raise InputValidationError("版本号不能为空")

        version = version.strip()
        if len(version) > cls.MAX_VERSION_LENGTH:
            raise InputValidationError(f"版本号不能超过 {cls.MAX_VERSION_LENGTH} 个字符")

        if ".." in version or "/" in version or "\\" in version:
            raise InputValidationError(f"版本号包含非法路径字符: {version}")

        if not cls.VERSION_PATTERN.match(version):
            raise InputValidationError(f"版本号格式无效: {version}")

        return True

    @classmethod
    def validate_filename(cls, filename: str) -> bool:
        """
        验证远程目录给出的归档文件名。

        参数:
            filename: 文件名

        返回:
            验证通过返回 True
        """
        if not filename or len(filename) > cls.MAX_FILENAME_LENGTH:
            raise InputValidationError(f"文件名长度无效: {filename!r}")
        if ".." in filename or not cls.FILENAME_PATTERN.match(filename):
            raise InputValidationError(f"文件名包含非法字符: {filename}")
        return True

    @classmethod
    def validate_url(cls, url: str) -> bool:
        """
        验证 URL 的有效性。

        参数:
            url: URL 字符串

        返回:
            验证通过返回 True
        """
        if not url or not cls.URL_PATTERN.match(url.strip()):
            raise InputValidationError(f"URL 格式无效: {url!r}")
        return True

    @classmethod
    def safe_join_path(cls, base_path: str, *paths: str) -> str:
        """
        安全连接路径，防止路径遍历。

        参数:
            base_path: 基础路径
            *paths: 要连接的路径部分

        返回:
            安全连接后的路径

        抛出:
            InputValidationError: 如果结果路径位于 base_path 之外
        """
        base = os.path.abspath(base_path)
        joined = os.path.abspath(os.path.join(base, *paths))
        if joined != base and not joined.startswith(base + os.sep):
            raise InputValidationError(f"路径遍历检测: {joined}")
        return joined
