"""
环境脚本管理模块。

生成供 shell 配置文件加载的激活脚本，导出 GOROOT 并把 $GOROOT/bin
加入 PATH。goswitch 从不直接修改用户的 shell 配置文件。
"""

import os
from pathlib import Path
from typing import Dict, Optional

from goswitch.core.exceptions import GoSwitchError
from goswitch.core.install_store import POINTER_LINK_NAME
from goswitch.utils.fileio import atomic_write_text
from goswitch.utils.logger import get_logger

logger = get_logger()

POSIX_SCRIPT_NAME = "env.sh"
POWERSHELL_SCRIPT_NAME = "env.ps1"


class EnvManagerError(GoSwitchError):
    """环境脚本管理错误异常。"""
    pass


def _quote_posix(value: str) -> str:
    escaped = value
    for ch in ("\\", '"', "$", "`"):
        escaped = escaped.replace(ch, "\\" + ch)
    return f'"{escaped}"'


def _quote_powershell(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def render_posix(goroot: str) -> str:
    """
    生成 POSIX sh 激活脚本。

    参数:
        goroot: GOROOT 的值

    返回:
        脚本内容
    """
    return (
        "# Generated by goswitch. Source this file from your shell profile.\n"
        f"export GOROOT={_quote_posix(goroot)}\n"
        'case ":$PATH:" in\n'
        '    *":$GOROOT/bin:"*) ;;\n'
        '    *) export PATH="$GOROOT/bin:$PATH" ;;\n'
        "esac\n"
    )


def render_powershell(goroot: str) -> str:
    """
    生成 PowerShell 激活脚本。

    参数:
        goroot: GOROOT 的值

    返回:
        脚本内容
    """
    return (
        "# Generated by goswitch. Dot-source this file from your $PROFILE.\n"
        f"$env:GOROOT = {_quote_powershell(goroot)}\n"
        '$goBin = Join-Path $env:GOROOT "bin"\n'
        "$sep = [IO.Path]::PathSeparator\n"
        "if (-not (($env:PATH -split $sep) -contains $goBin)) {\n"
        "    $env:PATH = $goBin + $sep + $env:PATH\n"
        "}\n"
    )


class EnvManager:
    """
    环境脚本管理器类。

    符号链接模式下 GOROOT 指向稳定的 <home>/current，脚本内容不随切换
    变化；文件模式下 GOROOT 是具体的激活路径，每次切换都会重写脚本。
    """

    def __init__(self, home: Path, pointer_mode: str = "symlink"):
        """
        初始化环境脚本管理器。

        参数:
            home: goswitch 主目录
            pointer_mode: 激活指针实现方式，symlink 或 file
        """
        self.home = Path(home)
        self.pointer_mode = pointer_mode

    @property
    def script_paths(self) -> Dict[str, Path]:
        return {
            "sh": self.home / POSIX_SCRIPT_NAME,
            "powershell": self.home / POWERSHELL_SCRIPT_NAME,
        }

    def goroot_for(self, active_path: str) -> str:
        """
        计算脚本中导出的 GOROOT。

        参数:
            active_path: 当前激活的安装路径

        返回:
            GOROOT 的值
        """
        if self.pointer_mode == "symlink":
            return str(self.home / POINTER_LINK_NAME)
        return os.path.abspath(active_path)

    def write_activation_scripts(self, active_path: str) -> Dict[str, Path]:
        """
        原子地写入全部激活脚本。

        参数:
            active_path: 当前激活的安装路径

        返回:
            脚本类型到文件路径的映射

        抛出:
            EnvManagerError: 写入失败
        """
        goroot = self.goroot_for(active_path)
        paths = self.script_paths
        try:
            atomic_write_text(paths["sh"], render_posix(goroot))
            atomic_write_text(paths["powershell"], render_powershell(goroot))
        except OSError as e:
            error_msg = f"写入激活脚本失败: {e}"
            logger.error(error_msg)
            raise EnvManagerError(error_msg) from e
        logger.info(f"激活脚本已更新，GOROOT={goroot}")
        return paths

    def render(self, shell: str, active_path: str) -> str:
        """
        生成指定 shell 的激活脚本内容，不写入文件。

        参数:
            shell: sh 或 powershell
            active_path: 当前激活的安装路径

        返回:
            脚本内容
        """
        goroot = self.goroot_for(active_path)
        if shell == "powershell":
            return render_powershell(goroot)
        if shell == "sh":
            return render_posix(goroot)
        raise EnvManagerError(f"不支持的 shell 类型: {shell}")

    def script_for_shell(self, shell: Optional[str] = None) -> Path:
        """
        获取指定 shell 的激活脚本路径。

        参数:
            shell: sh 或 powershell，默认按当前平台选择

        返回:
            脚本路径
        """
        if shell is None:
            shell = "powershell" if os.name == "nt" else "sh"
        return self.script_paths[shell]
