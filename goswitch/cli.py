"""
goswitch 命令行接口模块。
"""

import argparse
import json
import logging
import os
import queue
from pathlib import Path
from typing import Any, Dict, List

from goswitch.app import SUCCESS, GoSwitchApp
from goswitch.core import version_utils
from goswitch.core.config_manager import ConfigSaveError, ConfigValidationError
from goswitch.core.events import DOWNLOAD_PROGRESS
from goswitch.core.exceptions import GoSwitchError
from goswitch.utils.download_history import DownloadHistory
from goswitch.utils.logger import get_logger, set_log_level

logger = get_logger()

REMOTE_DISPLAY_LIMIT = 30
PROGRESS_BAR_WIDTH = 40


def create_parser() -> argparse.ArgumentParser:
    """
    创建并配置命令行参数解析器。

    返回:
        配置好的 ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog="goswitch",
        description="goswitch - Go 版本管理器",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  goswitch list                 列出已安装的 Go 版本
  goswitch list --remote        列出远程可用版本
  goswitch install 1.22.3       安装 Go 1.22.3
  goswitch use 1.22.3           切换到托管的 Go 1.22.3
  goswitch use /usr/local/go    切换到外部安装
  goswitch env                  显示激活脚本路径
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="启用详细输出",
    )

    parser.add_argument(
        "--home",
        type=str,
        default=None,
        help="goswitch 主目录（默认 $GOSWITCH_HOME 或 ~/.goswitch）",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="命令",
        description="可用的 CLI 命令",
    )

    list_parser = subparsers.add_parser(
        "list",
        help="列出已安装或远程可用的版本",
    )
    list_parser.add_argument(
        "--remote",
        "-r",
        action="store_true",
        help="显示远程可用版本",
    )
    list_parser.add_argument(
        "--refresh",
        action="store_true",
        help="忽略缓存重新获取远程版本",
    )
    list_parser.add_argument(
        "--all",
        "-a",
        action="store_true",
        help="显示全部远程版本，包括预发布版",
    )
    list_parser.add_argument(
        "--group",
        "-g",
        action="store_true",
        help="按 major.minor 分组显示远程版本",
    )
    list_parser.add_argument(
        "--format",
        "-f",
        choices=["json", "simple"],
        default="simple",
        help="输出格式",
    )

    use_parser = subparsers.add_parser(
        "use",
        help="切换到指定版本",
    )
    use_parser.add_argument(
        "target",
        help="托管版本号或安装路径",
    )

    install_parser = subparsers.add_parser(
        "install",
        help="下载并安装指定版本",
    )
    install_parser.add_argument(
        "version",
        help="要安装的版本",
    )

    uninstall_parser = subparsers.add_parser(
        "uninstall",
        help="卸载指定托管版本",
    )
    uninstall_parser.add_argument(
        "version",
        help="要卸载的版本",
    )

    config_parser = subparsers.add_parser(
        "config",
        help="显示或修改配置",
    )
    config_parser.add_argument(
        "--set",
        "-s",
        type=str,
        help="设置配置值（格式：key=value，value 按 JSON 解析）",
    )

    history_parser = subparsers.add_parser(
        "history",
        help="显示安装历史",
    )
    history_parser.add_argument(
        "--limit",
        "-n",
        type=int,
        default=20,
        help="显示的最大记录数",
    )
    history_parser.add_argument(
        "--clear",
        action="store_true",
        help="清空安装历史",
    )

    env_parser = subparsers.add_parser(
        "env",
        help="显示激活脚本",
    )
    env_parser.add_argument(
        "--shell",
        choices=["sh", "powershell"],
        default=None,
        help="脚本类型，默认按当前平台选择",
    )
    env_parser.add_argument(
        "--print",
        dest="print_script",
        action="store_true",
        help="输出脚本内容而不是路径",
    )

    return parser


def run_cli(args: argparse.Namespace) -> int:
    """
    运行命令行接口。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码（0 表示成功）
    """
    if args.verbose:
        set_log_level(logging.DEBUG)

    if args.command is None:
        print("未指定命令。使用 --help 查看帮助信息。")
        return 1

    command_handlers = {
        "list": handle_list,
        "use": handle_use,
        "install": handle_install,
        "uninstall": handle_uninstall,
        "config": handle_config,
        "history": handle_history,
        "env": handle_env,
    }

    handler = command_handlers.get(args.command)
    if handler is None:
        print(f"未知命令: {args.command}")
        return 1

    with _create_app(args) as app:
        return handler(app, args)


def _create_app(args: argparse.Namespace) -> GoSwitchApp:
    home = Path(args.home).expanduser() if args.home else None
    return GoSwitchApp(home=home)


def _print_result(result: str, success_message: str) -> int:
    if result == SUCCESS:
        print(success_message)
        return 0
    print(result)
    return 1


def handle_list(app: GoSwitchApp, args: argparse.Namespace) -> int:
    """
    处理 list 命令：列出已安装或远程可用的版本。

    参数:
        app: 应用门面
        args: 解析后的命令行参数

    返回:
        退出码
    """
    if args.remote:
        return _list_remote(app, args)

    try:
        versions = app.list_versions()
    except GoSwitchError as e:
        print(f"Error: {e}")
        return 1

    if args.format == "json":
        print(json.dumps(versions, indent=2, ensure_ascii=False))
        return 0

    if not versions:
        print("未找到已安装的 Go 版本")
        print(f"安装根目录: {app.config_manager.get_sdk_root()}")
        return 0

    print("已安装的 Go 版本:")
    for v in versions:
        marker = " *" if v["active"] else "  "
        origin = "" if v["managed"] else "  (外部)"
        print(f"{marker} {v['version']}{origin}")
        if args.verbose:
            print(f"     路径: {v['path']}")
    active = next((v for v in versions if v["active"]), None)
    print(f"\n当前版本: {active['version'] if active else '未设置'}")
    return 0


def _list_remote(app: GoSwitchApp, args: argparse.Namespace) -> int:
    if args.format != "json":
        print("正在获取 Go 远程版本...")
    try:
        versions = app.fetch_remote_versions(refresh=args.refresh)
    except GoSwitchError as e:
        print(f"Error: {e}")
        return 1

    if not args.all:
        versions = [v for v in versions if v["stable"]]

    if args.format == "json":
        payload: Any = version_utils.group_versions_by_minor(versions) if args.group else versions
        print(json.dumps(payload, indent=2, ensure_ascii=False))
        return 0

    if not versions:
        print("未找到远程版本")
        return 0

    if args.group:
        for group in version_utils.group_versions_by_minor(versions):
            names = ", ".join(v["version"] for v in group["versions"])
            print(f"  {group['series']}: {names}")
        return 0

    print("Go 可用版本:")
    for v in versions[:REMOTE_DISPLAY_LIMIT]:
        suffix = "" if v["stable"] else "  (预发布)"
        if not v.get("filename"):
            suffix += "  (当前平台无安装包)"
        print(f"  {v['version']}{suffix}")
    if len(versions) > REMOTE_DISPLAY_LIMIT:
        print(f"  ... 还有 {len(versions) - REMOTE_DISPLAY_LIMIT} 个版本")
    return 0


def handle_use(app: GoSwitchApp, args: argparse.Namespace) -> int:
    """
    处理 use 命令：切换到指定版本。

    参数:
        app: 应用门面
        args: 解析后的命令行参数

    返回:
        退出码
    """
    print(f"正在切换到 {args.target}...")
    code = _print_result(app.switch_version(args.target), f"成功切换到 {args.target}")
    if code == 0:
        script = app.version_manager.env_manager.script_for_shell()
        print(f"提示：在 shell 配置文件中加载 {script} 以使 GOROOT 和 PATH 生效。")
    return code


def _render_progress(progress: int) -> str:
    filled = PROGRESS_BAR_WIDTH * progress // 100
    bar = "=" * filled + "-" * (PROGRESS_BAR_WIDTH - filled)
    return f"\r[{bar}] {progress}%"


def handle_install(app: GoSwitchApp, args: argparse.Namespace) -> int:
    """
    处理 install 命令：下载并安装指定版本。

    参数:
        app: 应用门面
        args: 解析后的命令行参数

    返回:
        退出码
    """
    print(f"正在安装 Go {args.version}...")

    with app.subscribe(DOWNLOAD_PROGRESS) as subscription:
        future = app.install_version_async(args.version)
        try:
            while not future.done():
                try:
                    event = subscription.get(timeout=0.1)
                except queue.Empty:
                    continue
                print(_render_progress(event["progress"]), end="", flush=True)
        except KeyboardInterrupt:
            app.cancel_install()
            print("\n正在取消安装...")
        result = future.result()
        for event in subscription.drain():
            print(_render_progress(event["progress"]), end="", flush=True)

    print()
    return _print_result(result, f"成功安装 Go {args.version}")


def handle_uninstall(app: GoSwitchApp, args: argparse.Namespace) -> int:
    """
    处理 uninstall 命令：卸载指定版本。

    参数:
        app: 应用门面
        args: 解析后的命令行参数

    返回:
        退出码
    """
    print(f"正在卸载 Go {args.version}...")
    return _print_result(app.uninstall_version(args.version), f"成功卸载 Go {args.version}")


def handle_config(app: GoSwitchApp, args: argparse.Namespace) -> int:
    """
    处理 config 命令：显示或修改配置。

    参数:
        app: 应用门面
        args: 解析后的命令行参数

    返回:
        退出码
    """
    config_manager = app.config_manager

    if not args.set:
        print(json.dumps(config_manager.get_config(), indent=2, ensure_ascii=False))
        return 0

    key, _, raw_value = args.set.partition("=")
    if not key or not raw_value:
        print("格式无效。请使用: key=value")
        return 1

    try:
        value = json.loads(raw_value)
    except json.JSONDecodeError:
        value = raw_value

    try:
        config_manager.set_setting(key, value)
    except (ConfigValidationError, ConfigSaveError) as e:
        print(f"Error: {e}")
        return 1
    print(f"已设置 {key} = {value}")
    return 0


def handle_history(app: GoSwitchApp, args: argparse.Namespace) -> int:
    """
    处理 history 命令：显示或清空安装历史。

    参数:
        app: 应用门面
        args: 解析后的命令行参数

    返回:
        退出码
    """
    history: DownloadHistory = app.version_manager.download_manager.download_history
    if args.clear:
        history.clear_history()
        print("已清空安装历史")
        return 0

    records: List[Dict[str, Any]] = history.get_history(limit=args.limit)
    if not records:
        print("暂无安装历史")
        return 0
    for record in records:
        line = f"{record['timestamp']}  {record['version']:<12} {record['status']}"
        if record.get("error_message"):
            line += f"  {record['error_message']}"
        print(line)
    return 0


def handle_env(app: GoSwitchApp, args: argparse.Namespace) -> int:
    """
    处理 env 命令：显示激活脚本路径或内容。

    参数:
        app: 应用门面
        args: 解析后的命令行参数

    返回:
        退出码
    """
    env_manager = app.version_manager.env_manager
    active = app.version_manager.store.read_active_pointer()
    if active is None:
        print("尚未激活任何版本。请先执行 goswitch use <版本>。")
        return 1

    if args.print_script:
        print(env_manager.render(args.shell or ("powershell" if os.name == "nt" else "sh"), active), end="")
        return 0

    print(env_manager.script_for_shell(args.shell))
    return 0

