"""
安装历史记录模块。

记录每次安装的结果，供命令行 history 子命令查看。
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from goswitch.utils.fileio import atomic_save_json
from goswitch.utils.logger import get_logger

logger = get_logger()

MAX_RECORDS = 100


class DownloadHistory:
    """
    安装历史记录类。

    最新记录在前，最多保留 MAX_RECORDS 条。
    """

    def __init__(self, config_dir: Path):
        """
        初始化安装历史记录器。

        参数:
            config_dir: 配置目录路径
        """
        self.history_file = Path(config_dir) / "download_history.json"
        self.history: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        self._load_history()

    def _load_history(self) -> None:
        """加载历史记录文件。"""
        if not self.history_file.exists():
            return
        try:
            with open(self.history_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            self.history = data if isinstance(data, list) else []
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"加载安装历史失败: {e}")
            self.history = []

    def _save_history(self) -> None:
        try:
            atomic_save_json(self.history_file, self.history)
        except OSError as e:
            logger.warning(f"保存安装历史失败: {e}")

    def add_record(
        self,
        version: str,
        status: str,
        error_message: Optional[str] = None,
        download_url: Optional[str] = None
    ) -> None:
        """
        添加一条安装记录。

        参数:
            version: 版本号
            status: 状态（success/failed/cancelled）
            error_message: 错误信息（可选）
            download_url: 下载 URL（可选）
        """
        record = {
            "version": version,
            "status": status,
            "timestamp": datetime.now().isoformat(),
            "error_message": error_message,
            "download_url": download_url
        }

        with self._lock:
            self.history.insert(0, record)
            del self.history[MAX_RECORDS:]
            self._save_history()
        logger.info(f"记录安装历史: {version} - {status}")

    def get_history(self, version: Optional[str] = None, limit: int = 20) -> List[Dict[str, Any]]:
        """
        获取安装历史记录。

        参数:
            version: 版本号（可选，过滤用）
            limit: 返回记录的最大数量

        返回:
            安装历史记录列表
        """
        with self._lock:
            records = [r for r in self.history if version is None or r.get("version") == version]
        return records[:limit]

    def clear_history(self) -> None:
        """清空历史记录。"""
        with self._lock:
            self.history = []
            self._save_history()
        logger.info("清空安装历史")
