"""
文件写入工具模块。

提供先写临时文件再替换的原子写入，防止写入中断导致文件损坏。
"""

import json
import os
import uuid
from pathlib import Path
from typing import Any, Union


def _temp_sibling(file_path: Path) -> Path:
    return file_path.with_name(f".{file_path.name}.{uuid.uuid4().hex[:8]}.tmp")


def atomic_write_text(file_path: Union[str, Path], content: str) -> None:
    """
    原子写入文本文件。

    参数:
        file_path: 目标文件路径
        content: 文本内容
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _temp_sibling(file_path)
    try:
        with open(temp_path, "w", encoding="utf-8", newline="\n") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, file_path)
    except BaseException:
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        raise


def atomic_save_json(file_path: Union[str, Path], data: Any, indent: int = 2) -> None:
    """
    原子保存 JSON 数据到文件。

    参数:
        file_path: 目标文件路径
        data: 要保存的数据
        indent: JSON 缩进
    """
    atomic_write_text(file_path, json.dumps(data, indent=indent, ensure_ascii=False))
