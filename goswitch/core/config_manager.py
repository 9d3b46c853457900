"""
配置管理器模块。

提供应用程序配置的加载、保存和验证功能。
"""

import copy
import json
import os
import sys
from pathlib import Path
from typing import Any, Optional

from goswitch.core.interfaces import IConfigManager
from goswitch.utils.fileio import atomic_save_json
from goswitch.utils.input_validator import InputValidator, InputValidationError
from goswitch.utils.logger import get_app_home, get_logger

logger = get_logger()

POINTER_MODES = ("symlink", "file")


class ConfigValidationError(Exception):
    """配置验证错误异常。"""
    pass


class ConfigLoadError(Exception):
    """配置加载错误异常。"""
    pass


class ConfigSaveError(Exception):
    """配置保存错误异常。"""
    pass


def default_system_paths() -> list[str]:
    """
    获取当前平台上常见的 Go 系统安装位置。

    返回:
        路径列表
    """
    if os.name == "nt":
        return [r"C:\Program Files\Go", r"C:\Go"]
    if sys.platform == "darwin":
        return ["/usr/local/go", "/opt/homebrew/opt/go/libexec"]
    return ["/usr/local/go", "/usr/lib/go", "/usr/lib/golang"]


class ConfigManager(IConfigManager):
    """
    配置管理器类。

    负责管理应用程序配置的加载、保存、验证和访问。
    实现 IConfigManager 抽象接口。
    """

    REQUIRED_FIELDS = {
        "settings": dict,
    }

    SETTINGS_FIELDS = {
        "sdk_root": str,
        "index_mirrors": list,
        "download_mirrors": list,
        "system_paths": list,
        "include_system_installs": bool,
        "marker_files": list,
        "pointer_mode": str,
        "auto_activate_first_install": bool,
        "platform_os": str,
        "platform_arch": str,
        "cache_expire_time": int,
        "request_rate_limit": int,
        "request_timeout": int,
        "fetch_retry_count": int,
        "download_retry_count": int,
        "download_speed_limit": int,
        "progress_step": int,
        "event_queue_size": int,
    }

    def __init__(self, home: Optional[Path] = None):
        """
        初始化配置管理器。

        参数:
            home: goswitch 主目录，默认为 GOSWITCH_HOME 或 ~/.goswitch
        """
        self.home = Path(home) if home is not None else get_app_home()
        self.CONFIG_DIR = self.home / "config"
        self.CONFIG_FILE = self.CONFIG_DIR / "config.json"
        self.CACHE_FILE = self.CONFIG_DIR / "cache.json"
        self._config: dict[str, Any] = {}
        self._cache: dict[str, Any] = {}
        self._ensure_config_dir()

    def _ensure_config_dir(self) -> None:
        """确保配置目录存在。"""
        try:
            self.CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigLoadError(f"无法创建配置目录 {self.CONFIG_DIR}: {e}") from e

    def _get_builtin_default_config(self) -> dict[str, Any]:
        """获取内置默认配置。"""
        return {
            "settings": {
                "sdk_root": "",
                "index_mirrors": [
                    "https://go.dev/dl/?mode=json&include=all",
                    "https://golang.google.cn/dl/?mode=json&include=all",
                ],
                "download_mirrors": [
                    "https://go.dev/dl/",
                    "https://golang.google.cn/dl/",
                ],
                "system_paths": default_system_paths(),
                "include_system_installs": True,
                "marker_files": ["bin/go", "bin/go.exe"],
                "pointer_mode": "",
                "auto_activate_first_install": False,
                "platform_os": "",
                "platform_arch": "",
                "cache_expire_time": 86400,
                "request_rate_limit": 10,
                "request_timeout": 30,
                "fetch_retry_count": 0,
                "download_retry_count": 0,
                "download_speed_limit": 0,
                "progress_step": 1,
                "event_queue_size": 256,
            },
        }

    def get_default_config(self) -> dict[str, Any]:
        """
        获取默认配置的副本。

        返回:
            默认配置字典
        """
        return copy.deepcopy(self._get_builtin_default_config())

    def load_config(self) -> dict[str, Any]:
        """
        加载配置文件。

        如果配置文件不存在，则创建默认配置文件。文件损坏或验证失败时
        记录错误并使用默认配置。

        返回:
            配置字典
        """
        try:
            if not self.CONFIG_FILE.exists():
                logger.info(f"配置文件不存在，创建默认配置: {self.CONFIG_FILE}")
                self._config = self.get_default_config()
                self.save_config()
                self._load_cache()
                return self._config

            logger.debug(f"从文件加载配置: {self.CONFIG_FILE}")
            with open(self.CONFIG_FILE, "r", encoding="utf-8") as f:
                self._config = json.load(f)

            self._ensure_backward_compatibility()
            self.validate_config(self._config)
            self._load_cache()
            logger.debug("配置加载成功")
            return self._config
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"加载配置文件失败，使用默认配置: {e}")
        except ConfigValidationError as e:
            logger.error(f"配置验证失败，使用默认配置: {e}")
        self._config = self.get_default_config()
        self._load_cache()
        return self._config

    def _ensure_backward_compatibility(self) -> None:
        """为旧版本配置补齐新增字段。"""
        if not isinstance(self._config, dict):
            raise ConfigValidationError("配置必须是字典类型")
        settings = self._config.setdefault("settings", {})
        if not isinstance(settings, dict):
            return
        for field, value in self._get_builtin_default_config()["settings"].items():
            settings.setdefault(field, value)

    def _load_cache(self) -> None:
        """加载缓存文件。"""
        if not self.CACHE_FILE.exists():
            self._cache = {}
            return
        try:
            with open(self.CACHE_FILE, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._cache = data if isinstance(data, dict) else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"加载缓存文件失败，忽略缓存: {e}")
            self._cache = {}

    def save_config(self, config: dict[str, Any] | None = None) -> None:
        """
        保存配置到文件。

        参数:
            config: 要保存的配置字典，如果为 None 则保存当前配置
        """
        if config is not None:
            self.validate_config(config)
            self._config = config
        else:
            self.validate_config(self._config)

        try:
            logger.debug(f"保存配置到 {self.CONFIG_FILE}")
            atomic_save_json(self.CONFIG_FILE, self._config)
        except OSError as e:
            logger.error(f"保存配置失败: {e}")
            raise ConfigSaveError(f"无法保存配置到 {self.CONFIG_FILE}: {e}") from e

    def save_cache(self, cache: dict[str, Any] | None = None) -> None:
        """
        保存缓存到文件。

        参数:
            cache: 要保存的缓存字典，如果为 None 则保存当前缓存
        """
        if cache is not None:
            self._cache = cache
        try:
            atomic_save_json(self.CACHE_FILE, self._cache)
        except OSError as e:
            logger.error(f"保存缓存失败: {e}")
            raise ConfigSaveError(f"无法保存缓存到 {self.CACHE_FILE}: {e}") from e

    def validate_config(self, config: dict[str, Any]) -> bool:
        """
        验证配置的有效性。

        参数:
            config: 要验证的配置字典

        返回:
            验证通过返回 True

        抛出:
            ConfigValidationError: 配置验证失败时抛出
        """
        if not isinstance(config, dict):
            raise ConfigValidationError("配置必须是字典类型")

        for field, expected_type in self.REQUIRED_FIELDS.items():
            if field not in config:
                raise ConfigValidationError(f"缺少必需字段: {field}")
            if not isinstance(config[field], expected_type):
                raise ConfigValidationError(
                    f"字段 '{field}' 必须是 {expected_type.__name__} 类型，"
                    f"实际为 {type(config[field]).__name__}"
                )

        settings = config["settings"]
        for field, expected_type in self.SETTINGS_FIELDS.items():
            if field not in settings:
                raise ConfigValidationError(f"settings 中缺少必需字段: {field}")
            value = settings[field]
            if expected_type is int and isinstance(value, bool):
                raise ConfigValidationError(f"字段 'settings.{field}' 必须是 int 类型，实际为 bool")
            if not isinstance(value, expected_type):
                raise ConfigValidationError(
                    f"字段 'settings.{field}' 必须是 {expected_type.__name__} 类型，"
                    f"实际为 {type(value).__name__}"
                )

        if settings["pointer_mode"] and settings["pointer_mode"] not in POINTER_MODES:
            raise ConfigValidationError(
                f"settings.pointer_mode 必须是 {', '.join(POINTER_MODES)} 之一或为空"
            )
        if not 1 <= settings["progress_step"] <= 100:
            raise ConfigValidationError("settings.progress_step 必须在 1 到 100 之间")
        if settings["event_queue_size"] < 1:
            raise ConfigValidationError("settings.event_queue_size 必须大于 0")
        for field in ("index_mirrors", "download_mirrors"):
            for url in settings[field]:
                try:
                    InputValidator.validate_url(url)
                except InputValidationError as e:
                    raise ConfigValidationError(f"settings.{field}: {e}") from e

        return True

    @property
    def config(self) -> dict[str, Any]:
        """
        获取配置字典（延迟加载）。

        返回:
            配置字典
        """
        if not self._config:
            self.load_config()
        return self._config

    def get_config(self) -> dict[str, Any]:
        return self.config

    def get_settings(self) -> dict[str, Any]:
        """
        获取 settings 配置部分。

        返回:
            settings 配置字典
        """
        return self.config.get("settings", {})

    def get_setting(self, key: str, default: Any = None) -> Any:
        """
        获取单个设置项。

        参数:
            key: 设置项名称
            default: 默认值

        返回:
            设置值或默认值
        """
        return self.get_settings().get(key, default)

    def set_setting(self, key: str, value: Any) -> None:
        """
        修改单个设置项并保存，验证失败时保持原配置不变。

        参数:
            key: 设置项名称
            value: 设置值
        """
        if key not in self.SETTINGS_FIELDS:
            raise ConfigValidationError(f"未知设置项: {key}")
        candidate = copy.deepcopy(self.config)
        candidate["settings"][key] = value
        self.save_config(candidate)
        logger.info(f"已设置 {key} = {value!r}")

    def get_sdk_root(self) -> Path:
        """
        获取托管安装根目录。

        返回:
            托管安装根目录的绝对路径
        """
        configured = self.get_setting("sdk_root", "")
        root = Path(configured).expanduser() if configured else self.home / "sdk"
        return Path(os.path.abspath(root))

    def get_pointer_mode(self) -> str:
        """
        获取激活指针的实现方式。

        未配置时 Windows 使用 file，其余平台使用 symlink。

        返回:
            "symlink" 或 "file"
        """
        mode = self.get_setting("pointer_mode", "")
        if mode:
            return mode
        return "file" if os.name == "nt" else "symlink"

    def get_index_mirrors(self) -> list[str]:
        return list(self.get_setting("index_mirrors", []))

    def get_download_mirrors(self) -> list[str]:
        return list(self.get_setting("download_mirrors", []))

    def get_system_paths(self) -> list[str]:
        return list(self.get_setting("system_paths", []))

    def get_marker_files(self) -> list[str]:
        return list(self.get_setting("marker_files", []))

    def get_cache_expire_time(self) -> int:
        return self.get_setting("cache_expire_time", 86400)

    def get_request_rate_limit(self) -> int:
        return self.get_setting("request_rate_limit", 10)

    def get_request_timeout(self) -> int:
        return self.get_setting("request_timeout", 30)

    def get_fetch_retry_count(self) -> int:
        return self.get_setting("fetch_retry_count", 0)

    def get_download_retry_count(self) -> int:
        return self.get_setting("download_retry_count", 0)

    def get_download_speed_limit(self) -> int:
        return self.get_setting("download_speed_limit", 0)

    def get_cache(self) -> dict[str, Any]:
        """
        获取缓存内容。

        返回:
            缓存字典
        """
        if not self._config:
            self.load_config()
        return self._cache

    def set_cache(self, key: str, value: Any) -> None:
        """
        设置缓存值。

        参数:
            key: 缓存键
            value: 缓存值
        """
        self.get_cache()[key] = value
