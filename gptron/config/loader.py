"""
配置文件读写 - ~/.gptron/config.json。

文件中的键使用 camelCase（与 Telegram / OpenAI 文档里的写法一致），
Config 模型的字段使用 snake_case，读写时在两者之间做递归转换。
文件缺失或损坏都不是致命错误：记录警告后使用默认配置，
真正致命的缺项由 Config.missing_settings() 在 gateway 启动时检查。
"""

import json
from pathlib import Path
from typing import Any

from loguru import logger

from gptron.config.schema import Config

CONFIG_FILE = "config.json"


def get_config_path() -> Path:
    return Path.home() / ".gptron" / CONFIG_FILE


def load_config(config_path: Path | None = None) -> Config:
    """
    读取配置文件。

    参数:
        config_path: 配置文件路径，默认 ~/.gptron/config.json

    返回:
        解析后的 Config；文件不存在或无法解析时返回默认 Config
    """
    path = config_path or get_config_path()
    if not path.exists():
        logger.debug(f"No config file at {path}, using defaults")
        return Config()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return Config.model_validate(convert_keys(raw))
    except ValueError as e:
        # json.JSONDecodeError 和 pydantic.ValidationError 都是 ValueError
        logger.warning(f"Invalid config at {path}, falling back to defaults: {e}")
        return Config()


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """以 camelCase 键写出配置，返回写入的路径。"""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(convert_to_camel(config.model_dump()), indent=2), encoding="utf-8")
    logger.debug(f"Config written to {path}")
    return path


def convert_keys(data: Any) -> Any:
    """camelCase 键 → snake_case 键（递归处理嵌套的 dict 和 list）。"""
    return _rekey(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    """snake_case 键 → camelCase 键（递归）。"""
    return _rekey(data, snake_to_camel)


def _rekey(data: Any, rename) -> Any:
    if isinstance(data, dict):
        return {rename(k): _rekey(v, rename) for k, v in data.items()}
    if isinstance(data, list):
        return [_rekey(v, rename) for v in data]
    return data


def camel_to_snake(name: str) -> str:
    """usageLimit → usage_limit"""
    return "".join(f"_{c.lower()}" if c.isupper() and i else c.lower() for i, c in enumerate(name))


def snake_to_camel(name: str) -> str:
    """max_retries → maxRetries"""
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)
