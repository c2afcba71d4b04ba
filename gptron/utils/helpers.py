"""
工具函数集合 - gptron 项目全局通用的辅助函数。

函数分类：
- 路径管理：ensure_dir
- 字符串工具：truncate_string, strip_title
- 命令参数解析：parse_chat_id, parse_uuid
"""

from pathlib import Path
from uuid import UUID

from gptron.errors import InvalidInput


def ensure_dir(path: Path) -> Path:
    """
    确保目录存在，不存在则递归创建。

    参数:
        path: 目标目录路径

    返回:
        创建后的目录路径（原样返回）
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def truncate_string(s: str, max_len: int = 100, suffix: str = "...") -> str:
    """截断字符串到指定最大长度（包含后缀），超出时添加后缀。"""
    if len(s) <= max_len:
        return s
    return s[: max_len - len(suffix)] + suffix


def strip_title(raw: str) -> str:
    """去掉模型生成标题两侧的引号和空白。"""
    return raw.strip().strip("\"'“”").strip()


def command_args(content: str) -> list[str]:
    """按空白切分命令，去掉命令本身，返回参数列表。"""
    return content.split()[1:]


def parse_chat_id(content: str) -> int:
    """
    解析 /whitelist <id>、/blacklist <id> 中的目标用户 ID。

    异常:
        InvalidInput: 缺少参数（"Invalid input"）或参数不是数字（"Invalid chat ID"）
    """
    args = command_args(content)
    if len(args) != 1:
        raise InvalidInput("Invalid input")
    try:
        return int(args[0])
    except ValueError:
        raise InvalidInput("Invalid chat ID") from None


def parse_uuid(content: str) -> UUID:
    """
    解析 /select [标题...] <id> 中的会话 ID（总是最后一个参数）。

    异常:
        InvalidInput: 缺少参数或不是合法的 UUID
    """
    args = command_args(content)
    if not args:
        raise InvalidInput("Invalid input")
    try:
        return UUID(args[-1])
    except ValueError:
        raise InvalidInput("Invalid conversation ID") from None
