"""
工具函数模块 - 提供 gptron 项目全局通用的辅助函数。
"""

from gptron.utils.helpers import ensure_dir, parse_chat_id, parse_uuid

__all__ = ["ensure_dir", "parse_chat_id", "parse_uuid"]
