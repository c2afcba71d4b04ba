"""
渠道模块 - 聊天平台传输层。
"""

from gptron.channels.base import BaseChannel

__all__ = ["BaseChannel"]
