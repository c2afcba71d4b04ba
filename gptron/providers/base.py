"""
LLM 提供者基类定义模块。

本模块定义了与大语言模型交互的核心抽象接口：
- LLMResponse : LLM 的统一响应格式（文本内容 + token 用量）
- LLMProvider : 抽象基类，所有补全服务的实现都必须继承它

架构角色：
  编排器 → LLMProvider.chat() → LLM API → LLMResponse → 用量账本记账

类比 Java：
  - LLMProvider 相当于一个 interface
  - LLMResponse 相当于一个不可变的 DTO
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMResponse:
    """
    LLM 的统一响应数据结构。

    属性：
        content: 回复文本
        usage: token 用量统计（prompt_tokens, completion_tokens, total_tokens）
        finish_reason: 结束原因
    """
    content: str
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str = "stop"

    @property
    def prompt_tokens(self) -> int:
        return self.usage.get("prompt_tokens", 0)

    @property
    def completion_tokens(self) -> int:
        return self.usage.get("completion_tokens", 0)


class LLMProvider(ABC):
    """
    LLM 提供者抽象基类。

    当前唯一的实现类是 LiteLLMProvider；测试中使用内存假实现。
    实现类在网络错误、配额耗尽等情况下必须抛出 ServiceError，而不是返回错误文本。

    属性：
        api_key: API 密钥
        api_base: API 基础 URL（用于自定义端点或代理）
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int | None = None,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        发送对话补全请求。

        参数：
            messages: 消息列表，每条消息是 {"role": ..., "content": ...}
            model: 模型名称（来自模型目录）
            max_tokens: 响应的最大 token 数，None 表示由服务端决定
            temperature: 采样温度

        异常：
            ServiceError: 调用失败
        """
        pass
