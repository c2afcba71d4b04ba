"""
上下文构建器 - 为三种补全请求组装消息列表。

- 对话：会话的完整历史（第一条是人设的 system 消息）+ 本次用户输入
- 标题：标题生成器提示词 + 会话中的对话内容
- 摘要：摘要器提示词 + 最近 n 条消息
"""

from typing import Any

from gptron.catalog.personalities import SYNTHESIZER, TITLE_GENERATOR
from gptron.session.conversation import Conversation, Role


class ContextBuilder:
    """
    构建发给 LLM 的消息列表。

    属性:
        summarize_window: /summarize 默认使用的最近消息条数
    """

    def __init__(self, summarize_window: int = 10):
        self.summarize_window = summarize_window

    def chat_messages(self, conversation: Conversation, text: str) -> list[dict[str, Any]]:
        return conversation.history() + [{"role": Role.USER.value, "content": text}]

    def title_messages(self, conversation: Conversation) -> list[dict[str, Any]]:
        """只取对话内容（不含人设提示词），前面加上标题生成器的 system 消息。"""
        exchange = [m.to_llm() for m in conversation.messages if m.role is not Role.SYSTEM]
        return [{"role": Role.SYSTEM.value, "content": TITLE_GENERATOR.prompt}] + exchange

    def summary_messages(self, conversation: Conversation, n: int | None = None) -> list[dict[str, Any]]:
        """最近 n 条消息（不足 n 条时取全部），前面加上摘要器的 system 消息。"""
        window = self.summarize_window if n is None else n
        return [{"role": Role.SYSTEM.value, "content": SYNTHESIZER.prompt}] + conversation.history(window)
