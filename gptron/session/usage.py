"""
用量账本模块 - token 计数的累加、费用推导与用量上限检查。

每次补全请求都会返回 (prompt_tokens, completion_tokens)。账本负责把这两个数
同时累加到：
  (a) 当前会话的用量计数器；
  (b) 用户按模型名聚合的用量表。
两次累加之间没有 await，因此在事件循环中是原子的。

费用从不存储：所有 Cost 都通过 ModelCatalog 的价格表即时计算。

【Java 开发者类比】
- TokenUsage 类似于一个可变的计数器 POJO
- UsageLedger 类似于一个无状态的 @Service，依赖注入价格表和上限配置
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

from pydantic import BaseModel

from gptron.catalog.models import MODELS, Cost, ModelCatalog

if TYPE_CHECKING:
    from gptron.session.conversation import Conversation
    from gptron.session.user import User

UNKNOWN_MODEL = "unknown"


class TokenUsage(BaseModel):
    """累计 token 数。total 由两项相加得出，不单独存储。"""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def add(self, prompt_tokens: int, completion_tokens: int) -> None:
        self.prompt_tokens += prompt_tokens
        self.completion_tokens += completion_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


def _fmt(tokens: int, cost: float) -> str:
    return f"{tokens} (${cost:f})"


class UsageLedger:
    """
    用量账本。

    属性:
        catalog: 价格表（模型目录）
        limit: 每个普通用户的费用上限（美元），管理员不受限制
    """

    def __init__(self, catalog: ModelCatalog = MODELS, limit: float = 1.0):
        self.catalog = catalog
        self.limit = limit

    # ------------------------------------------------------------------
    # 记账
    # ------------------------------------------------------------------

    def record(self, user: User, conversation: Conversation, prompt_tokens: int, completion_tokens: int) -> None:
        """把一次补全的 token 数同时记入会话和用户的按模型聚合表。"""
        conversation.usage.add(prompt_tokens, completion_tokens)
        model = conversation.model or UNKNOWN_MODEL
        user.usage.setdefault(model, TokenUsage()).add(prompt_tokens, completion_tokens)
        conversation.touch()
        user.touch()

    # ------------------------------------------------------------------
    # 费用推导
    # ------------------------------------------------------------------

    def cost(self, model: str | None, usage: TokenUsage) -> Cost:
        return self.catalog.cost(model, usage.prompt_tokens, usage.completion_tokens)

    def conversation_cost(self, conversation: Conversation) -> Cost:
        return self.cost(conversation.model, conversation.usage)

    def total_usage(self, user: User) -> TokenUsage:
        total = TokenUsage()
        for conv in user.conversations.values():
            total = total + conv.usage
        return total

    def total_cost(self, user: User) -> Cost:
        total = Cost()
        for conv in user.conversations.values():
            total = total + self.conversation_cost(conv)
        return total

    def has_reached_usage_limit(self, user: User) -> bool:
        """所有会话（包括已删除的）的费用之和是否达到上限。管理员豁免。"""
        if user.is_privileged:
            return False
        return self.total_cost(user).total >= self.limit

    # ------------------------------------------------------------------
    # 统计报表（/stats、/users_list、/global_stats）
    # ------------------------------------------------------------------

    def conversation_stats(self, conversation: Conversation) -> str:
        cost = self.conversation_cost(conversation)
        usage = conversation.usage
        return (
            f"Conversation: {conversation.display_title}\n"
            f"Personality: {conversation.personality or '-'}\n\n"
            f"Model: {conversation.model or '-'}\n"
            f"Prompt tokens: {_fmt(usage.prompt_tokens, cost.prompt)}\n"
            f"Completion tokens: {_fmt(usage.completion_tokens, cost.completion)}\n\n"
            f"Total tokens: {_fmt(usage.total_tokens, cost.total)}"
        )

    def user_stats(self, user: User) -> str:
        lines = ["Global statistics:"]
        for model, usage in user.usage.items():
            cost = self.cost(model, usage)
            lines += [
                "",
                f"Engine: {model}",
                f"Prompt tokens: {_fmt(usage.prompt_tokens, cost.prompt)}",
                f"Completion tokens: {_fmt(usage.completion_tokens, cost.completion)}",
                f"Total tokens: {_fmt(usage.total_tokens, cost.total)}",
            ]

        tokens = self.total_usage(user)
        cost = self.total_cost(user)
        lines += [
            "",
            "-" * 40,
            "",
            f"Total prompt tokens: {_fmt(tokens.prompt_tokens, cost.prompt)}",
            f"Total completion tokens: {_fmt(tokens.completion_tokens, cost.completion)}",
            "",
            f"Total tokens: {_fmt(tokens.total_tokens, cost.total)}",
        ]

        convs = list(user.conversations.values())
        if convs:
            by_tokens = sorted(convs, key=lambda c: c.usage.total_tokens)
            by_age = sorted(convs, key=lambda c: c.created_at)
            for label, conv in (
                ("Longest conversation", by_tokens[-1]),
                ("Shortest conversation", by_tokens[0]),
                ("Newest conversation", by_age[-1]),
                ("Oldest conversation", by_age[0]),
            ):
                conv_cost = self.conversation_cost(conv)
                lines += ["", f"{label}: {conv.display_title}", _fmt(conv.usage.total_tokens, conv_cost.total) + " tokens"]
        return "\n".join(lines)

    def users_list(self, users: Iterable[User]) -> str:
        users = list(users)
        if not users:
            return "No users found"
        lines = ["Users list:", ""]
        for u in users:
            tokens = self.total_usage(u)
            cost = self.total_cost(u)
            lines += [
                f"User: {u.id}, Status: {u.status.emoji} {u.status.value}",
                f"Tokens: {tokens.total_tokens}",
                f"Cost: ${cost.total:f}",
                "",
            ]
        return "\n".join(lines)

    def global_stats(self, users: Iterable[User]) -> str:
        from gptron.session.user import UserStatus

        users = list(users)
        if not users:
            return "No users found"
        counts = {status: 0 for status in UserStatus}
        tokens = TokenUsage()
        cost = Cost()
        for u in users:
            counts[u.status] += 1
            tokens = tokens + self.total_usage(u)
            cost = cost + self.total_cost(u)

        lines = ["Admin stats:", "", f"Total users: {len(users)}"]
        lines += [f"{status.emoji} {status.value}: {n}" for status, n in counts.items()]
        lines += [
            "",
            f"Total prompt tokens: {_fmt(tokens.prompt_tokens, cost.prompt)}",
            f"Total completion tokens: {_fmt(tokens.completion_tokens, cost.completion)}",
            f"Total tokens: {_fmt(tokens.total_tokens, cost.total)}",
        ]
        return "\n".join(lines)
