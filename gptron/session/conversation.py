"""
会话（Conversation）模块 - 单个对话的消息历史、模型/人设选择与软删除。

本模块包含：
- Role / Message：不可变的单条消息
- Active / Deleted：会话状态的标签联合（pydantic 判别联合）
- Conversation：会话本体，隶属于某一个用户

【状态建模】
会话内容（消息列表和标题）只存在于 Active 变体中；Deleted 变体只有删除时间。
因此"已删除的会话没有内容"在结构上就成立，不需要额外的校验。
删除后保留 id、模型、人设、用量和时间戳，用于报告与费用统计。

【Java 开发者类比】
- Active | Deleted 类似于 Java 17 的 sealed interface + record
- Conversation 类似于一个 JPA 实体，但持久化由 SessionManager 整体完成
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from gptron.catalog.models import MODELS, ModelCatalog
from gptron.catalog.personalities import Personality
from gptron.session.usage import TokenUsage

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """会话中的一条消息，创建后不可修改。"""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    created_at: datetime = Field(default_factory=datetime.now)

    def to_llm(self) -> dict[str, str]:
        """转换为 LLM 接口需要的 {role, content} 格式。"""
        return {"role": self.role.value, "content": self.content}


class Active(BaseModel):
    """活跃状态：持有消息列表和（可能尚未生成的）标题。"""

    kind: Literal["active"] = "active"
    messages: list[Message] = Field(default_factory=list)
    title: str | None = None


class Deleted(BaseModel):
    """已删除状态：只保留删除时间。"""

    kind: Literal["deleted"] = "deleted"
    at: datetime


ConversationState = Annotated[Active | Deleted, Field(discriminator="kind")]


class Conversation(BaseModel):
    """
    单个对话会话。

    属性:
        id: UUID4 唯一标识
        model: 选定的模型名（未选择时为 None）
        personality: 选定的人设名（一旦设置不可更改）
        usage: 本会话累计的 token 数
        created_at / updated_at: 创建与最后更新时间
        state: Active 或 Deleted
    """

    id: UUID = Field(default_factory=uuid4)
    model: str | None = None
    personality: str | None = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    state: ConversationState = Field(default_factory=Active)

    # ------------------------------------------------------------------
    # 只读视图
    # ------------------------------------------------------------------

    @property
    def is_deleted(self) -> bool:
        return isinstance(self.state, Deleted)

    @property
    def deleted_at(self) -> datetime | None:
        return self.state.at if isinstance(self.state, Deleted) else None

    @property
    def messages(self) -> tuple[Message, ...]:
        if isinstance(self.state, Active):
            return tuple(self.state.messages)
        return ()

    @property
    def title(self) -> str | None:
        return self.state.title if isinstance(self.state, Active) else None

    @property
    def display_title(self) -> str:
        """菜单和统计中显示的名称：有标题用标题，否则用 ID。"""
        return self.title or str(self.id)

    @property
    def is_ready(self) -> bool:
        """模型和人设都已选定，可以开始对话。"""
        return self.model is not None and self.personality is not None

    @property
    def has_exchanges(self) -> bool:
        """是否已有至少一条助手回复。"""
        return any(m.role is Role.ASSISTANT for m in self.messages)

    # ------------------------------------------------------------------
    # 修改操作
    # ------------------------------------------------------------------

    def touch(self) -> None:
        self.updated_at = datetime.now()

    def _active(self) -> Active:
        if not isinstance(self.state, Active):
            raise ValueError(f"Conversation {self.id} is deleted")
        return self.state

    def append(self, role: Role, content: str) -> Message:
        """追加一条消息（只能追加，不能修改或移除）。"""
        msg = Message(role=role, content=content)
        self._active().messages.append(msg)
        self.touch()
        return msg

    def set_title(self, title: str) -> None:
        self._active().title = title
        self.touch()

    def set_model(self, name: str) -> None:
        self._active()
        self.model = name
        self.touch()

    def set_personality(self, personality: Personality) -> None:
        """
        设定人设，并把人设的 system 提示词追加为第一条消息。

        人设只能设置一次；重复设置抛出 ValueError。
        """
        if self.personality is not None:
            raise ValueError(f"Conversation {self.id} already has personality {self.personality}")
        self.append(Role.SYSTEM, personality.system_prompt)
        self.personality = personality.name

    def delete(self, at: datetime | None = None) -> None:
        """软删除：清空内容和标题，保留其余元数据。重复删除无效果。"""
        if self.is_deleted:
            return
        self.state = Deleted(at=at or datetime.now())
        self.touch()

    # ------------------------------------------------------------------
    # LLM 上下文与报告
    # ------------------------------------------------------------------

    def history(self, max_messages: int | None = None) -> list[dict[str, str]]:
        """
        获取用于 LLM 上下文的消息历史。

        参数:
            max_messages: 只取最近的若干条；None 表示全部
        """
        msgs = self.messages
        if max_messages is not None:
            msgs = msgs[-max_messages:] if max_messages > 0 else ()
        return [m.to_llm() for m in msgs]

    def generate_report(self, catalog: ModelCatalog = MODELS) -> str:
        """
        生成确定性的 Markdown 报告。

        包括元数据、按时间顺序排列的消息（以 --- 分隔），
        以及（如已删除）删除详情。
        """
        cost = catalog.cost(self.model, self.usage.prompt_tokens, self.usage.completion_tokens)
        lines = [
            "## Conversation Report",
            "",
            f"- **ID**: {self.id}",
            f"- **Title**: {self.title or '-'}",
            f"- **Personality**: {self.personality or '-'}",
            f"- **Created At**: {self.created_at.strftime(TIMESTAMP_FORMAT)}",
            f"- **Last Update**: {self.updated_at.strftime(TIMESTAMP_FORMAT)}",
            "",
            f"**Model**: {self.model or '-'}",
            f"**Prompt Tokens**: {self.usage.prompt_tokens} (${cost.prompt:f})",
            f"**Completion Tokens**: {self.usage.completion_tokens} (${cost.completion:f})",
            f"**Total Tokens**: {self.usage.total_tokens} (${cost.total:f})",
            "",
            "### Messages",
        ]
        for msg in self.messages:
            lines += [
                "",
                f"**{msg.role.value.capitalize()}** ({msg.created_at.strftime(TIMESTAMP_FORMAT)}):",
                "",
                msg.content,
                "",
                "---",
            ]
        if self.deleted_at is not None:
            lines += [
                "",
                "### Deletion Details",
                "",
                f"- **Deleted At**: {self.deleted_at.strftime(TIMESTAMP_FORMAT)}",
            ]
        return "\n".join(lines) + "\n"

    @property
    def report_filename(self) -> str:
        return f"{self.id}_summary.md"
