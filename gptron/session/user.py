"""
用户（User）模块 - 访问状态、菜单状态、会话集合与按模型聚合的用量。

User 是用户表中的一行：首次收到某个 ID 的事件时创建，之后只被修改，
永远不会被结构性删除；被拉黑后变为惰性（所有事件都被短路）。
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from gptron.errors import NotFound
from gptron.session.conversation import Conversation
from gptron.session.menu import MenuState
from gptron.session.usage import TokenUsage


class UserStatus(str, Enum):
    """用户访问状态。"""

    UNREVIEWED = "unreviewed"
    WHITELISTED = "whitelisted"
    BLACKLISTED = "blacklisted"
    PRIVILEGED = "privileged"

    @property
    def emoji(self) -> str:
        return _STATUS_EMOJI[self]


_STATUS_EMOJI = {
    UserStatus.UNREVIEWED: "🕒",
    UserStatus.WHITELISTED: "✅",
    UserStatus.BLACKLISTED: "❌",
    UserStatus.PRIVILEGED: "👑",
}


class Access(str, Enum):
    """访问门的分类结果：NOT_FOUND 加上四种用户状态。"""

    NOT_FOUND = "not_found"
    UNREVIEWED = "unreviewed"
    WHITELISTED = "whitelisted"
    BLACKLISTED = "blacklisted"
    PRIVILEGED = "privileged"

    @classmethod
    def of(cls, user: User | None) -> Access:
        if user is None:
            return cls.NOT_FOUND
        return cls(user.status.value)


class User(BaseModel):
    """
    用户记录。

    属性:
        id: Telegram 用户 ID
        status: 访问状态
        menu_state: 当前所在的菜单屏幕
        conversations: 会话 ID → 会话
        selected_id: 当前选中的会话 ID（必须指向未删除的会话）
        usage: 模型名 → 累计 token 数
        strike_count: 违规计数（预留给管理员使用）
    """

    id: int
    status: UserStatus = UserStatus.UNREVIEWED
    menu_state: MenuState = MenuState.MAIN
    conversations: dict[UUID, Conversation] = Field(default_factory=dict)
    selected_id: UUID | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    usage: dict[str, TokenUsage] = Field(default_factory=dict)
    strike_count: int = 0

    @model_validator(mode="after")
    def _drop_dangling_selection(self) -> User:
        # 加载旧数据时，选中项必须指向存在且未删除的会话
        if self.selected_id is not None and self.find_active(self.selected_id) is None:
            self.selected_id = None
        return self

    @property
    def is_privileged(self) -> bool:
        return self.status is UserStatus.PRIVILEGED

    def touch(self) -> None:
        self.updated_at = datetime.now()

    # ------------------------------------------------------------------
    # 会话存储
    # ------------------------------------------------------------------

    def new_conversation(self) -> UUID:
        """创建一个空会话（不自动选中），返回其 ID。"""
        conv = Conversation()
        self.conversations[conv.id] = conv
        self.touch()
        return conv.id

    def find_active(self, conv_id: UUID) -> Conversation | None:
        conv = self.conversations.get(conv_id)
        if conv is None or conv.is_deleted:
            return None
        return conv

    def active_conversations(self) -> list[Conversation]:
        """未删除的会话，按创建时间排序。"""
        convs = [c for c in self.conversations.values() if not c.is_deleted]
        return sorted(convs, key=lambda c: c.created_at)

    @property
    def selected(self) -> Conversation | None:
        if self.selected_id is None:
            return None
        return self.find_active(self.selected_id)

    def select(self, conv_id: UUID) -> Conversation:
        """选中一个会话；ID 无法解析为未删除的会话时抛出 NotFound，选中项不变。"""
        conv = self.find_active(conv_id)
        if conv is None:
            raise NotFound(f"Conversation {conv_id} not found")
        self.selected_id = conv.id
        self.touch()
        return conv

    def delete_conversation(self, conv_id: UUID) -> Conversation:
        """软删除会话；若它正被选中则同时清除选中项。"""
        conv = self.find_active(conv_id)
        if conv is None:
            raise NotFound(f"Conversation {conv_id} not found")
        conv.delete()
        if self.selected_id == conv_id:
            self.selected_id = None
        self.touch()
        return conv
