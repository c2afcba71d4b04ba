"""
消息事件类型定义模块 - 定义入站事件与出站效果的数据结构。

本模块定义了 gptron 中所有数据流转的"货币"：
- InboundMessage：入站事件（从渠道到编排器）
- OutboundMessage：出站效果（从编排器到用户信箱）
- MessageRef：已发送消息的引用（用于后续编辑/删除）
- Keyboard / Button：与平台无关的键盘描述，由渠道转换为原生格式

【Java 开发者类比】
- 使用 Python 的 @dataclass 装饰器，等价于 Java 的 record 类或 Lombok 的 @Data
- EffectKind 继承 str 的 Enum，类似 Java 的 enum，但可以直接和字符串比较

【设计要点】
编排器只会"描述"要对用户做什么（发送/编辑/发语音/发文档/删除），
真正的 I/O 全部交给该用户的信箱（bus/mailbox.py）去执行。
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass
class InboundMessage:
    """
    入站事件 - 从聊天渠道接收到的一次用户输入。

    属性:
        sender_id: 发送者的 Telegram 用户 ID
        chat_id: 聊天 ID（私聊场景下与 sender_id 相同）
        content: 文本内容（按钮回调的 callback_data 也放在这里）
        voice: 语音消息的文件引用（file_id），没有语音时为 None
        timestamp: 接收时间
        metadata: 渠道特有的附加数据（message_id、username 等）
    """

    sender_id: int
    chat_id: int
    content: str
    voice: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_voice(self) -> bool:
        """该事件是否携带语音。"""
        return self.voice is not None


@dataclass(frozen=True)
class MessageRef:
    """已发送消息的定位信息（聊天 ID + 消息 ID）。"""

    chat_id: int
    message_id: int


@dataclass(frozen=True)
class Button:
    """
    键盘按钮。

    callback_data 为 None 时是普通回复键盘按钮（点击即发送 text），
    否则是内联按钮（点击后把 callback_data 作为文本回传给机器人）。
    """

    text: str
    callback_data: str | None = None


@dataclass
class Keyboard:
    """与平台无关的键盘描述：按行组织的按钮列表。"""

    rows: list[list[Button]] = field(default_factory=list)
    inline: bool = False

    def add_row(self, *texts: str) -> "Keyboard":
        self.rows.append([Button(t) for t in texts])
        return self

    def labels(self) -> list[str]:
        """按顺序列出所有按钮文字（测试和日志中使用）。"""
        return [b.text for row in self.rows for b in row]


class EffectKind(str, Enum):
    """出站效果的种类。"""

    SEND_MESSAGE = "send_message"    # 发送新消息
    EDIT_MESSAGE = "edit_message"    # 编辑 target，未指定时编辑信箱最近一次发送的消息
    SEND_VOICE = "send_voice"        # 发送语音（caption 为文字回复）
    SEND_DOCUMENT = "send_document"  # 发送文档（会话报告）
    DELETE_MESSAGE = "delete_message"  # 删除 target，未指定时删除信箱最近一次发送的消息


@dataclass
class OutboundMessage:
    """
    出站效果 - 编排器要求信箱对某个用户执行的一次投递操作。

    属性:
        chat_id: 目标聊天 ID（决定投递到哪个信箱）
        content: 文本内容（消息正文或语音/文档的说明文字）
        kind: 效果种类，默认发送新消息
        keyboard: 可选的键盘
        markdown: 是否按 Markdown 渲染
        data: 语音/文档的二进制内容
        filename: 文档文件名
        target: EDIT/DELETE 作用的消息；为 None 时作用于信箱最近一次发送的消息
    """

    chat_id: int
    content: str = ""
    kind: EffectKind = EffectKind.SEND_MESSAGE
    keyboard: Keyboard | None = None
    markdown: bool = False
    data: bytes | None = None
    filename: str | None = None
    target: MessageRef | None = None

    @classmethod
    def edit(
        cls, chat_id: int, content: str, markdown: bool = False, target: MessageRef | None = None
    ) -> "OutboundMessage":
        return cls(chat_id=chat_id, content=content, kind=EffectKind.EDIT_MESSAGE, markdown=markdown, target=target)

    @classmethod
    def voice(cls, chat_id: int, data: bytes, caption: str = "") -> "OutboundMessage":
        return cls(chat_id=chat_id, content=caption, kind=EffectKind.SEND_VOICE, data=data)

    @classmethod
    def document(cls, chat_id: int, data: bytes, filename: str, caption: str = "") -> "OutboundMessage":
        return cls(
            chat_id=chat_id,
            content=caption,
            kind=EffectKind.SEND_DOCUMENT,
            data=data,
            filename=filename,
        )

    @classmethod
    def delete(cls, chat_id: int, target: MessageRef | None = None) -> "OutboundMessage":
        return cls(chat_id=chat_id, kind=EffectKind.DELETE_MESSAGE, target=target)
