"""
渠道基类模块 - 定义聊天平台传输层（Transport）的统一接口。

渠道只做两件事：
1. 入站：把平台的更新标准化为 InboundMessage，发布到消息总线；
2. 出站：执行信箱交给它的具体 I/O（发送/编辑/删除消息、发送语音/文档、下载文件）。

出站方法的失败必须原样抛给调用者（信箱），由信箱负责重试和记录日志，
渠道本身不吞掉异常。

【Java 开发者类比】
- BaseChannel 相当于 Java 的 abstract class + interface
- _handle_message() 相当于 Template Method 模式中的模板方法
"""

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from gptron.bus.events import InboundMessage, Keyboard, MessageRef
from gptron.bus.queue import MessageBus


class BaseChannel(ABC):
    """
    聊天渠道抽象基类。

    属性:
        name: 渠道标识名
        config: 渠道特定的配置对象
        bus: 消息总线实例
    """

    name: str = "base"

    def __init__(self, config: Any, bus: MessageBus):
        self.config = config
        self.bus = bus
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """启动渠道并开始监听消息（长期运行）。"""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """停止渠道并清理资源。"""
        pass

    @abstractmethod
    async def send_message(
        self,
        chat_id: int,
        text: str,
        keyboard: Keyboard | None = None,
        markdown: bool = False,
    ) -> MessageRef:
        """发送一条新消息，返回其引用。"""
        pass

    @abstractmethod
    async def edit_message(
        self,
        ref: MessageRef,
        text: str,
        keyboard: Keyboard | None = None,
        markdown: bool = False,
    ) -> None:
        """编辑已发送的消息。"""
        pass

    @abstractmethod
    async def delete_message(self, ref: MessageRef) -> None:
        pass

    @abstractmethod
    async def send_voice(self, chat_id: int, data: bytes, caption: str = "") -> MessageRef:
        pass

    @abstractmethod
    async def send_document(self, chat_id: int, data: bytes, filename: str, caption: str = "") -> MessageRef:
        pass

    @abstractmethod
    async def download_file(self, file_id: str) -> bytes:
        """下载平台上的文件（语音消息）。"""
        pass

    async def _handle_message(
        self,
        sender_id: int,
        chat_id: int,
        content: str,
        voice: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """
        处理来自聊天平台的入站更新（模板方法）。

        访问控制不在这里做：所有用户的事件都会进入总线，由编排器的访问门分类。
        """
        msg = InboundMessage(
            sender_id=sender_id,
            chat_id=chat_id,
            content=content,
            voice=voice,
            metadata=metadata or {},
        )
        logger.debug(f"Inbound from {sender_id} on {self.name}: {content[:50]}")
        await self.bus.publish_inbound(msg)

    @property
    def is_running(self) -> bool:
        return self._running
