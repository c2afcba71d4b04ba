"""
入站消息队列模块 - 渠道与编排器之间的解耦通道。

入站流程（用户 → 编排器）：
  渠道适配器 → publish_inbound() → inbound 队列 → consume_inbound() → 编排器主循环

出站方向不再经过这里：每个用户拥有自己的串行信箱（见 bus/mailbox.py），
编排器直接把出站效果投递到目标用户的信箱。

【Java 开发者类比】
- asyncio.Queue 类似于 Java 的 LinkedBlockingQueue
- publish/consume 模式类似于 Java 的 BlockingQueue.put()/take()
"""

import asyncio

from gptron.bus.events import InboundMessage


class MessageBus:
    """
    异步入站消息总线。

    属性:
        inbound: 入站事件异步队列（渠道 → 编排器）
    """

    def __init__(self):
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue()

    async def publish_inbound(self, msg: InboundMessage) -> None:
        """发布入站事件（渠道收到用户输入后调用）。"""
        await self.inbound.put(msg)

    async def consume_inbound(self) -> InboundMessage:
        """消费下一条入站事件，队列为空时异步阻塞。"""
        return await self.inbound.get()
