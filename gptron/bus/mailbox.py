"""
用户信箱模块 - 每个用户一个串行出站队列。

编排器只负责"决定说什么"，真正"说出去"的动作全部交给信箱：
  编排器 → post()/deliver() → 用户信箱队列 → 单个消费协程 → 渠道（Transport）

这样可以保证：
1. 同一个用户看到的回复永远按入队顺序出现，不会交错或乱序；
2. 业务逻辑与网络延迟、发送失败完全解耦：发送失败只记录日志并有限重试，
   不会让消费协程退出，也不会把异常抛回编排器。

信箱还记录最近一次发送的消息引用（last_sent）。EDIT/DELETE 效果优先作用于
自己携带的 target，没有 target 时才作用于 last_sent。进度消息（"分析中… →
转录中… → 发送给模型… → 最终回复"）总是携带 target：其他用户的事件
（例如新用户通知）也可能向同一个信箱发送消息，last_sent 随时会变。

【Java 开发者类比】
- Mailbox 类似于只有一个线程的 ExecutorService（Executors.newSingleThreadExecutor）
- MailboxRegistry 类似于 ConcurrentHashMap.computeIfAbsent 管理的 Actor 注册表
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

from gptron.bus.events import EffectKind, MessageRef, OutboundMessage

if TYPE_CHECKING:
    from gptron.channels.base import BaseChannel


class Mailbox:
    """
    单个用户的串行出站信箱。

    属性:
        chat_id: 目标聊天 ID
        transport: 负责实际 I/O 的渠道实例
        last_sent: 最近一次通过 SEND_MESSAGE 发送的消息引用
        delivered: 成功投递的效果数量
        failed: 重试耗尽后放弃的效果数量
    """

    def __init__(
        self,
        chat_id: int,
        transport: BaseChannel,
        max_retries: int = 2,
        retry_delay: float = 1.0,
    ):
        self.chat_id = chat_id
        self.transport = transport
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.last_sent: MessageRef | None = None
        self.delivered = 0
        self.failed = 0
        # 队列元素：(出站效果, 可选的投递回执 Future)
        self._queue: asyncio.Queue[tuple[OutboundMessage, asyncio.Future | None]] = asyncio.Queue()
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        """启动消费协程（幂等）。"""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name=f"mailbox-{self.chat_id}")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def post(self, msg: OutboundMessage) -> None:
        """入队后立即返回，不等待投递结果。"""
        self._queue.put_nowait((msg, None))

    async def deliver(self, msg: OutboundMessage) -> MessageRef | None:
        """
        入队并等待投递回执。

        返回:
            投递产生（或作用到）的消息引用；投递最终失败时返回 None
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((msg, future))
        return await future

    async def join(self) -> None:
        """等待当前队列中所有效果处理完毕。"""
        await self._queue.join()

    async def stop(self) -> None:
        """取消消费协程。"""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def _run(self) -> None:
        """消费循环：严格按入队顺序、一次一个地投递。"""
        while True:
            msg, future = await self._queue.get()
            try:
                ref = await self._deliver_with_retry(msg)
                if future is not None and not future.done():
                    future.set_result(ref)
            except asyncio.CancelledError:
                if future is not None and not future.done():
                    future.cancel()
                raise
            finally:
                self._queue.task_done()

    async def _deliver_with_retry(self, msg: OutboundMessage) -> MessageRef | None:
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                ref = await self._deliver(msg)
                self.delivered += 1
                return ref
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt < attempts:
                    logger.warning(
                        f"Delivery of {msg.kind.value} to {self.chat_id} failed "
                        f"(attempt {attempt}/{attempts}): {e}"
                    )
                    await asyncio.sleep(self.retry_delay)
                else:
                    logger.error(f"Giving up delivery of {msg.kind.value} to {self.chat_id}: {e}")
        self.failed += 1
        return None

    async def _deliver(self, msg: OutboundMessage) -> MessageRef | None:
        kind = msg.kind
        target = msg.target or self.last_sent
        # 没有可编辑的消息时，编辑退化为发送新消息
        if kind is EffectKind.EDIT_MESSAGE and target is None:
            kind = EffectKind.SEND_MESSAGE

        if kind is EffectKind.SEND_MESSAGE:
            ref = await self.transport.send_message(
                self.chat_id, msg.content, keyboard=msg.keyboard, markdown=msg.markdown
            )
            self.last_sent = ref
            logger.debug(f"Sent message {ref.message_id} to {self.chat_id}")
            return ref

        if kind is EffectKind.EDIT_MESSAGE:
            await self.transport.edit_message(target, msg.content, markdown=msg.markdown)
            return target

        if kind is EffectKind.SEND_VOICE:
            return await self.transport.send_voice(self.chat_id, msg.data or b"", caption=msg.content)

        if kind is EffectKind.SEND_DOCUMENT:
            return await self.transport.send_document(
                self.chat_id, msg.data or b"", filename=msg.filename or "document", caption=msg.content
            )

        if kind is EffectKind.DELETE_MESSAGE:
            if target is None:
                return None
            if target == self.last_sent:
                self.last_sent = None
            await self.transport.delete_message(target)
            return target

        raise ValueError(f"Unknown effect kind: {msg.kind}")


class MailboxRegistry:
    """
    信箱注册表 - 按聊天 ID 惰性创建并持有所有用户的信箱。

    lookup-or-create 在锁内完成，保证同一个聊天 ID 永远只有一个信箱
    （也就只有一个消费协程）。注册表作为显式依赖注入到编排器中。
    """

    def __init__(self, transport: BaseChannel, max_retries: int = 2, retry_delay: float = 1.0):
        self.transport = transport
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._mailboxes: dict[int, Mailbox] = {}
        self._lock = asyncio.Lock()

    async def get(self, chat_id: int) -> Mailbox:
        """获取（必要时创建并启动）某个聊天的信箱。"""
        async with self._lock:
            box = self._mailboxes.get(chat_id)
            if box is None:
                box = Mailbox(chat_id, self.transport, self.max_retries, self.retry_delay)
                self._mailboxes[chat_id] = box
                logger.debug(f"Mailbox created for {chat_id}")
            box.start()
            return box

    async def post(self, msg: OutboundMessage) -> None:
        """把效果投递到目标聊天的信箱，不等待结果。"""
        (await self.get(msg.chat_id)).post(msg)

    async def deliver(self, msg: OutboundMessage) -> MessageRef | None:
        """把效果投递到目标聊天的信箱，并等待投递回执。"""
        box = await self.get(msg.chat_id)
        return await box.deliver(msg)

    async def join_all(self) -> None:
        """等待所有信箱清空。"""
        for box in list(self._mailboxes.values()):
            await box.join()

    async def stop_all(self) -> None:
        """停止所有信箱的消费协程。"""
        for box in list(self._mailboxes.values()):
            await box.stop()

    def __contains__(self, chat_id: int) -> bool:
        return chat_id in self._mailboxes

    def __len__(self) -> int:
        return len(self._mailboxes)
