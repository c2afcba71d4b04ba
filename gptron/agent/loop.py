"""
编排器主循环模块 - gptron 的核心处理引擎。

  渠道 → MessageBus → AgentLoop.run() → 每个事件一个任务 → process()
                                                      │
                        ┌─────────────────────────────┘
                        ▼
              获取该用户的锁（同一用户串行，不同用户并发）
                        │
              访问门：新用户 / 待审核 / 黑名单 / 白名单 / 管理员
                        │
              CommandRouter.dispatch() → 修改用户表 + 向信箱投递效果
                        │
              SessionManager.save_all()（整表覆盖写入）

【异常处理】
单个事件里抛出的任何异常都在 process() 内被捕获：
- GptronError：把 str(e) 作为回复发给用户
- 其他异常：记录完整堆栈，给用户一条通用的错误提示
无论哪种情况，主循环和信箱的消费协程都不会退出。

【Java 开发者类比】
- run() 类似于消息监听器（@KafkaListener），持续消费消息
- process() 里的按用户加锁类似于按 key 分区的单线程消费
"""

import asyncio

from loguru import logger

from gptron.agent.commands import CommandRouter
from gptron.agent.exchange import ExchangeService
from gptron.bus.events import InboundMessage, Keyboard, Button, OutboundMessage
from gptron.bus.mailbox import MailboxRegistry
from gptron.bus.queue import MessageBus
from gptron.catalog.models import MODELS, ModelCatalog
from gptron.catalog.personalities import PERSONALITIES, PersonalityCatalog
from gptron.errors import GptronError, PersistenceError
from gptron.session.manager import SessionManager
from gptron.session.usage import UsageLedger
from gptron.session.user import Access

AWAITING_REVIEW = "Your request to be whitelisted has been received, please wait for an admin to review it"
WELCOME_ADMIN = "Welcome back master"
UNREVIEWED_ACK = "👀"
BLACKLISTED_ACK = "💀"


class AgentLoop:
    """
    会话编排器。

    核心属性：
    - bus: 入站消息总线
    - sessions: 用户表（唯一所有者）
    - mailboxes: 出站信箱注册表
    - router: 命令路由器
    """

    def __init__(
        self,
        bus: MessageBus,
        sessions: SessionManager,
        mailboxes: MailboxRegistry,
        exchange: ExchangeService,
        ledger: UsageLedger,
        models: ModelCatalog = MODELS,
        personalities: PersonalityCatalog = PERSONALITIES,
    ):
        self.bus = bus
        self.sessions = sessions
        self.mailboxes = mailboxes
        self.router = CommandRouter(sessions, mailboxes, exchange, ledger, models, personalities)
        self._running = False
        self._tasks: set[asyncio.Task] = set()

    async def run(self) -> None:
        """
        持续从消息总线消费事件，为每个事件启动一个处理任务。

        通过 1 秒超时的 wait_for 实现可停止的轮询。
        """
        self._running = True
        logger.info("Agent loop started")

        while self._running:
            try:
                msg = await asyncio.wait_for(self.bus.consume_inbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            task = asyncio.create_task(self.process(msg), name=f"event-{msg.sender_id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def stop(self) -> None:
        """停止主循环（已经启动的事件任务会继续执行完）。"""
        self._running = False
        logger.info("Agent loop stopping")

    async def drain(self) -> None:
        """等待所有进行中的事件任务结束。"""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def process(self, msg: InboundMessage) -> None:
        """
        处理单个入站事件。

        在该用户的锁内完成访问门检查、命令处理和持久化。
        """
        async with self.sessions.lock(msg.sender_id):
            try:
                await self._handle(msg)
            except GptronError as e:
                logger.warning(f"{type(e).__name__} for {msg.sender_id}: {e}")
                await self._reply(msg.chat_id, str(e))
            except Exception as e:
                logger.exception(f"Error processing message from {msg.sender_id}: {e}")
                await self._reply(msg.chat_id, f"Sorry, I encountered an error: {e}")

            try:
                self.sessions.save_all()
            except PersistenceError as e:
                await self._reply(msg.chat_id, str(e))

    async def _reply(self, chat_id: int, text: str) -> None:
        await self.mailboxes.post(OutboundMessage(chat_id=chat_id, content=text))

    async def _handle(self, msg: InboundMessage) -> None:
        access = self.sessions.classify(msg.sender_id)

        if access is Access.NOT_FOUND:
            await self._on_new_user(msg)
            return
        if access is Access.UNREVIEWED:
            await self._reply(msg.chat_id, UNREVIEWED_ACK)
            return
        if access is Access.BLACKLISTED:
            await self._reply(msg.chat_id, BLACKLISTED_ACK)
            return

        await self.router.dispatch(self.sessions.get(msg.sender_id), msg)

    async def _on_new_user(self, msg: InboundMessage) -> None:
        """创建用户；普通用户收到等待审核的提示，同时通知管理员。"""
        user = self.sessions.create(msg.sender_id)

        if user.is_privileged:
            await self.router.show_menu(user, msg.chat_id, WELCOME_ADMIN)
            return

        await self._reply(msg.chat_id, AWAITING_REVIEW)

        admin_id = self.sessions.admin_id
        if not admin_id:
            logger.warning(f"No admin configured, user {user.id} cannot be reviewed")
            return
        username = msg.metadata.get("username")
        who = f"{user.id} (@{username})" if username else str(user.id)
        keyboard = Keyboard(
            rows=[[
                Button("Whitelist", callback_data=f"/whitelist {user.id}"),
                Button("Blacklist", callback_data=f"/blacklist {user.id}"),
            ]],
            inline=True,
        )
        await self.mailboxes.post(OutboundMessage(
            chat_id=admin_id,
            content=f"New user {who} requested access",
            keyboard=keyboard,
        ))
