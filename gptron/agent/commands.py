"""
命令路由模块 - 已通过访问门的用户事件在这里被分派。

每个事件的第一个词如果是已知命令（区分大小写），就交给对应的处理器；
否则当作对话输入：只有当前屏幕是 SELECTED 且选中的会话已经选好
模型和人设时才会发给模型，其他情况重新显示当前菜单。

处理器只修改内存中的 User / Conversation，并把出站效果投递到用户信箱；
持久化和异常到回复的转换由 AgentLoop 统一完成。

【命令一览】
  /ping                              任意状态
  /whitelist <id> /blacklist <id>    仅管理员
  /users_list /global_stats          仅管理员
  /list /new /select /back /home     任意状态
  /stats                             MAIN：用户统计；SELECTED：会话统计
  /summarize /delete /generate_report  仅 SELECTED
  /model <name>                      仅 SELECT_MODEL
  /ask <personality>                 仅 SELECT_PERSONALITY
"""

from __future__ import annotations

from typing import Awaitable, Callable

from loguru import logger

from gptron.agent.exchange import ExchangeService
from gptron.bus.events import InboundMessage, MessageRef, OutboundMessage
from gptron.bus.mailbox import MailboxRegistry
from gptron.catalog.models import MODELS, ModelCatalog
from gptron.catalog.personalities import PERSONALITIES, PersonalityCatalog
from gptron.errors import AccessDenied, InvalidInput, NotFound, ServiceError
from gptron.session import menu
from gptron.session.conversation import Conversation
from gptron.session.manager import SessionManager
from gptron.session.menu import MenuState
from gptron.session.usage import UsageLedger
from gptron.session.user import User, UserStatus
from gptron.utils.helpers import parse_chat_id, parse_uuid

USAGE_LIMIT_REACHED = "I'm sorry Dave, I'm afraid I can't do that.\n(You have reached your usage limit)"
UNAVAILABLE_ACTION = "Select an action from the available ones"
ADMIN_ONLY = "Only admins can use this command"

ANALYZING = "Analyzing message..."
TRANSCRIBING = "Transcribing message..."
SENDING = "Sending message to the model..."
GENERATING_TITLE = "Generating title..."
OBTAINING_AUDIO = "Obtaining audio..."
SUMMARIZING = "Generating summary..."

Handler = Callable[[User, InboundMessage], Awaitable[None]]


class Progress:
    """
    一条逐步更新的进度消息。

    第一次 update() 发送新消息并等待回执拿到 MessageRef，
    之后的 update() / remove() 都显式作用在这条消息上。
    """

    def __init__(self, mailboxes: MailboxRegistry, chat_id: int):
        self.mailboxes = mailboxes
        self.chat_id = chat_id
        self.ref: MessageRef | None = None

    async def update(self, text: str, markdown: bool = False) -> None:
        if self.ref is None:
            # 投递失败时 ref 仍为 None，下一次更新会重新发送
            self.ref = await self.mailboxes.deliver(
                OutboundMessage(chat_id=self.chat_id, content=text, markdown=markdown)
            )
            return
        await self.mailboxes.post(OutboundMessage.edit(self.chat_id, text, markdown=markdown, target=self.ref))

    async def remove(self) -> None:
        if self.ref is not None:
            await self.mailboxes.post(OutboundMessage.delete(self.chat_id, target=self.ref))
            self.ref = None


class CommandRouter:
    """
    命令路由器。

    属性:
        sessions: 用户表
        mailboxes: 信箱注册表（所有出站效果都经由它投递）
        exchange: 外部服务调用层
        ledger: 用量账本
    """

    def __init__(
        self,
        sessions: SessionManager,
        mailboxes: MailboxRegistry,
        exchange: ExchangeService,
        ledger: UsageLedger,
        models: ModelCatalog = MODELS,
        personalities: PersonalityCatalog = PERSONALITIES,
    ):
        self.sessions = sessions
        self.mailboxes = mailboxes
        self.exchange = exchange
        self.ledger = ledger
        self.models = models
        self.personalities = personalities
        self._handlers: dict[str, Handler] = {
            "/ping": self._ping,
            "/whitelist": self._whitelist,
            "/blacklist": self._blacklist,
            "/users_list": self._users_list,
            "/global_stats": self._global_stats,
            "/list": self._list,
            "/select": self._select,
            "/new": self._new,
            "/back": self._back,
            "/home": self._home,
            "/stats": self._stats,
            "/summarize": self._summarize,
            "/delete": self._delete,
            "/generate_report": self._generate_report,
            "/model": self._model,
            "/ask": self._ask,
        }

    @property
    def commands(self) -> list[str]:
        return list(self._handlers)

    async def dispatch(self, user: User, msg: InboundMessage) -> None:
        if msg.is_voice:
            await self._converse(user, msg)
            return
        words = msg.content.split(maxsplit=1)
        handler = self._handlers.get(words[0]) if words else None
        if handler is None:
            await self._converse(user, msg)
            return
        logger.info(f"New {words[0]} command from {user.id}")
        await handler(user, msg)

    # ------------------------------------------------------------------
    # 回复辅助
    # ------------------------------------------------------------------

    async def _send(self, chat_id: int, text: str, markdown: bool = False) -> None:
        await self.mailboxes.post(OutboundMessage(chat_id=chat_id, content=text, markdown=markdown))

    async def show_menu(self, user: User, chat_id: int, notice: str | None = None) -> None:
        """发送当前屏幕的提示和键盘，可在前面附加一段通知。"""
        prompt, keyboard = menu.render(user, self.models, self.personalities)
        text = f"{notice}\n\n{prompt}" if notice else prompt
        await self.mailboxes.post(OutboundMessage(chat_id=chat_id, content=text, keyboard=keyboard))

    async def _goto(self, user: User, chat_id: int, state: MenuState, notice: str | None = None) -> None:
        user.menu_state = state
        user.touch()
        await self.show_menu(user, chat_id, notice)

    async def _redisplay(self, user: User, chat_id: int) -> None:
        await self.show_menu(user, chat_id, UNAVAILABLE_ACTION)

    def _require_admin(self, user: User) -> None:
        if not user.is_privileged:
            logger.warning(f"User {user.id} tried to use an admin command")
            raise AccessDenied(ADMIN_ONLY)

    def _check_usage_limit(self, user: User) -> None:
        if self.ledger.has_reached_usage_limit(user):
            logger.warning(f"User {user.id} has reached the usage limit")
            raise AccessDenied(USAGE_LIMIT_REACHED)

    def _in_selected(self, user: User) -> Conversation | None:
        """SELECTED 屏幕上且会话已就绪时返回选中的会话，否则返回 None。"""
        conv = user.selected
        if user.menu_state is not MenuState.SELECTED or conv is None or not conv.is_ready:
            return None
        return conv

    # ------------------------------------------------------------------
    # 通用命令
    # ------------------------------------------------------------------

    async def _ping(self, user: User, msg: InboundMessage) -> None:
        await self._send(msg.chat_id, "pong")

    async def _back(self, user: User, msg: InboundMessage) -> None:
        await self._goto(user, msg.chat_id, menu.back(user.menu_state))

    async def _home(self, user: User, msg: InboundMessage) -> None:
        await self._goto(user, msg.chat_id, MenuState.MAIN)

    async def _list(self, user: User, msg: InboundMessage) -> None:
        if not user.active_conversations():
            await self.show_menu(user, msg.chat_id, "No conversations found, start a new one")
            return
        await self._goto(user, msg.chat_id, MenuState.LIST)

    async def _new(self, user: User, msg: InboundMessage) -> None:
        self._check_usage_limit(user)
        conv_id = user.new_conversation()
        user.select(conv_id)
        logger.info(f"User {user.id} created conversation {conv_id}")
        await self._goto(user, msg.chat_id, menu.refine(user), "New conversation created")

    async def _select(self, user: User, msg: InboundMessage) -> None:
        self._check_usage_limit(user)
        conv_id = parse_uuid(msg.content)
        conv = user.select(conv_id)
        await self._goto(user, msg.chat_id, menu.refine(user), f"Conversation {conv.display_title} selected")

    async def _stats(self, user: User, msg: InboundMessage) -> None:
        conv = user.selected
        if user.menu_state is MenuState.SELECTED and conv is not None:
            await self._send(msg.chat_id, self.ledger.conversation_stats(conv))
        else:
            await self._send(msg.chat_id, self.ledger.user_stats(user))

    # ------------------------------------------------------------------
    # 会话配置
    # ------------------------------------------------------------------

    async def _model(self, user: User, msg: InboundMessage) -> None:
        conv = user.selected
        if user.menu_state is not MenuState.SELECT_MODEL or conv is None:
            await self._redisplay(user, msg.chat_id)
            return
        name = msg.content.partition(" ")[2].strip()
        spec = self.models.find(name)
        if spec is None or not spec.available_to(user.is_privileged):
            raise NotFound(f"I'm afraid the model {name} is not available")
        conv.set_model(spec.name)
        await self._goto(user, msg.chat_id, menu.refine(user), f"Model {spec.name} selected")

    async def _ask(self, user: User, msg: InboundMessage) -> None:
        conv = user.selected
        if user.menu_state is not MenuState.SELECT_PERSONALITY or conv is None:
            await self._redisplay(user, msg.chat_id)
            return
        name = msg.content.partition(" ")[2].strip()
        personality = self.personalities.find(name)
        if personality is None:
            raise NotFound(f"Personality {name} not found")
        conv.set_personality(personality)
        await self._goto(
            user, msg.chat_id, menu.refine(user), f"Personality {personality.name} selected, you can start chatting"
        )

    # ------------------------------------------------------------------
    # SELECTED 屏幕上的命令
    # ------------------------------------------------------------------

    async def _summarize(self, user: User, msg: InboundMessage) -> None:
        conv = self._in_selected(user)
        if conv is None:
            await self._redisplay(user, msg.chat_id)
            return
        if not conv.has_exchanges:
            raise InvalidInput("There is nothing to summarize yet")
        progress = Progress(self.mailboxes, msg.chat_id)
        await progress.update(SUMMARIZING)
        try:
            summary = await self.exchange.summarize(user, conv)
        except ServiceError as e:
            await progress.update(str(e))
            return
        await progress.update(summary, markdown=True)

    async def _generate_report(self, user: User, msg: InboundMessage) -> None:
        conv = self._in_selected(user)
        if conv is None:
            await self._redisplay(user, msg.chat_id)
            return
        await self.mailboxes.post(self._report(msg.chat_id, conv))

    def _report(self, chat_id: int, conv: Conversation) -> OutboundMessage:
        return OutboundMessage.document(
            chat_id,
            conv.generate_report(self.models).encode("utf-8"),
            filename=conv.report_filename,
            caption=f"Summary of conversation {conv.id}",
        )

    async def _delete(self, user: User, msg: InboundMessage) -> None:
        """先发送会话报告，确认送达后再软删除。"""
        conv = self._in_selected(user)
        if conv is None:
            await self._redisplay(user, msg.chat_id)
            return
        ref = await self.mailboxes.deliver(self._report(msg.chat_id, conv))
        if ref is None:
            raise ServiceError("Could not send the conversation report, the conversation was not deleted")
        user.delete_conversation(conv.id)
        logger.info(f"User {user.id} deleted conversation {conv.id}")
        await self._goto(user, msg.chat_id, MenuState.MAIN, "Conversation deleted")

    # ------------------------------------------------------------------
    # 对话输入（文本 / 语音）
    # ------------------------------------------------------------------

    async def _converse(self, user: User, msg: InboundMessage) -> None:
        conv = self._in_selected(user)
        if conv is None or not (msg.is_voice or msg.content.strip()):
            await self._redisplay(user, msg.chat_id)
            return
        self._check_usage_limit(user)
        chat_id = msg.chat_id
        progress = Progress(self.mailboxes, chat_id)

        if msg.is_voice:
            await progress.update(ANALYZING)
            await progress.update(TRANSCRIBING)
            try:
                text = await self.exchange.transcribe(self.mailboxes.transport, msg.voice)
            except ServiceError as e:
                await progress.update(str(e))
                return
            if not text.strip():
                await progress.update("I couldn't understand the message")
                return
            await progress.update(SENDING)
        else:
            text = msg.content
            await progress.update(SENDING)

        try:
            reply = await self.exchange.complete(user, conv, text)
        except ServiceError as e:
            await progress.update(str(e))
            return

        if conv.title is None:
            await progress.update(GENERATING_TITLE)
            await self.exchange.generate_title(user, conv)

        if msg.is_voice and self.exchange.can_speak:
            await progress.update(OBTAINING_AUDIO)
            try:
                audio = await self.exchange.synthesize(reply)
            except ServiceError as e:
                await progress.update(f"{reply}\n\n({e})")
                return
            await self.mailboxes.post(OutboundMessage.voice(chat_id, audio, caption=reply))
            await progress.remove()
            return

        await progress.update(reply, markdown=True)

    # ------------------------------------------------------------------
    # 管理员命令
    # ------------------------------------------------------------------

    async def _whitelist(self, user: User, msg: InboundMessage) -> None:
        await self._set_status(user, msg, UserStatus.WHITELISTED)

    async def _blacklist(self, user: User, msg: InboundMessage) -> None:
        await self._set_status(user, msg, UserStatus.BLACKLISTED)

    async def _set_status(self, admin: User, msg: InboundMessage, status: UserStatus) -> None:
        """
        修改另一个用户的访问状态（幂等）。

        目标用户的记录在其自己的锁内修改。
        """
        self._require_admin(admin)
        target_id = parse_chat_id(msg.content)
        if target_id == admin.id or target_id == self.sessions.admin_id:
            raise InvalidInput("You cannot change the status of an admin")
        if self.sessions.get(target_id) is None:
            raise NotFound(f"User {target_id} not found")

        async with self.sessions.lock(target_id):
            target = self.sessions.get(target_id)
            if target.status is status:
                await self._send(msg.chat_id, f"User {target_id} already {status.value}")
                return
            target.status = status
            target.touch()

        logger.info(f"Admin {admin.id} changed user {target_id} to {status.value}")
        await self._send(msg.chat_id, f"User {target_id} {status.value}")
        if status is UserStatus.WHITELISTED:
            await self.show_menu(target, target_id, "You have been whitelisted")
        else:
            await self._send(target_id, "You have been blacklisted")

    async def _users_list(self, user: User, msg: InboundMessage) -> None:
        self._require_admin(user)
        await self._send(msg.chat_id, self.ledger.users_list(self.sessions.all()))

    async def _global_stats(self, user: User, msg: InboundMessage) -> None:
        self._require_admin(user)
        await self._send(msg.chat_id, self.ledger.global_stats(self.sessions.all()))
