"""
Telegram 渠道实现模块 - 基于 python-telegram-bot 库的长轮询模式。

【核心功能】
1. 接收用户的文本消息、语音消息和内联按钮回调，统一发布到消息总线
2. 执行信箱的出站操作：发送/编辑/删除消息，发送语音和文档
3. 将 Markdown 格式的回复转换为 Telegram 兼容的 HTML，解析失败时回退纯文本
4. 把平台无关的 Keyboard 转换为 ReplyKeyboardMarkup / InlineKeyboardMarkup

【消息处理流程】
1. Telegram 服务器 → python-telegram-bot 库接收更新
2. _on_message() / _on_callback() 解析更新
3. _handle_message()（继承自 BaseChannel）发布到消息总线
4. 编排器处理后把效果投递到用户信箱，信箱调用本类的出站方法
"""

from __future__ import annotations

import asyncio
import re

from loguru import logger
from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    KeyboardButton,
    ReplyKeyboardMarkup,
    Update,
)
from telegram.error import BadRequest
from telegram.ext import Application, CallbackQueryHandler, ContextTypes, MessageHandler, filters
from telegram.request import HTTPXRequest

from gptron.bus.events import Keyboard, MessageRef
from gptron.bus.queue import MessageBus
from gptron.channels.base import BaseChannel
from gptron.config.schema import TelegramConfig
from gptron.utils.helpers import truncate_string

# Telegram 对语音/文档说明文字的长度限制
CAPTION_LIMIT = 1024


def _markdown_to_telegram_html(text: str) -> str:
    """
    将 Markdown 格式文本转换为 Telegram 兼容的 HTML。

    Telegram 的 HTML 支持有限（仅支持 <b>、<i>、<code>、<pre>、<a> 等），
    因此采用"保护-转换-恢复"三步法：
    1. 先将代码块和行内代码提取并用占位符替换
    2. 对剩余文本进行 Markdown → HTML 转换
    3. 最后将代码块恢复并包裹在 HTML 标签中
    """
    if not text:
        return ""

    code_blocks: list[str] = []

    def save_code_block(m: re.Match) -> str:
        code_blocks.append(m.group(1))
        return f"\x00CB{len(code_blocks) - 1}\x00"

    text = re.sub(r'```[\w]*\n?([\s\S]*?)```', save_code_block, text)

    inline_codes: list[str] = []

    def save_inline_code(m: re.Match) -> str:
        inline_codes.append(m.group(1))
        return f"\x00IC{len(inline_codes) - 1}\x00"

    text = re.sub(r'`([^`]+)`', save_inline_code, text)

    # 标题和引用：Telegram 不支持，转为纯文本
    text = re.sub(r'^#{1,6}\s+(.+)$', r'\1', text, flags=re.MULTILINE)
    text = re.sub(r'^>\s*(.*)$', r'\1', text, flags=re.MULTILINE)

    # 转义 HTML 特殊字符（必须在其他 HTML 标签生成之前）
    text = text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")

    text = re.sub(r'\[([^\]]+)\]\(([^)]+)\)', r'<a href="\2">\1</a>', text)
    text = re.sub(r'\*\*(.+?)\*\*', r'<b>\1</b>', text)
    text = re.sub(r'__(.+?)__', r'<b>\1</b>', text)
    text = re.sub(r'(?<![a-zA-Z0-9])_([^_]+)_(?![a-zA-Z0-9])', r'<i>\1</i>', text)
    text = re.sub(r'~~(.+?)~~', r'<s>\1</s>', text)
    text = re.sub(r'^[-*]\s+', '• ', text, flags=re.MULTILINE)

    for i, code in enumerate(inline_codes):
        escaped = code.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
        text = text.replace(f"\x00IC{i}\x00", f"<code>{escaped}</code>")

    for i, code in enumerate(code_blocks):
        escaped = code.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
        text = text.replace(f"\x00CB{i}\x00", f"<pre><code>{escaped}</code></pre>")

    return text


def _reply_markup(keyboard: Keyboard | None) -> ReplyKeyboardMarkup | InlineKeyboardMarkup | None:
    """把平台无关的 Keyboard 转换为 Telegram 原生键盘。"""
    if keyboard is None or not keyboard.rows:
        return None
    if keyboard.inline:
        return InlineKeyboardMarkup([
            [InlineKeyboardButton(b.text, callback_data=b.callback_data or b.text) for b in row]
            for row in keyboard.rows
        ])
    return ReplyKeyboardMarkup(
        [[KeyboardButton(b.text) for b in row] for row in keyboard.rows],
        resize_keyboard=True,
    )


def _not_modified(e: BadRequest) -> bool:
    """编辑内容与原消息相同时 Telegram 返回的错误，不算失败。"""
    return "not modified" in str(e).lower()


class TelegramChannel(BaseChannel):
    """
    Telegram 渠道实现 - 基于长轮询（Long Polling）模式。

    属性:
        config: Telegram 渠道配置（token、代理）
        _app: python-telegram-bot 的 Application 实例
    """

    name = "telegram"

    def __init__(self, config: TelegramConfig, bus: MessageBus):
        super().__init__(config, bus)
        self.config: TelegramConfig = config
        self._app: Application | None = None

    async def start(self) -> None:
        """
        启动 Telegram 机器人（长轮询模式）。

        启动流程：
        1. 构建 Application 实例并配置连接池
        2. 注册消息处理器和回调处理器
        3. 初始化并开始轮询
        4. 进入主循环等待消息
        """
        if not self.config.token:
            logger.error("Telegram bot token not configured")
            return

        self._running = True

        req = HTTPXRequest(connection_pool_size=16, pool_timeout=5.0, connect_timeout=30.0, read_timeout=30.0)
        builder = Application.builder().token(self.config.token).request(req).get_updates_request(req)
        if self.config.proxy:
            builder = builder.proxy(self.config.proxy).get_updates_proxy(self.config.proxy)
        self._app = builder.build()
        self._app.add_error_handler(self._on_error)

        # 命令也是文本：全部转发给编排器，由命令路由统一处理
        self._app.add_handler(MessageHandler(filters.TEXT | filters.VOICE, self._on_message))
        self._app.add_handler(CallbackQueryHandler(self._on_callback))

        logger.info("Starting Telegram bot (polling mode)...")

        await self._app.initialize()
        await self._app.start()

        bot_info = await self._app.bot.get_me()
        logger.info(f"Telegram bot @{bot_info.username} connected")

        await self._app.updater.start_polling(
            allowed_updates=["message", "callback_query"],
            drop_pending_updates=True
        )

        while self._running:
            await asyncio.sleep(1)

    async def stop(self) -> None:
        """停止轮询、停止应用并释放资源。"""
        self._running = False

        if self._app:
            logger.info("Stopping Telegram bot...")
            await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
            self._app = None

    # ------------------------------------------------------------------
    # 出站（由信箱调用，异常一律向上抛出）
    # ------------------------------------------------------------------

    def _bot(self):
        if not self._app:
            raise RuntimeError("Telegram bot not running")
        return self._app.bot

    async def send_message(
        self,
        chat_id: int,
        text: str,
        keyboard: Keyboard | None = None,
        markdown: bool = False,
    ) -> MessageRef:
        bot = self._bot()
        markup = _reply_markup(keyboard)
        if markdown:
            try:
                sent = await bot.send_message(
                    chat_id=chat_id,
                    text=_markdown_to_telegram_html(text),
                    parse_mode="HTML",
                    reply_markup=markup,
                )
                return MessageRef(chat_id, sent.message_id)
            except BadRequest as e:
                # HTML 解析失败时回退为纯文本发送
                logger.warning(f"HTML parse failed, falling back to plain text: {e}")
        sent = await bot.send_message(chat_id=chat_id, text=text, reply_markup=markup)
        return MessageRef(chat_id, sent.message_id)

    async def edit_message(
        self,
        ref: MessageRef,
        text: str,
        keyboard: Keyboard | None = None,
        markdown: bool = False,
    ) -> None:
        bot = self._bot()
        markup = _reply_markup(keyboard) if keyboard and keyboard.inline else None
        try:
            if markdown:
                try:
                    await bot.edit_message_text(
                        text=_markdown_to_telegram_html(text),
                        chat_id=ref.chat_id,
                        message_id=ref.message_id,
                        parse_mode="HTML",
                        reply_markup=markup,
                    )
                    return
                except BadRequest as e:
                    if _not_modified(e):
                        return
                    logger.warning(f"HTML parse failed, falling back to plain text: {e}")
            await bot.edit_message_text(
                text=text,
                chat_id=ref.chat_id,
                message_id=ref.message_id,
                reply_markup=markup,
            )
        except BadRequest as e:
            if not _not_modified(e):
                raise

    async def delete_message(self, ref: MessageRef) -> None:
        await self._bot().delete_message(chat_id=ref.chat_id, message_id=ref.message_id)

    async def send_voice(self, chat_id: int, data: bytes, caption: str = "") -> MessageRef:
        sent = await self._bot().send_voice(
            chat_id=chat_id,
            voice=data,
            caption=truncate_string(caption, CAPTION_LIMIT) or None,
        )
        return MessageRef(chat_id, sent.message_id)

    async def send_document(self, chat_id: int, data: bytes, filename: str, caption: str = "") -> MessageRef:
        sent = await self._bot().send_document(
            chat_id=chat_id,
            document=data,
            filename=filename,
            caption=truncate_string(caption, CAPTION_LIMIT) or None,
        )
        return MessageRef(chat_id, sent.message_id)

    async def download_file(self, file_id: str) -> bytes:
        file = await self._bot().get_file(file_id)
        return bytes(await file.download_as_bytearray())

    # ------------------------------------------------------------------
    # 入站
    # ------------------------------------------------------------------

    async def _on_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """处理文本和语音消息。语音只传递 file_id，下载由编排器在需要时进行。"""
        if not update.message or not update.effective_user:
            return

        message = update.message
        user = update.effective_user
        voice = message.voice.file_id if message.voice else None

        await self._handle_message(
            sender_id=user.id,
            chat_id=message.chat_id,
            content=message.text or message.caption or "",
            voice=voice,
            metadata={
                "message_id": message.message_id,
                "username": user.username,
                "first_name": user.first_name,
            },
        )

    async def _on_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """处理内联按钮回调：callback_data 作为命令文本转发。"""
        query = update.callback_query
        if not query or not query.data:
            return
        await query.answer()

        chat_id = query.message.chat.id if query.message else query.from_user.id
        await self._handle_message(
            sender_id=query.from_user.id,
            chat_id=chat_id,
            content=query.data,
            metadata={"callback_query_id": query.id, "username": query.from_user.username},
        )

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        """全局错误处理器 - 记录轮询/处理器中的异常。"""
        logger.error(f"Telegram error: {context.error}")
