"""
外部服务调用层 - 补全、标题、摘要、语音转写与语音合成。

这里的每一次外部调用都受 service_timeout 约束；超时与调用失败一样，
统一表现为 ServiceError。补全成功后立即在用量账本中记账。

【所有权】
调用方（命令路由）在持有该用户锁的情况下调用这里的方法，
因此在等待补全期间，会话不会被同一用户的其他事件修改。
对话的用户消息和助手消息只在补全成功后才一起追加，失败时会话保持原样。
"""

import asyncio
from typing import Awaitable, TypeVar

from loguru import logger

from gptron.agent.context import ContextBuilder
from gptron.channels.base import BaseChannel
from gptron.errors import ServiceError
from gptron.providers.base import LLMProvider, LLMResponse
from gptron.providers.speech import ElevenLabsSpeechProvider
from gptron.providers.transcription import WhisperTranscriptionProvider
from gptron.session.conversation import Conversation, Role
from gptron.session.usage import UsageLedger
from gptron.session.user import User
from gptron.utils.helpers import strip_title

T = TypeVar("T")


class ExchangeService:
    """
    对外部服务的有界调用。

    属性:
        provider: 补全服务
        ledger: 用量账本
        context: 上下文构建器
        transcriber: 语音转写服务（可选）
        speech: 语音合成服务（可选）
        timeout: 单次外部调用超时（秒）
    """

    def __init__(
        self,
        provider: LLMProvider,
        ledger: UsageLedger,
        context: ContextBuilder | None = None,
        transcriber: WhisperTranscriptionProvider | None = None,
        speech: ElevenLabsSpeechProvider | None = None,
        timeout: float = 120.0,
    ):
        self.provider = provider
        self.ledger = ledger
        self.context = context or ContextBuilder()
        self.transcriber = transcriber
        self.speech = speech
        self.timeout = timeout

    @property
    def can_speak(self) -> bool:
        """是否可以用语音回复。"""
        return self.speech is not None and self.speech.enabled

    async def bounded(self, awaitable: Awaitable[T], what: str) -> T:
        """等待外部调用，超时转换为 ServiceError。"""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"{what} timed out after {self.timeout}s")
            raise ServiceError(f"{what} timed out, please try again later") from None

    async def _chat(self, user: User, conversation: Conversation, messages: list[dict], what: str) -> LLMResponse:
        response = await self.bounded(self.provider.chat(messages, model=conversation.model), what)
        self.ledger.record(user, conversation, response.prompt_tokens, response.completion_tokens)
        logger.debug(
            f"{what} for {user.id} on {conversation.model}: "
            f"{response.prompt_tokens}+{response.completion_tokens} tokens"
        )
        return response

    async def complete(self, user: User, conversation: Conversation, text: str) -> str:
        """
        一次对话交换：发送历史 + 用户输入，追加用户消息与助手回复。

        异常:
            ServiceError: 补全失败或超时（会话不变）
        """
        messages = self.context.chat_messages(conversation, text)
        response = await self._chat(user, conversation, messages, "Completion")
        conversation.append(Role.USER, text)
        conversation.append(Role.ASSISTANT, response.content)
        return response.content

    async def generate_title(self, user: User, conversation: Conversation) -> str:
        """
        为会话生成标题。

        失败时退化为 "New Chat with <人设>"，不影响已经完成的对话交换。
        """
        title = ""
        try:
            response = await self._chat(
                user, conversation, self.context.title_messages(conversation), "Title generation"
            )
            title = strip_title(response.content)
        except ServiceError as e:
            logger.warning(f"Title generation failed for {conversation.id}: {e}")
        if not title:
            title = f"New Chat with {conversation.personality}"
        conversation.set_title(title)
        return title

    async def summarize(self, user: User, conversation: Conversation, n: int | None = None) -> str:
        """摘要最近 n 条消息。只记账，不修改会话内容。"""
        messages = self.context.summary_messages(conversation, n)
        response = await self._chat(user, conversation, messages, "Summary")
        return response.content

    async def transcribe(self, transport: BaseChannel, file_id: str) -> str:
        """下载语音文件并转写为文字。"""
        if self.transcriber is None:
            raise ServiceError("Voice messages are not supported")
        try:
            audio = await self.bounded(transport.download_file(file_id), "Download")
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Failed to download voice {file_id}: {e}")
            raise ServiceError(f"Error downloading the message: {e}") from e
        return await self.bounded(self.transcriber.transcribe(audio), "Transcription")

    async def synthesize(self, text: str) -> bytes:
        if not self.can_speak:
            raise ServiceError("Speech synthesis is not configured")
        return await self.bounded(self.speech.synthesize(text), "Speech synthesis")
