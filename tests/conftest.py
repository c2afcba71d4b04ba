"""
Shared fakes and fixtures.

FakeTransport records every outbound operation instead of talking to Telegram;
FakeProvider / FakeTranscriber / FakeSpeech replace the external services.
Harness wires them into a real AgentLoop so tests drive the bot event by event.
"""
import asyncio
from dataclasses import dataclass

import pytest

from gptron.agent.exchange import ExchangeService
from gptron.agent.loop import AgentLoop
from gptron.bus.events import InboundMessage, Keyboard, MessageRef
from gptron.bus.mailbox import MailboxRegistry
from gptron.bus.queue import MessageBus
from gptron.channels.base import BaseChannel
from gptron.errors import ServiceError
from gptron.providers.base import LLMProvider, LLMResponse
from gptron.session.manager import SessionManager
from gptron.session.usage import UsageLedger

ADMIN_ID = 1


@dataclass
class Call:
    kind: str
    chat_id: int
    text: str = ""
    message_id: int | None = None
    keyboard: Keyboard | None = None
    data: bytes | None = None
    filename: str | None = None


class FakeTransport(BaseChannel):
    """Records outbound operations; can be told to fail the next N calls."""

    name = "fake"

    def __init__(self, bus: MessageBus | None = None):
        super().__init__(None, bus or MessageBus())
        self.calls: list[Call] = []
        self.files: dict[str, bytes] = {}
        self.fail_times = 0
        self.delay = 0.0
        self._next_id = 100

    async def _io(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("transport down")

    def _new_ref(self, chat_id: int) -> MessageRef:
        self._next_id += 1
        return MessageRef(chat_id, self._next_id)

    async def start(self) -> None:
        self._running = True

    async def stop(self) -> None:
        self._running = False

    async def send_message(self, chat_id, text, keyboard=None, markdown=False):
        await self._io()
        ref = self._new_ref(chat_id)
        self.calls.append(Call("send", chat_id, text, ref.message_id, keyboard))
        return ref

    async def edit_message(self, ref, text, keyboard=None, markdown=False):
        await self._io()
        self.calls.append(Call("edit", ref.chat_id, text, ref.message_id))

    async def delete_message(self, ref):
        await self._io()
        self.calls.append(Call("delete", ref.chat_id, message_id=ref.message_id))

    async def send_voice(self, chat_id, data, caption=""):
        await self._io()
        ref = self._new_ref(chat_id)
        self.calls.append(Call("voice", chat_id, caption, ref.message_id, data=data))
        return ref

    async def send_document(self, chat_id, data, filename, caption=""):
        await self._io()
        ref = self._new_ref(chat_id)
        self.calls.append(Call("document", chat_id, caption, ref.message_id, data=data, filename=filename))
        return ref

    async def download_file(self, file_id):
        await self._io()
        return self.files.get(file_id, b"voice-bytes")

    def for_chat(self, chat_id: int) -> list[Call]:
        return [c for c in self.calls if c.chat_id == chat_id]

    def texts(self, chat_id: int) -> list[str]:
        return [c.text for c in self.for_chat(chat_id) if c.kind in ("send", "edit")]

    def last_text(self, chat_id: int) -> str:
        return self.texts(chat_id)[-1]


class FakeProvider(LLMProvider):
    """
    Replies from a script; an Exception in the script is raised instead.
    Tracks how many chats are in flight at once.
    """

    def __init__(self, script=None, usage=(10, 20), delay: float = 0.0):
        super().__init__()
        self.script = list(script or [])
        self.usage = usage
        self.delay = delay
        self.calls: list[tuple[str, list[dict]]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def chat(self, messages, model, max_tokens=None, temperature=0.7):
        self.calls.append((model, messages))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            item = self.script.pop(0) if self.script else "Hi there"
            if isinstance(item, Exception):
                raise item
            prompt, completion = self.usage
            return LLMResponse(
                content=item,
                usage={"prompt_tokens": prompt, "completion_tokens": completion, "total_tokens": prompt + completion},
            )
        finally:
            self.in_flight -= 1


class FakeTranscriber:
    def __init__(self, text: str = "Hello from voice", fail: bool = False):
        self.text = text
        self.fail = fail
        self.received: list[bytes] = []

    async def transcribe(self, audio: bytes, filename: str = "voice.ogg") -> str:
        self.received.append(audio)
        if self.fail:
            raise ServiceError("Error transcribing the message: boom")
        return self.text


class FakeSpeech:
    enabled = True

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.spoken: list[str] = []

    async def synthesize(self, text: str) -> bytes:
        self.spoken.append(text)
        if self.fail:
            raise ServiceError("Speech synthesis failed")
        return b"mp3-bytes"


class Harness:
    """A fully wired bot with fake collaborators."""

    def __init__(
        self, data_dir, provider=None, transcriber=None, speech=None, limit: float = 1.0, timeout: float = 5.0
    ):
        self.bus = MessageBus()
        self.transport = FakeTransport(self.bus)
        self.mailboxes = MailboxRegistry(self.transport, max_retries=1, retry_delay=0)
        self.sessions = SessionManager(data_dir, admin_id=ADMIN_ID)
        self.provider = provider or FakeProvider()
        self.ledger = UsageLedger(limit=limit)
        self.exchange = ExchangeService(
            self.provider,
            self.ledger,
            transcriber=transcriber,
            speech=speech,
            timeout=timeout,
        )
        self.loop = AgentLoop(self.bus, self.sessions, self.mailboxes, self.exchange, self.ledger)

    async def say(self, sender: int, text: str = "", voice: str | None = None) -> None:
        """Process one event from `sender` and wait until every mailbox is drained."""
        await self.loop.process(InboundMessage(sender_id=sender, chat_id=sender, content=text, voice=voice))
        await self.mailboxes.join_all()

    def user(self, user_id: int):
        return self.sessions.get(user_id)

    async def whitelist(self, user_id: int) -> None:
        if self.sessions.get(ADMIN_ID) is None:
            await self.say(ADMIN_ID, "/start")
        await self.say(user_id, "hi")
        await self.say(ADMIN_ID, f"/whitelist {user_id}")
        self.transport.calls.clear()

    async def ready_conversation(self, user_id: int, model: str = "gpt-3.5-turbo", personality: str = "Neutral"):
        await self.say(user_id, "/new")
        await self.say(user_id, f"/model {model}")
        await self.say(user_id, f"/ask {personality}")
        self.transport.calls.clear()
        return self.user(user_id).selected


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
async def mailboxes(transport):
    registry = MailboxRegistry(transport, max_retries=2, retry_delay=0)
    yield registry
    await registry.stop_all()


@pytest.fixture
async def harness(tmp_path):
    h = Harness(tmp_path)
    yield h
    await h.mailboxes.stop_all()


@pytest.fixture
async def make_harness(tmp_path):
    """Factory for harnesses with custom collaborators."""
    created: list[Harness] = []

    def _make(**kwargs) -> Harness:
        h = Harness(tmp_path, **kwargs)
        created.append(h)
        return h

    yield _make
    for h in created:
        await h.mailboxes.stop_all()
