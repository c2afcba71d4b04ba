"""End-to-end tests for AgentLoop driven through the fake transport."""

import asyncio
from uuid import uuid4

from gptron.agent.commands import ADMIN_ONLY, SENDING, UNAVAILABLE_ACTION, USAGE_LIMIT_REACHED
from gptron.agent.loop import AWAITING_REVIEW, BLACKLISTED_ACK, UNREVIEWED_ACK, WELCOME_ADMIN
from gptron.bus.events import InboundMessage
from gptron.catalog.personalities import SYNTHESIZER
from gptron.errors import ServiceError
from gptron.session.conversation import Role
from gptron.session.menu import PROMPTS, MenuState
from gptron.session.user import UserStatus

from tests.conftest import ADMIN_ID, FakeProvider, FakeSpeech, FakeTranscriber

MAIN_PROMPT = PROMPTS[MenuState.MAIN]


class TestAccessGate:
    async def test_admin_first_contact(self, harness):
        await harness.say(ADMIN_ID, "/start")

        admin = harness.user(ADMIN_ID)
        assert admin.status is UserStatus.PRIVILEGED
        (call,) = harness.transport.for_chat(ADMIN_ID)
        assert call.text == f"{WELCOME_ADMIN}\n\n{MAIN_PROMPT}"
        assert "/users_list" in call.keyboard.labels()

    async def test_new_user_requests_access(self, harness):
        await harness.say(42, "hello")

        assert harness.user(42).status is UserStatus.UNREVIEWED
        assert harness.transport.texts(42) == [AWAITING_REVIEW]

        (notice,) = harness.transport.for_chat(ADMIN_ID)
        assert "42" in notice.text
        assert notice.keyboard.inline
        callbacks = [b.callback_data for row in notice.keyboard.rows for b in row]
        assert callbacks == ["/whitelist 42", "/blacklist 42"]

    async def test_username_in_admin_notice(self, harness):
        msg = InboundMessage(sender_id=42, chat_id=42, content="hi", metadata={"username": "dave"})
        await harness.loop.process(msg)
        await harness.mailboxes.join_all()
        assert harness.transport.last_text(ADMIN_ID) == "New user 42 (@dave) requested access"

    async def test_unreviewed_user_is_acknowledged(self, harness):
        await harness.say(42, "hello")
        await harness.say(42, "/new")
        assert harness.transport.texts(42) == [AWAITING_REVIEW, UNREVIEWED_ACK]
        assert harness.user(42).conversations == {}

    async def test_whitelist_is_idempotent(self, harness):
        await harness.say(ADMIN_ID, "/start")
        await harness.say(42, "hello")

        await harness.say(ADMIN_ID, "/whitelist 42")
        assert harness.user(42).status is UserStatus.WHITELISTED
        assert harness.transport.last_text(ADMIN_ID) == "User 42 whitelisted"
        assert harness.transport.last_text(42) == f"You have been whitelisted\n\n{MAIN_PROMPT}"

        await harness.say(ADMIN_ID, "/whitelist 42")
        assert harness.transport.last_text(ADMIN_ID) == "User 42 already whitelisted"
        assert harness.user(42).status is UserStatus.WHITELISTED

    async def test_blacklisted_user_is_ignored(self, harness):
        await harness.whitelist(42)
        await harness.say(ADMIN_ID, "/blacklist 42")
        assert harness.transport.last_text(42) == "You have been blacklisted"

        await harness.say(42, "/new")
        assert harness.transport.last_text(42) == BLACKLISTED_ACK
        assert harness.user(42).conversations == {}

    async def test_admin_cannot_change_own_status(self, harness):
        await harness.say(ADMIN_ID, "/start")
        await harness.say(ADMIN_ID, f"/blacklist {ADMIN_ID}")
        assert harness.transport.last_text(ADMIN_ID) == "You cannot change the status of an admin"
        assert harness.user(ADMIN_ID).status is UserStatus.PRIVILEGED

    async def test_status_change_argument_errors(self, harness):
        await harness.say(ADMIN_ID, "/start")

        await harness.say(ADMIN_ID, "/whitelist 999")
        assert harness.transport.last_text(ADMIN_ID) == "User 999 not found"

        await harness.say(ADMIN_ID, "/whitelist abc")
        assert harness.transport.last_text(ADMIN_ID) == "Invalid chat ID"

        await harness.say(ADMIN_ID, "/whitelist")
        assert harness.transport.last_text(ADMIN_ID) == "Invalid input"

    async def test_admin_commands_denied_to_regular_users(self, harness):
        await harness.whitelist(42)
        await harness.say(42, "/users_list")
        assert harness.transport.last_text(42) == ADMIN_ONLY
        await harness.say(42, "/whitelist 43")
        assert harness.transport.last_text(42) == ADMIN_ONLY

    async def test_admin_reports(self, harness):
        await harness.whitelist(42)
        await harness.say(ADMIN_ID, "/users_list")
        assert harness.transport.last_text(ADMIN_ID).startswith("Users list:")
        await harness.say(ADMIN_ID, "/global_stats")
        assert "Total users: 2" in harness.transport.last_text(ADMIN_ID)


class TestNavigation:
    async def test_ping(self, harness):
        await harness.whitelist(42)
        await harness.say(42, "/ping")
        assert harness.transport.last_text(42) == "pong"

    async def test_list_without_conversations(self, harness):
        await harness.whitelist(42)
        await harness.say(42, "/list")
        assert harness.transport.last_text(42) == f"No conversations found, start a new one\n\n{MAIN_PROMPT}"
        assert harness.user(42).menu_state is MenuState.MAIN

    async def test_new_conversation_asks_for_model(self, harness):
        await harness.whitelist(42)
        await harness.say(42, "/new")

        user = harness.user(42)
        assert user.menu_state is MenuState.SELECT_MODEL
        assert user.selected is not None
        call = harness.transport.for_chat(42)[-1]
        assert call.text == f"New conversation created\n\n{PROMPTS[MenuState.SELECT_MODEL]}"
        assert call.keyboard.labels() == ["/back", "/model gpt-3.5-turbo"]

    async def test_restricted_model_refused(self, harness):
        await harness.whitelist(42)
        await harness.say(42, "/new")
        await harness.say(42, "/model gpt-4")
        assert harness.transport.last_text(42) == "I'm afraid the model gpt-4 is not available"
        assert harness.user(42).selected.model is None
        assert harness.user(42).menu_state is MenuState.SELECT_MODEL

    async def test_admin_may_use_restricted_model(self, harness):
        await harness.say(ADMIN_ID, "/start")
        await harness.say(ADMIN_ID, "/new")
        await harness.say(ADMIN_ID, "/model gpt-4")
        assert harness.transport.last_text(ADMIN_ID) == (
            f"Model gpt-4 selected\n\n{PROMPTS[MenuState.SELECT_PERSONALITY]}"
        )

    async def test_unknown_personality(self, harness):
        await harness.whitelist(42)
        await harness.say(42, "/new")
        await harness.say(42, "/model gpt-3.5-turbo")
        await harness.say(42, "/ask Nobody")
        assert harness.transport.last_text(42) == "Personality Nobody not found"
        assert harness.user(42).menu_state is MenuState.SELECT_PERSONALITY

    async def test_commands_outside_their_screen_redisplay_menu(self, harness):
        await harness.whitelist(42)
        for command in ("/model gpt-3.5-turbo", "/ask Neutral", "/summarize", "/delete", "hello"):
            await harness.say(42, command)
            assert harness.transport.last_text(42) == f"{UNAVAILABLE_ACTION}\n\n{MAIN_PROMPT}"
        assert harness.user(42).conversations == {}

    async def test_back_and_home(self, harness):
        await harness.whitelist(42)
        await harness.ready_conversation(42)
        assert harness.user(42).menu_state is MenuState.SELECTED

        await harness.say(42, "/back")
        assert harness.user(42).menu_state is MenuState.LIST
        await harness.say(42, "/back")
        assert harness.user(42).menu_state is MenuState.MAIN

        await harness.say(42, "/list")
        await harness.say(42, "/home")
        assert harness.user(42).menu_state is MenuState.MAIN

    async def test_select_existing_conversation(self, harness):
        await harness.whitelist(42)
        conv = await harness.ready_conversation(42)
        await harness.say(42, "/home")
        await harness.say(42, f"/select {conv.id}")
        assert harness.user(42).menu_state is MenuState.SELECTED
        assert harness.transport.last_text(42).startswith(f"Conversation {conv.id} selected")

    async def test_select_with_title_in_label(self, harness):
        await harness.whitelist(42)
        conv = await harness.ready_conversation(42)
        conv.set_title("My chat")
        await harness.say(42, f"/select My chat {conv.id}")
        assert harness.transport.last_text(42).startswith("Conversation My chat selected")

    async def test_select_invalid_or_deleted_keeps_selection(self, harness):
        await harness.whitelist(42)
        conv = await harness.ready_conversation(42)
        user = harness.user(42)
        other = user.new_conversation()
        user.delete_conversation(other)

        await harness.say(42, "/select not-a-uuid")
        assert harness.transport.last_text(42) == "Invalid conversation ID"

        missing = uuid4()
        await harness.say(42, f"/select {missing}")
        assert harness.transport.last_text(42) == f"Conversation {missing} not found"

        await harness.say(42, f"/select {other}")
        assert harness.transport.last_text(42) == f"Conversation {other} not found"

        assert user.selected_id == conv.id
        assert user.menu_state is MenuState.SELECTED

    async def test_stats(self, harness):
        await harness.whitelist(42)
        await harness.ready_conversation(42)
        await harness.say(42, "/stats")
        assert harness.transport.last_text(42).startswith("Conversation:")
        await harness.say(42, "/home")
        await harness.say(42, "/stats")
        assert harness.transport.last_text(42).startswith("Global statistics:")

    async def test_state_stays_consistent_across_navigation(self, harness):
        await harness.whitelist(42)
        user = harness.user(42)
        commands = [
            "/new", "/back", "/list", "/home", "/new", "/model gpt-3.5-turbo",
            "/back", "/select {first}", "/model gpt-3.5-turbo", "/ask Neutral", "/delete",
            "/list", "/select {first}", "/summarize", "/home", "/stats", "hello",
        ]
        first = None
        for command in commands:
            await harness.say(42, command.format(first=first))
            if first is None and user.conversations:
                first = next(iter(user.conversations))
            if user.menu_state is MenuState.SELECTED:
                assert user.selected is not None
                assert user.selected.is_ready
            if user.selected_id is not None:
                assert not user.conversations[user.selected_id].is_deleted


class TestExchange:
    async def test_first_exchange_generates_title(self, make_harness):
        h = make_harness(provider=FakeProvider(script=["Hi there", '"Greeting Chat"', "Second reply"]))
        await h.whitelist(42)
        conv = await h.ready_conversation(42)

        await h.say(42, "Hello")

        assert [m.role for m in conv.messages] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
        assert conv.messages[1].content == "Hello"
        assert conv.messages[2].content == "Hi there"
        assert conv.title == "Greeting Chat"
        assert len(h.provider.calls) == 2
        assert [c.kind for c in h.transport.for_chat(42)] == ["send", "edit", "edit"]
        assert h.transport.last_text(42) == "Hi there"

        await h.say(42, "Again")
        assert len(h.provider.calls) == 3
        assert conv.title == "Greeting Chat"
        assert h.transport.last_text(42) == "Second reply"
        assert len(conv.messages) == 5

    async def test_exchange_sends_full_history(self, make_harness):
        h = make_harness()
        await h.whitelist(42)
        conv = await h.ready_conversation(42)
        await h.say(42, "Hello")

        model, messages = h.provider.calls[0]
        assert model == "gpt-3.5-turbo"
        assert messages[0]["role"] == "system"
        assert messages[-1] == {"role": "user", "content": "Hello"}
        assert conv.usage.total_tokens == 60  # completion + title, 30 tokens each

    async def test_usage_is_recorded_per_model(self, make_harness):
        h = make_harness(provider=FakeProvider(usage=(100, 50)))
        await h.whitelist(42)
        await h.ready_conversation(42)
        await h.say(42, "Hello")
        usage = h.user(42).usage["gpt-3.5-turbo"]
        assert usage.prompt_tokens == 200
        assert usage.completion_tokens == 100

    async def test_failed_completion_leaves_conversation_unchanged(self, make_harness):
        h = make_harness(provider=FakeProvider(script=[ServiceError("Error calling the model: boom")]))
        await h.whitelist(42)
        conv = await h.ready_conversation(42)

        await h.say(42, "Hello")

        assert h.transport.last_text(42) == "Error calling the model: boom"
        assert [m.role for m in conv.messages] == [Role.SYSTEM]
        assert conv.usage.total_tokens == 0
        assert conv.title is None

    async def test_unexpected_error_is_reported(self, make_harness):
        h = make_harness(provider=FakeProvider(script=[RuntimeError("kaboom")]))
        await h.whitelist(42)
        conv = await h.ready_conversation(42)

        await h.say(42, "Hello")

        assert h.transport.last_text(42) == "Sorry, I encountered an error: kaboom"
        assert len(conv.messages) == 1

        await h.say(42, "Hello again")
        assert h.transport.last_text(42) == "Hi there"

    async def test_completion_timeout(self, make_harness):
        h = make_harness(provider=FakeProvider(delay=0.5), timeout=0.05)
        await h.whitelist(42)
        conv = await h.ready_conversation(42)

        await h.say(42, "Hello")

        assert h.transport.texts(42) == [SENDING, "Completion timed out, please try again later"]
        assert [c.kind for c in h.transport.for_chat(42)] == ["send", "edit"]
        assert [m.role for m in conv.messages] == [Role.SYSTEM]
        assert conv.usage.total_tokens == 0
        assert h.user(42).usage == {}

    async def test_title_falls_back_on_failure(self, make_harness):
        h = make_harness(provider=FakeProvider(script=["Hi there", ServiceError("no title")]))
        await h.whitelist(42)
        conv = await h.ready_conversation(42)
        await h.say(42, "Hello")
        assert conv.title == "New Chat with Neutral"
        assert h.transport.last_text(42) == "Hi there"

    async def test_usage_limit_blocks_new_conversation(self, harness):
        await harness.whitelist(42)
        user = harness.user(42)
        spent = user.conversations[user.new_conversation()]
        spent.set_model("gpt-4")
        spent.usage.add(100_000, 0)
        count = len(user.conversations)

        await harness.say(42, "/new")

        assert harness.transport.last_text(42) == USAGE_LIMIT_REACHED
        assert len(user.conversations) == count

    async def test_usage_limit_blocks_exchange(self, harness):
        await harness.whitelist(42)
        conv = await harness.ready_conversation(42)
        conv.usage.add(1_000_000, 0)

        await harness.say(42, "Hello")

        assert harness.transport.last_text(42) == USAGE_LIMIT_REACHED
        assert harness.provider.calls == []

    async def test_summarize(self, make_harness):
        h = make_harness(provider=FakeProvider(script=["Hi there", "Title", "A short summary"]))
        await h.whitelist(42)
        conv = await h.ready_conversation(42)
        await h.say(42, "/summarize")
        assert h.transport.last_text(42) == "There is nothing to summarize yet"

        await h.say(42, "Hello")
        h.transport.calls.clear()
        await h.say(42, "/summarize")

        assert h.transport.texts(42) == ["Generating summary...", "A short summary"]
        _, messages = h.provider.calls[-1]
        assert messages[0] == {"role": "system", "content": SYNTHESIZER.prompt}
        assert len(conv.messages) == 3
        assert conv.usage.total_tokens == 90

    async def test_generate_report(self, harness):
        await harness.whitelist(42)
        conv = await harness.ready_conversation(42)
        await harness.say(42, "Hello")
        harness.transport.calls.clear()

        await harness.say(42, "/generate_report")

        (doc,) = harness.transport.for_chat(42)
        assert doc.kind == "document"
        assert doc.filename == f"{conv.id}_summary.md"
        assert doc.text == f"Summary of conversation {conv.id}"
        assert doc.data.decode("utf-8").startswith("## Conversation Report")
        assert not conv.is_deleted

    async def test_delete_sends_report_first(self, harness):
        await harness.whitelist(42)
        conv = await harness.ready_conversation(42)
        await harness.say(42, "Hello")
        harness.transport.calls.clear()

        await harness.say(42, "/delete")

        doc, menu_call = harness.transport.for_chat(42)
        assert doc.kind == "document"
        assert "Hello" in doc.data.decode("utf-8")
        assert menu_call.text == f"Conversation deleted\n\n{MAIN_PROMPT}"
        user = harness.user(42)
        assert conv.is_deleted
        assert user.selected is None
        assert user.menu_state is MenuState.MAIN
        assert conv.usage.total_tokens > 0

    async def test_delete_aborted_when_report_is_not_delivered(self, harness):
        await harness.whitelist(42)
        conv = await harness.ready_conversation(42)
        harness.transport.fail_times = 2  # both attempts of the report fail

        await harness.say(42, "/delete")

        assert not conv.is_deleted
        assert harness.user(42).selected_id == conv.id
        assert "not deleted" in harness.transport.last_text(42)


class TestVoice:
    async def test_voice_in_voice_out(self, make_harness):
        transcriber = FakeTranscriber("Hello from voice")
        speech = FakeSpeech()
        h = make_harness(transcriber=transcriber, speech=speech)
        await h.whitelist(42)
        conv = await h.ready_conversation(42)

        await h.say(42, voice="file-1")

        calls = h.transport.for_chat(42)
        assert [c.kind for c in calls] == ["send", "edit", "edit", "edit", "edit", "voice", "delete"]
        assert calls[0].text == "Analyzing message..."
        assert calls[1].text == "Transcribing message..."
        assert calls[2].text == "Sending message to the model..."
        assert calls[4].text == "Obtaining audio..."
        assert calls[5].text == "Hi there"
        assert calls[5].data == b"mp3-bytes"
        assert calls[6].message_id == calls[0].message_id

        assert transcriber.received == [b"voice-bytes"]
        assert speech.spoken == ["Hi there"]
        assert conv.messages[1].content == "Hello from voice"

    async def test_voice_reply_falls_back_to_text(self, make_harness):
        h = make_harness(transcriber=FakeTranscriber(), speech=FakeSpeech(fail=True))
        await h.whitelist(42)
        await h.ready_conversation(42)

        await h.say(42, voice="file-1")

        assert h.transport.last_text(42) == "Hi there\n\n(Speech synthesis failed)"
        assert "voice" not in [c.kind for c in h.transport.for_chat(42)]

    async def test_voice_without_speech_replies_with_text(self, make_harness):
        h = make_harness(transcriber=FakeTranscriber())
        await h.whitelist(42)
        await h.ready_conversation(42)
        await h.say(42, voice="file-1")
        assert h.transport.last_text(42) == "Hi there"

    async def test_transcription_failure(self, make_harness):
        h = make_harness(transcriber=FakeTranscriber(fail=True))
        await h.whitelist(42)
        conv = await h.ready_conversation(42)

        await h.say(42, voice="file-1")

        assert h.transport.last_text(42) == "Error transcribing the message: boom"
        assert h.provider.calls == []
        assert len(conv.messages) == 1

    async def test_voice_not_supported(self, harness):
        await harness.whitelist(42)
        await harness.ready_conversation(42)
        await harness.say(42, voice="file-1")
        assert harness.transport.last_text(42) == "Voice messages are not supported"


class TestConcurrency:
    async def test_users_are_processed_concurrently(self, make_harness):
        h = make_harness(provider=FakeProvider(delay=0.02))
        for uid in (42, 43):
            await h.whitelist(uid)
            await h.ready_conversation(uid)
        h.provider.max_in_flight = 0

        await asyncio.gather(h.say(42, "Hello"), h.say(43, "Hello"))

        assert h.provider.max_in_flight == 2

    async def test_events_of_one_user_are_serialized(self, make_harness):
        h = make_harness(provider=FakeProvider(delay=0.02))
        await h.whitelist(42)
        conv = await h.ready_conversation(42)

        await asyncio.gather(h.say(42, "first"), h.say(42, "second"))

        assert h.provider.max_in_flight == 1
        contents = [m.content for m in conv.messages if m.role is Role.USER]
        assert contents == ["first", "second"]

    async def test_progress_edits_ignore_other_messages_to_the_same_chat(self, make_harness):
        h = make_harness(provider=FakeProvider(delay=0.1))
        await h.say(ADMIN_ID, "/start")
        await h.ready_conversation(ADMIN_ID)

        async def newcomer():
            await asyncio.sleep(0.03)
            await h.loop.process(InboundMessage(sender_id=42, chat_id=42, content="hi"))

        await asyncio.gather(
            h.loop.process(InboundMessage(sender_id=ADMIN_ID, chat_id=ADMIN_ID, content="Hello")),
            newcomer(),
        )
        await h.mailboxes.join_all()

        calls = h.transport.for_chat(ADMIN_ID)
        progress = calls[0]
        notice = next(c for c in calls if c.text.startswith("New user 42"))
        edits = [c for c in calls if c.kind == "edit"]
        assert progress.text == SENDING
        assert calls.index(notice) < calls.index(edits[0])
        assert notice.message_id != progress.message_id
        assert all(c.message_id == progress.message_id for c in edits)
        assert edits[-1].text == "Hi there"


class TestPersistenceAndRun:
    async def test_state_is_saved_after_each_event(self, harness):
        await harness.say(42, "hello")
        assert harness.sessions.path.exists()
        assert '"42"' in harness.sessions.path.read_text()

    async def test_run_consumes_the_bus(self, harness):
        task = asyncio.create_task(harness.loop.run())
        await harness.bus.publish_inbound(InboundMessage(sender_id=42, chat_id=42, content="hello"))

        for _ in range(100):
            if harness.sessions.get(42) is not None:
                break
            await asyncio.sleep(0.01)

        harness.loop.stop()
        await task
        await harness.loop.drain()
        await harness.mailboxes.join_all()

        assert harness.user(42).status is UserStatus.UNREVIEWED
        assert harness.transport.texts(42) == [AWAITING_REVIEW]

    async def test_save_failure_is_reported_and_state_kept(self, harness, monkeypatch):
        await harness.whitelist(42)

        def fail_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("gptron.session.manager.os.replace", fail_replace)
        await harness.say(42, "/new")

        texts = harness.transport.texts(42)
        assert texts[0].startswith("New conversation created")
        assert texts[-1] == "Failed to save your data, please try again later"
        user = harness.user(42)
        assert len(user.active_conversations()) == 1
        assert user.selected is not None
        assert user.menu_state is MenuState.SELECT_MODEL
