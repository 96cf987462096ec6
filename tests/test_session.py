import logging
from unittest.mock import AsyncMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from agent.core.artifacts import ToolCallRecord
from agent.core.errors import InvalidArgument, PersistenceFault, RemoteThreadFault
from agent.core.relay import DONE_MARKER, STARTED_MARKER
from agent.core.session import ConversationSession, delete_conversation
from tests.conftest import FIXED_TODAY, RecordingSink, ScriptedFactory


class TestContextMessages:
    @pytest.mark.asyncio
    async def test_new_thread_gets_customer_and_date_context(self, session, factory):
        turn = await session.start_turn("cust-42", "When is my next payment?")
        await session.respond(turn)

        messages, _ = factory.last.received[0]
        assert [type(m) for m in messages] == [AIMessage, AIMessage, HumanMessage]
        assert messages[0].content == "Customer number is cust-42"
        assert messages[1].content == f"Today is {FIXED_TODAY.isoformat()}"
        assert messages[1].content == "Today is 2025-01-31"
        assert messages[2].content == "When is my next payment?"

    @pytest.mark.asyncio
    async def test_resumed_thread_gets_no_context(self, session, factory, store):
        await store.append("cust-42", "thread-1", "earlier question", "user")
        await store.append("cust-42", "thread-1", "earlier answer", "assistant")

        turn = await session.start_turn("cust-42", "And after that?", "thread-1")
        await session.respond(turn)

        messages, history = factory.last.received[0]
        assert len(messages) == 1
        assert isinstance(messages[0], HumanMessage)
        assert history.thread_id == "thread-1"
        assert [m.content for m in history.messages] == ["earlier question", "earlier answer"]


class TestRespond:
    @pytest.mark.asyncio
    async def test_plain_reply(self, session):
        turn = await session.start_turn("u1", "hi")
        result = await session.respond(turn)

        assert result.message == "Your next installment is due on 2025-02-15."
        assert result.thread_id == turn.thread_id
        assert result.tool_calls is None
        assert result.images is None

    @pytest.mark.asyncio
    async def test_debug_includes_tool_calls_even_when_empty(self, session):
        turn = await session.start_turn("u1", "hi", debug=True)
        result = await session.respond(turn)

        assert result.tool_calls == []

    @pytest.mark.asyncio
    async def test_images_and_tool_calls_are_reported(self, store, threads):
        record = ToolCallRecord(name="generate_image", arguments={"prompt": "plan"}, result="ok")
        factory = ScriptedFactory(reply="See the chart.", images=["https://img.test/1.png"], tool_calls=[record])
        session = ConversationSession(store, threads, factory)

        turn = await session.start_turn("u1", "show me", debug=True)
        result = await session.respond(turn)

        assert result.images == ["https://img.test/1.png"]
        assert result.tool_calls == [record]

    @pytest.mark.asyncio
    async def test_images_without_debug_hide_tool_calls(self, store, threads):
        factory = ScriptedFactory(reply="x", images=["https://img.test/1.png"])
        session = ConversationSession(store, threads, factory)

        result = await session.respond(await session.start_turn("u1", "show me"))

        assert result.images == ["https://img.test/1.png"]
        assert result.tool_calls is None

    @pytest.mark.asyncio
    async def test_orchestrator_errors_propagate(self, store, threads):
        session = ConversationSession(store, threads, ScriptedFactory(error=RuntimeError("boom")))

        turn = await session.start_turn("u1", "hi")
        with pytest.raises(RuntimeError, match="boom"):
            await session.respond(turn)
        assert await store.fetch_all("u1", turn.thread_id) == []

    @pytest.mark.asyncio
    async def test_orchestrator_is_built_when_the_turn_starts(self, store, threads):
        factory = ScriptedFactory(build_error=RuntimeError("no api key"))
        session = ConversationSession(store, threads, factory)

        with pytest.raises(RuntimeError, match="no api key"):
            await session.start_turn("u1", "hi")

    @pytest.mark.asyncio
    async def test_remote_thread_fault_propagates(self, store, factory):
        threads = AsyncMock()
        threads.resolve_or_create.side_effect = RemoteThreadFault("runtime down")
        session = ConversationSession(store, threads, factory)

        with pytest.raises(RemoteThreadFault):
            await session.start_turn("u1", "hi", "thread-1")


class TestPersist:
    @pytest.mark.asyncio
    async def test_user_then_assistant_are_appended(self, session, store):
        turn = await session.start_turn("u1", "question")
        result = await session.respond(turn)
        await session.persist(turn, result.message)

        history = await store.fetch_all("u1", turn.thread_id)
        assert [(m.role, m.content) for m in history] == [
            ("user", "question"),
            ("assistant", result.message),
        ]

    @pytest.mark.asyncio
    async def test_failure_is_logged_not_raised(self, threads, factory, caplog):
        store = AsyncMock()
        store.fetch_all.return_value = []
        store.append.side_effect = PersistenceFault("disk full")
        session = ConversationSession(store, threads, factory)
        turn = await session.start_turn("u1", "question")

        with caplog.at_level(logging.ERROR):
            await session.persist(turn, "answer")

        assert "Failed to persist turn" in caplog.text
        # Assistant text is never written without the user message.
        assert store.append.await_count == 1


class TestStream:
    @pytest.mark.asyncio
    async def test_stream_relays_and_persists_forwarded_text(self, store, threads):
        factory = ScriptedFactory(chunks=["", " ", "Your", " plan", " is ready."])
        session = ConversationSession(store, threads, factory)
        sink = RecordingSink()

        turn = await session.start_turn("u1", "plan please")
        exchange = await session.stream(turn, sink)

        assert sink.writes == [STARTED_MARKER, "Your", " plan", " is ready.", DONE_MARKER]
        history = await store.fetch_all("u1", turn.thread_id)
        assert [(m.role, m.content) for m in history] == [
            ("user", "plan please"),
            ("assistant", "Your plan is ready."),
        ]
        assert exchange.text == "Your plan is ready."

    @pytest.mark.asyncio
    async def test_interrupted_stream_persists_partial_text_and_stops_pulling(self, store, threads):
        factory = ScriptedFactory(chunks=["one ", "two ", "three ", "four ", "five"])
        session = ConversationSession(store, threads, factory)
        sink = RecordingSink(fail_after=2)

        turn = await session.start_turn("u1", "count")
        exchange = await session.stream(turn, sink)

        assert exchange.interrupted
        orchestrator = factory.last
        assert orchestrator.closed
        assert orchestrator.pulled < 5
        history = await store.fetch_all("u1", turn.thread_id)
        assert history[-1].content == "one "

    @pytest.mark.asyncio
    async def test_stream_on_new_thread_sends_context(self, store, threads):
        factory = ScriptedFactory(chunks=["ok"])
        session = ConversationSession(store, threads, factory, today=lambda: FIXED_TODAY)

        await session.stream(await session.start_turn("cust-7", "hi"), RecordingSink())

        messages, _ = factory.last.received[0]
        assert [m.content for m in messages] == ["Customer number is cust-7", "Today is 2025-01-31", "hi"]


class TestDeleteConversation:
    @pytest.fixture
    def store(self):
        store = AsyncMock()
        store.delete_all.return_value = True
        return store

    @pytest.fixture
    def threads(self):
        threads = AsyncMock()
        threads.delete.return_value = True
        return threads

    @pytest.mark.asyncio
    async def test_both_deleted(self, store, threads):
        assert await delete_conversation(store, threads, "u1", "t1") is True
        store.delete_all.assert_awaited_once_with("u1", "t1")
        threads.delete.assert_awaited_once_with("t1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("local,remote", [(False, True), (True, False), (False, False)])
    async def test_any_side_missing_is_not_found_and_both_attempted(self, store, threads, local, remote):
        store.delete_all.return_value = local
        threads.delete.return_value = remote

        assert await delete_conversation(store, threads, "u1", "t1") is False
        store.delete_all.assert_awaited_once()
        threads.delete.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user_id,thread_id", [("", "t1"), ("u1", ""), ("  ", "t1"), ("u1", None)])
    async def test_blank_ids_are_rejected_before_any_call(self, store, threads, user_id, thread_id):
        with pytest.raises(InvalidArgument):
            await delete_conversation(store, threads, user_id, thread_id)
        store.delete_all.assert_not_awaited()
        threads.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_local_persistence_fault_counts_as_not_found(self, store, threads):
        store.delete_all.side_effect = PersistenceFault("read-only fs")

        assert await delete_conversation(store, threads, "u1", "t1") is False
        threads.delete.assert_awaited_once_with("t1")

    @pytest.mark.asyncio
    async def test_remote_fault_propagates_after_local_delete(self, store, threads):
        threads.delete.side_effect = RemoteThreadFault("runtime down")

        with pytest.raises(RemoteThreadFault):
            await delete_conversation(store, threads, "u1", "t1")
        store.delete_all.assert_awaited_once_with("u1", "t1")
