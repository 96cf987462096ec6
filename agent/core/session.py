"""One user turn against the orchestrator, plus conversation deletion.

A turn is either answered in one piece (``respond``) or streamed to a
``ChunkSink`` (``stream``). In both cases the user message and the final
assistant text are appended to the history store once the answer has been
delivered.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Callable, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from agent.core.artifacts import ToolCallRecord, TurnArtifacts
from agent.core.errors import InvalidArgument, PersistenceFault
from agent.core.memory import HistoryStore
from agent.core.relay import ChunkSink, StreamingExchange, StreamRelay
from agent.core.threads import (
    ConversationThread,
    LocalThreadBuilder,
    RemoteThreadManager,
    ReplayedThread,
)

if TYPE_CHECKING:
    from agent.agent import Orchestrator, OrchestratorFactory


logger = logging.getLogger(__name__)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


@dataclass
class ChatTurn:
    user_id: str
    message: str
    thread: ConversationThread
    history: ReplayedThread
    orchestrator: "Orchestrator"
    debug: bool = False

    @property
    def thread_id(self) -> str:
        return self.thread.thread_id


@dataclass
class ChatResult:
    message: str
    thread_id: str
    tool_calls: Optional[List[ToolCallRecord]] = None
    images: Optional[List[str]] = None


class ConversationSession:
    def __init__(
        self,
        store: HistoryStore,
        threads: RemoteThreadManager,
        orchestrator_factory: "OrchestratorFactory",
        today: Callable[[], date] = _utc_today,
    ) -> None:
        self._store = store
        self._threads = threads
        self._builder = LocalThreadBuilder(store)
        self._orchestrator_factory = orchestrator_factory
        self._today = today

    async def start_turn(
        self,
        user_id: str,
        message: str,
        thread_id: Optional[str] = None,
        debug: bool = False,
    ) -> ChatTurn:
        """Resolve (or create) the remote thread, replay its history and build the orchestrator.

        Must complete before any response headers are sent.
        """
        thread = await self._threads.resolve_or_create(user_id, thread_id or None)
        history = await self._builder.build(user_id, thread.thread_id)
        orchestrator = self._orchestrator_factory(TurnArtifacts())
        return ChatTurn(
            user_id=user_id,
            message=message,
            thread=thread,
            history=history,
            orchestrator=orchestrator,
            debug=debug,
        )

    def build_messages(self, turn: ChatTurn) -> List[BaseMessage]:
        messages: List[BaseMessage] = []
        if turn.thread.is_new:
            messages.append(AIMessage(content=f"Customer number is {turn.user_id}"))
            messages.append(AIMessage(content=f"Today is {self._today().isoformat()}"))
        messages.append(HumanMessage(content=turn.message))
        return messages

    async def respond(self, turn: ChatTurn) -> ChatResult:
        reply = await turn.orchestrator.invoke_once(self.build_messages(turn), turn.history)
        artifacts = reply.artifacts
        return ChatResult(
            message=reply.content,
            thread_id=turn.thread_id,
            tool_calls=list(artifacts.tool_calls) if turn.debug else None,
            images=list(artifacts.images) if artifacts.images else None,
        )

    async def stream(self, turn: ChatTurn, sink: ChunkSink) -> StreamingExchange:
        exchange = StreamingExchange(artifacts=turn.orchestrator.artifacts)
        source = turn.orchestrator.invoke_streaming(self.build_messages(turn), turn.history)
        await StreamRelay(sink).relay(source, exchange)
        # An interrupted stream still keeps whatever reached the caller.
        await self.persist(turn, exchange.text)
        return exchange

    async def persist(self, turn: ChatTurn, assistant_text: str) -> None:
        try:
            await self._store.append(turn.user_id, turn.thread_id, turn.message, "user")
            await self._store.append(turn.user_id, turn.thread_id, assistant_text, "assistant")
        except Exception:
            logger.exception(
                "Failed to persist turn for user=%s thread=%s", turn.user_id, turn.thread_id
            )


async def delete_conversation(
    store: HistoryStore,
    threads: RemoteThreadManager,
    user_id: str,
    thread_id: str,
) -> bool:
    """Delete local history and the remote thread.

    Both deletions are always attempted and there is no rollback. Returns
    True only when both sides reported a deletion.
    """
    if not (user_id or "").strip() or not (thread_id or "").strip():
        raise InvalidArgument("ThreadId and UserId are required.", user_id=user_id, thread_id=thread_id)

    try:
        history_deleted = await store.delete_all(user_id, thread_id)
    except PersistenceFault as exc:
        logger.error("History deletion failed for thread %s: %s", thread_id, exc.message)
        history_deleted = False
    remote_deleted = await threads.delete(thread_id)

    if not history_deleted:
        logger.warning("No history deleted for user=%s thread=%s", user_id, thread_id)
    if not remote_deleted:
        logger.warning("Remote thread %s was not found", thread_id)
    return history_deleted and remote_deleted
