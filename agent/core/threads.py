"""Conversation threads.

A thread id is issued by the remote agent runtime and doubles as the key of
the locally persisted history, so the same id couples both sides.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Protocol, Set
from urllib.parse import quote
from uuid import uuid4

import httpx
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from agent.core.errors import RemoteThreadFault
from agent.core.memory import HistoryMessage, HistoryStore


logger = logging.getLogger(__name__)

ThreadMode = Literal["new", "resumed"]


@dataclass
class ConversationThread:
    thread_id: str
    user_id: str
    mode: ThreadMode

    @property
    def is_new(self) -> bool:
        return self.mode == "new"


@dataclass
class ReplayedThread:
    """In-memory chat history used to seed the orchestrator on resume."""

    thread_id: Optional[str] = None
    messages: List[BaseMessage] = field(default_factory=list)


class RemoteThreadManager(Protocol):
    async def resolve_or_create(self, user_id: str, thread_id: Optional[str] = None) -> ConversationThread:
        ...

    async def delete(self, thread_id: str) -> bool:
        ...


class InMemoryThreadManager:
    """Keeps thread ids in process memory when no remote runtime is configured."""

    def __init__(self) -> None:
        self._threads: Set[str] = set()

    async def resolve_or_create(self, user_id: str, thread_id: Optional[str] = None) -> ConversationThread:
        if thread_id:
            self._threads.add(thread_id)
            return ConversationThread(thread_id=thread_id, user_id=user_id, mode="resumed")
        new_id = f"thread_{uuid4().hex}"
        self._threads.add(new_id)
        logger.info("Created thread %s for user %s", new_id, user_id)
        return ConversationThread(thread_id=new_id, user_id=user_id, mode="new")

    async def delete(self, thread_id: str) -> bool:
        if thread_id not in self._threads:
            return False
        self._threads.discard(thread_id)
        return True


class HttpThreadManager:
    """Creates, attaches to and deletes threads on the remote agent runtime."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._headers: Dict[str, str] = {}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def resolve_or_create(self, user_id: str, thread_id: Optional[str] = None) -> ConversationThread:
        try:
            async with self._client() as client:
                if thread_id:
                    response = await client.get(f"/threads/{quote(thread_id, safe='')}")
                    response.raise_for_status()
                    return ConversationThread(thread_id=thread_id, user_id=user_id, mode="resumed")

                response = await client.post("/threads", json={})
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as exc:
            raise RemoteThreadFault(f"Remote thread call failed: {exc}", thread_id=thread_id) from exc

        new_id = data.get("id") if isinstance(data, dict) else None
        if not new_id:
            raise RemoteThreadFault("Remote runtime returned no thread id")
        logger.info("Created remote thread %s for user %s", new_id, user_id)
        return ConversationThread(thread_id=str(new_id), user_id=user_id, mode="new")

    async def delete(self, thread_id: str) -> bool:
        try:
            async with self._client() as client:
                response = await client.delete(f"/threads/{quote(thread_id, safe='')}")
                if response.status_code == 404:
                    return False
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise RemoteThreadFault(f"Remote thread delete failed: {exc}", thread_id=thread_id) from exc
        return True


_ROLE_MESSAGES = {
    "user": HumanMessage,
    "assistant": AIMessage,
    "system": SystemMessage,
}


def to_lc_messages(history: List[HistoryMessage]) -> List[BaseMessage]:
    messages: List[BaseMessage] = []
    for item in history:
        message_cls = _ROLE_MESSAGES.get(item.role)
        if message_cls is None:
            # Unknown roles are never replayed.
            logger.debug("Skipping history message with role %r", item.role)
            continue
        messages.append(message_cls(content=item.content))
    return messages


class LocalThreadBuilder:
    """Rebuilds the chat history of a thread from the history store."""

    def __init__(self, store: HistoryStore) -> None:
        self._store = store

    async def build(self, user_id: str, thread_id: Optional[str] = None) -> ReplayedThread:
        if not thread_id:
            return ReplayedThread()
        history = await self._store.fetch_all(user_id, thread_id)
        return ReplayedThread(thread_id=thread_id, messages=to_lc_messages(history))
