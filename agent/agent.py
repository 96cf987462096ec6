from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Sequence

from langchain.agents import create_agent
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, ToolMessage
from langchain_core.runnables import RunnableConfig
from langchain_core.tools import BaseTool
from langchain_google_genai import ChatGoogleGenerativeAI

from agent.core.artifacts import ToolCallRecord, TurnArtifacts
from agent.core.prompt import SYSTEM_PROMPT
from agent.core.threads import ReplayedThread
from agent.tools import build_tools
from config.settings import Settings, get_settings


logger = logging.getLogger(__name__)


@dataclass
class OrchestratorReply:
    content: str
    artifacts: TurnArtifacts = field(default_factory=TurnArtifacts)


class Orchestrator(Protocol):
    artifacts: TurnArtifacts

    async def invoke_once(self, messages: List[BaseMessage], thread: ReplayedThread) -> OrchestratorReply:
        ...

    def invoke_streaming(self, messages: List[BaseMessage], thread: ReplayedThread) -> AsyncIterator[str]:
        ...


# Builds the orchestrator for one turn; tools deposit side outputs on the artifacts.
OrchestratorFactory = Callable[[TurnArtifacts], Orchestrator]


def message_text(message: BaseMessage) -> str:
    content = message.content
    if isinstance(content, str):
        return content
    parts: List[str] = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text") or "")
    return "".join(parts)


def _update_messages(update: Any) -> List[BaseMessage]:
    """Messages written by the graph nodes in one ``updates`` stream event."""
    if not isinstance(update, dict):
        return []
    messages: List[BaseMessage] = []
    for node_update in update.values():
        if not isinstance(node_update, dict):
            continue
        node_messages = node_update.get("messages", [])
        if isinstance(node_messages, list):
            messages.extend(node_messages)
        else:
            messages.append(node_messages)
    return messages


class AgentOrchestrator:
    """Tool-calling chat agent driving one conversation turn.

    Wraps a LangChain agent graph. The system prompt is owned by the graph;
    replayed history and the turn's messages are passed as its input. Every
    executed tool call is recorded on ``artifacts``.
    """

    def __init__(
        self,
        llm: BaseChatModel,
        tools: Sequence[BaseTool] = (),
        artifacts: Optional[TurnArtifacts] = None,
        max_tool_rounds: int = 5,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self.artifacts = artifacts if artifacts is not None else TurnArtifacts()
        self._agent = create_agent(model=llm, tools=list(tools), system_prompt=system_prompt)
        # One model step plus one tool step per round, then the final answer.
        self._config = RunnableConfig(recursion_limit=2 * max(1, max_tool_rounds) + 1)
        self._pending_calls: Dict[str, Dict[str, Any]] = {}

    def _inputs(self, messages: List[BaseMessage], thread: ReplayedThread) -> Dict[str, Any]:
        return {"messages": [*thread.messages, *messages]}

    def _record_tool_calls(self, messages: Sequence[BaseMessage]) -> None:
        for message in messages:
            if isinstance(message, AIMessage):
                for call in message.tool_calls:
                    if call.get("id"):
                        self._pending_calls[call["id"]] = call
            elif isinstance(message, ToolMessage):
                call = self._pending_calls.pop(message.tool_call_id, None) or {}
                name = call.get("name") or message.name or "unknown"
                output = message_text(message)
                logger.info("Tool %s returned %s chars", name, len(output))
                self.artifacts.tool_calls.append(
                    ToolCallRecord(name=name, arguments=dict(call.get("args") or {}), result=output)
                )

    async def invoke_once(self, messages: List[BaseMessage], thread: ReplayedThread) -> OrchestratorReply:
        result = await self._agent.ainvoke(self._inputs(messages, thread), config=self._config)
        output: List[BaseMessage] = result["messages"]
        self._record_tool_calls(output)
        return OrchestratorReply(content=message_text(output[-1]) if output else "", artifacts=self.artifacts)

    async def invoke_streaming(self, messages: List[BaseMessage], thread: ReplayedThread) -> AsyncIterator[str]:
        # "messages" carries model tokens, "updates" the tool calls and results.
        stream = self._agent.astream(
            self._inputs(messages, thread),
            config=self._config,
            stream_mode=["messages", "updates"],
        )
        try:
            async for mode, data in stream:
                if mode == "messages":
                    chunk, _metadata = data
                    if isinstance(chunk, AIMessageChunk):
                        text = message_text(chunk)
                        if text:
                            yield text
                elif mode == "updates":
                    self._record_tool_calls(_update_messages(data))
        finally:
            await stream.aclose()


def build_llm(settings: Optional[Settings] = None) -> BaseChatModel:
    settings = settings or get_settings()
    if not settings.google_api_key:
        raise RuntimeError(
            "GOOGLE_API_KEY not set. Please configure it in environment or .env"
        )
    return ChatGoogleGenerativeAI(
        model=settings.gemini_model,
        google_api_key=settings.google_api_key,
        temperature=settings.temperature,
        top_p=settings.top_p,
    )


def build_orchestrator(artifacts: TurnArtifacts, settings: Optional[Settings] = None) -> AgentOrchestrator:
    settings = settings or get_settings()
    return AgentOrchestrator(
        llm=build_llm(settings),
        tools=build_tools(artifacts, settings),
        artifacts=artifacts,
        max_tool_rounds=settings.max_tool_rounds,
    )
