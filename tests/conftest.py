"""Shared fixtures: scripted orchestrator, recording sink and in-memory collaborators."""

from datetime import date
from typing import List, Optional, Sequence

import pytest

from agent.agent import OrchestratorReply
from agent.core.artifacts import ToolCallRecord, TurnArtifacts
from agent.core.errors import TransportFault
from agent.core.memory import InMemoryHistoryStore
from agent.core.session import ConversationSession
from agent.core.threads import InMemoryThreadManager


class ScriptedOrchestrator:
    """Orchestrator double replaying a fixed reply or chunk sequence."""

    def __init__(
        self,
        artifacts: TurnArtifacts,
        reply: str = "",
        chunks: Sequence[str] = (),
        images: Sequence[str] = (),
        tool_calls: Sequence[ToolCallRecord] = (),
        error: Optional[Exception] = None,
    ):
        self.artifacts = artifacts
        self.reply = reply
        self.chunks = list(chunks)
        self.images = list(images)
        self.tool_calls = list(tool_calls)
        self.error = error
        self.received = []
        self.pulled = 0
        self.closed = False

    def _collect_artifacts(self):
        self.artifacts.images.extend(self.images)
        self.artifacts.tool_calls.extend(self.tool_calls)

    async def invoke_once(self, messages, thread):
        self.received.append((messages, thread))
        if self.error is not None:
            raise self.error
        self._collect_artifacts()
        return OrchestratorReply(content=self.reply, artifacts=self.artifacts)

    async def invoke_streaming(self, messages, thread):
        self.received.append((messages, thread))
        try:
            self._collect_artifacts()
            for chunk in self.chunks:
                self.pulled += 1
                yield chunk
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


class ScriptedFactory:
    def __init__(self, build_error: Optional[Exception] = None, **script):
        self.script = script
        self.build_error = build_error
        self.created: List[ScriptedOrchestrator] = []

    def __call__(self, artifacts: TurnArtifacts) -> ScriptedOrchestrator:
        if self.build_error is not None:
            raise self.build_error
        orchestrator = ScriptedOrchestrator(artifacts, **self.script)
        self.created.append(orchestrator)
        return orchestrator

    @property
    def last(self) -> ScriptedOrchestrator:
        return self.created[-1]


class RecordingSink:
    """Collects writes; raises TransportFault once ``fail_after`` writes went through."""

    def __init__(self, fail_after: Optional[int] = None):
        self.writes: List[str] = []
        self.fail_after = fail_after

    async def write(self, text: str) -> None:
        if self.fail_after is not None and len(self.writes) >= self.fail_after:
            raise TransportFault("client gone")
        self.writes.append(text)


FIXED_TODAY = date(2025, 1, 31)


@pytest.fixture
def store():
    return InMemoryHistoryStore()


@pytest.fixture
def threads():
    return InMemoryThreadManager()


@pytest.fixture
def factory():
    return ScriptedFactory(reply="Your next installment is due on 2025-02-15.")


@pytest.fixture
def session(store, threads, factory):
    return ConversationSession(store, threads, factory, today=lambda: FIXED_TODAY)
