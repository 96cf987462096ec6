from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from agent.agent import OrchestratorFactory, build_orchestrator
from agent.core.memory import HistoryStore, JsonlHistoryStore
from agent.core.session import ConversationSession
from agent.core.threads import HttpThreadManager, InMemoryThreadManager, RemoteThreadManager
from config.settings import get_settings


@lru_cache(maxsize=1)
def get_history_store() -> HistoryStore:
    return JsonlHistoryStore(get_settings().history_dir)


@lru_cache(maxsize=1)
def get_thread_manager() -> RemoteThreadManager:
    settings = get_settings()
    if settings.thread_api_url:
        return HttpThreadManager(
            settings.thread_api_url,
            api_key=settings.thread_api_key,
            timeout=settings.http_timeout,
        )
    return InMemoryThreadManager()


def get_orchestrator_factory() -> OrchestratorFactory:
    return build_orchestrator


def get_session(
    store: HistoryStore = Depends(get_history_store),
    threads: RemoteThreadManager = Depends(get_thread_manager),
    orchestrator_factory: OrchestratorFactory = Depends(get_orchestrator_factory),
) -> ConversationSession:
    return ConversationSession(store, threads, orchestrator_factory)
