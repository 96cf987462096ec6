"""Server-side conversation memory.

Messages are stored per (user, thread) as an append-only log. The order of
a log is the order of appends and is what gets replayed when a thread is
resumed.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Protocol, Tuple
from urllib.parse import quote

from agent.core.errors import PersistenceFault


logger = logging.getLogger(__name__)


@dataclass
class HistoryMessage:
    role: str
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class HistoryStore(Protocol):
    async def append(self, user_id: str, thread_id: str, content: str, role: str) -> None:
        ...

    async def fetch_all(self, user_id: str, thread_id: str) -> List[HistoryMessage]:
        ...

    async def delete_all(self, user_id: str, thread_id: str) -> bool:
        ...


class InMemoryHistoryStore:
    """Process-local history, used for development and tests."""

    def __init__(self) -> None:
        self._logs: Dict[Tuple[str, str], List[HistoryMessage]] = {}

    async def append(self, user_id: str, thread_id: str, content: str, role: str) -> None:
        self._logs.setdefault((user_id, thread_id), []).append(
            HistoryMessage(role=role, content=content)
        )

    async def fetch_all(self, user_id: str, thread_id: str) -> List[HistoryMessage]:
        return list(self._logs.get((user_id, thread_id), []))

    async def delete_all(self, user_id: str, thread_id: str) -> bool:
        return self._logs.pop((user_id, thread_id), None) is not None


class JsonlHistoryStore:
    """One JSON-lines file per (user, thread) below ``root``.

    File I/O runs in worker threads so the event loop is never blocked.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _segment(value: str) -> str:
        # Ids are opaque: no separators or dot segments may reach the path.
        return quote(value, safe="").replace(".", "%2E")

    def _path(self, user_id: str, thread_id: str) -> Path:
        return self._root / self._segment(user_id) / f"{self._segment(thread_id)}.jsonl"

    async def append(self, user_id: str, thread_id: str, content: str, role: str) -> None:
        message = HistoryMessage(role=role, content=content)
        await asyncio.to_thread(self._append, self._path(user_id, thread_id), message)

    async def fetch_all(self, user_id: str, thread_id: str) -> List[HistoryMessage]:
        return await asyncio.to_thread(self._read, self._path(user_id, thread_id))

    async def delete_all(self, user_id: str, thread_id: str) -> bool:
        return await asyncio.to_thread(self._delete, self._path(user_id, thread_id))

    def _append(self, path: Path, message: HistoryMessage) -> None:
        line = json.dumps(
            {
                "role": message.role,
                "content": message.content,
                "created_at": message.created_at.isoformat().replace("+00:00", "Z"),
            },
            ensure_ascii=False,
        )
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as exc:
            raise PersistenceFault(f"Failed to append to {path.name}: {exc}", path=str(path)) from exc

    def _read(self, path: Path) -> List[HistoryMessage]:
        if not path.exists():
            return []
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            raise PersistenceFault(f"Failed to read {path.name}: {exc}", path=str(path)) from exc

        items: List[HistoryMessage] = []
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                data = json.loads(line)
                items.append(
                    HistoryMessage(
                        role=str(data.get("role") or ""),
                        content=data.get("content") or "",
                        created_at=datetime.fromisoformat(
                            str(data["created_at"]).replace("Z", "+00:00")
                        ),
                    )
                )
            except (json.JSONDecodeError, KeyError, ValueError, AttributeError):
                logger.warning("Skipping unreadable history line %s in %s", lineno, path)
        return items

    def _delete(self, path: Path) -> bool:
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as exc:
            raise PersistenceFault(f"Failed to delete {path.name}: {exc}", path=str(path)) from exc
        return True
