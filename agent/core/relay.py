"""Relays orchestrator chunks to the caller.

The output is a raw sequence: ``[STARTED]``, the content chunks, ``[DONE]``.
Every write to the sink is flushed straight away.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Protocol

from agent.core.artifacts import TurnArtifacts
from agent.core.errors import TransportFault


logger = logging.getLogger(__name__)

STARTED_MARKER = "[STARTED]"
DONE_MARKER = "[DONE]"


class ChunkSink(Protocol):
    async def write(self, text: str) -> None:
        """Write and flush ``text``; raise TransportFault if the caller is gone."""
        ...


@dataclass
class StreamingExchange:
    chunks: List[str] = field(default_factory=list)
    has_started: bool = False
    interrupted: bool = False
    artifacts: TurnArtifacts = field(default_factory=TurnArtifacts)

    @property
    def text(self) -> str:
        return "".join(self.chunks)


class StreamRelay:
    def __init__(self, sink: ChunkSink) -> None:
        self._sink = sink

    async def relay(self, source: AsyncIterator[str], exchange: StreamingExchange | None = None) -> StreamingExchange:
        """Forward ``source`` to the sink and return what was forwarded.

        Chunks are held back until the first one with non-blank content;
        from then on every chunk is forwarded verbatim. If the sink faults
        the loop stops, the source is closed and the exchange is returned
        with ``interrupted`` set and the chunks forwarded so far.
        """
        exchange = exchange or StreamingExchange()
        try:
            await self._sink.write(STARTED_MARKER)
            async for chunk in source:
                if not exchange.has_started:
                    if not chunk.strip():
                        continue
                    exchange.has_started = True
                await self._sink.write(chunk)
                exchange.chunks.append(chunk)
            await self._sink.write(DONE_MARKER)
        except TransportFault as exc:
            exchange.interrupted = True
            logger.warning(
                "Stream aborted after %s chunks: %s", len(exchange.chunks), exc.message
            )
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()
        return exchange
