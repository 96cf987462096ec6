from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class ToolCallRecord:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    result: str = ""


@dataclass
class TurnArtifacts:
    """Side outputs collected while the orchestrator runs one turn."""

    images: List[str] = field(default_factory=list)
    tool_calls: List[ToolCallRecord] = field(default_factory=list)
