from __future__ import annotations

from typing import List, Optional

from langchain_core.tools import BaseTool

from agent.core.artifacts import TurnArtifacts
from agent.tools.image_generation import build_image_tool
from config.settings import Settings, get_settings


def build_tools(artifacts: TurnArtifacts, settings: Optional[Settings] = None) -> List[BaseTool]:
    settings = settings or get_settings()
    tools: List[BaseTool] = []
    if settings.image_api_url:
        tools.append(build_image_tool(artifacts, settings))
    return tools


__all__ = ["build_image_tool", "build_tools"]
