from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
from langchain_core.tools import StructuredTool, ToolException
from pydantic import BaseModel, Field

from agent.core.artifacts import TurnArtifacts
from config.settings import Settings, get_settings


class GenerateImageInput(BaseModel):
    prompt: str = Field(..., description="Description of the image to generate")


async def _call_image_service(
    endpoint: str,
    prompt: str,
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(endpoint, json={"prompt": prompt})
            response.raise_for_status()
            data: Dict[str, Any] = response.json()
    except httpx.HTTPError as exc:
        raise ToolException(f"Image service call failed: {exc}") from exc

    url = data.get("url") if isinstance(data, dict) else None
    if not url:
        raise ToolException("Image service returned no url")
    return str(url)


def build_image_tool(
    artifacts: TurnArtifacts,
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> StructuredTool:
    """Image generation tool; generated urls are collected on ``artifacts``."""
    settings = settings or get_settings()

    async def _generate_image(prompt: str) -> str:
        if not settings.image_api_url:
            raise ToolException("IMAGE_API_URL not configured")
        url = await _call_image_service(
            settings.image_api_url, prompt, settings.http_timeout, transport
        )
        artifacts.images.append(url)
        return f"Image generated: {url}"

    description = (
        "Generate an illustrative image, for example a chart of a payment schedule. "
        "Input is a JSON object with a single key prompt describing the image."
    )
    return StructuredTool.from_function(
        coroutine=_generate_image,
        name="generate_image",
        description=description,
        args_schema=GenerateImageInput,
        handle_tool_error=True,
    )
