from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from pydantic import BaseModel, ConfigDict, Field
import uvicorn

from agent.core.errors import ChatError
from agent.core.memory import HistoryStore
from agent.core.session import ConversationSession, delete_conversation
from agent.core.threads import RemoteThreadManager
from app.dependencies import get_history_store, get_session, get_thread_manager
from app.streaming import AsgiChunkSink, RelayResponse
from config.settings import get_settings


settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="[%(asctime)s] %(levelname)s - %(message)s",
)
logger = logging.getLogger("installment_advisor")

app = FastAPI(title="Installment Advisor Chat API", version="1.0.0")

# CORS: allow local frontend during development
if settings.app_env.lower() in {"dev", "development", "local"}:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["x-thread-id"],
    )


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1, description="User's latest message")
    user_id: str = Field(..., alias="userId", min_length=1, description="Customer identifier")
    thread_id: Optional[str] = Field(
        default=None,
        alias="threadId",
        description="Conversation to resume; omit to start a new one",
    )
    stream: bool = Field(default=False, description="Stream the answer as raw text chunks")
    debug: Optional[bool] = Field(default=False, description="Include tool calls in the response")


class ToolCallInfo(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    result: str = ""


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    thread_id: str = Field(..., alias="threadId")
    tool_calls: Optional[List[ToolCallInfo]] = Field(default=None, alias="toolCalls")
    images: Optional[List[str]] = None


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    logger.warning(
        "%s on %s %s: %s context=%s", exc.code, request.method, request.url.path, exc.message, exc.extra
    )
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.message, "code": exc.code})


@app.post(
    "/chat",
    response_model=ChatResponse,
    response_model_exclude_none=True,
    responses={200: {"content": {"text/event-stream": {}}}},
)
async def chat(
    req: ChatRequest,
    background_tasks: BackgroundTasks,
    session: ConversationSession = Depends(get_session),
):
    try:
        turn = await session.start_turn(req.user_id, req.message, req.thread_id, debug=bool(req.debug))
    except ChatError:
        raise
    except Exception as e:
        logger.exception("Chat setup failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))
    logger.info(
        "Incoming chat: user_id=%s thread_id=%s mode=%s stream=%s history_turns=%s",
        turn.user_id,
        turn.thread_id,
        turn.thread.mode,
        req.stream,
        len(turn.history.messages),
    )

    if req.stream:
        async def produce(sink: AsgiChunkSink) -> None:
            try:
                exchange = await session.stream(turn, sink)
            except Exception:
                logger.exception("Streaming chat failed for thread %s", turn.thread_id)
                raise
            logger.info(
                "Streamed %s chars on thread %s (interrupted=%s)",
                len(exchange.text),
                turn.thread_id,
                exchange.interrupted,
            )

        headers = {
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "x-thread-id": turn.thread_id,
        }
        return RelayResponse(produce, headers=headers, media_type="text/event-stream")

    try:
        result = await session.respond(turn)
    except ChatError:
        raise
    except Exception as e:
        logger.exception("Chat processing failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    # Persisted once the response has been sent.
    background_tasks.add_task(session.persist, turn, result.message)
    logger.info("Model responded with %s chars on thread %s", len(result.message), result.thread_id)
    return ChatResponse(
        message=result.message,
        thread_id=result.thread_id,
        tool_calls=(
            [ToolCallInfo(name=c.name, arguments=c.arguments, result=c.result) for c in result.tool_calls]
            if result.tool_calls is not None
            else None
        ),
        images=result.images,
    )


@app.delete("/chat/{thread_id}")
async def delete_chat(
    thread_id: str,
    user_id: str = Query(default="", alias="userId"),
    store: HistoryStore = Depends(get_history_store),
    threads: RemoteThreadManager = Depends(get_thread_manager),
) -> Dict[str, Any]:
    deleted = await delete_conversation(store, threads, user_id, thread_id)
    if not deleted:
        raise HTTPException(
            status_code=404,
            detail="Chat history not found for the provided ThreadId and UserId.",
        )
    return {"threadId": thread_id, "deleted": True}


@app.get("/health")
def health():
    return {"status": "ok"}


def main() -> None:
    """Run the API with uvicorn."""
    uvicorn.run("app.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
