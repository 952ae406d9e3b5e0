from __future__ import annotations

import json
import logging
import queue
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from kpc_assistant.core.session import AssistantSession

logger = logging.getLogger(__name__)

router = APIRouter()

SERVICE_NAME = "KPC AI助手"

# Short names accepted by POST /mcp/{tool}. Any catalog name works as well.
TOOL_ALIASES = {
    "component": "get_component",
    "search": "search",
    "examples": "get_usage_examples",
    "validate": "validate_usage",
    "stats": "get_stats",
    "list": "list_components",
}

_STREAM_END = object()


# --- Data Models ---

class ChatRequest(BaseModel):
    message: Optional[str] = None


class ChatResponse(BaseModel):
    success: bool
    response: str
    timestamp: str


class ToolResponse(BaseModel):
    success: bool
    tool: str
    result: str
    timestamp: str


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    service: str
    mcp_connected: bool
    ollama_available: bool


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _session(request: Request) -> AssistantSession:
    return request.app.state.session


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def _sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


# --- Endpoints ---

@router.get("/health", response_model=HealthResponse)
def health(request: Request):
    session = _session(request)
    return HealthResponse(
        status="ok",
        timestamp=_now(),
        service=SERVICE_NAME,
        mcp_connected=session.is_transport_connected(),
        ollama_available=session.is_backend_available(),
    )


@router.post("/chat", response_model=ChatResponse)
def chat(req: ChatRequest, request: Request):
    message = (req.message or "").strip()
    if not message:
        return _error(400, "缺少message参数")
    logger.info("Chat question: %s", message[:200])
    answer = _session(request).chat(message)
    return ChatResponse(success=True, response=answer, timestamp=_now())


@router.post("/chat/stream")
async def chat_stream(req: ChatRequest, request: Request):
    """
    Server-sent events: {"status"} for the capability notice, {"chunk"} per
    text delta, then {"done": true}. Closing the connection cancels the
    backend stream.
    """
    message = (req.message or "").strip()
    if not message:
        return _error(400, "缺少message参数")
    logger.info("Streaming chat question: %s", message[:200])

    session = _session(request)
    events: "queue.Queue[Any]" = queue.Queue()
    cancel = threading.Event()

    def worker():
        try:
            session.chat_stream(
                message,
                on_chunk=lambda text: events.put({"chunk": text}),
                on_status=lambda text: events.put({"status": text}),
                cancel_event=cancel,
            )
        except Exception as exc:
            logger.exception("Streaming worker failed: %s", exc)
            events.put({"error": str(exc)})
        finally:
            events.put(_STREAM_END)

    async def event_stream():
        thread = threading.Thread(target=worker, name="chat-stream", daemon=True)
        thread.start()
        try:
            while True:
                try:
                    item = await run_in_threadpool(events.get, True, 0.5)
                except queue.Empty:
                    continue
                if item is _STREAM_END:
                    yield _sse({"done": True})
                    break
                yield _sse(item)
        finally:
            if thread.is_alive():
                logger.info("Client went away; cancelling stream")
            cancel.set()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post("/mcp/{tool}", response_model=ToolResponse)
def call_tool(tool: str, request: Request, arguments: Optional[Dict[str, Any]] = None):
    session = _session(request)
    name = TOOL_ALIASES.get(tool.lower(), tool)
    if not session.catalog.is_known(name):
        return _error(400, f"未知工具: {tool}")
    try:
        result = session.run_capability(name, arguments or {})
    except Exception as exc:
        logger.error("Capability call %s failed: %s", tool, exc)
        return _error(500, str(exc))
    return ToolResponse(success=True, tool=tool, result=result, timestamp=_now())


@router.get("/tools")
def list_tools(request: Request):
    tools = _session(request).list_remote_capabilities()
    return {
        "success": True,
        "tools": [
            {"name": t.name, "description": t.description, "parameters": t.parameters}
            for t in tools
        ],
        "timestamp": _now(),
    }
