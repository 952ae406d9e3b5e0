"""
HTTP API for the KPC assistant.

Run with:
    kpc-assistant-server --port 3000
or:
    uvicorn kpc_assistant.api_server:app --port 3000
"""

from __future__ import annotations

import argparse
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse

from kpc_assistant.core.config import API_HOST, API_PORT, LOG_LEVEL, AssistantSettings
from kpc_assistant.core.observability import get_logger, setup_logging
from kpc_assistant.core.session import AssistantSession
from kpc_assistant.modules.router.api_router import router

logger = get_logger("api")


def create_app(session: Optional[AssistantSession] = None) -> FastAPI:
    """
    Build the app. The session is created (or adopted) in the lifespan and
    kept on app.state; shutdown always disconnects it.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = session or AssistantSession(AssistantSettings.from_env())
        await run_in_threadpool(active.initialize)
        app.state.session = active
        logger.info("KPC assistant API ready")
        try:
            yield
        finally:
            await run_in_threadpool(active.shutdown)
            logger.info("KPC assistant API stopped")

    app = FastAPI(title="KPC AI Assistant", lifespan=lifespan)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.include_router(router)

    @app.get("/", response_class=HTMLResponse)
    def index():
        return HTMLResponse(INDEX_HTML)

    return app


INDEX_HTML = """
<!DOCTYPE html>
<html>
<head>
    <title>KPC AI助手</title>
    <meta charset="utf-8">
    <style>
        body { font-family: Arial, sans-serif; margin: 40px; background: #f5f5f5; }
        .container { max-width: 800px; margin: 0 auto; background: white; padding: 30px; border-radius: 10px; }
        textarea { width: 100%; padding: 10px; border: 1px solid #ddd; border-radius: 5px; }
        .btn { background: #007bff; color: white; padding: 10px 20px; border: none; border-radius: 5px; cursor: pointer; margin: 5px; }
        .response { background: #f8f9fa; padding: 20px; border-radius: 5px; margin-top: 20px; white-space: pre-wrap; }
        .endpoint { background: #f8f9fa; padding: 10px; margin: 8px 0; border-radius: 5px; font-family: monospace; }
    </style>
</head>
<body>
<div class="container">
    <h1>KPC AI助手</h1>
    <div id="status">正在检查服务状态...</div>
    <textarea id="question" rows="3" placeholder="例如：Button组件有哪些属性？"></textarea>
    <button class="btn" onclick="ask()">普通回答</button>
    <button class="btn" onclick="askStream()">流式回答</button>
    <div id="answer" class="response"></div>
    <h2>API接口</h2>
    <div class="endpoint">POST /chat {"message": "您的问题"}</div>
    <div class="endpoint">POST /chat/stream 流式响应</div>
    <div class="endpoint">POST /mcp/component {"component": "Button"}</div>
    <div class="endpoint">POST /mcp/search {"query": "表单"}</div>
    <div class="endpoint">GET /tools</div>
    <div class="endpoint">GET /health</div>
</div>
<script>
async function checkStatus() {
    const data = await (await fetch('/health')).json();
    document.getElementById('status').textContent =
        'MCP: ' + (data.mcp_connected ? '已连接' : '未连接') +
        ' | Ollama: ' + (data.ollama_available ? '可用' : '不可用');
}
async function ask() {
    const message = document.getElementById('question').value;
    const res = await fetch('/chat', {method: 'POST', headers: {'Content-Type': 'application/json'},
                                      body: JSON.stringify({message})});
    const data = await res.json();
    document.getElementById('answer').textContent = data.response || data.error;
}
async function askStream() {
    const message = document.getElementById('question').value;
    const out = document.getElementById('answer');
    out.textContent = '';
    const res = await fetch('/chat/stream', {method: 'POST', headers: {'Content-Type': 'application/json'},
                                             body: JSON.stringify({message})});
    const reader = res.body.getReader();
    const decoder = new TextDecoder();
    let buffer = '';
    while (true) {
        const {done, value} = await reader.read();
        if (done) break;
        buffer += decoder.decode(value, {stream: true});
        const events = buffer.split('\\n\\n');
        buffer = events.pop();
        for (const event of events) {
            if (!event.startsWith('data: ')) continue;
            const data = JSON.parse(event.slice(6));
            if (data.chunk) out.textContent += data.chunk;
            if (data.status) out.textContent += data.status;
        }
    }
}
checkStatus();
</script>
</body>
</html>
""".strip()


app = create_app()


def main(argv=None) -> None:
    import uvicorn

    parser = argparse.ArgumentParser(description="KPC AI assistant HTTP API")
    parser.add_argument("--host", default=API_HOST)
    parser.add_argument("--port", type=int, default=API_PORT)
    parser.add_argument("--log-level", default=LOG_LEVEL)
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    # uvicorn turns SIGINT/SIGTERM into a lifespan shutdown, which disconnects the session.
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower(), log_config=None)


if __name__ == "__main__":
    main()
