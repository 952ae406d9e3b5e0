"""
HTTP surface: routes, SSE framing and session lifecycle in the app lifespan.
"""

import json

import pytest
from fastapi.testclient import TestClient

from conftest import FakeBackend, FakeTransport
from kpc_assistant.api_server import create_app
from kpc_assistant.core.errors import TransportError
from kpc_assistant.core.session import AssistantSession


def sse_events(body: str):
    events = []
    for block in body.split("\n\n"):
        block = block.strip()
        if block.startswith("data: "):
            events.append(json.loads(block[len("data: "):]))
    return events


@pytest.fixture
def transport():
    return FakeTransport({
        "get_kpc_component": "Button: type, size",
        "search_kpc_components": "Form, Input",
        "get_kpc_stats": "共 80 个组件",
    })


@pytest.fixture
def client(settings, transport):
    session = AssistantSession(settings, transport=transport, backend=FakeBackend(available=False))
    with TestClient(create_app(session)) as test_client:
        yield test_client


class TestApiRoutes:
    """
    Tests for the JSON endpoints.
    """

    def test_lifespan_connects_and_disconnects(self, settings, transport):
        """
        Test that the app lifespan owns the session lifecycle.
        """
        session = AssistantSession(settings, transport=transport, backend=FakeBackend(available=False))
        with TestClient(create_app(session)):
            assert transport.connected
        assert not transport.connected
        assert transport.disconnect_count == 1

    def test_health(self, client):
        """
        Test the health payload.
        """
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["mcp_connected"] is True
        assert data["ollama_available"] is False
        assert data["service"] == "KPC AI助手"

    def test_chat(self, client):
        """
        Test a buffered chat round trip.
        """
        resp = client.post("/chat", json={"message": "Button组件有哪些属性？"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["response"] == "Button: type, size"
        assert data["timestamp"]

    @pytest.mark.parametrize("body", [{}, {"message": ""}, {"message": "   "}])
    def test_chat_requires_message(self, client, body):
        """
        Test that a missing message is a 400.
        """
        resp = client.post("/chat", json=body)
        assert resp.status_code == 400
        assert resp.json()["error"] == "缺少message参数"

    def test_chat_stream(self, client):
        """
        Test SSE framing: status, chunks, then done.
        """
        resp = client.post("/chat/stream", json={"message": "Button组件有哪些属性？"})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        events = sse_events(resp.text)
        assert events[0] == {"status": "🔧 正在查询get_component...\n\n"}
        assert events[1] == {"chunk": "Button: type, size"}
        assert events[-1] == {"done": True}

    def test_chat_stream_requires_message(self, client):
        """
        Test that the streaming route validates the message too.
        """
        assert client.post("/chat/stream", json={}).status_code == 400

    @pytest.mark.parametrize("tool,body,expected", [
        ("component", {"component": "Button"}, "Button: type, size"),
        ("search", {"query": "表单"}, "Form, Input"),
        ("stats", None, "共 80 个组件"),
        ("get_kpc_stats", None, "共 80 个组件"),
    ])
    def test_direct_tool_call(self, client, transport, tool, body, expected):
        """
        Test direct capability calls by alias or catalog name.
        """
        resp = client.post(f"/mcp/{tool}", json=body)
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["tool"] == tool
        assert data["result"] == expected

    def test_direct_tool_call_unknown(self, client):
        """
        Test that unknown tools are rejected with 400.
        """
        resp = client.post("/mcp/format_disk", json={})
        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert "format_disk" in resp.json()["error"]

    def test_direct_tool_call_transport_failure(self, client, transport):
        """
        Test that a transport failure is a 500 with an error message.
        """
        transport.results["get_kpc_stats"] = TransportError("broken pipe")
        resp = client.post("/mcp/stats")
        assert resp.status_code == 500
        assert resp.json()["success"] is False
        assert "broken pipe" in resp.json()["error"]

    def test_tools(self, client, transport, catalog):
        """
        Test the remote tool listing.
        """
        transport.remote_tools = [catalog.get("get_component")]
        data = client.get("/tools").json()
        assert data["success"] is True
        assert data["tools"][0]["name"] == "get_component"
        assert "component" in data["tools"][0]["parameters"]

    def test_index_page(self, client):
        """
        Test that the static page is served.
        """
        resp = client.get("/")
        assert resp.status_code == 200
        assert "KPC AI助手" in resp.text
