"""Shared fakes: an in-process SSE server, a WebSocket connection and a scripted transport."""

import json
import queue
import sys

import httpx
import pytest
from websockets.exceptions import ConnectionClosedOK

from mcplink import config
from mcplink.transport import Transport

PROTOCOL_VERSION = "2024-11-05"

_END = object()


def mcp_responder(tools=None, protocol_version=PROTOCOL_VERSION, call_result=None):
    """Answers initialize, tools/list and tools/call like a small MCP server."""
    tools = tools if tools is not None else [
        {"name": "echo", "description": "Echo text", "inputSchema": {
            "type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]}},
    ]

    def respond(message):
        if "id" not in message:
            return []
        method = message["method"]
        if method == "initialize":
            result = {
                "protocolVersion": protocol_version,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": "fake", "version": "0.0.1"},
            }
        elif method == "tools/list":
            result = {"tools": tools}
        elif method == "tools/call":
            args = message["params"]["arguments"]
            result = call_result or {"content": [{"type": "text", "text": json.dumps(args)}]}
        else:
            return [{"jsonrpc": "2.0", "id": message["id"],
                     "error": {"code": -32601, "message": f"Method not found: {method}"}}]
        return [{"jsonrpc": "2.0", "id": message["id"], "result": result}]

    return respond


class FakeSSEServer:
    """
    Serves a queue-fed event stream on GET and records POSTed messages.

    Chunks pushed before the transport is constructed are delivered as-is, so
    tests control exactly where chunk boundaries fall.
    """

    def __init__(self, endpoint="/messages?session=abc", responder=None):
        self.chunks = queue.Queue()
        self.posted = []
        self.post_urls = []
        self.post_status = 202
        self.responder = responder
        if endpoint is not None:
            self.push(f"event: endpoint\ndata: {endpoint}\n\n")

    def push(self, data):
        self.chunks.put(data.encode('utf-8') if isinstance(data, str) else data)

    def push_message(self, message):
        self.push(f"event: message\ndata: {json.dumps(message)}\n\n")

    def end(self):
        self.chunks.put(_END)

    def _stream(self):
        while True:
            chunk = self.chunks.get()
            if chunk is _END:
                return
            yield chunk

    def handler(self, request):
        if request.method == "GET":
            return httpx.Response(
                200,
                headers={"Content-Type": "text/event-stream"},
                content=self._stream(),
            )
        message = json.loads(request.content)
        self.posted.append(message)
        self.post_urls.append(str(request.url))
        if self.post_status >= 300:
            return httpx.Response(self.post_status, text="boom")
        if self.responder is not None:
            for reply in self.responder(message):
                self.push_message(reply)
        return httpx.Response(202, text="Accepted")

    def http_client(self):
        return httpx.Client(transport=httpx.MockTransport(self.handler))


class FakeConnection:
    """Stands in for websockets.sync.client.ClientConnection."""

    def __init__(self, responder=None):
        self.sent = []
        self.inbox = queue.Queue()
        self.responder = responder
        self.close_calls = 0

    def deliver(self, message):
        self.inbox.put(message if isinstance(message, str) else json.dumps(message))

    def send(self, data):
        if self.close_calls:
            raise ConnectionClosedOK(None, None)
        message = json.loads(data)
        self.sent.append(message)
        if self.responder is not None:
            for reply in self.responder(message):
                self.deliver(reply)

    def recv(self, timeout=None):
        try:
            frame = self.inbox.get(timeout=timeout)
        except queue.Empty:
            raise TimeoutError("timed out")
        if frame is _END:
            raise ConnectionClosedOK(None, None)
        return frame

    def close(self):
        self.close_calls += 1
        self.inbox.put(_END)


class ScriptedTransport(Transport):
    """Transport answering from a method -> response table; records everything."""

    def __init__(self, responses=None):
        super().__init__()
        self.responses = responses or {}
        self.requests = []
        self.notifications = []
        self.events = []
        # Exception in flight at each close() call (None: closed before raising)
        self.close_exc = []

    def send_message(self, method, params=None, timeout=None):
        message_id = self._next_id()
        self.requests.append(self._build_request(message_id, method, params))
        self.events.append(("request", method))
        reply = self.responses[method]
        if callable(reply):
            reply = reply(params)
        return {"jsonrpc": "2.0", "id": message_id, **reply}

    def send_message_without_response(self, method, params=None):
        self._next_id()
        self.notifications.append(self._build_notification(method, params))
        self.events.append(("notify", method))

    def close(self):
        self.events.append(("close", None))
        self.close_exc.append(sys.exc_info()[1])
        self._closed = True


def initialize_ok(protocol_version=PROTOCOL_VERSION):
    return {"result": {
        "protocolVersion": protocol_version,
        "capabilities": {"tools": {}},
        "serverInfo": {"name": "scripted", "version": "1.0"},
        "instructions": "Use the tools.",
    }}


@pytest.fixture
def sse_server():
    server = FakeSSEServer(responder=mcp_responder())
    yield server
    server.end()


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep user config files and MCPLINK_* variables out of the tests."""
    for name in list(config.DEFAULTS):
        monkeypatch.delenv(config.ENV_PREFIX + name.upper(), raising=False)
    monkeypatch.setattr(config, 'config_path', lambda: tmp_path / "missing" / "config.py")
    monkeypatch.setattr(config, 'load_dotenv', lambda *args, **kwargs: False)
    config.reset()
    yield
    config.reset()
