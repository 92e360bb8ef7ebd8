"""
MCP protocol client.

Drives the connection lifecycle over any Transport:

    UNINITIALIZED --connect()--> INITIALIZING --handshake ok--> READY --close()--> CLOSED

A failed handshake closes the transport and leaves the client CLOSED.

Usage:
    client = create_sse_client("http://localhost:3000/sse")
    response = client.list_tools()
    response = client.call_tool("my_tool", {"arg": "value"})
    client.close()

Or use as context manager:
    with create_websocket_client("ws://localhost:8765/mcp") as client:
        tools = client.list_all_tools()
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Any, Optional

from .config import get_setting
from .errors import (
    MCPError,
    NotConnectedError,
    ProtocolError,
    RPCError,
    VersionMismatchError,
)
from .sse import SSETransport
from .transport import Transport
from .websocket import WebSocketTransport

logger = logging.getLogger('mcplink')


class ConnectionState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


class MCPClient:
    """
    Model Context Protocol (MCP) Client.

    Methods return the raw JSON-RPC response messages; the caller reads
    ``response["result"]`` (or ``response["error"]``) itself.
    """

    # MCP Protocol version we implement
    PROTOCOL_VERSION = "2024-11-05"

    def __init__(
        self,
        transport: Transport,
        client_name: Optional[str] = None,
        client_version: Optional[str] = None
    ) -> None:
        """
        Args:
            transport: The transport to use for communication.
            client_name: Client name reported during handshake
                        (default: the client_name setting).
            client_version: Client version reported during handshake
                           (default: the client_version setting).
        """
        self.transport = transport
        self.client_name = client_name or get_setting('client_name')
        self.client_version = client_version or get_setting('client_version')
        self._state = ConnectionState.UNINITIALIZED
        self._init_result: Optional[dict[str, Any]] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _set_state(self, state: ConnectionState) -> None:
        with self._lock:
            self._state = state

    def _check_ready(self) -> None:
        if self._state is not ConnectionState.READY:
            raise NotConnectedError(f"Client not connected (state: {self._state.value})")

    def _close_transport(self) -> None:
        """Close the transport after a failed handshake. Errors are logged."""
        try:
            self.transport.close()
        except (MCPError, OSError) as e:
            logger.warning(f"Error closing transport after failed handshake: {e}")

    def connect(self) -> dict[str, Any]:
        """
        Perform the MCP initialization phase.

        Sends "initialize" with protocol version, client capabilities and client
        info, checks that the server answers with the same protocol version,
        then sends the "notifications/initialized" notification.

        Returns:
            The server's initialize result.

        Raises:
            RPCError: If the server answered with an error.
            ProtocolError: If the response had no result, or the client was
                          already connected.
            VersionMismatchError: If the server speaks another protocol
                                 version. The transport is closed first.
        """
        with self._lock:
            if self._state is not ConnectionState.UNINITIALIZED:
                raise ProtocolError(f"Cannot connect in state {self._state.value}")
            self._state = ConnectionState.INITIALIZING

        try:
            result = self._handshake()
        except Exception:
            self._close_transport()
            self._set_state(ConnectionState.CLOSED)
            raise

        self._set_state(ConnectionState.READY)
        logger.info(
            f"MCP handshake complete (server: {(result.get('serverInfo') or {}).get('name', 'unknown')})"
        )
        return result

    def _handshake(self) -> dict[str, Any]:
        init_params = {
            "protocolVersion": self.PROTOCOL_VERSION,
            "capabilities": {
                "tools": {"listChanged": False},
            },
            "clientInfo": {
                "name": self.client_name,
                "version": self.client_version
            }
        }

        response = self.transport.send_message("initialize", init_params)

        if "error" in response:
            raise RPCError.from_payload(response["error"])
        if "result" not in response:
            raise ProtocolError("Initialization error: no result returned.")

        result = response["result"]
        if not isinstance(result, dict):
            raise ProtocolError(
                f"Initialize result must be a dict, got {type(result).__name__}"
            )

        server_version = result.get("protocolVersion")
        if server_version != self.PROTOCOL_VERSION:
            # Close before raising
            self._close_transport()
            raise VersionMismatchError(self.PROTOCOL_VERSION, server_version)

        self._init_result = result

        self.transport.send_message_without_response("notifications/initialized")
        return result

    @property
    def init_result(self) -> Optional[dict[str, Any]]:
        """Full initialize result from the server."""
        return self._init_result

    @property
    def server_info(self) -> Optional[dict[str, Any]]:
        """Server information from the handshake (name, version)."""
        if self._init_result is None:
            return None
        return self._init_result.get("serverInfo", {})

    @property
    def server_capabilities(self) -> Optional[dict[str, Any]]:
        """Server capabilities from the handshake."""
        if self._init_result is None:
            return None
        return self._init_result.get("capabilities", {})

    @property
    def instructions(self) -> Optional[str]:
        """Server instructions from the handshake."""
        if self._init_result is None:
            return None
        return self._init_result.get("instructions")

    def list_tools(self, cursor: Optional[str] = None, timeout: Optional[float] = None) -> dict[str, Any]:
        """
        Retrieve one page of available tools.

        Args:
            cursor: Optional pagination cursor from a previous page's nextCursor.
            timeout: Response timeout in seconds (default: transport default).

        Returns:
            The raw response; its result holds "tools" and optionally "nextCursor".
        """
        self._check_ready()

        params = {}
        if cursor is not None:
            params["cursor"] = cursor

        return self.transport.send_message("tools/list", params, timeout=timeout)

    def list_all_tools(self, timeout: Optional[float] = None) -> list[dict[str, Any]]:
        """
        Retrieve every tool definition, following nextCursor across pages.

        Raises:
            RPCError: If any page comes back as an error.
            ProtocolError: If a page has no result object.
        """
        tools: list[dict[str, Any]] = []
        cursor = None
        while True:
            response = self.list_tools(cursor, timeout=timeout)
            if "error" in response:
                raise RPCError.from_payload(response["error"])
            result = response.get("result")
            if not isinstance(result, dict):
                raise ProtocolError(f"tools/list result must be a dict, got {type(result).__name__}")
            tools.extend(result.get("tools", []))
            cursor = result.get("nextCursor")
            if not cursor:
                return tools

    def call_tool(
        self,
        name: str,
        arguments: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> dict[str, Any]:
        """
        Call a tool on the server.

        Args:
            name: The tool name to invoke.
            arguments: Tool arguments. Empty or missing arguments are sent as {}.
            timeout: Response timeout in seconds (default: transport default).

        Returns:
            The raw response; its result holds "content" and optionally "isError".

        Raises:
            NotConnectedError: If the handshake has not completed.
            ValueError: If tool name is empty.
        """
        self._check_ready()

        if not isinstance(name, str) or not name.strip():
            raise ValueError("Tool name must be a non-empty string")

        params = {
            "name": name,
            # Servers validate arguments against an object schema
            "arguments": arguments or {}
        }

        return self.transport.send_message("tools/call", params, timeout=timeout)

    def close(self) -> None:
        """
        Close the client connection.

        Safe to call multiple times.
        """
        self._set_state(ConnectionState.CLOSED)
        self.transport.close()

    def __enter__(self) -> "MCPClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


# ============================================================================
# Factory Functions
# ============================================================================

def create_sse_client(
    url: str,
    headers: Optional[dict[str, str]] = None,
    client_name: Optional[str] = None,
    client_version: Optional[str] = None,
    timeout: Optional[float] = None
) -> MCPClient:
    """
    Create and connect to an MCP server using SSE transport.

    Endpoint discovery and the handshake happen immediately.

    Args:
        url: The SSE endpoint URL (e.g., "http://localhost:8080/sse").
        headers: Optional HTTP headers for authentication or other purposes.
        client_name: Client name for protocol handshake.
        client_version: Client version for protocol handshake.
        timeout: Default response timeout in seconds (default: the
                request_timeout setting).

    Example:
        client = create_sse_client(
            "http://localhost:3000/sse",
            headers={"Authorization": "Bearer token123"}
        )
    """
    if timeout is None:
        timeout = get_setting('request_timeout')
    transport = SSETransport(url, headers, timeout)
    client = MCPClient(transport, client_name, client_version)
    client.connect()
    return client


def create_websocket_client(
    url: str,
    headers: Optional[dict[str, str]] = None,
    client_name: Optional[str] = None,
    client_version: Optional[str] = None,
    timeout: Optional[float] = None
) -> MCPClient:
    """
    Create and connect to an MCP server using WebSocket transport.

    Args:
        url: The WebSocket URL (e.g., "ws://localhost:8765/mcp").
        headers: Optional HTTP headers for the opening handshake.
        client_name: Client name for protocol handshake.
        client_version: Client version for protocol handshake.
        timeout: Default response timeout in seconds (default: the
                request_timeout setting).
    """
    if timeout is None:
        timeout = get_setting('request_timeout')
    transport = WebSocketTransport(url, headers, timeout)
    client = MCPClient(transport, client_name, client_version)
    client.connect()
    return client
