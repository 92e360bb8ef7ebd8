"""Exceptions raised by mcplink transports and the protocol client."""

from __future__ import annotations

from typing import Any, Optional


class MCPError(Exception):
    """Base exception for MCP errors."""
    pass


class NotConnectedError(MCPError):
    """Client operation attempted before the handshake completed."""
    pass


class TransportError(MCPError):
    """Transport-level error (connection, I/O, transport not ready)."""
    pass


class HTTPStatusError(TransportError):
    """Server answered an HTTP request with a non-success status."""

    def __init__(self, status_code: int, body: str = "", url: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        self.url = url
        target = f" {url}" if url else ""
        if body:
            super().__init__(f"HTTP {status_code} from{target or ' server'}: {body}")
        else:
            super().__init__(f"HTTP {status_code} from{target or ' server'}")


class MCPTimeoutError(MCPError, TimeoutError):
    """Timeout waiting for server response."""
    pass


class DiscoveryTimeoutError(MCPTimeoutError):
    """SSE stream never announced its message endpoint."""
    pass


class ProtocolError(MCPError):
    """Protocol-level error (invalid messages, handshake failures)."""
    pass


class DecodeError(ProtocolError):
    """Inbound payload could not be decoded as a JSON-RPC message."""
    pass


class VersionMismatchError(ProtocolError):
    def __init__(self, client_version: str, server_version: Any):
        self.client_version = client_version
        self.server_version = server_version
        super().__init__(
            f"Protocol version mismatch: client supports {client_version}, "
            f"server returned {server_version}"
        )


class RPCError(MCPError):
    """JSON-RPC error returned by the server."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC Error {code}: {message}")

    @classmethod
    def from_payload(cls, error: Any) -> "RPCError":
        """Build from the ``error`` member of a response."""
        if isinstance(error, dict):
            return cls(
                code=error.get("code", -1),
                message=error.get("message", "Unknown error"),
                data=error.get("data")
            )
        return cls(code=-1, message=str(error))
