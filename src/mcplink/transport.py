"""
Transport contract shared by the WebSocket and SSE bindings.

Every transport offers the same three blocking operations so the protocol
client never needs to know which wire it is talking over:

    close()                                   release I/O resources (idempotent)
    send_message(method, params, timeout)     request, block until matching response
    send_message_without_response(method, params)
                                              notification, return after transmit

Only one request is in flight per transport instance. Responses whose id does
not match the request being waited on are discarded.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Optional

from .errors import DecodeError, TransportError

logger = logging.getLogger('mcplink')

# JSON-RPC 2.0 version string
JSONRPC_VERSION = "2.0"

# Default bound on waiting for a response, in seconds
DEFAULT_TIMEOUT = 30.0


class Transport(ABC):
    """Abstract base class for MCP transports."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout
        self._message_id = 0
        self._id_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_message_id(self) -> int:
        """Id assigned by the most recent send (0 before any send)."""
        return self._message_id

    def _next_id(self) -> int:
        """Generate the next unique message ID."""
        with self._id_lock:
            self._message_id += 1
            return self._message_id

    def _resolve_timeout(self, timeout: Optional[float]) -> float:
        return self.timeout if timeout is None else timeout

    @staticmethod
    def _build_request(message_id: int, method: str, params: Optional[dict] = None) -> dict[str, Any]:
        message: dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "id": message_id,
            "method": method
        }
        if params:
            message["params"] = params
        return message

    @staticmethod
    def _build_notification(method: str, params: Optional[dict] = None) -> dict[str, Any]:
        message: dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "method": method
        }
        if params:
            message["params"] = params
        return message

    @staticmethod
    def _encode(message: dict) -> str:
        try:
            return json.dumps(message, separators=(',', ':'))
        except (TypeError, ValueError) as e:
            raise TransportError(f"Failed to serialize message: {e}") from e

    @staticmethod
    def _decode(payload: Any) -> Any:
        """Parse an inbound payload; raises DecodeError when it is not JSON."""
        if isinstance(payload, (bytes, bytearray)):
            try:
                payload = payload.decode('utf-8')
            except UnicodeDecodeError as e:
                raise DecodeError(f"Invalid UTF-8 from server: {e}") from e
        try:
            return json.loads(payload)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Failed to decode JSON: {e}") from e

    @staticmethod
    def _matches(message: Any, message_id: int) -> bool:
        # bool is an int subclass; true/false never match a numeric id
        if not isinstance(message, dict):
            return False
        msg_id = message.get("id")
        return isinstance(msg_id, int) and not isinstance(msg_id, bool) and msg_id == message_id

    @abstractmethod
    def close(self) -> None:
        """Close the transport. Safe to call multiple times."""
        pass

    @abstractmethod
    def send_message(
        self,
        method: str,
        params: Optional[dict] = None,
        timeout: Optional[float] = None
    ) -> dict[str, Any]:
        """
        Send a request and block until the response with the same id arrives.

        Args:
            method: The MCP method to invoke.
            params: Optional method parameters (omitted from the wire when empty).
            timeout: Wall-clock bound on waiting, measured from the start of
                    the wait. None uses the transport default (self.timeout).

        Returns:
            The decoded response message.

        Raises:
            TransportError: If the message could not be transmitted.
            MCPTimeoutError: If no matching response arrives in time.
            DecodeError: If an inbound message is not valid JSON.
        """
        pass

    @abstractmethod
    def send_message_without_response(self, method: str, params: Optional[dict] = None) -> None:
        """
        Send a notification and return once it has been transmitted.

        Consumes a message id like send_message, but the id is not sent.
        """
        pass

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
