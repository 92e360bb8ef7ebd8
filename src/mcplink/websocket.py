"""
WebSocket transport.

Each JSON-RPC message is one text frame on a persistent connection. Requests
block in a receive loop until the frame carrying the matching id shows up;
anything else received in the meantime (notifications, stray responses) is
dropped.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as ws_connect

from .errors import MCPTimeoutError, TransportError
from .transport import DEFAULT_TIMEOUT, Transport

logger = logging.getLogger('mcplink')


class WebSocketTransport(Transport):
    """
    Transport over a bidirectional WebSocket connection.

    Usage:
        transport = WebSocketTransport("ws://localhost:8765/mcp")
        response = transport.send_message("tools/list")
        transport.close()

    An already-open connection (anything with send/recv(timeout)/close, such as
    websockets.sync.client.ClientConnection) may be passed as ``connection``
    instead of a URL.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        connection: Any = None,
        open_timeout: float = 10.0
    ) -> None:
        """
        Args:
            url: The WebSocket URL (ws:// or wss://).
            headers: Optional HTTP headers for the opening handshake.
            timeout: Default bound in seconds on waiting for a response.
            connection: Pre-opened connection to use instead of dialing ``url``.
            open_timeout: Bound in seconds on the opening handshake.
        """
        super().__init__(timeout)
        self.url = url
        self.headers = headers or {}
        self._lock = threading.Lock()  # Protects _closed and connection

        if connection is None:
            if not url:
                raise ValueError("Either url or connection is required")
            if not (url.startswith('ws://') or url.startswith('wss://')):
                raise ValueError(
                    f"Invalid WebSocket URL '{url}': expected ws:// or wss://"
                )
            connection = self._open(url, open_timeout)
        self.connection = connection

    def _open(self, url: str, open_timeout: float) -> Any:
        try:
            connection = ws_connect(
                url,
                additional_headers=self.headers or None,
                open_timeout=open_timeout
            )
        except (WebSocketException, OSError, TimeoutError) as e:
            raise TransportError(f"Failed to connect to {url}: {e}") from e
        logger.info(f"WebSocket transport connected to {url}")
        return connection

    def _current_connection(self) -> Any:
        with self._lock:
            if self._closed:
                raise TransportError("Transport not connected")
            return self.connection

    def _send_frame(self, message: dict) -> None:
        connection = self._current_connection()
        data = self._encode(message)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"WS >> {data}")
        try:
            connection.send(data)
        except ConnectionClosed as e:
            raise TransportError(f"WebSocket connection closed: {e}") from e
        except (WebSocketException, OSError) as e:
            raise TransportError(f"Failed to send message: {e}") from e

    def send_message(
        self,
        method: str,
        params: Optional[dict] = None,
        timeout: Optional[float] = None
    ) -> dict[str, Any]:
        message_id = self._next_id()
        self._send_frame(self._build_request(message_id, method, params))
        return self._wait_for_response(message_id, self._resolve_timeout(timeout))

    def send_message_without_response(self, method: str, params: Optional[dict] = None) -> None:
        self._next_id()
        self._send_frame(self._build_notification(method, params))

    def _wait_for_response(self, message_id: int, timeout: float) -> dict[str, Any]:
        """
        Receive frames until one carries ``message_id``.

        The deadline is fixed when waiting starts; frames that do not match
        do not extend it.
        """
        deadline = time.monotonic() + timeout

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise MCPTimeoutError(f"Timeout waiting for response with id: {message_id}")

            connection = self._current_connection()
            try:
                frame = connection.recv(timeout=remaining)
            except TimeoutError:
                continue  # Deadline check above raises
            except ConnectionClosed as e:
                raise TransportError(f"WebSocket connection closed: {e}") from e
            except (WebSocketException, OSError) as e:
                raise TransportError(f"Failed to receive message: {e}") from e

            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"WS << {frame!r}")

            message = self._decode(frame)
            if self._matches(message, message_id):
                return message
            # Not ours; skip event messages and stray responses
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"Discarding message while waiting for id {message_id}")

    def close(self) -> None:
        """Close the WebSocket connection."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            connection = self.connection

        if connection is not None:
            try:
                connection.close()
            except (WebSocketException, OSError) as e:
                # Connection already broken
                logger.debug(f"Error closing WebSocket: {e}")
