"""
Server-Sent Events (SSE) transport.

The server pushes events on a long-lived GET stream; the client talks back
with POST requests:

- On construction the client opens the GET stream and waits for an
  'endpoint' event whose data is the URL to POST messages to.
- Requests are POSTed to that endpoint. Responses do not come back in the
  POST reply but as events (normally 'message') on the original stream, so
  send_message() keeps reading the same stream until the event carrying the
  matching id arrives.

Events are blank-line delimited blocks which may be split across reads at any
byte, including inside the delimiter. SSEBuffer reassembles them.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional, Union
from urllib.parse import urljoin

import httpx

from .errors import (
    DecodeError,
    DiscoveryTimeoutError,
    HTTPStatusError,
    MCPTimeoutError,
    ProtocolError,
    TransportError,
)
from .transport import DEFAULT_TIMEOUT, Transport

logger = logging.getLogger('mcplink')

# Maximum buffer size to prevent memory exhaustion (100 MB)
MAX_BUFFER_SIZE = 100 * 1024 * 1024
# Chunks held between the reader thread and the consumer
MAX_QUEUED_CHUNKS = 1024


@dataclass
class SSEEvent:
    event: str
    data: str


def parse_event(block: str) -> Optional[SSEEvent]:
    """
    Parse one event block.

    'event:' sets the name (the last one wins), 'data:' lines are trimmed and
    concatenated. Both prefixes are matched case-insensitively. Returns None
    for blocks without an event name.
    """
    event_name = None
    data_parts = []

    for line in block.split('\n'):
        line = line.strip()
        lowered = line.lower()
        if lowered.startswith('event:'):
            event_name = line[6:].strip()
        elif lowered.startswith('data:'):
            data_parts.append(line[5:].strip())

    if event_name is None:
        return None
    return SSEEvent(event=event_name, data=''.join(data_parts))


class SSEBuffer:
    """
    Incremental reassembly of SSE blocks from arbitrary-sized chunks.

    feed() appends raw bytes; next_event() splits off everything up to the
    first blank line, parses it and keeps the tail for later.
    """

    def __init__(self) -> None:
        self._buffer = b""
        self._skip_lf = False  # Previous chunk ended in CR; drop a leading LF

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: Union[bytes, str]) -> None:
        if isinstance(chunk, str):
            chunk = chunk.encode('utf-8')
        if self._skip_lf and chunk.startswith(b"\n"):
            chunk = chunk[1:]
            self._skip_lf = False
        if chunk:
            self._skip_lf = chunk.endswith(b"\r")
        # Normalize line endings as data arrives
        chunk = chunk.replace(b"\r\n", b"\n").replace(b"\r", b"\n")
        if len(self._buffer) + len(chunk) > MAX_BUFFER_SIZE:
            raise TransportError(f"Buffer size exceeded {MAX_BUFFER_SIZE} bytes")
        self._buffer += chunk

    def next_event(self) -> Optional[SSEEvent]:
        """Return the next complete named event, or None if none is buffered."""
        while b"\n\n" in self._buffer:
            block, self._buffer = self._buffer.split(b"\n\n", 1)
            event = parse_event(block.decode('utf-8', errors='replace'))
            if event is not None:
                return event
        return None


class _StreamReader(threading.Thread):
    """
    Moves chunks from a streaming response into a bounded queue.

    When the queue is full the reader stops pulling from the stream until the
    consumer catches up or stop() is called.
    """

    PUT_INTERVAL = 0.1

    def __init__(self, response: httpx.Response, maxsize: int = MAX_QUEUED_CHUNKS) -> None:
        super().__init__(name="mcplink-sse-reader", daemon=True)
        self.response = response
        self.chunks: queue.Queue[Any] = queue.Queue(maxsize=maxsize)
        self._stopped = threading.Event()

    def stop(self) -> None:
        self._stopped.set()

    def _put(self, item: Any) -> bool:
        while not self._stopped.is_set():
            try:
                self.chunks.put(item, timeout=self.PUT_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def run(self) -> None:
        try:
            for chunk in self.response.iter_bytes():
                if chunk and not self._put(chunk):
                    return
        except Exception as e:
            if self._stopped.is_set():
                return
            # Forwarded to whoever is waiting on the queue
            self._put(TransportError(f"SSE stream read failed: {e}"))
        else:
            self._put(TransportError("SSE connection closed by server"))


class SSETransport(Transport):
    """
    Transport using Server-Sent Events (SSE) over HTTP.

    Per MCP specification:
    - Client opens a GET request to receive SSE stream
    - Client sends POST requests to a message endpoint for outgoing messages
    - The message endpoint URL is provided by the server via an 'endpoint' event

    Endpoint discovery runs in the constructor, so a constructed transport is
    ready to send.
    """

    # Fixed bound on waiting for the 'endpoint' event
    DISCOVERY_TIMEOUT = 30.0
    # Wait per empty read attempt during discovery and response waits
    DISCOVERY_POLL_INTERVAL = 0.1
    RESPONSE_POLL_INTERVAL = 0.01

    def __init__(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.Client] = None
    ) -> None:
        """
        Args:
            url: The SSE endpoint URL (e.g., "http://localhost:8080/sse")
            headers: Optional HTTP headers to include in requests (e.g., for authentication)
            timeout: Default bound in seconds on response waits and POST requests.
            http_client: Optional httpx.Client to use. A client created here is
                        closed by close(); a passed-in one is left open.
        """
        super().__init__(timeout)
        if not (url.startswith('http://') or url.startswith('https://')):
            raise ValueError(
                f"Invalid URL '{url}': expected 'http' or 'https' scheme. "
                f"Example: http://localhost:3000/sse"
            )

        self.url = url
        self.headers = headers or {}
        self.endpoint: Optional[str] = None
        self.message_url: Optional[str] = None

        self._owns_client = http_client is None
        self.http_client = http_client if http_client is not None else httpx.Client(
            timeout=httpx.Timeout(timeout)
        )
        self._response: Optional[httpx.Response] = None
        self._reader: Optional[_StreamReader] = None
        self._buffer = SSEBuffer()
        self._stream_error: Optional[TransportError] = None
        self._lock = threading.Lock()  # Protects _closed and _response

        try:
            self._open_stream()
            self._discover_endpoint()
        except Exception:
            self.close()
            raise

    def _open_stream(self) -> None:
        """Open the SSE GET connection."""
        request = self.http_client.build_request(
            "GET",
            self.url,
            headers={
                **self.headers,
                "Accept": "text/event-stream",
                "Cache-Control": "no-cache",
            },
            # Long-lived stream: no read timeout
            timeout=httpx.Timeout(self.timeout, read=None),
        )
        try:
            response = self.http_client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to connect to {self.url}: {e}") from e

        if not response.is_success:
            try:
                body = response.read().decode('utf-8', errors='replace').strip()
            except httpx.HTTPError:
                body = ""
            finally:
                response.close()
            raise HTTPStatusError(response.status_code, body, self.url)

        content_type = response.headers.get('content-type', '').lower()
        if not content_type.startswith('text/event-stream'):
            response.close()
            raise ProtocolError(
                f"Expected Content-Type 'text/event-stream', got '{content_type}'"
            )

        with self._lock:
            self._response = response
        self._reader = _StreamReader(response)
        self._reader.start()

    def _read_chunk(self, wait: float) -> Optional[bytes]:
        """
        Take the next chunk off the stream, waiting at most ``wait`` seconds.

        Returns None when nothing arrived. Raises TransportError once the
        stream has ended or failed, and on every call after that.
        """
        if self._closed:
            raise TransportError("Transport not connected")
        if self._stream_error is not None:
            raise self._stream_error
        if self._reader is None:
            raise TransportError("Stream is not available")

        try:
            item = self._reader.chunks.get(timeout=max(wait, 0))
        except queue.Empty:
            return None

        if isinstance(item, TransportError):
            self._stream_error = item
            raise item
        return item

    def _discover_endpoint(self) -> None:
        deadline = time.monotonic() + self.DISCOVERY_TIMEOUT

        while True:
            event = self._buffer.next_event()
            if event is not None:
                if event.event == 'endpoint':
                    self.endpoint = event.data.strip()
                    self.message_url = urljoin(self.url, self.endpoint)
                    logger.info(f"SSE endpoint discovered: {self.message_url}")
                    return
                logger.debug(f"Ignoring '{event.event}' event before endpoint")
                continue

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise DiscoveryTimeoutError("Timeout waiting for 'endpoint' event")

            chunk = self._read_chunk(min(remaining, self.DISCOVERY_POLL_INTERVAL))
            if chunk:
                self._buffer.feed(chunk)

    def _post_message(self, message: dict) -> None:
        """Send a JSON-RPC message via HTTP POST."""
        with self._lock:
            if self._closed:
                raise TransportError("Transport not connected")
        if not self.message_url:
            raise TransportError("Not connected: endpoint not set")

        body = self._encode(message)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"POST {self.message_url} {body}")

        try:
            response = self.http_client.post(
                self.message_url,
                content=body.encode('utf-8'),
                headers={**self.headers, "Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to POST message: {e}") from e

        if not response.is_success:
            raise HTTPStatusError(response.status_code, response.text.strip(), self.message_url)

    def send_message(
        self,
        method: str,
        params: Optional[dict] = None,
        timeout: Optional[float] = None
    ) -> dict[str, Any]:
        if not self.message_url:
            raise TransportError("Not connected: endpoint not set")

        message_id = self._next_id()
        self._post_message(self._build_request(message_id, method, params))
        return self._wait_for_response(message_id, self._resolve_timeout(timeout))

    def send_message_without_response(self, method: str, params: Optional[dict] = None) -> None:
        if not self.message_url:
            raise TransportError("Not connected: endpoint not set")

        self._next_id()
        self._post_message(self._build_notification(method, params))

    def _wait_for_response(self, message_id: int, timeout: float) -> dict[str, Any]:
        """
        Read events off the stream until one carries ``message_id``.

        Every named event except 'endpoint' is decoded. A 'message' event that
        is not JSON raises DecodeError; other events that are not JSON simply
        do not match. Other messages are dropped; the deadline is not extended
        by them.
        """
        deadline = time.monotonic() + timeout

        while True:
            event = self._buffer.next_event()
            if event is not None:
                if event.event == 'endpoint':
                    logger.debug(f"Ignoring 'endpoint' event while waiting for id {message_id}")
                    continue
                if logger.isEnabledFor(logging.DEBUG):
                    logger.debug(f"SSE << {event.event}: {event.data}")
                try:
                    message = self._decode(event.data)
                except DecodeError:
                    if event.event == 'message':
                        raise
                    logger.debug(f"Ignoring non-JSON '{event.event}' event while waiting for id {message_id}")
                    continue
                if self._matches(message, message_id):
                    return message
                logger.debug(f"Discarding message while waiting for id {message_id}")
                continue

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise MCPTimeoutError(f"Timeout waiting for response with id: {message_id}")

            chunk = self._read_chunk(min(remaining, self.RESPONSE_POLL_INTERVAL))
            if chunk:
                self._buffer.feed(chunk)

    def close(self) -> None:
        """Close the SSE stream (and the HTTP client if this transport created it)."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            response = self._response
            self._response = None

        if self._reader is not None:
            self._reader.stop()
        if response is not None:
            try:
                response.close()
            except (httpx.HTTPError, OSError) as e:
                logger.debug(f"Error closing SSE stream: {e}")

        if self._owns_client:
            self.http_client.close()
