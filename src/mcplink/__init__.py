import sys
assert sys.version_info >= (3, 9), "Requires Python 3.9+"
import logging

logger = logging.getLogger('mcplink')
handler = logging.StreamHandler()
logger.addHandler(handler)

__version__ = "0.1.0"

from .errors import (
    MCPError,
    NotConnectedError,
    TransportError,
    HTTPStatusError,
    MCPTimeoutError,
    DiscoveryTimeoutError,
    ProtocolError,
    DecodeError,
    VersionMismatchError,
    RPCError,
)
from .transport import Transport, DEFAULT_TIMEOUT
from .sse import SSETransport, SSEEvent, SSEBuffer, parse_event
from .websocket import WebSocketTransport
from .client import MCPClient, ConnectionState, create_sse_client, create_websocket_client
from .functions import MCPFunctions, FunctionResponse, TextItem, ImageItem, AudioItem

__all__ = [
    # Exceptions
    "MCPError",
    "NotConnectedError",
    "TransportError",
    "HTTPStatusError",
    "MCPTimeoutError",
    "DiscoveryTimeoutError",
    "ProtocolError",
    "DecodeError",
    "VersionMismatchError",
    "RPCError",
    # Transports
    "Transport",
    "DEFAULT_TIMEOUT",
    "SSETransport",
    "SSEEvent",
    "SSEBuffer",
    "parse_event",
    "WebSocketTransport",
    # Client
    "MCPClient",
    "ConnectionState",
    "create_sse_client",
    "create_websocket_client",
    # Function-calling adapter
    "MCPFunctions",
    "FunctionResponse",
    "TextItem",
    "ImageItem",
    "AudioItem",
]
