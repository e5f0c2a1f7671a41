"""HTTP and WebSocket servers for the live preview.

This module provides the Server orchestrator and the two listeners it
sequences.
"""

from .base import HostUnavailableError, PortInUseError, ServerError
from .http_server import HttpServer, ServerMsg
from .manager import FullyConnectedEvent, PortInfo, Server, ServerState
from .ws_server import WsServer

__all__ = [
    'FullyConnectedEvent',
    'HostUnavailableError',
    'HttpServer',
    'PortInUseError',
    'PortInfo',
    'Server',
    'ServerError',
    'ServerMsg',
    'ServerState',
    'WsServer',
]
