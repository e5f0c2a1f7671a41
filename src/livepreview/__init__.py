"""Live preview server for a local workspace.

This package pairs an HTTP file server with a WebSocket notification
server so that edits in the workspace reload connected browsers.
"""

from .connection import Connection, ConnectionInfo
from .grouping import ServerGrouping
from .interface import LivePreviewInterface
from .server import Server

__all__ = ['Connection', 'ConnectionInfo', 'LivePreviewInterface', 'Server', 'ServerGrouping']
