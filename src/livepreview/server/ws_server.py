"""WebSocket server that tells connected browsers when to reload."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Set

from aiohttp import WSCloseCode, WSMsgType, web

from ..config import DEFAULT_HOST
from .base import ListenerServer

logger = logging.getLogger(__name__)

RELOAD_MESSAGE = {'command': 'reload'}
WS_PORT_UPDATED_COMMAND = 'ws-port-updated'


class WsServer(ListenerServer):
    """Accepts WebSocket upgrades at `ws_path` and broadcasts to every client."""

    kind = 'WebSocket server'

    def __init__(self, ws_path: str = '', **kwargs):
        super().__init__(**kwargs)
        self.ws_path = ws_path
        self.root_path = ''
        self.extension_path: Optional[Path] = None
        self._clients: Set[web.WebSocketResponse] = set()

    @property
    def ws_port(self) -> int:
        return self.port

    @ws_port.setter
    def ws_port(self, value: int) -> None:
        self.port = value

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def start(self, port: int, root_path: str, extension_path: Optional[Path] = None,
                    host: str = DEFAULT_HOST) -> int:
        """Listen on `port` (or the next free port); returns the bound port."""
        self.root_path = root_path
        self.extension_path = extension_path
        return await self._listen(port, host)

    def _create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(self.ws_path or '/', self._handle_ws)
        return app

    async def _handle_ws(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)
        self._clients.add(ws)
        logger.debug("WS client connected from %s (%d total)", request.remote, len(self._clients))
        try:
            await ws.send_json({'command': WS_PORT_UPDATED_COMMAND, 'port': self.ws_port})
            # Clients only listen; drain until they go away
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    logger.debug("WS connection closed with exception %s", ws.exception())
                    break
        finally:
            self._clients.discard(ws)
            logger.debug("WS client disconnected (%d left)", len(self._clients))
        return ws

    async def send_to_all(self, message: Dict[str, Any]) -> int:
        """Send `message` as JSON to every connected client; returns how many got it."""
        delivered = 0
        # Copy to avoid mutation during iteration
        for ws in list(self._clients):
            if ws.closed:
                self._clients.discard(ws)
                continue
            try:
                await ws.send_json(message)
                delivered += 1
            except (ConnectionResetError, RuntimeError) as e:
                # Client went away mid-send; it reconnects on its own
                logger.debug("Dropping WS client: %s", e)
                self._clients.discard(ws)
        return delivered

    async def refresh_browsers(self) -> int:
        """Tell every connected client to reload."""
        count = await self.send_to_all(RELOAD_MESSAGE)
        logger.info("Reload sent to %d client(s)", count)
        return count

    async def _before_shutdown(self) -> None:
        for ws in list(self._clients):
            try:
                await ws.close(code=WSCloseCode.GOING_AWAY, message=b'Server shutdown')
            except (ConnectionResetError, RuntimeError) as e:
                logger.debug("Error closing WS client: %s", e)
        self._clients.clear()
