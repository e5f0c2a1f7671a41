"""Shared aiohttp listener used by the HTTP and WebSocket servers.

This module provides the ListenerServer class which manages:
- Binding an aiohttp application with a bounded linear port retry
- Reporting the bound port through `on_connected`
- Idempotent shutdown that is safe while a bind is still in flight
"""

import asyncio
import errno
import logging
import socket
from typing import Optional

from aiohttp import web

from ..config import DEFAULT_HOST, MAX_PORT_ATTEMPTS
from ..events import Disposable, EventEmitter

logger = logging.getLogger(__name__)


class ServerError(Exception):
    """Base class for listener failures."""


class PortInUseError(ServerError):
    """Every port tried was already taken."""

    def __init__(self, first_port: int, attempts: int):
        super().__init__(f"Ports {first_port}-{first_port + attempts - 1} are all in use")
        self.first_port = first_port
        self.attempts = attempts


class HostUnavailableError(ServerError):
    """The bind host cannot be resolved or assigned on this machine."""

    def __init__(self, host: str, reason: Exception):
        super().__init__(f"Cannot bind to host {host}: {reason}")
        self.host = host
        self.reason = reason


class ListenerServer(Disposable):
    """An aiohttp application bound to one TCP port."""

    kind = 'server'

    def __init__(self, max_attempts: int = MAX_PORT_ATTEMPTS):
        super().__init__()
        self.max_attempts = max_attempts
        self.host = DEFAULT_HOST
        self._port = 0
        self._runner: Optional[web.AppRunner] = None
        self._closing: Optional[asyncio.Task] = None
        # Serializes start and close so a close never races an in-flight bind
        self._lock = asyncio.Lock()

        self._on_connected = self._register(EventEmitter[int](f'{self.kind}Connected'))
        self.on_connected = self._on_connected.event

    @property
    def port(self) -> int:
        return self._port

    @port.setter
    def port(self, value: int) -> None:
        self._port = value

    @property
    def is_listening(self) -> bool:
        return self._runner is not None

    def _create_app(self) -> web.Application:
        raise NotImplementedError

    async def _listen(self, port: int, host: str) -> int:
        """Bind on `port` or one of the following ports and return the bound port.

        Fires `on_connected` with the bound port before returning.
        """
        async with self._lock:
            if self._runner is not None:
                await self._shutdown()
            self.host = host
            runner = web.AppRunner(self._create_app(), handle_signals=False, access_log=None)
            await runner.setup()
            try:
                bound = await self._bind(runner, port, host)
            except BaseException:
                await runner.cleanup()
                raise
            self._runner = runner
            self._port = bound
        logger.info(f"{self.kind} listening on {host}:{bound}")
        self._on_connected.fire(bound)
        return bound

    async def _bind(self, runner: web.AppRunner, port: int, host: str) -> int:
        for attempt in range(self.max_attempts):
            candidate = port + attempt
            site = web.TCPSite(runner, host, candidate)
            try:
                await site.start()
            except socket.gaierror as e:
                raise HostUnavailableError(host, e) from e
            except OSError as e:
                if e.errno == errno.EADDRINUSE:
                    logger.debug(f"{self.kind}: port {candidate} in use, trying next")
                    await site.stop()
                    continue
                if e.errno == errno.EADDRNOTAVAIL:
                    raise HostUnavailableError(host, e) from e
                raise
            return self._bound_port(runner, candidate)
        raise PortInUseError(port, self.max_attempts)

    @staticmethod
    def _bound_port(runner: web.AppRunner, requested: int) -> int:
        # Port 0 asks the OS for an ephemeral port; read back what it chose
        if requested:
            return requested
        for address in runner.addresses:
            return address[1]
        return requested

    async def _before_shutdown(self) -> None:
        """Hook for subclasses to close client connections first."""

    async def _shutdown(self) -> None:
        runner, self._runner = self._runner, None
        if runner is None:
            return
        try:
            await self._before_shutdown()
        finally:
            await runner.cleanup()
        logger.info(f"{self.kind} on port {self._port} closed")

    async def close(self) -> None:
        """Stop listening; safe to call repeatedly and before `start` finished."""
        async with self._lock:
            await self._shutdown()

    async def wait_closed(self) -> None:
        """Wait for a close scheduled by `dispose` to finish."""
        if self._closing is not None:
            await asyncio.gather(self._closing, return_exceptions=True)

    def _close_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Error while closing {self.kind}", exc_info=task.exception())

    def dispose(self) -> None:
        if self._runner is not None and self._closing is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(f"{self.kind} on port {self._port} disposed outside the event loop; "
                               f"await close() before dispose() to release the port")
            else:
                self._closing = loop.create_task(self.close())
                self._closing.add_done_callback(self._close_done)
        super().dispose()
