"""One Connection plus one Server for a workspace."""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Set

from .config import SettingsStore
from .connection import Connection
from .events import Disposable
from .host import HostEnvironment
from .paths import get_valid_server_root_for_workspace
from .server import FullyConnectedEvent, Server
from .workspace import Workspace

logger = logging.getLogger(__name__)

EXTENSION_PATH = Path(__file__).resolve().parent


class ServerGrouping(Disposable):
    """Keeps the Connection in step with the Server it describes.

    When the server reports it is fully connected, the connection resolves
    its external URIs and fires `on_connected`.
    """

    def __init__(self, settings_store: SettingsStore, workspace: Workspace,
                 host_env: Optional[HostEnvironment] = None,
                 extension_path: Optional[Path] = EXTENSION_PATH):
        super().__init__()
        settings = settings_store.settings
        self.settings_store = settings_store
        self.workspace = workspace
        self.host_env = host_env or HostEnvironment(settings.external_host, settings.port_forwards)
        self._pending: Set[asyncio.Task] = set()

        folder = workspace.folder
        root_prefix = get_valid_server_root_for_workspace(folder.path, settings.serve_root) if folder else ''
        self.connection = self._register(Connection(
            folder,
            root_prefix,
            settings.port,
            settings.port + 1,
            settings.host,
            self.host_env,
            settings_store,
        ))
        self.server = self._register(Server(
            extension_path,
            settings_store,
            workspace,
            self.host_env,
            connection=self.connection,
        ))

        self.on_connected = self.connection.on_connected
        self.on_should_reset_init_host = self.connection.on_should_reset_init_host
        self.on_port_change = self.server.on_port_change
        self.on_new_req_processed = self.server.on_new_req_processed
        self.on_fully_connected = self.server.on_fully_connected

        self._register(self.server.on_fully_connected(self._on_fully_connected))
        self._register(settings_store.on_did_change_configuration(lambda e: self.server.update_configurations()))

    @property
    def is_running(self) -> bool:
        return self.server.is_running

    def _on_fully_connected(self, e: FullyConnectedEvent) -> None:
        task = asyncio.get_running_loop().create_task(self.connection.connected())
        self._pending.add(task)
        task.add_done_callback(self._connected_done)

    def _connected_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Could not resolve external addresses: {task.exception()}")

    async def open_server(self, port: Optional[int] = None) -> bool:
        """Open the server on `port`, the configured port by default."""
        if port is None:
            port = self.settings_store.settings.port
        return await self.server.open_server(port)

    async def close_server(self) -> None:
        await self.server.close_server()

    async def wait_for_pending(self) -> None:
        """Wait until queued connection events and broadcasts have been delivered."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        await self.server.wait_for_pending()

    def dispose(self) -> None:
        for task in list(self._pending):
            task.cancel()
        super().dispose()
