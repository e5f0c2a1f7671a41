"""Orchestrator for the HTTP and WebSocket server pair.

The `Server` starts the HTTP server first, then the WebSocket server on the
port after the one HTTP bound, and finally corrects the port injected into
served pages if the WebSocket server had to move. It also turns workspace
change events into reload broadcasts according to `auto_refresh_preview`.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Set, Union

from ..config import DEFAULT_HOST, DONT_SHOW_AGAIN, AutoRefreshPreview, SettingsStore
from ..connection import Connection
from ..events import Disposable, EventEmitter
from ..host import HostEnvironment
from ..workspace import FileRenameEvent, FilesEvent, TextDocument, TextDocumentChangeEvent, Workspace
from .base import HostUnavailableError, PortInUseError, ServerError
from .http_server import HttpServer, ServerMsg
from .status import StatusBarNotifier
from .ws_server import WsServer

logger = logging.getLogger(__name__)


class ServerState(str, Enum):
    OFF = 'off'
    STARTING = 'starting'
    ON = 'on'


@dataclass(frozen=True)
class PortInfo:
    port: Optional[int] = None
    ws_port: Optional[int] = None


@dataclass(frozen=True)
class FullyConnectedEvent:
    port: int


class Server(Disposable):
    """Owns one HttpServer and one WsServer and sequences their startup."""

    def __init__(self, extension_path: Optional[Path], settings_store: SettingsStore,
                 workspace: Workspace, host_env: HostEnvironment,
                 connection: Optional[Connection] = None,
                 http_server: Optional[HttpServer] = None,
                 ws_server: Optional[WsServer] = None):
        super().__init__()
        self._extension_path = extension_path
        self._settings_store = settings_store
        self._host_env = host_env
        self._connection = connection
        self._http_server = self._register(http_server or HttpServer())
        self._ws_server = self._register(ws_server or WsServer())
        self._status_bar = self._register(StatusBarNotifier(extension_path))
        self._state = ServerState.OFF
        # Bumped by every open and close; an open that sees a newer value was superseded
        self._generation = 0
        self._workspace_path = workspace.workspace_path
        self._tasks: Set[asyncio.Task] = set()

        if connection is not None:
            self._ws_server.ws_path = connection.ws_path
            self._http_server.ws_path = connection.ws_path

        if not self._workspace_path:
            host_env.show_warning_message(
                'Cannot find a root to start a server on. Live Preview may not preview optimally.')

        self._on_port_change = self._register(EventEmitter[PortInfo]('portChange'))
        self.on_port_change = self._on_port_change.event

        self._on_new_req_processed = self._register(EventEmitter[ServerMsg]('newReqProcessed'))
        self.on_new_req_processed = self._on_new_req_processed.event

        self._on_fully_connected = self._register(EventEmitter[FullyConnectedEvent]('fullyConnected'))
        self.on_fully_connected = self._on_fully_connected.event

        self._register(workspace.on_did_change_text_document(self._on_text_document_changed))
        self._register(workspace.on_did_save_text_document(self._on_text_document_saved))
        self._register(workspace.on_did_rename_files(self._on_files_changed))
        self._register(workspace.on_did_delete_files(self._on_files_changed))
        self._register(workspace.on_did_create_files(self._on_files_changed))

        self._register(self.on_port_change(self._apply_port_change))
        self._register(self._http_server.on_new_req_processed(self._on_new_req_processed.fire))

    # --- ports and status ---

    @property
    def port(self) -> int:
        return self._http_server.port

    @port.setter
    def port(self, port_num: int) -> None:
        self._http_server.port = port_num

    @property
    def ws_port(self) -> int:
        return self._ws_server.ws_port

    @ws_port.setter
    def ws_port(self, port_num: int) -> None:
        self._ws_server.ws_port = port_num

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ServerState.ON

    @property
    def status_bar(self) -> StatusBarNotifier:
        return self._status_bar

    @property
    def _bind_host(self) -> str:
        if self._connection is not None:
            return self._connection.host
        return self._settings_store.settings.host or DEFAULT_HOST

    def can_get_path(self, path: str) -> bool:
        return path.startswith(self._workspace_path) if self._workspace_path else False

    def get_file_relative_to_workspace(self, path: str) -> str:
        workspace_folder = self._workspace_path
        if workspace_folder and path.startswith(workspace_folder):
            return path[len(workspace_folder):].replace('\\', '/')
        return ''

    @property
    def _serve_path(self) -> str:
        if self._connection is not None and self._connection.root_path:
            return self._connection.root_path
        return self._workspace_path or ''

    def update_configurations(self) -> None:
        self._status_bar.update_configurations()
        self._http_server.root_path = self._serve_path

    # --- reload policy ---

    @property
    def _reload_on_any_change(self) -> bool:
        return self._settings_store.settings.auto_refresh_preview == AutoRefreshPreview.ON_ANY_CHANGE

    @property
    def _reload_on_save(self) -> bool:
        return self._settings_store.settings.auto_refresh_preview == AutoRefreshPreview.ON_SAVE

    def _on_text_document_changed(self, e: TextDocumentChangeEvent) -> None:
        if e.content_changes and self._reload_on_any_change:
            self._refresh_browsers()

    def _on_text_document_saved(self, document: TextDocument) -> None:
        if self._reload_on_save:
            self._refresh_browsers()

    def _on_files_changed(self, e: Union[FilesEvent, FileRenameEvent]) -> None:
        if self._reload_on_any_change or self._reload_on_save:
            self._refresh_browsers()

    def _refresh_browsers(self) -> None:
        self._spawn(self._ws_server.refresh_browsers())

    # --- lifecycle ---

    async def open_server(self, port: int) -> bool:
        """Start the HTTP server on `port`, then the WebSocket server after it.

        Returns True once both servers are listening. Returns False without an
        extension path, when no port could be bound, or when the server was
        closed (or closed and reopened) before this startup finished.
        """
        if not self._extension_path:
            return False
        if self._state is not ServerState.OFF:
            logger.warning(f"Server is already {self._state.value}; close it before opening again")
            return False

        self._generation += 1
        generation = self._generation
        self._state = ServerState.STARTING
        # Initialize websockets to use the port after the HTTP server port
        self._http_server.set_injector_ws_port(port + 1, self._extension_path)
        try:
            http_port = await self._http_server.start(port, self._serve_path, host=self._bind_host)
            if generation != self._generation:
                return False
            self._on_http_server_bound(http_port)

            ws_port = await self._http_server_connected(http_port)
            if generation != self._generation:
                return False
            self._on_ws_server_bound(ws_port)
        except HostUnavailableError as e:
            if generation != self._generation:
                return False
            await self._abort_open()
            if self._connection is None or self._connection.host == DEFAULT_HOST:
                self._host_env.show_error_message(str(e))
                return False
            logger.warning(str(e))
            self._connection.reset_host_to_default()
            return await self.open_server(port)
        except PortInUseError as e:
            if generation != self._generation:
                return False
            await self._abort_open()
            self._host_env.show_error_message(f'Cannot start the server: {e}')
            return False
        return self._state is ServerState.ON

    async def _http_server_connected(self, http_port: int) -> int:
        return await self._ws_server.start(
            http_port + 1,
            self._workspace_path or '',
            self._extension_path,
            host=self._bind_host,
        )

    def _on_http_server_bound(self, port: int) -> None:
        self._on_port_change.fire(PortInfo(port=port))

    def _on_ws_server_bound(self, port: int) -> None:
        self._on_port_change.fire(PortInfo(ws_port=port))
        self._ws_server_connected()

    def _ws_server_connected(self) -> None:
        self._state = ServerState.ON
        self._status_bar.server_on(self._http_server.port)

        self._show_server_status_message(f'Server Opened on Port {self._http_server.port}')
        self._on_fully_connected.fire(FullyConnectedEvent(port=self._http_server.port))

    def _apply_port_change(self, e: PortInfo) -> None:
        if e.ws_port:
            self._http_server.set_injector_ws_port(e.ws_port)
            if self._connection is not None:
                self._connection.ws_port = e.ws_port
        if e.port and self._connection is not None:
            self._connection.http_port = e.port

    async def _abort_open(self) -> None:
        self._state = ServerState.OFF
        await self._close_sub_servers()

    async def _close_sub_servers(self) -> None:
        for sub_server in (self._http_server, self._ws_server):
            try:
                await sub_server.close()
            except (ServerError, OSError, RuntimeError):
                logger.exception(f"Error while closing {sub_server.kind}")

    async def close_server(self) -> None:
        """Close both servers; safe while a start is still in flight."""
        self._generation += 1
        self._state = ServerState.OFF
        await self._close_sub_servers()
        self._status_bar.server_off()

        self._show_server_status_message('Server Closed')

    # --- user messages ---

    def _show_server_status_message(self, message: str) -> None:
        if self._settings_store.settings.show_server_status_popups:
            self._spawn(self._prompt_status_message(message))
        else:
            logger.info(message)

    async def _prompt_status_message(self, message: str) -> None:
        selection = await self._host_env.show_information_message(message, DONT_SHOW_AGAIN)
        if selection == DONT_SHOW_AGAIN:
            self._settings_store.update('show_server_status_popups', False)

    def _spawn(self, coro) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop; dropping background task")
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task failed", exc_info=task.exception())

    async def wait_for_pending(self) -> None:
        """Wait for scheduled broadcasts and status prompts to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def dispose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        super().dispose()
