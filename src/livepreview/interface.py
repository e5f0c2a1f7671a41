"""Runtime for the live preview server.

This module provides the LivePreviewInterface class which manages the
server grouping, the file system watcher and the settings file for one
workspace.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from watchdog.observers import Observer

from .config import SettingsStore
from .connection import ConnectionInfo
from .grouping import EXTENSION_PATH, ServerGrouping
from .host import HostEnvironment
from .watcher import WorkspaceEventHandler
from .workspace import Workspace, WorkspaceFolder

logger = logging.getLogger(__name__)


class LivePreviewInterface:
    """Serves a workspace with live reload.

    Used through async initialize(), run() and shutdown(), in that order.
    """

    def __init__(self, workspace_root: Optional[Path], settings_store: Optional[SettingsStore] = None,
                 host_env: Optional[HostEnvironment] = None):
        self.workspace_root = Path(workspace_root).resolve() if workspace_root else None
        self.settings_store = settings_store or SettingsStore()
        self.host_env = host_env

        self.workspace: Optional[Workspace] = None
        self.grouping: Optional[ServerGrouping] = None
        self.connection_info: Optional[ConnectionInfo] = None

        # Filesystem watcher feeding workspace change events
        self._observer = None

        # Control flag for run loop
        self._running = False

    @property
    def host(self) -> Optional[str]:
        return self.grouping.connection.host if self.grouping else None

    @property
    def port(self) -> Optional[int]:
        return self.grouping.server.port if self.grouping else None

    async def initialize(self):
        """Open the servers and start watching the workspace."""
        folder = WorkspaceFolder(self.workspace_root) if self.workspace_root else None
        self.workspace = Workspace(folder)
        self.grouping = ServerGrouping(self.settings_store, self.workspace, self.host_env, EXTENSION_PATH)
        self.grouping.on_connected(self._on_connected)
        self.grouping.on_should_reset_init_host(
            lambda host: logger.info(f"Bind host reset to {host}"))

        if not await self.grouping.open_server():
            raise RuntimeError(f"Failed to start live preview server on port {self.settings_store.settings.port}")
        self._running = True

        # Start file watcher to feed reload events on workspace changes
        if self.workspace_root and self.workspace_root.is_dir():
            try:
                settings = self.settings_store.settings
                settings_file = self.settings_store.path
                handler = WorkspaceEventHandler(
                    self.workspace,
                    asyncio.get_running_loop(),
                    exclude=settings.watch_exclude,
                    debounce_ms=settings.debounce_ms,
                    on_settings_file_changed=self.settings_store.reload,
                    settings_file=os.fspath(settings_file) if settings_file else None,
                )
                observer = Observer()
                observer.schedule(handler, os.fspath(self.workspace_root), recursive=True)
                observer.daemon = True
                observer.start()
                self._observer = observer
                logger.info(f"Watching {self.workspace_root} for changes")
            except OSError as e:
                logger.warning(f"File watcher not started, browsers will not auto-reload: {e}")

        logger.info(f"Live preview server started at http://{self.host}:{self.port}/")

    def _on_connected(self, info: ConnectionInfo) -> None:
        self.connection_info = info
        logger.info(f"Preview available at {info.http_uri} (reload socket {info.ws_uri})")

    def stop(self):
        """Make `run` return; call `shutdown` afterwards."""
        self._running = False

    async def run(self):
        """Keep the server running until shutdown."""
        while self._running:
            await asyncio.sleep(1)

    async def shutdown(self):
        """Stop the watcher, close the servers and release everything."""
        self._running = False
        if self._observer is not None:
            observer, self._observer = self._observer, None
            observer.stop()
            await asyncio.get_running_loop().run_in_executor(None, observer.join, 5)

        if self.grouping is not None:
            await self.grouping.close_server()
            await self.grouping.wait_for_pending()
            self.grouping.dispose()
            self.grouping = None

        if self.workspace is not None:
            self.workspace.dispose()
            self.workspace = None
        self.settings_store.dispose()
