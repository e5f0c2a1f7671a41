"""Host and port bookkeeping for one server grouping.

The `Connection` keeps track of the host and port information for the HTTP
and WebSocket servers. Upon request it resolves the local addresses into
external URIs, which may differ from the bind address when the workspace is
reached through a tunnel or a forwarded container port.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import DEFAULT_HOST, SETTINGS_SECTION_ID, ConfigurationChangeEvent, SettingsStore
from .events import Disposable, EventEmitter
from .host import HostEnvironment, PortAttributes, PortAutoForwardAction
from .paths import get_valid_server_root_for_workspace, path_begins_with, relative_suffix
from .workspace import WorkspaceFolder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionInfo:
    """Fired to `on_connected` listeners once both external URIs are known."""
    http_uri: str
    ws_uri: str
    workspace: Optional[WorkspaceFolder]
    root_prefix: Optional[str]
    http_port: int


class Connection(Disposable):
    """Host, ports and served root of one HTTP/WS server pair."""

    def __init__(self, workspace: Optional[WorkspaceFolder], root_prefix: str,
                 http_port: int, ws_port: int, host: str,
                 host_env: HostEnvironment, settings_store: Optional[SettingsStore] = None):
        super().__init__()
        self._workspace = workspace
        self._root_prefix = root_prefix
        self._host_env = host_env
        self._settings_store = settings_store
        self.host = host
        self.ws_path = ''

        self._on_connected = self._register(EventEmitter[ConnectionInfo]('connected'))
        self.on_connected = self._on_connected.event

        self._on_should_reset_init_host = self._register(EventEmitter[str]('shouldResetInitHost'))
        self.on_should_reset_init_host = self._on_should_reset_init_host.event

        if settings_store is not None:
            self._register(settings_store.on_did_change_configuration(self._on_configuration_changed))

        # The advertiser learns the ports through the setters, once a bind is confirmed
        self._port_attributes = self._register(ServerPortAttributesProvider(host_env))
        self._http_port = http_port
        self._ws_port = ws_port

    def _on_configuration_changed(self, e: ConfigurationChangeEvent) -> None:
        if e.affects_configuration(SETTINGS_SECTION_ID):
            serve_root = self._settings_store.settings.serve_root
            self._root_prefix = (
                get_valid_server_root_for_workspace(self._workspace.path, serve_root) if self._workspace else '')

    @property
    def http_port(self) -> int:
        return self._http_port

    @http_port.setter
    def http_port(self, port: int) -> None:
        self._http_port = port
        self._port_attributes.http_port = port

    @property
    def ws_port(self) -> int:
        return self._ws_port

    @ws_port.setter
    def ws_port(self, port: int) -> None:
        self._ws_port = port
        self._port_attributes.ws_port = port

    @property
    def workspace(self) -> Optional[WorkspaceFolder]:
        return self._workspace

    @property
    def root_prefix(self) -> str:
        return self._root_prefix

    @property
    def root_uri(self) -> Optional[Path]:
        if self._workspace:
            return self._workspace.path / self._root_prefix
        return None

    @property
    def root_path(self) -> Optional[str]:
        root = self.root_uri
        return os.path.normpath(root) if root is not None else None

    async def connected(self) -> None:
        """Called once both servers are listening; fires `on_connected`.

        Both URIs are resolved before anything is fired, so listeners see a
        single event carrying both addresses.
        """
        http_uri, ws_uri = await asyncio.gather(
            self.resolve_external_http_uri(), self.resolve_external_ws_uri())
        self._on_connected.fire(ConnectionInfo(
            http_uri=http_uri,
            ws_uri=ws_uri,
            workspace=self._workspace,
            root_prefix=self._root_prefix,
            http_port=self.http_port,
        ))

    async def resolve_external_http_uri(self) -> str:
        return await self._host_env.as_external_uri(self.construct_local_uri(self.http_port))

    async def resolve_external_ws_uri(self) -> str:
        return await self._host_env.as_external_uri(self.construct_local_uri(self.ws_port, self.ws_path))

    def construct_local_uri(self, port: int, path: Optional[str] = None) -> str:
        host = self.host
        if ':' in host and not host.startswith('['):
            host = f'[{host}]'
        return f'http://{host}:{port}{path or ""}'

    def reset_host_to_default(self) -> None:
        """Fall back to the default host, used when the configured address cannot be bound."""
        if self.host != DEFAULT_HOST:
            self._host_env.show_warning_message(
                f'The IP address "{self.host}" cannot be used to host the server. '
                f'Using default IP {DEFAULT_HOST}.')
            self.host = DEFAULT_HOST
            self._on_should_reset_init_host.fire(self.host)

    def get_file_relative_to_workspace(self, path: str) -> Optional[str]:
        """Path of an absolute file relative to the served root, None outside of it.

        With root `/a/site` the file `/a/site/css/main.css` gives `/css/main.css`.
        """
        root = self.root_path
        if root and path_begins_with(path, root):
            return relative_suffix(path, root)
        return None

    def get_appended_uri(self, path: str) -> Path:
        root = self.root_uri
        if root is not None:
            return root / path.lstrip('/\\')
        return Path(path)


class ServerPortAttributesProvider(Disposable):
    """Marks the server ports as silent so the host does not announce them.

    Ports are read at query time; 0 means unassigned and never matches.
    """

    def __init__(self, host_env: HostEnvironment):
        super().__init__()
        self.http_port = 0
        self.ws_port = 0
        self._register(host_env.register_port_attributes_provider(self))

    def provide_port_attributes(self, port: int) -> Optional[PortAttributes]:
        if port and port in (self.http_port, self.ws_port):
            return PortAttributes(PortAutoForwardAction.SILENT)
        return None
