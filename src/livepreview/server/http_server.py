"""HTTP file server for the live preview.

Serves files below the workspace root and injects a small script into HTML
pages so the browser subscribes to the WebSocket server for reloads.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import aiofiles
from aiohttp import web

from ..config import DEFAULT_HOST
from ..events import EventEmitter
from ..paths import path_begins_with
from .base import ListenerServer

logger = logging.getLogger(__name__)

MEDIA_DIR = Path(__file__).resolve().parent.parent / 'media'
INJECT_SCRIPT_NAME = 'inject_script.html'
INJECTED_MARKER = 'data-live-preview="injected"'
HTML_SUFFIXES = ('.html', '.htm')


@dataclass(frozen=True)
class ServerMsg:
    """One processed request, reported through `on_new_req_processed`."""
    method: str
    url: str
    status: int


class HttpServer(ListenerServer):
    """HTTP server rooted at a workspace path."""

    kind = 'HTTP server'

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.root_path = ''
        self.ws_path = ''
        self._injector_ws_port = 0
        self._script_template: Optional[str] = None

        self._on_new_req_processed = self._register(EventEmitter[ServerMsg]('newReqProcessed'))
        self.on_new_req_processed = self._on_new_req_processed.event

    @property
    def injector_ws_port(self) -> int:
        return self._injector_ws_port

    def set_injector_ws_port(self, port: int, extension_path: Optional[Path] = None) -> None:
        """Set the WebSocket port written into served pages.

        Pages served after this call reference `port`; may be called before
        or after the server is listening.
        """
        if extension_path is not None or self._script_template is None:
            self._script_template = self._load_script_template(extension_path)
        self._injector_ws_port = port

    @staticmethod
    def _load_script_template(extension_path: Optional[Path]) -> str:
        media_dir = Path(extension_path) / 'media' if extension_path else MEDIA_DIR
        script_file = media_dir / INJECT_SCRIPT_NAME
        if not script_file.is_file():
            logger.warning(f"Inject script not found at {script_file}; using the packaged copy")
            script_file = MEDIA_DIR / INJECT_SCRIPT_NAME
        return script_file.read_text(encoding='utf-8')

    @property
    def inject_script(self) -> str:
        if self._script_template is None:
            self._script_template = self._load_script_template(None)
        return (self._script_template
                .replace('$WS_PORT', str(int(self._injector_ws_port)))
                .replace('$WS_PATH', self.ws_path))

    def inject(self, html: str) -> str:
        """Insert the reload script before `</body>`, or append it."""
        if INJECTED_MARKER in html:
            return html
        script = self.inject_script
        idx = html.lower().rfind('</body>')
        if idx == -1:
            return html + script
        return html[:idx] + script + html[idx:]

    async def start(self, port: int, root_path: str, host: str = DEFAULT_HOST) -> int:
        """Serve `root_path` on `port` (or the next free port); returns the bound port."""
        self.root_path = root_path
        return await self._listen(port, host)

    def _create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/{tail:.*}', self._handle)
        return app

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        try:
            response = await self._respond(request)
        except web.HTTPException as e:
            self._report(request, e.status)
            raise
        self._report(request, response.status)
        return response

    def _report(self, request: web.Request, status: int) -> None:
        logger.debug("HTTP: %s %s %d", request.method, request.rel_url, status)
        self._on_new_req_processed.fire(ServerMsg(request.method, str(request.rel_url), status))

    def _resolve_fs_path(self, rel: str) -> Path:
        if not self.root_path:
            # No workspace: request paths are absolute file system paths
            return Path('/' + rel).resolve()
        root = Path(self.root_path).resolve()
        fs_path = (root / rel).resolve()
        if not path_begins_with(fs_path, root):
            raise web.HTTPForbidden()
        return fs_path

    async def _respond(self, request: web.Request) -> web.StreamResponse:
        fs_path = self._resolve_fs_path(request.match_info.get('tail', ''))

        if fs_path.is_dir():
            if not request.path.endswith('/'):
                raise web.HTTPFound(request.path + '/')
            fs_path = fs_path / 'index.html'

        if not fs_path.is_file():
            raise web.HTTPNotFound()

        headers = {'Cache-Control': 'no-store'}
        if fs_path.suffix.lower() in HTML_SUFFIXES:
            async with aiofiles.open(fs_path, 'r', encoding='utf-8', errors='replace') as f:
                html = await f.read()
            return web.Response(text=self.inject(html), content_type='text/html', headers=headers)
        return web.FileResponse(fs_path, headers=headers)
