"""End-to-end tests for opening and closing the HTTP/WebSocket server pair."""

import asyncio

import aiohttp
import pytest

from conftest import RecordingHost, free_port, occupy
from livepreview.config import DEFAULT_HOST, DONT_SHOW_AGAIN, AutoRefreshPreview
from livepreview.connection import Connection
from livepreview.host import PortAutoForwardAction
from livepreview.server import HttpServer, Server, ServerState
from livepreview.workspace import WorkspaceFolder


@pytest.fixture
def connection(workspace_dir, settings_store, host_env):
    port = settings_store.settings.port
    conn = Connection(WorkspaceFolder(workspace_dir), '', port, port + 1, DEFAULT_HOST, host_env, settings_store)
    yield conn
    conn.dispose()


@pytest.fixture
def make_server(settings_store, workspace, host_env, connection, tmp_path):
    created = []

    def _make(**kwargs):
        kwargs.setdefault('connection', connection)
        server = Server(tmp_path, settings_store, workspace, host_env, **kwargs)
        created.append(server)
        return server

    yield _make
    for server in created:
        server.dispose()


async def fetch(url):
    async with aiohttp.ClientSession() as session:
        async with session.get(url, allow_redirects=False) as resp:
            return resp.status, await resp.text(), resp.headers


@pytest.mark.asyncio
async def test_open_binds_http_then_ws_on_next_port(make_server, connection, host_env):
    server = make_server()
    port = free_port()
    fully_connected = []
    port_changes = []
    server.on_fully_connected(fully_connected.append)
    server.on_port_change(port_changes.append)

    try:
        assert await server.open_server(port) is True

        assert server.is_running
        assert server.port == port
        assert server.ws_port == port + 1
        assert [e.port for e in fully_connected] == [port]
        assert [(c.port, c.ws_port) for c in port_changes] == [(port, None), (None, port + 1)]
        assert connection.http_port == port
        assert connection.ws_port == port + 1
        assert host_env.provide_port_attributes(port).auto_forward_action is PortAutoForwardAction.SILENT
        assert host_env.provide_port_attributes(port + 1) is not None
        assert server.status_bar.is_on
    finally:
        await server.close_server()


@pytest.mark.asyncio
async def test_ws_port_conflict_moves_ws_and_corrects_injector(make_server, workspace_dir):
    server = make_server()
    port = free_port()
    blocker = occupy(port + 1)
    try:
        assert await server.open_server(port) is True

        assert server.port == port
        assert server.ws_port == port + 2
        status, body, _ = await fetch(f'http://127.0.0.1:{port}/index.html')
        assert status == 200
        assert f'var wsPort = {port + 2};' in body
        assert f'var wsPort = {port + 1};' not in body
    finally:
        blocker.close()
        await server.close_server()


@pytest.mark.asyncio
async def test_http_port_conflict_moves_both(make_server):
    server = make_server()
    port = free_port()
    blocker = occupy(port)
    try:
        assert await server.open_server(port) is True
        assert server.port == port + 1
        assert server.ws_port == port + 2
    finally:
        blocker.close()
        await server.close_server()


@pytest.mark.asyncio
async def test_exhausted_ports_fail_open(make_server, host_env):
    server = make_server(http_server=HttpServer(max_attempts=1))
    port = free_port()
    blocker = occupy(port)
    try:
        assert await server.open_server(port) is False
        assert not server.is_running
        assert server.state is ServerState.OFF
        assert host_env.errors
    finally:
        blocker.close()
        await server.close_server()


@pytest.mark.asyncio
async def test_open_then_immediately_close(make_server):
    server = make_server()
    fully_connected = []
    server.on_fully_connected(fully_connected.append)

    opening = asyncio.ensure_future(server.open_server(free_port()))
    await asyncio.sleep(0)
    await server.close_server()
    result = await opening

    assert result is False
    assert not server.is_running
    assert fully_connected == []


@pytest.mark.asyncio
async def test_close_is_safe_before_open_and_twice(make_server, host_env):
    server = make_server()

    await server.close_server()
    await server.open_server(free_port())
    await server.close_server()
    await server.close_server()

    assert not server.is_running
    assert not server.status_bar.is_on


@pytest.mark.asyncio
async def test_reopen_fires_fully_connected_once_per_open(make_server):
    server = make_server()
    fully_connected = []
    server.on_fully_connected(fully_connected.append)

    try:
        assert await server.open_server(free_port())
        assert await server.open_server(free_port()) is False
        await server.close_server()
        assert await server.open_server(free_port())
    finally:
        await server.close_server()

    assert len(fully_connected) == 2


@pytest.mark.asyncio
async def test_status_messages_and_dont_show_again(make_server, settings_store, host_env):
    host_env.answer = DONT_SHOW_AGAIN
    server = make_server()
    port = free_port()

    await server.open_server(port)
    await server.wait_for_pending()
    assert host_env.infos == [(f'Server Opened on Port {port}', (DONT_SHOW_AGAIN,))]
    assert settings_store.settings.show_server_status_popups is False

    await server.close_server()
    await server.wait_for_pending()
    assert len(host_env.infos) == 1


@pytest.mark.asyncio
async def test_browser_receives_reload_on_save(make_server, workspace, settings_store):
    settings_store.update('auto_refresh_preview', AutoRefreshPreview.ON_SAVE)
    server = make_server()
    port = free_port()
    await server.open_server(port)
    try:
        async with aiohttp.ClientSession() as session:
            async with session.ws_connect(f'http://127.0.0.1:{server.ws_port}/') as ws:
                hello = await ws.receive_json(timeout=5)
                assert hello == {'command': 'ws-port-updated', 'port': server.ws_port}

                workspace.save_text_document('/w/index.html')
                message = await ws.receive_json(timeout=5)
                assert message == {'command': 'reload'}
    finally:
        await server.close_server()


@pytest.mark.asyncio
async def test_invalid_host_falls_back_to_default(settings_store, workspace, workspace_dir, tmp_path):
    host_env = RecordingHost()
    port = free_port()
    connection = Connection(WorkspaceFolder(workspace_dir), '', port, port + 1, '203.0.113.7', host_env)
    resets = []
    connection.on_should_reset_init_host(resets.append)
    server = Server(tmp_path, settings_store, workspace, host_env, connection=connection)
    try:
        assert await server.open_server(port) is True
        assert connection.host == DEFAULT_HOST
        assert resets == [DEFAULT_HOST]
        assert len(host_env.warnings) == 1
    finally:
        await server.close_server()
        server.dispose()
        connection.dispose()


@pytest.mark.asyncio
async def test_requests_are_reported(make_server):
    server = make_server()
    port = free_port()
    requests = []
    server.on_new_req_processed(requests.append)
    await server.open_server(port)
    try:
        await fetch(f'http://127.0.0.1:{port}/index.html')
        await fetch(f'http://127.0.0.1:{port}/missing.html')
    finally:
        await server.close_server()

    assert [(r.method, r.url, r.status) for r in requests] == [
        ('GET', '/index.html', 200),
        ('GET', '/missing.html', 404),
    ]


@pytest.mark.asyncio
async def test_close_while_ws_bind_in_flight(make_server):
    server = make_server()
    fully_connected = []
    closing = []
    server.on_fully_connected(fully_connected.append)
    # Fires right after HTTP bound, so the close runs while the WS server is binding
    server._http_server.on_connected(lambda port: closing.append(asyncio.ensure_future(server.close_server())))

    result = await server.open_server(free_port())
    await asyncio.gather(*closing)

    assert result is False
    assert fully_connected == []
    assert not server.is_running
    assert not server._ws_server.is_listening
    assert not server._http_server.is_listening


@pytest.mark.asyncio
async def test_reopen_during_superseded_open(make_server, connection):
    server = make_server()
    first_port = free_port()
    second_port = free_port()
    while abs(second_port - first_port) < 3:
        second_port = free_port()
    fully_connected = []
    server.on_fully_connected(fully_connected.append)

    first = asyncio.ensure_future(server.open_server(first_port))
    await asyncio.sleep(0)
    closing = asyncio.ensure_future(server.close_server())
    await asyncio.sleep(0)
    second = asyncio.ensure_future(server.open_server(second_port))
    try:
        results = await asyncio.gather(first, closing, second)

        assert results[0] is False
        assert results[2] is True
        assert server.is_running
        assert [e.port for e in fully_connected] == [second_port]
        assert server.port == second_port
        assert server.ws_port == second_port + 1
        assert connection.http_port == second_port
        assert connection.ws_port == second_port + 1
        assert server._http_server.injector_ws_port == second_port + 1
    finally:
        await server.close_server()


@pytest.mark.asyncio
async def test_dispose_closes_listener(workspace_dir):
    http = HttpServer()
    port = await http.start(free_port(), str(workspace_dir))
    assert http.is_listening

    http.dispose()
    await http.wait_closed()

    assert not http.is_listening
    with pytest.raises(aiohttp.ClientConnectionError):
        await fetch(f'http://127.0.0.1:{port}/index.html')
