"""Shared fixtures for the live preview tests."""

import socket
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from livepreview.config import Settings, SettingsStore
from livepreview.host import HostEnvironment
from livepreview.workspace import Workspace, WorkspaceFolder

INDEX_HTML = "<!DOCTYPE html>\n<html><head><title>t</title></head><body><h1>Hello</h1></body></html>\n"


class RecordingHost(HostEnvironment):
    """Host that records messages and answers prompts with `answer`."""

    def __init__(self, answer: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.answer = answer
        self.warnings: List[str] = []
        self.errors: List[str] = []
        self.infos: List[Tuple[str, Tuple[str, ...]]] = []

    def show_warning_message(self, message: str) -> None:
        self.warnings.append(message)

    def show_error_message(self, message: str) -> None:
        self.errors.append(message)

    async def show_information_message(self, message: str, *items: str) -> Optional[str]:
        self.infos.append((message, items))
        return self.answer


def free_port() -> int:
    """A port nothing listens on right now, with the next two ports free as well."""
    for _ in range(50):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 0))
            port = s.getsockname()[1]
        if port + 3 < 65535 and all(_is_free(port + i) for i in range(1, 3)):
            return port
    raise RuntimeError("No free port range found")


def _is_free(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind(("127.0.0.1", port))
        except OSError:
            return False
    return True


def occupy(port: int) -> socket.socket:
    """Listen on `port` so servers cannot bind it; caller closes the socket."""
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", port))
    s.listen(1)
    return s


@pytest.fixture
def workspace_dir(tmp_path):
    """Workspace with an index page, a stylesheet and a sub site."""
    root = tmp_path / "workspace"
    (root / "css").mkdir(parents=True)
    (root / "site").mkdir()
    (root / "index.html").write_text(INDEX_HTML, encoding="utf-8")
    (root / "css" / "main.css").write_text("body { color: red; }\n", encoding="utf-8")
    (root / "site" / "index.html").write_text(INDEX_HTML, encoding="utf-8")
    return root


@pytest.fixture
def workspace(workspace_dir):
    ws = Workspace(WorkspaceFolder(workspace_dir))
    yield ws
    ws.dispose()


@pytest.fixture
def settings_store(tmp_path):
    store = SettingsStore(Settings(host="127.0.0.1", port=free_port()), tmp_path / "settings.yaml")
    yield store
    store.dispose()


@pytest.fixture
def host_env():
    return RecordingHost()
