"""File system watcher feeding workspace change events.

This module provides a watchdog event handler that translates disk events
into the workspace change channels on the server's event loop.
"""

import asyncio
import logging
import os
import time
from typing import Callable, Dict, Iterable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler

from .workspace import Workspace

logger = logging.getLogger(__name__)

# Above this many tracked paths, entries outside the debounce window are dropped
DEBOUNCE_PRUNE_THRESHOLD = 256


class WorkspaceEventHandler(FileSystemEventHandler):
    """Watchdog handler that forwards file events to a `Workspace`.

    Runs on the watchdog thread and hands every event to `loop` with
    `call_soon_threadsafe`. Debounces rapid modifications of the same file,
    since editors often write a file in several steps.
    """

    def __init__(self, workspace: Workspace, loop: asyncio.AbstractEventLoop,
                 exclude: Optional[Iterable[str]] = None, debounce_ms: int = 400,
                 on_settings_file_changed: Optional[Callable[[], None]] = None,
                 settings_file: Optional[str] = None):
        super().__init__()
        self.workspace = workspace
        self.loop = loop
        self.exclude = set(exclude or ())
        self.debounce_ms = debounce_ms
        self._settings_file = os.path.normcase(os.path.abspath(settings_file)) if settings_file else None
        self._on_settings_file_changed = on_settings_file_changed
        self._last_modified: Dict[str, float] = {}

    def _is_excluded(self, path: str) -> bool:
        parts = path.replace('\\', '/').split('/')
        return any(part in self.exclude for part in parts)

    def _dispatch(self, callback, *args) -> None:
        if self.loop.is_closed():
            return
        try:
            self.loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop shut down between the check and the call
            logger.debug("Dropped file event, event loop is closed")

    def _is_settings_file(self, path: str) -> bool:
        return bool(self._settings_file) and os.path.normcase(os.path.abspath(path)) == self._settings_file

    def on_modified(self, event: FileSystemEvent):
        if event.is_directory or self._is_excluded(event.src_path):
            return
        path = os.fsdecode(event.src_path)
        now = time.monotonic()
        last = self._last_modified.get(path, 0.0)
        if (now - last) * 1000.0 < self.debounce_ms:
            return
        self._last_modified[path] = now
        if len(self._last_modified) > DEBOUNCE_PRUNE_THRESHOLD:
            self._prune(now)
        if self._is_settings_file(path):
            if self._on_settings_file_changed:
                self._dispatch(self._on_settings_file_changed)
            return
        # A write that reached the disk counts as a save
        self._dispatch(self.workspace.save_text_document, path)

    def _prune(self, now: float) -> None:
        horizon = now - self.debounce_ms / 1000.0
        self._last_modified = {p: t for p, t in self._last_modified.items() if t > horizon}

    def on_created(self, event: FileSystemEvent):
        if event.is_directory or self._is_excluded(event.src_path):
            return
        if self._is_settings_file(os.fsdecode(event.src_path)):
            if self._on_settings_file_changed:
                self._dispatch(self._on_settings_file_changed)
            return
        self._dispatch(self.workspace.create_files, [os.fsdecode(event.src_path)])

    def on_deleted(self, event: FileSystemEvent):
        if self._is_excluded(event.src_path):
            return
        path = os.fsdecode(event.src_path)
        self._last_modified.pop(path, None)
        self._dispatch(self.workspace.delete_files, [path])

    def on_moved(self, event: FileSystemEvent):
        if self._is_excluded(event.src_path) and self._is_excluded(event.dest_path):
            return
        pair = (os.fsdecode(event.src_path), os.fsdecode(event.dest_path))
        self._dispatch(self.workspace.rename_files, [pair])
