"""Workspace folder and the file-change feed.

Editors push unsaved edits through `change_text_document`; disk changes
arrive through `watcher.WorkspaceEventHandler`. Consumers subscribe to the
five `on_did_*` channels.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .events import Disposable, EventEmitter


@dataclass(frozen=True)
class WorkspaceFolder:
    path: Path
    name: str = ''

    def __post_init__(self):
        object.__setattr__(self, 'path', Path(self.path))
        if not self.name:
            object.__setattr__(self, 'name', self.path.name)


@dataclass(frozen=True)
class TextDocument:
    path: str


@dataclass(frozen=True)
class TextDocumentChangeEvent:
    document: TextDocument
    content_changes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FilesEvent:
    files: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FileRenameEvent:
    files: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)


class Workspace(Disposable):
    """The open workspace (if any) and its change notifications."""

    def __init__(self, folder: Optional[WorkspaceFolder] = None):
        super().__init__()
        self.folder = folder

        self._on_did_change_text_document = self._register(
            EventEmitter[TextDocumentChangeEvent]('didChangeTextDocument'))
        self.on_did_change_text_document = self._on_did_change_text_document.event

        self._on_did_save_text_document = self._register(EventEmitter[TextDocument]('didSaveTextDocument'))
        self.on_did_save_text_document = self._on_did_save_text_document.event

        self._on_did_create_files = self._register(EventEmitter[FilesEvent]('didCreateFiles'))
        self.on_did_create_files = self._on_did_create_files.event

        self._on_did_delete_files = self._register(EventEmitter[FilesEvent]('didDeleteFiles'))
        self.on_did_delete_files = self._on_did_delete_files.event

        self._on_did_rename_files = self._register(EventEmitter[FileRenameEvent]('didRenameFiles'))
        self.on_did_rename_files = self._on_did_rename_files.event

    @property
    def workspace_path(self) -> Optional[str]:
        """Absolute path of the workspace folder, None when no folder is open."""
        return os.fspath(self.folder.path) if self.folder else None

    def change_text_document(self, path: str, content_changes: Sequence[str]) -> None:
        self._on_did_change_text_document.fire(
            TextDocumentChangeEvent(TextDocument(path), tuple(content_changes)))

    def save_text_document(self, path: str) -> None:
        self._on_did_save_text_document.fire(TextDocument(path))

    def create_files(self, paths: Sequence[str]) -> None:
        self._on_did_create_files.fire(FilesEvent(tuple(paths)))

    def delete_files(self, paths: Sequence[str]) -> None:
        self._on_did_delete_files.fire(FilesEvent(tuple(paths)))

    def rename_files(self, pairs: List[Tuple[str, str]]) -> None:
        self._on_did_rename_files.fire(FileRenameEvent(tuple(pairs)))
