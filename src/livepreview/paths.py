"""Path helpers shared by the connection and the HTTP server."""

import logging
import os
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, 'os.PathLike[str]']


def convert_to_posix_path(path: str) -> str:
    return path.replace('\\', '/')


def _normalize(path: PathLike) -> str:
    return os.path.normcase(os.path.normpath(os.fspath(path)))


def path_begins_with(path: PathLike, root: PathLike) -> bool:
    """Whether `path` is `root` or lies below it, compared segment by segment.

    `/a/bc` does not begin with `/a/b`.
    """
    path_n = _normalize(path)
    root_n = _normalize(root)
    if path_n == root_n:
        return True
    if not root_n.endswith(os.sep):
        root_n += os.sep
    return path_n.startswith(root_n)


def relative_suffix(path: PathLike, root: PathLike) -> Optional[str]:
    """POSIX suffix of `path` below `root` (with a leading slash), or None."""
    if not path_begins_with(path, root):
        return None
    path_n = os.path.normpath(os.fspath(path))
    root_n = os.path.normpath(os.fspath(root))
    suffix = path_n[len(root_n):]
    if suffix and not suffix.startswith(os.sep):
        suffix = os.sep + suffix
    return convert_to_posix_path(suffix)


def get_valid_server_root_for_workspace(workspace_path: Optional[PathLike], serve_root: str) -> str:
    """Validate the configured serve root against the workspace.

    Returns the normalized workspace-relative root when it names an existing
    directory inside the workspace, otherwise an empty string.
    """
    if not workspace_path or not serve_root:
        return ''
    workspace = Path(workspace_path)
    candidate = (workspace / serve_root.strip('/\\')).resolve()
    if not path_begins_with(candidate, workspace.resolve()):
        logger.warning(f"Serve root '{serve_root}' is outside the workspace; serving the workspace root")
        return ''
    if not candidate.is_dir():
        logger.warning(f"Serve root '{serve_root}' is not a directory in {workspace}; serving the workspace root")
        return ''
    relative = os.path.relpath(candidate, workspace.resolve())
    return '' if relative == os.curdir else convert_to_posix_path(relative)
